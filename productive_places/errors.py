"""Exception types shared by the engine and its collaborators."""

from __future__ import annotations


class ProductivityError(Exception):
    """Base class for all errors raised by productive_places."""


class InvalidInput(ProductivityError, ValueError):
    """Malformed coordinate, timestamp or parameter.

    Raised per observation; batch code catches it, skips the item and continues.
    """


class GeocodeUnavailable(ProductivityError):
    """Reverse geocoding failed (network error, quota, bad response)."""


class UserNotFound(ProductivityError, KeyError):
    """No user document exists for the requested id."""

    def __init__(self, user_id: str) -> None:
        super().__init__(user_id)
        self.user_id = user_id

    def __str__(self) -> str:
        return f"user not found: {self.user_id!r}"


class LocationNotFound(ProductivityError, KeyError):
    """The user has no frequent location with the given id."""

    def __init__(self, user_id: str, location_id: str) -> None:
        super().__init__(location_id)
        self.user_id = user_id
        self.location_id = location_id

    def __str__(self) -> str:
        return f"location {self.location_id!r} not found for user {self.user_id!r}"


class PersistenceFailure(ProductivityError):
    """A user document could not be written; the batch result is discarded."""
