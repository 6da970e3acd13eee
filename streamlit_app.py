from __future__ import annotations

from pathlib import Path

import streamlit as st

from productive_places.config import AppConfig
from productive_places.errors import ProductivityError
from productive_places.models import DEFAULT_TZ, AggregateWindow, User, Weekday
from productive_places.productivity import (
    compute_weekday_aggregates,
    daily_productivity_trend,
    describe_weekday,
    rank_by_average_productivity,
    rank_by_visit_frequency,
    unrated_locations,
)
from productive_places.store import JsonUserStore
from productive_places.timeutils import dt_from_epoch_ms

WINDOWS = {
    "最近7天": AggregateWindow.LAST_7_DAYS,
    "最近30天": AggregateWindow.LAST_30_DAYS,
    "全部时间": AggregateWindow.ALL_TIME,
}


@st.cache_data(show_spinner=False)
def _load_user(users_dir: str, user_id: str, mtime: float) -> User:
    _ = mtime  # part of cache key so updated documents reload automatically
    return JsonUserStore(users_dir).load_user(user_id)


def main() -> None:
    cfg = AppConfig.from_env()
    st.set_page_config(page_title="常去地点与效率统计", layout="wide")
    st.title("常去地点与效率统计")

    with st.sidebar:
        st.subheader("数据与时区")
        tz_name = st.text_input("时区（IANA）", value=cfg.tz_name or DEFAULT_TZ)
        users_dir = st.text_input("用户数据目录", value=str(cfg.users_dir))
        store = JsonUserStore(users_dir)
        user_ids = store.list_user_ids()
        if not user_ids:
            st.error(f"目录中没有用户文档：{users_dir!r}。先用 CLI 的 upload 命令导入数据。")
            return
        user_id = st.selectbox("用户", user_ids)

        st.subheader("统计范围")
        window_label = st.radio("时间窗口", list(WINDOWS), index=2)
        top_n = st.number_input("排名前N个地点", value=5, min_value=1, step=1)

    window = WINDOWS[window_label]
    doc_path = Path(users_dir) / f"{user_id}.json"
    try:
        user = _load_user(users_dir, user_id, doc_path.stat().st_mtime)
    except (ProductivityError, OSError) as exc:
        st.exception(exc)
        return

    locations = user.frequent_locations
    agg = compute_weekday_aggregates(locations, window, tz_name=tz_name)

    st.subheader("汇总")
    c1, c2, c3 = st.columns(3)
    c1.metric("常去地点记录", str(len(locations)))
    c2.metric("最高效工作日", describe_weekday(agg.most))
    c3.metric("最低效工作日", describe_weekday(agg.least))
    st.caption("样本为0的工作日在图中显示为0，但不会被当作“效率为0”。")

    st.subheader("工作日平均效率")
    week_rows = [
        {"weekday": Weekday(i).label, "average": round(avg, 3), "samples": n}
        for i, (avg, n) in enumerate(zip(agg.averages, agg.sample_counts))
    ]
    st.bar_chart(week_rows, x="weekday", y="average")
    with st.expander("按工作日明细", expanded=False):
        st.dataframe(week_rows, use_container_width=True)

    left, right = st.columns(2)
    with left:
        st.subheader("平均效率最高的地点")
        ranked = rank_by_average_productivity(locations, window.days, int(top_n))
        st.dataframe(
            [
                {"address": r.address, "average": round(r.average_productivity, 3), "visits": r.times_observed}
                for r in ranked
            ],
            use_container_width=True,
        )
    with right:
        st.subheader("到访最频繁的地点")
        frequent = rank_by_visit_frequency(locations, int(top_n), window_days=window.days)
        st.dataframe(
            [{"address": r.address, "visits": r.times_observed} for r in frequent],
            use_container_width=True,
        )

    st.subheader("每日平均效率")
    trend = daily_productivity_trend(locations, window.days, tz_name=tz_name)
    st.dataframe([{"date": d, "average": round(v, 3)} for d, v in trend.items()], use_container_width=True, height=360)

    with st.expander("尚未打分的到访记录", expanded=False):
        pending = unrated_locations(locations, window.days)
        st.dataframe(
            [
                {
                    "location_id": loc.location_id,
                    "start_time": dt_from_epoch_ms(loc.start_ms, tz_name).isoformat(sep=" "),
                    "address": loc.formatted_address or loc.coord_key,
                }
                for loc in pending
            ],
            use_container_width=True,
        )
        st.caption("打分请使用：python -m productive_places rate --user <id> --location-id <id> --score <n>")


if __name__ == "__main__":
    main()
