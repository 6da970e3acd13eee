"""Command-line interface for productive_places.

Run:
    python -m productive_places upload --user alice --input Path.csv
    python -m productive_places aggregates --user alice --days 7
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path

from productive_places.config import GEOCODERS, AppConfig, build_geocoder
from productive_places.csv_io import load_observations_any, write_locations_csv
from productive_places.errors import ProductivityError
from productive_places.geocode import JsonDiskCache
from productive_places.models import Observation, Weekday
from productive_places.productivity import RankMode, describe_weekday
from productive_places.service import ProductivityService
from productive_places.store import JsonUserStore
from productive_places.timeutils import dt_from_epoch_ms, epoch_ms_from_dt, parse_dt

logger = logging.getLogger(__name__)


def _config(args: argparse.Namespace) -> AppConfig:
    cfg = AppConfig.from_env()
    overrides: dict[str, object] = {}
    if args.data_dir is not None:
        overrides["data_dir"] = Path(args.data_dir)
    if args.tz is not None:
        overrides["tz_name"] = args.tz
    if args.geocoder is not None:
        overrides["geocoder"] = args.geocoder
    return replace(cfg, **overrides) if overrides else cfg


def _service(args: argparse.Namespace, cache: JsonDiskCache | None = None) -> ProductivityService:
    cfg = _config(args)
    kwargs = {}
    if args.now:
        fixed = epoch_ms_from_dt(parse_dt(args.now, cfg.tz_name))
        kwargs["clock"] = lambda: fixed
    return ProductivityService(
        JsonUserStore(cfg.users_dir),
        build_geocoder(cfg, cache),
        sitting=cfg.sitting,
        enrich=cfg.enrich,
        tz_name=cfg.tz_name,
        coord_precision=cfg.coord_precision,
        **kwargs,
    )


def _load_input(path: str) -> list[Observation]:
    observations, summary = load_observations_any(path)
    print(f"读取观测点：total={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    return observations


def _cmd_upload(args: argparse.Namespace) -> int:
    cache = JsonDiskCache(_config(args).cache_path)
    svc = _service(args, cache)
    observations = _load_input(args.input)
    svc.get_or_create_user(args.user)
    try:
        new_locations = svc.process_raw_observations(args.user, observations, replace=not args.append)
    finally:
        cache.flush()
    resolved = sum(1 for loc in new_locations if loc.address is not None)
    print(f"识别到常去地点记录={len(new_locations)}，已解析地址={resolved}")
    return 0


def _cmd_queue(args: argparse.Namespace) -> int:
    svc = _service(args)
    observations = _load_input(args.input)
    svc.get_or_create_user(args.user)
    n = svc.queue_observations(args.user, observations)
    print(f"已加入待处理队列，当前队列长度={n}")
    return 0


def _cmd_process_pending(args: argparse.Namespace) -> int:
    cache = JsonDiskCache(_config(args).cache_path)
    svc = _service(args, cache)
    try:
        new_locations = svc.process_pending_observations(args.user)
    finally:
        cache.flush()
    print(f"处理完成：新增常去地点记录={len(new_locations)}")
    return 0


def _cmd_aggregates(args: argparse.Namespace) -> int:
    svc = _service(args)
    result = svc.recompute_aggregates(args.user, args.days)
    label = "全部时间" if args.days is None else f"最近{args.days}天"
    if args.json:
        print(json.dumps(asdict(result), ensure_ascii=False, indent=2, default=str))
        return 0

    print(f"### 工作日平均效率（{label}）")
    for day, (avg, n) in enumerate(zip(result.averages, result.sample_counts)):
        print(f"{Weekday(day).label:<10} avg={avg:.2f} samples={n}")
    print()
    print(f"最高效工作日：{describe_weekday(result.most)}（avg={result.most.average_productivity}）")
    print(f"最低效工作日：{describe_weekday(result.least)}（avg={result.least.average_productivity}）")
    return 0


def _cmd_rank(args: argparse.Namespace) -> int:
    svc = _service(args)
    mode = RankMode(args.by)
    places = svc.rank_locations(args.user, args.days, args.top, mode)
    if args.json:
        print(json.dumps([asdict(p) for p in places], ensure_ascii=False, indent=2))
        return 0
    if not places:
        print("没有可排名的地点（地址尚未解析或时间范围内无记录）")
        return 0
    for i, p in enumerate(places, start=1):
        print(f"{i:>2}. avg={p.average_productivity:.2f} visits={p.times_observed:<3} {p.address}")
    return 0


def _cmd_trend(args: argparse.Namespace) -> int:
    svc = _service(args)
    trend = svc.productivity_trend(args.user, args.days)
    if args.json:
        print(json.dumps(trend, ensure_ascii=False, indent=2))
        return 0
    for day, avg in trend.items():
        print(f"{day}\t{avg:.2f}")
    return 0


def _cmd_unrated(args: argparse.Namespace) -> int:
    cfg = _config(args)
    svc = _service(args)
    for loc in svc.unrated_locations(args.user, args.days):
        start = dt_from_epoch_ms(loc.start_ms, cfg.tz_name).isoformat(sep=" ")
        print(f"{loc.location_id}\t{start}\t{loc.formatted_address or loc.coord_key}")
    return 0


def _cmd_rate(args: argparse.Namespace) -> int:
    svc = _service(args)
    loc = svc.update_productivity(args.user, args.location_id, args.score)
    print(f"已更新：{loc.location_id} productivity={loc.productivity}")
    if args.recompute:
        svc.recompute_all_aggregates(args.user)
        print("已重新计算工作日统计")
    return 0


def _parse_preset(text: str) -> tuple[str, float]:
    addr, sep, score = text.rpartition("=")
    if not sep or not addr.strip():
        raise argparse.ArgumentTypeError(f"格式应为 地址=分数，实际：{text!r}")
    try:
        return addr.strip(), float(score)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"分数不是数字：{score!r}") from exc


def _cmd_settings(args: argparse.Namespace) -> int:
    svc = _service(args)
    svc.get_or_create_user(args.user)
    presets = dict(args.preset) if args.preset else None
    user = svc.update_settings(
        args.user,
        presets=presets,
        home_location=args.home,
        home_lat_long=args.home_latlong,
    )
    print(f"已保存设置：预设地点={len(user.preset_productive_locations)}")
    return 0


def _cmd_sweep(args: argparse.Namespace) -> int:
    cache = JsonDiskCache(_config(args).cache_path)
    svc = _service(args, cache)
    try:
        report = svc.run_sweep(args.user or None)
    finally:
        cache.flush()
    print(f"批处理完成：成功={len(report.processed)}，失败={len(report.failed)}，新增地点记录={report.new_locations}")
    for user_id, err in report.failed.items():
        print(f"  {user_id}: {err}", file=sys.stderr)
    return 1 if report.failed else 0


def _cmd_export(args: argparse.Namespace) -> int:
    cfg = _config(args)
    user = JsonUserStore(cfg.users_dir).load_user(args.user)
    n = write_locations_csv(user.frequent_locations, args.out, cfg.tz_name)
    print(f"已导出：{args.out}（{n} 行）")
    return 0


def _days(text: str) -> int | None:
    if text.lower() in ("all", "none", ""):
        return None
    value = int(text)
    if value < 0:
        raise argparse.ArgumentTypeError("天数不能为负数")
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="productive_places")
    p.add_argument("--data-dir", type=str, default=None, help="数据目录（默认 data，或 PRODUCTIVE_PLACES_DATA_DIR）")
    p.add_argument("--tz", type=str, default=None, help="时区（IANA），默认 UTC（或 PRODUCTIVE_PLACES_TZ）")
    p.add_argument("--geocoder", type=str, default=None, choices=GEOCODERS, help="逆地理编码服务")
    p.add_argument("--now", type=str, default=None, help="把“现在”固定为该时间（例如 2025-12-18 09:30:00），便于复现")
    p.add_argument("--log-level", type=str, default="WARNING", help="日志级别（DEBUG/INFO/WARNING）")
    sub = p.add_subparsers(dest="cmd", required=True)

    def _user(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--user", type=str, required=True, help="用户ID")

    p_up = sub.add_parser("upload", help="批量上传原始定位点，识别常去地点并解析地址")
    _user(p_up)
    p_up.add_argument("--input", type=str, required=True, help="观测点文件（.csv 或 .json）")
    p_up.add_argument("--append", action="store_true", help="追加到已有地点（默认替换）")
    p_up.set_defaults(func=_cmd_upload)

    p_q = sub.add_parser("queue", help="把后台定位点加入待处理队列")
    _user(p_q)
    p_q.add_argument("--input", type=str, required=True, help="观测点文件（.csv 或 .json）")
    p_q.set_defaults(func=_cmd_queue)

    p_pp = sub.add_parser("process-pending", help="处理某个用户的待处理队列")
    _user(p_pp)
    p_pp.set_defaults(func=_cmd_process_pending)

    p_ag = sub.add_parser("aggregates", help="重新计算最高效/最低效工作日")
    _user(p_ag)
    p_ag.add_argument("--days", type=_days, default=None, help="7 / 30 / all（默认 all）")
    p_ag.add_argument("--json", action="store_true", help="输出JSON")
    p_ag.set_defaults(func=_cmd_aggregates)

    p_rk = sub.add_parser("rank", help="按平均效率或到访次数对地点排名")
    _user(p_rk)
    p_rk.add_argument("--days", type=_days, default=None, help="时间范围（天），默认全部")
    p_rk.add_argument("--top", type=int, default=5, help="返回前N个")
    p_rk.add_argument("--by", type=str, default="productivity", choices=[m.value for m in RankMode])
    p_rk.add_argument("--json", action="store_true", help="输出JSON")
    p_rk.set_defaults(func=_cmd_rank)

    p_tr = sub.add_parser("trend", help="按日期统计平均效率")
    _user(p_tr)
    p_tr.add_argument("--days", type=_days, default=None, help="时间范围（天），默认全部")
    p_tr.add_argument("--json", action="store_true", help="输出JSON")
    p_tr.set_defaults(func=_cmd_trend)

    p_un = sub.add_parser("unrated", help="列出尚未打分的到访记录")
    _user(p_un)
    p_un.add_argument("--days", type=_days, default=14, help="时间范围（天），默认14")
    p_un.set_defaults(func=_cmd_unrated)

    p_rt = sub.add_parser("rate", help="为一次到访打分")
    _user(p_rt)
    p_rt.add_argument("--location-id", type=str, required=True, help="地点记录ID（见 unrated 输出）")
    p_rt.add_argument("--score", type=float, required=True, help="效率分数")
    p_rt.add_argument("--recompute", action="store_true", help="打分后立即重新计算工作日统计")
    p_rt.set_defaults(func=_cmd_rate)

    p_st = sub.add_parser("settings", help="设置预设效率地点/家庭住址")
    _user(p_st)
    p_st.add_argument(
        "--preset",
        type=_parse_preset,
        action="append",
        default=None,
        help="预设地点效率，格式 地址=分数（可重复；分数<=0 的会被忽略）",
    )
    p_st.add_argument("--home", type=str, default=None, help="家庭住址")
    p_st.add_argument("--home-latlong", type=str, default=None, help="家庭住址经纬度，例如 '42.3485, -71.0765'")
    p_st.set_defaults(func=_cmd_settings)

    p_sw = sub.add_parser("sweep", help="定时任务：处理所有用户的队列并刷新统计（由 cron 调用）")
    p_sw.add_argument("--user", type=str, action="append", default=None, help="只处理这些用户（可重复）")
    p_sw.set_defaults(func=_cmd_sweep)

    p_ex = sub.add_parser("export", help="导出用户的常去地点为CSV")
    _user(p_ex)
    p_ex.add_argument("--out", type=str, default="locations.csv", help="输出CSV路径")
    p_ex.set_defaults(func=_cmd_export)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except (ProductivityError, ValueError, OSError) as exc:
        logger.debug("command failed", exc_info=True)
        print(f"错误：{exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
