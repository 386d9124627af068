"""
Command line entry point.

    python -m worklog shifts import schedule.csv --project P --team T --year 2026 --month 3
    python -m worklog shifts export --project P --team T --year 2026 --month 3 --out march.csv
    python -m worklog board show --project P --team T
"""
import argparse
import logging
import sys
from pathlib import Path

from .client import RemoteDataClient
from .config import Config
from .errors import WorklogError
from .shifts import (
    default_shift_code,
    ensure_mandatory_enums,
    export_schedule_csv,
    import_schedule_csv,
    load_schedule,
    load_team_members,
)

logger = logging.getLogger(__name__)


def make_client(cfg: Config) -> RemoteDataClient:
    return RemoteDataClient(cfg.base_url, api_key=cfg.api_key, actor_email=cfg.actor_email,
                            timeout=cfg.request_timeout)


def cmd_shifts_import(cfg: Config, args) -> int:
    text = Path(args.file).read_text(encoding="utf-8-sig")
    result = import_schedule_csv(make_client(cfg), text, args.project, args.team, args.year, args.month,
                                 default_code=cfg.default_shift_code)
    print(f"CSV uploaded successfully! {result.summary}")
    return 0


def cmd_shifts_export(cfg: Config, args) -> int:
    client = make_client(cfg)
    enums = ensure_mandatory_enums(client, args.project, args.team)
    members = load_team_members(client, args.team)
    schedule = load_schedule(client, args.project, args.team, args.year, args.month)
    text = export_schedule_csv(schedule, members, args.year, args.month,
                               default_shift_code(enums, cfg.default_shift_code))
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"Wrote {len(members)} rows to {args.out}")
    else:
        sys.stdout.write(text)
    return 0


def cmd_board_show(cfg: Config, args) -> int:
    board = make_client(cfg).get_kanban_board_with_cache(args.project, args.team)
    for column in board.columns:
        print(f"{column.name} ({len(column.tasks)})")
        for task in column.tasks:
            assignee = f" @{task.assigned_to}" if task.assigned_to else ""
            print(f"  [{task.priority}] {task.title}{assignee}  ({task.id})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="worklog", description="Work-log kanban and shift tools")
    ap.add_argument("--config", default=None, help="Path to config.yaml")
    ap.add_argument("--base-url", default=None, help="Server URL (overrides config)")
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    shifts = sub.add_parser("shifts", help="Shift schedule import/export").add_subparsers(
        dest="shifts_command", required=True)

    imp = shifts.add_parser("import", help="Upload a schedule CSV")
    imp.add_argument("file")
    exp = shifts.add_parser("export", help="Download a schedule CSV")
    exp.add_argument("--out", default=None, help="Output file (default: stdout)")
    for p in (imp, exp):
        p.add_argument("--project", required=True)
        p.add_argument("--team", required=True)
        p.add_argument("--year", type=int, required=True)
        p.add_argument("--month", type=int, required=True, choices=range(1, 13), metavar="1-12")
    imp.set_defaults(handler=cmd_shifts_import)
    exp.set_defaults(handler=cmd_shifts_export)

    board = sub.add_parser("board", help="Kanban board").add_subparsers(dest="board_command", required=True)
    show = board.add_parser("show", help="Print the board")
    show.add_argument("--project", required=True)
    show.add_argument("--team", required=True)
    show.set_defaults(handler=cmd_board_show)
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = Config.load(args.config)
    if args.base_url:
        cfg.base_url = args.base_url

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [worklog] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    try:
        return args.handler(cfg, args)
    except (WorklogError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
