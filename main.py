# main.py

"""Entry point for the BytSave price-alert pipeline."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from bytsave.config.logging_config import setup_logging
from bytsave.config.settings import Settings

logger = logging.getLogger("bytsave.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="bytsave",
        description="Amazon price-drop alerts by email.",
    )
    parser.add_argument(
        "--db",
        default=None,
        type=Path,
        dest="db_path",
        help=f"SQLite database path (default: {Settings.DB_PATH}).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one alert cycle and exit.")
    run.add_argument(
        "--offline",
        action="store_true",
        default=False,
        help="Use stored prices instead of fetching from Amazon.",
    )

    watch = sub.add_parser(
        "watch", help="Run alert cycles on a fixed interval."
    )
    watch.add_argument(
        "-i",
        "--interval",
        type=float,
        default=float(Settings.RUN_INTERVAL_MINUTES),
        help="Minutes between runs (default: %(default)s).",
    )
    watch.add_argument(
        "--offline",
        action="store_true",
        default=False,
        help="Use stored prices instead of fetching from Amazon.",
    )

    track = sub.add_parser("track", help="Start tracking a product.")
    track.add_argument("product", help="ASIN or Amazon product URL.")
    track.add_argument("email", help="Recipient address for alerts.")
    condition = track.add_mutually_exclusive_group(required=True)
    condition.add_argument(
        "-t", "--target", default=None, help="Alert at or below this price."
    )
    condition.add_argument(
        "-p",
        "--percent",
        default=None,
        help="Alert when discounted by at least this percent.",
    )
    track.add_argument(
        "-c",
        "--cooldown",
        type=int,
        default=None,
        help=(
            "Hours between alerts "
            f"(default: {Settings.DEFAULT_COOLDOWN_HOURS})."
        ),
    )

    untrack = sub.add_parser("untrack", help="Stop tracking a product.")
    untrack.add_argument("item_id", type=int, help="Tracker id.")

    sub.add_parser("list", help="List all trackers.")

    logs = sub.add_parser("logs", help="Show recent email deliveries.")
    logs.add_argument(
        "-n", "--limit", type=int, default=20, help="Rows to show."
    )

    cooldown = sub.add_parser(
        "set-cooldown",
        help="Override every tracker's cooldown (0 clears it).",
    )
    cooldown.add_argument("hours", type=int)
    return parser


def _dispatch(args: argparse.Namespace) -> int:
    """Run the selected subcommand and return its exit code."""
    from bytsave.cli import runner

    if args.command == "run":
        return asyncio.run(
            runner.run_once(db_path=args.db_path, offline=args.offline)
        )
    if args.command == "watch":
        try:
            return asyncio.run(
                runner.run_watch(
                    args.interval,
                    db_path=args.db_path,
                    offline=args.offline,
                )
            )
        except KeyboardInterrupt:
            logger.info("Watch interrupted by user")
            return 0
    if args.command == "track":
        return runner.run_track(
            args.product,
            args.email,
            target=args.target,
            percent=args.percent,
            cooldown_hours=args.cooldown,
            db_path=args.db_path,
        )
    if args.command == "untrack":
        return runner.run_untrack(args.item_id, db_path=args.db_path)
    if args.command == "list":
        return runner.run_list(db_path=args.db_path)
    if args.command == "logs":
        return runner.run_logs(args.limit, db_path=args.db_path)
    return runner.run_set_cooldown(args.hours, db_path=args.db_path)


def main() -> None:
    """Parse arguments and route to the matching command."""
    log_file = setup_logging()
    logger.info("bytsave starting, log file: %s", log_file)

    args = _build_parser().parse_args()
    try:
        exit_code = _dispatch(args)
    except Exception:
        logger.critical("Fatal error in '%s'", args.command, exc_info=True)
        raise
    finally:
        logger.info("bytsave shutting down")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
