"""Command-line entry point for the EOM credit check.

Usage:
    python -m credit_check.cli check [--config PATH] [--output PATH] [--post] [--dry-run]
    python -m credit_check.cli post [--input PATH] [--dry-run] < report.json

``check`` prints the report JSON to stdout; progress logging goes to stderr,
so the output can be piped straight into ``post``.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from credit_check.check.output import load_report, parse_report, render_report
from credit_check.check.service import execute_check
from credit_check.config import ConfigError, get_settings
from credit_check.notify.slack import post_alerts

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(levelname)s: %(message)s",
    )


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    """Stop starting new customers on SIGINT/SIGTERM; in-flight checks finish."""
    loop = asyncio.get_running_loop()

    def _request_stop(signame: str) -> None:
        if not stop_event.is_set():
            logger.warning("Received %s, finishing in-flight customers", signame)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_stop, sig.name)


async def _run_check(args: argparse.Namespace) -> int:
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    run = await execute_check(
        trigger="cli",
        config_path=args.config,
        output_path=args.output,
        post=args.post,
        dry_run=True if args.dry_run else None,
        stop_event=stop_event,
    )
    print(render_report(run.report))
    if run.slack is not None and not run.slack.ok:
        logger.error("Some Slack messages failed: %s", ", ".join(run.slack.failures))
        return 1
    return 0


async def _run_post(args: argparse.Namespace) -> int:
    report = load_report(args.input) if args.input else parse_report(sys.stdin.read())
    summary = await post_alerts(report, dry_run=True if args.dry_run else None)
    if not summary.ok:
        logger.error("Some Slack messages failed: %s", ", ".join(summary.failures))
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eom-credit-check",
        description="Predict end-of-month credit exhaustion for monitored customers",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check every configured customer and print the report JSON")
    check.add_argument("--config", default=None, help="Monitor config file (default: CONFIG_PATH)")
    check.add_argument("--output", default=None, help="Also write the report JSON to this file")
    check.add_argument("--post", action="store_true", help="Post alerts to Slack after the check")
    check.add_argument("--dry-run", action="store_true", help="Log Slack messages instead of posting them")

    post = sub.add_parser("post", help="Post alerts from a saved report to Slack")
    post.add_argument("--input", default=None, help="Report JSON file (default: read stdin)")
    post.add_argument("--dry-run", action="store_true", help="Log Slack messages instead of posting them")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the command and return the process exit code."""
    args = build_parser().parse_args(argv)
    _configure_logging()

    runner = _run_check if args.command == "check" else _run_post
    try:
        return asyncio.run(runner(args))
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
