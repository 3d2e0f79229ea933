"""CLI entrypoint for `now-logs`."""

from __future__ import annotations

import argparse
import logging
import sys

import anyio
import logfire
from rich.console import Console

from .config import DEFAULT_LIMIT, RunConfig, Settings
from .engine import ReconciliationEngine
from .errors import MissingToken, NowLogsError
from .historical import HistoricalSource, NowLogsApi
from .live import LiveSource, SocketIOLiveSource
from .record import DEFAULT_TYPES
from .serial import parse_since
from .sink import ConsoleSink, Sink
from .target import parse_target

_stderr = Console(stderr=True, highlight=False)


def _error(message: str) -> None:
    _stderr.print(f"[red]Error![/red] {message}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="now-logs",
        description="Print the logs of a deployment, optionally following new ones.",
        epilog="Example: now-logs deploymentId",
    )
    parser.add_argument("target", nargs="?", help="Deployment id or URL.")
    parser.add_argument(
        "-a", "--all", action="store_true", help="Include access logs."
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Debug mode.")
    parser.add_argument(
        "-f", "--follow", action="store_true", help="Wait for additional data."
    )
    parser.add_argument(
        "-n",
        dest="limit",
        type=int,
        default=DEFAULT_LIMIT,
        help=f"Number of logs (default: {DEFAULT_LIMIT}).",
    )
    parser.add_argument("-q", "--query", default="", help="Search query.")
    parser.add_argument("-t", "--token", default=None, help="Login token.")
    parser.add_argument(
        "--since", default=None, help="Only return logs after date (ISO 8601)."
    )
    parser.add_argument(
        "--until",
        default=None,
        help="Only return logs before date (ISO 8601), ignored for `-f`.",
    )
    parser.add_argument("-T", "--team", default=None, help="Set a custom team scope.")
    return parser


def _configure_logging(debug: bool) -> None:
    logfire.configure(
        send_to_logfire="if-token-present",
        console=logfire.ConsoleOptions(min_log_level="debug") if debug else False,
    )
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        handlers=[logfire.LogfireLoggingHandler()],
    )


def build_run_config(args: argparse.Namespace) -> RunConfig:
    """Validate CLI arguments into a `RunConfig`.

    Raises:
        InvalidDateFormat: If `--since`/`--until` is not a date.
        InvalidTarget: If a URL target includes a path.
    """

    since = parse_since(args.since)
    until = parse_since(args.until)
    target = parse_target(args.target)
    return RunConfig(
        target=target.value,
        instance_id=target.instance_id,
        since=since,
        until=None if args.follow else until,
        types=() if args.all else DEFAULT_TYPES,
        query=args.query or "",
        limit=args.limit,
        follow=args.follow,
        debug=args.debug,
    )


async def run(
    run_config: RunConfig,
    *,
    settings: Settings,
    historical: HistoricalSource | None = None,
    live: LiveSource | None = None,
    sink: Sink | None = None,
) -> int:
    """Function entrypoint; returns the number of emitted records."""

    token = settings.token
    if not token:
        raise MissingToken("No token configured. Pass --token or set NOW_TOKEN.")

    if historical is None:
        historical = NowLogsApi(
            api_url=settings.api_url, token=token, team_id=settings.team
        )
    if live is None and run_config.follow:
        live = SocketIOLiveSource(
            url=settings.log_io_url,
            target=run_config.target,
            is_url=run_config.is_url,
            instance_id=run_config.instance_id,
            types=run_config.types,
            query=run_config.query,
        )

    engine = ReconciliationEngine(
        run_config,
        historical=historical,
        sink=sink or ConsoleSink(),
        token=token,
        reorder_delay_seconds=settings.reorder_delay_seconds,
        dedupe_window=settings.dedupe_window,
    )
    await engine.run(live)
    return engine.emitted_count


async def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.target or args.target == "help":
        parser.print_help()
        return 0
    if args.limit <= 0:
        parser.error(f"-n must be a positive number; got {args.limit}")

    try:
        run_config = build_run_config(args)
    except NowLogsError as e:
        _error(str(e))
        return 1

    _configure_logging(run_config.debug)
    overrides = {k: v for k, v in (("token", args.token), ("team", args.team)) if v}
    settings = Settings(**overrides)

    try:
        await run(run_config, settings=settings)
    except NowLogsError as e:
        _error(str(e))
        return 1
    return 0


def cli() -> None:
    try:
        code = anyio.run(main)
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)
