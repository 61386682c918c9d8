"""
Command-line interface for the application.

This module provides the main entry point for the CLI.
"""

from __future__ import annotations

import argparse
import asyncio
import functools
import http.server
import logging
import sys
from datetime import datetime

from air_quality_map import __version__
from air_quality_map.config import Settings, get_settings
from air_quality_map.datasources import build_registry
from air_quality_map.flows.build import build_all
from air_quality_map.flows.fetch import fetch_all
from air_quality_map.orchestrator import FetchOrchestrator, OrchestratorSnapshot
from air_quality_map.reference.sources import expand_group
from air_quality_map.reference.time_steps import TIME_STEPS
from air_quality_map.schemas import Selection


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="air-quality-map",
        description="Merged near-real-time air quality map from multiple sensor networks",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("info", help="Show application info")

    # 'refresh' command - fetch data and build site
    refresh_parser = subparsers.add_parser("refresh", help="Fetch data and build site")
    refresh_parser.add_argument(
        "--force",
        action="store_true",
        help="Fetch even if the stored snapshot is still fresh",
    )

    # 'watch' command - live auto-refresh in the terminal
    watch_parser = subparsers.add_parser("watch", help="Auto-refresh and print each update")
    watch_parser.add_argument(
        "--source",
        dest="sources",
        action="append",
        default=None,
        help="Source or source group to watch, repeatable (default: sources from settings)",
    )
    watch_parser.add_argument("--pollutant", default=None, help="Pollutant code (e.g. pm25)")
    watch_parser.add_argument(
        "--time-step",
        default=None,
        choices=sorted(TIME_STEPS),
        help="Time step, sets the refresh cadence",
    )
    watch_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until Ctrl+C)",
    )
    watch_parser.add_argument(
        "--no-auto-refresh",
        dest="auto_refresh",
        action="store_false",
        default=None,
        help="Fetch once and wait instead of refreshing every time step",
    )

    # 'serve' command - serve built site locally
    serve_parser = subparsers.add_parser("serve", help="Serve site locally")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to serve on (default: api_port from settings)",
    )

    return parser


def cmd_info(_args: argparse.Namespace) -> int:
    """Handle the 'info' command."""
    settings = get_settings()
    print(f"Application: {settings.app_name}")
    print(f"Version: {__version__}")
    print(f"Environment: {settings.app_env}")
    print(f"Debug: {settings.debug}")
    print(f"Sources: {', '.join(settings.sources) or '-'}")
    print(f"Pollutant: {settings.pollutant}")
    print(f"Time step: {settings.time_step}")
    print(f"Data dir: {settings.data_dir}")
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    """Handle the 'refresh' command: fetch data then build site."""
    settings = get_settings()
    print(f"Fetching {settings.pollutant} from {', '.join(settings.sources)}...")
    fetch_all(force=getattr(args, "force", False))

    print("Building site...")
    build_all()

    print("Done.")
    return 0


def format_snapshot(snapshot: OrchestratorSnapshot, now: datetime | None = None) -> str:
    """One status line for a settled snapshot."""
    stamp = (now or datetime.now()).strftime("%H:%M:%S")
    line = f"[{stamp}] {len(snapshot.measurements)} measurements, {len(snapshot.reports)} reports"
    if snapshot.source_errors:
        failed = ", ".join(f"{code} ({msg})" for code, msg in sorted(snapshot.source_errors.items()))
        line += f"; failed: {failed}"
    if snapshot.error:
        line += f"; error: {snapshot.error}"
    return line


def expand_sources(codes: list[str]) -> tuple[str, ...]:
    """Replace group codes (e.g. ``communautaire``) with their member sources."""
    return tuple(leaf for code in codes for leaf in expand_group(code.strip()))


def _print_settled(snapshot: OrchestratorSnapshot) -> None:
    if not snapshot.loading:
        print(format_snapshot(snapshot), flush=True)


async def watch(selection: Selection, settings: Settings, duration: float | None = None) -> None:
    """Run the orchestrator for a selection, printing every settled update."""
    orchestrator = FetchOrchestrator(build_registry(settings), source_timeout=settings.source_timeout)
    orchestrator.subscribe(_print_settled)
    orchestrator.set_selection(selection)
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await orchestrator.aclose()


def cmd_watch(args: argparse.Namespace) -> int:
    """Handle the 'watch' command."""
    settings = get_settings()
    auto_refresh = settings.auto_refresh if args.auto_refresh is None else args.auto_refresh
    selection = Selection(
        sources=expand_sources(args.sources or settings.sources),
        pollutant=args.pollutant or settings.pollutant,
        time_step=args.time_step or settings.time_step,
        auto_refresh=auto_refresh,
    )
    if not selection.canonical_sources:
        print("No source selected.", file=sys.stderr)
        return 1

    cadence = f"every {selection.time_step}" if selection.auto_refresh else "once"
    print(
        f"Watching {selection.pollutant} from {', '.join(selection.canonical_sources)} "
        f"{cadence} (Ctrl+C to stop)"
    )
    try:
        asyncio.run(watch(selection, settings, args.duration))
    except KeyboardInterrupt:
        print("\nStopped.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command: serve the built site locally."""
    settings = get_settings()
    port = args.port if args.port is not None else settings.api_port
    site_dir = settings.site_dir

    if not site_dir.exists():
        print("No site directory found. Run 'air-quality-map refresh' first.", file=sys.stderr)
        return 1

    handler = functools.partial(http.server.SimpleHTTPRequestHandler, directory=str(site_dir))

    with http.server.HTTPServer(("", port), handler) as server:
        print(f"Serving site on http://localhost:{port}/ (Ctrl+C to stop)")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            print("\nServer stopped.")

    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "info": cmd_info,
        "refresh": cmd_refresh,
        "watch": cmd_watch,
        "serve": cmd_serve,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
