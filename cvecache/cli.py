"""Command line entry point: ``cvecache sync`` and ``cvecache search``."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from . import __version__
from .config import NVD_FEED_BASE_URL, CacheConfig, load_config
from .errors import CacheError, NotFound
from .query import search_by_id, search_description
from .source import HttpFeedSource
from .sync import SyncEngine


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cvecache",
        description="Search for CVEs against a local cached copy of the NVD feeds.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    p_sync = sub.add_parser("sync", help="Sync CVE feeds to local database")
    p_sync.add_argument("-u", "--url", help=f"URL to use for fetching feeds, defaults to: {NVD_FEED_BASE_URL}")
    p_sync.add_argument(
        "-l", "--feeds", help="Comma separated list of CVE feeds to fetch and sync, defaults to: all known feeds"
    )
    p_sync.add_argument("-d", "--db", help="Path to SQLite database where CVE feed data will be stored")
    p_sync.add_argument("-c", "--config", type=Path, help="YAML or JSON file with sync settings")
    p_sync.add_argument("-s", "--show-default", action="store_true", help="Show default config values and exit")
    p_sync.add_argument("-n", "--no-progress", action="store_true", help="Don't show progress when syncing feeds")
    p_sync.add_argument("-f", "--force", action="store_true", help="Ignore stored metadata and update all feeds")
    p_sync.add_argument("-v", "--verbose", action="store_true", help="Print debug logs")

    p_search = sub.add_parser("search", help="Search for a CVE by ID in the local cache")
    p_search.add_argument("cve", nargs="?", help="CVE ID to retrieve")
    p_search.add_argument("-d", "--db", help="Path to SQLite database where CVE feed data is stored")
    p_search.add_argument("-t", "--text", help="Search the CVE descriptions instead")
    p_search.add_argument("-v", "--verbose", action="store_true", help="Print debug logs")
    return parser


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_progress(fraction: float, message: str) -> None:
    print(f"[{fraction:4.0%}] {message}", file=sys.stderr)


def _sync_config(args: argparse.Namespace) -> CacheConfig:
    overrides: dict[str, Any] = {"url": args.url, "feeds": args.feeds, "db": args.db}
    if args.no_progress:
        overrides["show_progress"] = False
    if args.force:
        overrides["force_update"] = True
    if args.config is not None:
        return load_config(args.config, **overrides)
    return CacheConfig(**{k: v for k, v in overrides.items() if v is not None})


def cmd_sync(args: argparse.Namespace) -> int:
    if args.show_default:
        print(f"Default Config Values:\n{CacheConfig().describe()}")
        return 0

    try:
        config = _sync_config(args)
    except (OSError, ValueError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    engine = SyncEngine(
        config,
        HttpFeedSource(config.url),
        progress=_print_progress if config.show_progress else None,
    )
    try:
        report = engine.run()
    except CacheError as e:
        print(f"Fatal Error: {e!r}", file=sys.stderr)
        return 1

    print(
        f"Synced {len(report.fetched)} feed(s), {len(report.current)} already current; "
        f"{report.records_written} CVEs written, {report.records_skipped} skipped"
    )
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    config = CacheConfig(db=args.db) if args.db else CacheConfig()

    if args.text is not None:
        try:
            ids = search_description(config, args.text)
        except CacheError as e:
            print(f"Fatal Error: {e!r}", file=sys.stderr)
            return 2
        if not ids:
            print("No results found", file=sys.stderr)
            return 1
        for cve_id in sorted(ids):
            print(cve_id)
        return 0

    if args.cve is None:
        print("Error: a CVE ID or --text is required", file=sys.stderr)
        return 1

    try:
        record = search_by_id(config, args.cve)
        print(json.dumps(record.data(), indent=2))
    except NotFound:
        print(f"{args.cve} not found", file=sys.stderr)
        return 3
    except CacheError as e:
        print(f"Fatal Error: {e!r}", file=sys.stderr)
        return 3
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        print("Error:\n At least one subcommand required: 'sync' or 'search'\n", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    _setup_logging(args.verbose)
    if args.command == "sync":
        return cmd_sync(args)
    return cmd_search(args)
