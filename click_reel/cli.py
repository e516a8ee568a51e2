"""
Command line utilities for inspecting, exporting and maintaining stored reels.
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime
from typing import List, Optional

from click_reel.app import ClickReel
from click_reel.errors import ClickReelError, ReelNotFound
from click_reel.export import FORMAT_ALIASES
from click_reel.metadata import format_bytes


def _format_timestamp(milliseconds: Optional[int]) -> str:
    if milliseconds is None:
        return "in progress"
    return datetime.fromtimestamp(milliseconds / 1000).strftime("%Y-%m-%d %H:%M:%S")


def list_reels(app: ClickReel, args: argparse.Namespace) -> int:
    summaries = app.list_reels()
    if not summaries:
        logging.info("No reels stored in %s", app.config.store.database_path)
        return 0

    for summary in summaries:
        logging.info(
            "%s  %s  %s frame(s)  %s  %s",
            summary.id,
            _format_timestamp(summary.start_time),
            summary.frame_count,
            format_bytes(summary.estimated_size),
            summary.title,
        )

    info = app.storage_info()
    logging.info(
        "%s reel(s), %s frame(s), %s of %s used (%.1f%%)",
        info.reels_count,
        info.frames_count,
        format_bytes(info.usage),
        format_bytes(info.quota),
        info.percent_used,
    )
    return 0


def show_info(app: ClickReel, args: argparse.Namespace) -> int:
    details = app.reel_info(args.reel_id)
    width = max(len(key) for key in details)
    for key, value in details.items():
        logging.info("%s  %s", key.ljust(width), value)
    return 0


def export_reel(app: ClickReel, args: argparse.Namespace) -> int:
    def report(completed: int, total: int, status: str) -> None:
        logging.debug("[%s/%s] %s", completed, total, status)

    include_html = True if args.html else None
    path = app.export(
        args.reel_id,
        args.format,
        output_dir=args.output_dir,
        include_metadata=not args.no_metadata,
        include_html=include_html,
        on_progress=report,
    )
    logging.info("Exported reel %s to %s", args.reel_id, path)
    return 0


def rename_reel(app: ClickReel, args: argparse.Namespace) -> int:
    if args.title is None and args.description is None:
        logging.error("Nothing to update: pass --title and/or --description")
        return 2
    reel = app.rename(args.reel_id, title=args.title, description=args.description)
    logging.info("Reel %s is now titled '%s'", reel.id, reel.title)
    return 0


def delete_reel(app: ClickReel, args: argparse.Namespace) -> int:
    if not app.delete(args.reel_id):
        return 1
    logging.info("Deleted reel %s", args.reel_id)
    return 0


def cleanup_reels(app: ClickReel, args: argparse.Namespace) -> int:
    deleted = app.cleanup(args.keep)
    if not deleted:
        logging.info("Nothing to clean up.")
    for reel_id in deleted:
        logging.info("Removed %s", reel_id)
    return 0


def run_maintenance(app: ClickReel, args: argparse.Namespace) -> int:
    if args.once:
        app.enforce_storage_quota()
        return 0
    app.run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="click-reel",
        description="Inspect, export and maintain recorded click reels.",
    )
    parser.add_argument(
        "--config",
        default="config.json",
        help="Path to the JSON configuration file (default: config.json).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List stored reels, newest first.")
    list_parser.set_defaults(handler=list_reels)

    info_parser = subparsers.add_parser("info", help="Show details of one reel.")
    info_parser.add_argument("reel_id")
    info_parser.set_defaults(handler=show_info)

    export_parser = subparsers.add_parser("export", help="Export a reel as GIF, APNG or ZIP bundle.")
    export_parser.add_argument("reel_id")
    export_parser.add_argument(
        "--format",
        choices=sorted(FORMAT_ALIASES),
        default=None,
        help="Export format (default: the configured preference).",
    )
    export_parser.add_argument("--output-dir", default=None, help="Directory for the exported file.")
    export_parser.add_argument(
        "--no-metadata",
        action="store_true",
        help="Leave the metadata JSON out of ZIP bundles.",
    )
    export_parser.add_argument(
        "--html",
        action="store_true",
        help="Include the HTML viewer (always on for ZIP bundles).",
    )
    export_parser.set_defaults(handler=export_reel)

    rename_parser = subparsers.add_parser("rename", help="Change a reel's title or description.")
    rename_parser.add_argument("reel_id")
    rename_parser.add_argument("--title", default=None)
    rename_parser.add_argument("--description", default=None)
    rename_parser.set_defaults(handler=rename_reel)

    delete_parser = subparsers.add_parser("delete", help="Delete a reel and its frames.")
    delete_parser.add_argument("reel_id")
    delete_parser.set_defaults(handler=delete_reel)

    cleanup_parser = subparsers.add_parser("cleanup", help="Keep only the most recent reels.")
    cleanup_parser.add_argument(
        "--keep",
        type=int,
        default=None,
        help="Number of reels to keep (default: configured keep_count).",
    )
    cleanup_parser.set_defaults(handler=cleanup_reels)

    maintain_parser = subparsers.add_parser(
        "maintain",
        help="Enforce the storage quota periodically until interrupted.",
    )
    maintain_parser.add_argument(
        "--once",
        action="store_true",
        help="Enforce the quota a single time and exit.",
    )
    maintain_parser.set_defaults(handler=run_maintenance)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    app = ClickReel(args.config)
    try:
        return args.handler(app, args)
    except ReelNotFound as exc:
        logging.error("%s", exc)
        return 1
    except ClickReelError as exc:
        logging.error("Command '%s' failed: %s", args.command, exc)
        return 1
    finally:
        app.close()


__all__ = ["build_parser", "main"]
