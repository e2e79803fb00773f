"""Command line entry point: ``cms-sync pull|status|push|watch``."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config, mask_secret
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config, yaml_fallbacks
from .core.client import CMSClient
from .core.errors import AuthenticationError, TransportError
from .logger import setup_logging
from .sync.engine import SyncEngine
from .sync.reporter import (
    format_operation_diff,
    format_pull_report,
    format_push_report,
    format_status,
    operations_to_json,
    pull_report_to_json,
    push_report_to_json,
)
from .sync.scheduler import ChangeScheduler
from .sync.watcher import ChangeWatcher, DraftPreviewWriter

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def load_runtime(
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig]:
    """Resolve configuration from CLI overrides, env, .env and YAML.

    Raises:
        RuntimeError: If the configuration is missing or invalid.
    """
    overrides = overrides or {}
    try:
        # .env first so ${VAR} interpolation in YAML can see its values
        load_dotenv()

        unified = UnifiedConfig()
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            logger.debug("Using config file %s", config_files[0])

        config = load_config(
            url=overrides.get("url"),
            api_key=overrides.get("api_key"),
            content_dir=overrides.get("content_dir"),
            media_dir=overrides.get("media_dir"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks(unified),
        )
    except ValueError as e:
        _stderr_print(f"Configuration error: {e}")
        raise RuntimeError(str(e)) from e

    logger.debug(
        "CMS %s (api key %s), content %s, media %s",
        config.cms_url,
        mask_secret(config.api_key),
        config.content_dir,
        config.media_dir,
    )
    return config, unified


def _emit(args: argparse.Namespace, text: str, data: dict) -> None:
    if args.json:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_pull(
    args: argparse.Namespace, engine: SyncEngine, unified: UnifiedConfig
) -> int:
    report = engine.pull(force_overwrite=args.force)
    _emit(args, format_pull_report(report), pull_report_to_json(report))
    return 0 if report.success else 1


def cmd_status(
    args: argparse.Namespace, engine: SyncEngine, unified: UnifiedConfig
) -> int:
    operations = engine.status(allow_delete=args.delete)
    _emit(args, format_status(operations), operations_to_json(operations))
    if args.diff and not args.json:
        type_map = engine.client.fetch_content_types()
        for op in operations.update:
            diff = format_operation_diff(op, type_map)
            if diff:
                print()
                print(diff.rstrip())
    return 0


def cmd_push(
    args: argparse.Namespace, engine: SyncEngine, unified: UnifiedConfig
) -> int:
    if not engine.config.api_key and not args.dry_run:
        _stderr_print("Pushing requires an API key (CMS_API_KEY or --api-key).")
        return 1

    operations = engine.status(allow_delete=args.delete)
    operations = operations.filter(target_id=args.id, target_slug=args.slug)
    if not operations.count_changes(include_conflicts=True):
        _emit(
            args,
            "Nothing to push, local content is in sync.",
            operations_to_json(operations),
        )
        return 0

    report = engine.push(operations, force=args.force, dry_run=args.dry_run)
    _emit(args, format_push_report(report), push_report_to_json(report))
    return 0 if report.failed == 0 else 1


async def _watch(engine: SyncEngine, unified: UnifiedConfig) -> None:
    scheduler = ChangeScheduler(
        lambda: engine.pull(force_overwrite=True),
        debounce=unified.watch.debounce,
    )
    watcher = ChangeWatcher(
        engine.client,
        scheduler,
        on_draft=DraftPreviewWriter(engine.client, engine.config),
        reconnect_delay=unified.watch.reconnect_delay,
    )
    # Catch up once before waiting for notifications.
    scheduler.notify()
    try:
        await watcher.run()
    finally:
        watcher.stop()
        await scheduler.close()


def cmd_watch(
    args: argparse.Namespace, engine: SyncEngine, unified: UnifiedConfig
) -> int:
    _stderr_print(f"Watching {engine.config.cms_url} for content changes...")
    asyncio.run(_watch(engine, unified))
    return 0


COMMANDS = {
    "pull": cmd_pull,
    "status": cmd_status,
    "push": cmd_push,
    "watch": cmd_watch,
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cms-sync",
        description="Synchronise local MDX/JSON content with a headless CMS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Pull remote changes, merging local edits
  cms-sync pull

  # Show what a push would send, including remote deletions
  cms-sync status --delete

  # Preview, then push a single item
  cms-sync push --slug blog/hello --dry-run
  cms-sync push --slug blog/hello

  # Keep the local tree live while the CMS is being edited
  cms-sync watch
        """,
    )
    parser.add_argument(
        "--url",
        help="Override CMS URL (takes precedence over CMS_URL env var and config files)",
    )
    parser.add_argument(
        "--api-key",
        help="Override API key (visible in process list -- prefer CMS_API_KEY)",
    )
    parser.add_argument("--content-dir", help="Local content directory")
    parser.add_argument("--media-dir", help="Local media directory")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log output format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cms-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    pull = sub.add_parser("pull", help="Fetch remote changes into the local tree")
    pull.add_argument(
        "--force",
        action="store_true",
        help="Overwrite local edits instead of merging them",
    )
    pull.add_argument("--json", action="store_true", help="JSON output")

    status = sub.add_parser("status", help="Show local changes not yet pushed")
    status.add_argument(
        "--delete",
        action="store_true",
        help="Also report remote items that were removed locally",
    )
    status.add_argument(
        "--diff", action="store_true", help="Show diffs for modified items"
    )
    status.add_argument("--json", action="store_true", help="JSON output")

    push = sub.add_parser("push", help="Send local changes to the CMS")
    push.add_argument(
        "--force",
        action="store_true",
        help="Also push items whose remote copy changed (overwrites it)",
    )
    push.add_argument(
        "--dry-run", action="store_true", help="Show what would be pushed"
    )
    push.add_argument(
        "--delete",
        action="store_true",
        help="Delete remote items that were removed locally",
    )
    push.add_argument("--id", help="Only push the item with this id")
    push.add_argument("--slug", help="Only push the item with this slug")
    push.add_argument("--json", action="store_true", help="JSON output")

    sub.add_parser("watch", help="Pull continuously as the CMS changes")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        mode="watch" if args.command == "watch" else "cli",
        debug=args.debug,
        log_file=args.log_file,
        debug_format=args.log_format,
    )

    overrides = {
        key: value
        for key, value in (
            ("url", args.url),
            ("api_key", args.api_key),
            ("content_dir", args.content_dir),
            ("media_dir", args.media_dir),
            ("insecure", args.insecure),
            ("debug", args.debug),
        )
        if value
    }

    try:
        config, unified = load_runtime(overrides)
    except RuntimeError:
        return 1

    # Config files may raise the level or add a log file.
    if unified.logging.file or config.debug or unified.logging.level != "INFO":
        setup_logging(
            mode="watch" if args.command == "watch" else "cli",
            debug=config.debug,
            log_file=args.log_file or unified.logging.file,
            debug_format=args.log_format,
            default_level=unified.logging.level,
        )

    engine = SyncEngine(CMSClient(config), config)
    try:
        return COMMANDS[args.command](args, engine, unified)
    except AuthenticationError as e:
        _stderr_print(f"Authentication failed: {e}")
        return 1
    except TransportError as e:
        _stderr_print(f"Request failed: {e}")
        return 1


def run() -> None:
    """Entry point that handles errors gracefully."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
