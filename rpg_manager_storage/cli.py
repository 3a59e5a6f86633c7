"""
Command line interface.

Usage:
    rpg-manager-storage status
    rpg-manager-storage export backup.json
    rpg-manager-storage import backup.json
    rpg-manager-storage export-images images.zip
    rpg-manager-storage export-entity rpgSpells 1700000000000 fireball.json
    rpg-manager-storage import-entity rpgSpells fireball.json
    rpg-manager-storage login | logout
    rpg-manager-storage save | load [--yes]
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path

from .config import StorageSettings
from .context import AppContext
from .exceptions import AuthenticationRequiredError, RpgStorageError, StorageIOError
from .identity.config_provider import ConfigTokenProvider
from .local.file_ops import read_text, write_json_atomic
from .logging_utils import configure_logging
from .schema import COLLECTIONS
from .snapshot.files import (
    export_entity,
    export_images_archive,
    export_to_file,
    import_entity,
    import_from_file,
)
from .sync.orchestrator import SyncStatus
from .sync.ui import ConsoleInterface, ConsoleProgress

logger = logging.getLogger(__name__)

CONNECTIVITY_POLL_INTERVAL = 2.0

# Outcomes that are not failures from the shell's point of view
_OK_STATUSES = {SyncStatus.COMPLETED, SyncStatus.NO_BACKUP, SyncStatus.DECLINED}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpg-manager-storage",
        description="RPG Manager - local storage, backups and Google Drive sync",
    )
    parser.add_argument("--settings", type=Path, help="Path to settings.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show local counts and Drive session state")

    export = commands.add_parser("export", help="Write a full backup to a JSON file")
    export.add_argument("path", type=Path)

    restore = commands.add_parser("import", help="Replace local data from a JSON backup")
    restore.add_argument("path", type=Path)

    images = commands.add_parser("export-images", help="Write all stored images to a zip file")
    images.add_argument("path", type=Path)

    export_one = commands.add_parser("export-entity", help="Write one entity to a share file")
    export_one.add_argument("collection", choices=COLLECTIONS)
    export_one.add_argument("id")
    export_one.add_argument("path", type=Path)

    import_one = commands.add_parser("import-entity", help="Add an entity from a share file")
    import_one.add_argument("collection", choices=COLLECTIONS)
    import_one.add_argument("path", type=Path)

    commands.add_parser("login", help="Obtain and cache a Drive access token")
    commands.add_parser("logout", help="Revoke and forget the Drive access token")

    for name, help_text in (
        ("save", "Upload all local data to Google Drive"),
        ("load", "Replace local data with the Google Drive backup"),
    ):
        sync = commands.add_parser(name, help=help_text)
        sync.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")

    return parser


async def _show_status(app: AppContext) -> int:
    for collection in COLLECTIONS:
        print(f"{collection:<16} {await app.store.count(collection)}")

    print(f"\nDatabase:  {app.settings.db_path}")
    if not app.session.is_authenticated:
        print("Drive:     not connected")
        return 0

    print("Drive:     connected")
    if await app.connectivity.check():
        file_id = await app.client.locate_remote_file()
        print(f"Backup:    {file_id or 'none'}")
    else:
        print("Backup:    unknown (offline)")
    return 0


async def _export_entity(app: AppContext, collection: str, key: str, path: Path) -> int:
    entity = await app.store.get(collection, key)
    if entity is None:
        print(f"No entity {key} in {collection}", file=sys.stderr)
        return 1
    await write_json_atomic(path, export_entity(collection, entity), indent=2)
    print(f"Exported {collection}/{key} to {path}")
    return 0


async def _import_entity(app: AppContext, collection: str, path: Path) -> int:
    content = await read_text(path)
    if content is None:
        raise StorageIOError("import", str(path), FileNotFoundError(f"File not found: {path}"))
    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        print(f"Invalid entity file: {e}", file=sys.stderr)
        return 1
    entity = await import_entity(app.store, collection, document)
    print(f"Imported {collection}/{entity['id']}")
    return 0


async def _run_sync(app: AppContext, command: str) -> int:
    await app.connectivity.check()
    if app.connectivity.is_online() and not app.session.is_authenticated:
        try:
            await app.session.ensure_authenticated()
        except AuthenticationRequiredError as e:
            logger.debug(f"No credential available: {e}")

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, app.orchestrator.cancel)

    stop = asyncio.Event()
    watcher = asyncio.create_task(app.connectivity.watch(CONNECTIVITY_POLL_INTERVAL, stop))
    try:
        if command == "save":
            outcome = await app.orchestrator.perform_save()
        else:
            outcome = await app.orchestrator.perform_load()
    finally:
        stop.set()
        await watcher
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)

    return 0 if outcome.status in _OK_STATUSES else 1


async def run(args: argparse.Namespace) -> int:
    settings = StorageSettings.from_yaml(args.settings)
    ui = ConsoleInterface(assume_yes=getattr(args, "yes", False))

    provider = ConfigTokenProvider(args.settings)

    async with await AppContext.create(
        settings, ui=ui, progress=ConsoleProgress(), provider=provider
    ) as app:
        if args.command == "status":
            return await _show_status(app)

        if args.command == "export":
            total = await export_to_file(app.store, args.path)
            print(f"Exported {total} entities to {args.path}")
            return 0

        if args.command == "import":
            summary = await import_from_file(app.store, args.path)
            print(f"Imported {summary.total} entities")
            for key in summary.skipped:
                print(f"  skipped unknown collection: {key}")
            return 0

        if args.command == "export-images":
            count = await export_images_archive(app.store, args.path)
            print(f"Wrote {count} images to {args.path}")
            return 0

        if args.command == "export-entity":
            return await _export_entity(app, args.collection, args.id, args.path)

        if args.command == "import-entity":
            return await _import_entity(app, args.collection, args.path)

        if args.command == "login":
            await app.session.login()
            print("Connected to Google Drive")
            return 0

        if args.command == "logout":
            await app.session.logout()
            print("Disconnected from Google Drive")
            return 0

        return await _run_sync(app, args.command)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    configure_logging(level, json_output=args.json_logs)

    try:
        code = asyncio.run(run(args))
    except RpgStorageError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
