"""
Command-line front end for credstore.

This tool drives an EntryStore configured from the environment:
- list: Show entries, optionally filtered and sorted
- show: Show one entry in full
- add: Create an entry (refuses a known username/website pair unless --force)
- update: Change some fields of an entry
- delete: Remove an entry
- check: Report whether a username is already stored for a website
- generate-password: Print a random password

Usage:
    credstore list --search github --sort name
    credstore add --name GH --username bob --website github.com --generate
    CREDSTORE_BACKEND=remote CREDSTORE_REMOTE_URL=... credstore list

Invariants:
    - Passwords are masked unless --reveal is given
    - Store errors exit with status 1 and a message on stderr
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, Optional, Sequence

import json_log_formatter

from .config import Settings
from .entry import Entry
from .errors import CredStoreError
from .passwords import generate_password, mask_password
from .query import SORT_FIELDS, filter_entries, sort_entries
from .store import EntryStore
from .validator import UniquenessValidator

logger = logging.getLogger(__name__)

EDITABLE_OPTIONS = ("name", "username", "password", "website", "logo")


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings.

    Args:
        settings: Store settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def format_entry(entry: Entry, reveal: bool = False) -> str:
    password = entry.password if reveal else mask_password(entry.password)
    return f"{entry.serial_number:>4}  {entry.name}  {entry.username}  {entry.website}  {password}  [{entry.id}]"


class EntryCLI:
    """CLI commands over an EntryStore.

    Each command returns the text to print; errors propagate as
    CredStoreError for main() to report.

    Example:
        >>> cli = EntryCLI(store)
        >>> print(await cli.list_entries(search="github"))
    """

    def __init__(self, store: EntryStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings

    async def list_entries(
        self,
        search: str = "",
        sort: str = "serial_number",
        descending: bool = False,
        reveal: bool = False,
    ) -> str:
        entries = await self.store.get_all()
        matched = filter_entries(entries, search)
        if not matched:
            return "No entries match your search" if search else "No entries yet"
        ordered = sort_entries(matched, sort, "desc" if descending else "asc")
        return "\n".join(format_entry(e, reveal) for e in ordered)

    async def show(self, entry_id: str, reveal: bool = False) -> str:
        entry = await self.store.get_by_id(entry_id)
        lines = [
            f"id:         {entry.id}",
            f"serial:     {entry.serial_number}",
            f"name:       {entry.name}",
            f"username:   {entry.username}",
            f"password:   {entry.password if reveal else mask_password(entry.password)}",
            f"website:    {entry.website}",
            f"logo:       {entry.logo or '-'}",
            f"created at: {entry.created_at.isoformat()}",
            f"updated at: {entry.updated_at.isoformat()}",
        ]
        return "\n".join(lines)

    async def add(self, fields: Dict[str, Any], force: bool = False) -> str:
        """Create an entry, refusing a known username/website pair.

        With settings the pre-check waits out CREDSTORE_DEBOUNCE_MS first;
        without them it runs at once.

        Raises:
            ValidationError: If the pair exists and force is not set
        """
        if not force:
            if self.settings is not None:
                validator = UniquenessValidator.from_settings(self.store, self.settings)
            else:
                validator = UniquenessValidator(self.store, delay=0)
            validator.schedule(fields.get("username", ""), fields.get("website", ""))
            await validator.wait()
            failure = validator.as_failure()
            if failure is not None:
                raise failure

        entry = await self.store.create(fields)
        return f"Created entry #{entry.serial_number} [{entry.id}]"

    async def update(self, entry_id: str, changes: Dict[str, Any]) -> str:
        entry = await self.store.update(entry_id, changes)
        return f"Updated entry #{entry.serial_number} [{entry.id}]"

    async def delete(self, entry_id: str) -> str:
        await self.store.delete(entry_id)
        return f"Deleted entry [{entry_id}]"

    async def check(self, username: str, website: str) -> bool:
        return await self.store.check_username(username, website)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="credstore", description="Credential entry store tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # list command
    list_parser = subparsers.add_parser("list", help="List entries")
    list_parser.add_argument("--search", "-s", default="", help="Filter by name, username, website or serial")
    list_parser.add_argument("--sort", choices=SORT_FIELDS, default="serial_number", help="Sort field")
    list_parser.add_argument("--desc", action="store_true", help="Sort descending")
    list_parser.add_argument("--reveal", action="store_true", help="Show passwords")

    # show command
    show_parser = subparsers.add_parser("show", help="Show one entry")
    show_parser.add_argument("id", help="Entry id")
    show_parser.add_argument("--reveal", action="store_true", help="Show the password")

    # add command
    add_parser = subparsers.add_parser("add", help="Create an entry")
    add_parser.add_argument("--name", required=True)
    add_parser.add_argument("--username", required=True)
    add_parser.add_argument("--website", required=True)
    add_parser.add_argument("--logo", default="")
    password_group = add_parser.add_mutually_exclusive_group(required=True)
    password_group.add_argument("--password")
    password_group.add_argument("--generate", action="store_true", help="Generate a password")
    add_parser.add_argument("--length", type=int, default=12, help="Generated password length")
    add_parser.add_argument("--force", action="store_true", help="Skip the username/website check")

    # update command
    update_parser = subparsers.add_parser("update", help="Change fields of an entry")
    update_parser.add_argument("id", help="Entry id")
    for option in EDITABLE_OPTIONS:
        update_parser.add_argument(f"--{option}")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete an entry")
    delete_parser.add_argument("id", help="Entry id")

    # check command
    check_parser = subparsers.add_parser("check", help="Check a username/website pair")
    check_parser.add_argument("username")
    check_parser.add_argument("website")

    # generate-password command
    generate_parser = subparsers.add_parser("generate-password", help="Print a random password")
    generate_parser.add_argument("--length", type=int, default=12)

    return parser


async def run(cli: EntryCLI, args: argparse.Namespace) -> int:
    """Execute a parsed store command.

    Returns:
        Process exit code
    """
    try:
        if args.command == "list":
            print(await cli.list_entries(args.search, args.sort, args.desc, args.reveal))

        elif args.command == "show":
            print(await cli.show(args.id, args.reveal))

        elif args.command == "add":
            password = generate_password(args.length) if args.generate else args.password
            fields = {
                "name": args.name,
                "username": args.username,
                "password": password,
                "website": args.website,
                "logo": args.logo,
            }
            print(await cli.add(fields, force=args.force))
            if args.generate:
                print(f"Generated password: {password}")

        elif args.command == "update":
            changes = {
                option: getattr(args, option)
                for option in EDITABLE_OPTIONS
                if getattr(args, option) is not None
            }
            print(await cli.update(args.id, changes))

        elif args.command == "delete":
            print(await cli.delete(args.id))

        elif args.command == "check":
            exists = await cli.check(args.username, args.website)
            if exists:
                print(f"Username already exists for {args.website}")
                return 1
            print("Username is available")

    except CredStoreError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


async def _run_with_store(
    store: EntryStore, settings: Settings, args: argparse.Namespace
) -> int:
    try:
        async with store:
            return await run(EntryCLI(store, settings), args)
    except CredStoreError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate-password":
        try:
            print(generate_password(args.length))
        except ValueError as e:
            parser.error(str(e))
        sys.exit(0)

    settings = Settings()
    setup_logging(settings)
    settings.log_settings()

    try:
        store = EntryStore.from_settings(settings)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_run_with_store(store, settings, args)))


if __name__ == "__main__":
    main()
