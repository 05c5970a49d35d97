#!/usr/bin/env python3
"""
history_cli.py - operator tool for the encrypted search history store

Inspect envelopes, manage a user's stored history and run a datastore
self-test against a scratch owner.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import sys
import uuid
from typing import Optional, List

from rich.console import Console
from rich.table import Table

from src.config import DB_PATH
from src.database_manager import DatabaseManager
from src.datastore import HistoryDatastore, InMemoryDatastore
from src.diagnostics import diagnose
from src.exceptions import HistoryError
from src.history_store import HistoryStore, Identity
from src.logging_setup import configure_logging

# ============ Configuration Constants ============
PROG = "search-history"
VERSION = "0.1.0"
QUERY_PREVIEW_LEN = 60

# ============ UI Helpers ============

console = Console()

def print_error(msg: str, prefix: str = "ERROR"):
    console.print(f"[bold red]\\[{prefix}][/] {msg}", highlight=False)

def print_success(msg: str, prefix: str = "SUCCESS"):
    console.print(f"[bold green]\\[{prefix}][/] {msg}", highlight=False)

def print_warning(msg: str, prefix: str = "WARNING"):
    console.print(f"[bold yellow]\\[{prefix}][/] {msg}", highlight=False)

def print_info(msg: str):
    console.print(f"[blue]{msg}[/]", highlight=False)

def _shorten(text: str, limit: int = QUERY_PREVIEW_LEN) -> str:
    return text if len(text) <= limit else text[:limit - 3] + "..."


# ============ Main CLI Class ============

class HistoryCLI:
    def __init__(self, datastore: Optional[HistoryDatastore] = None):
        self._datastore = datastore

    def _open_datastore(self, args) -> HistoryDatastore:
        if self._datastore is not None:
            return self._datastore
        if getattr(args, "memory", False):
            self._datastore = InMemoryDatastore()
        else:
            self._datastore = DatabaseManager(getattr(args, "db", None) or DB_PATH)
        return self._datastore

    def _store(self, args, email: Optional[str] = None) -> HistoryStore:
        # Delete/clear/count never derive keys; any non-empty email will do
        identity = Identity(owner_id=args.owner, email=email or args.owner)
        return HistoryStore(self._open_datastore(args), identity)

    # ======== Command Handlers ========

    def cmd_diagnose(self, args) -> bool:
        report = diagnose(args.envelope)
        table = Table(title="Envelope diagnostics", show_header=False)
        for key, value in report.as_dict().items():
            table.add_row(key, str(value))
        console.print(table)
        return report.is_valid

    async def cmd_save(self, args) -> bool:
        try:
            results = json.loads(args.results)
        except json.JSONDecodeError as e:
            print_error(f"--results is not valid JSON: {e}")
            return False

        store = self._store(args, args.email)
        await store.save(args.id, args.query, results)
        print_success(f"Saved search {args.id}")
        return True

    async def cmd_list(self, args) -> bool:
        store = self._store(args, args.email)
        items = await store.load_all()
        if not items:
            print_info("No history entries.")
            return True

        table = Table(title=f"Search history ({len(items)})")
        table.add_column("Search ID")
        table.add_column("Query")
        table.add_column("Results", justify="right")
        table.add_column("Created (UTC)")
        for item in items:
            table.add_row(
                item.id,
                _shorten(item.query),
                str(len(item.results)),
                item.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)
        return True

    async def cmd_delete(self, args) -> bool:
        deleted = await self._store(args).delete_one(args.id)
        if deleted:
            print_success(f"Deleted search {args.id}")
        else:
            print_warning(f"No entry with search id {args.id}")
        return True

    async def cmd_clear(self, args) -> bool:
        deleted = await self._store(args).clear_all()
        print_success(f"Cleared {deleted} history entries")
        return True

    async def cmd_count(self, args) -> bool:
        total = await self._store(args).count()
        console.print(str(total))
        return True

    async def cmd_selftest(self, args) -> bool:
        """
        Exercise insert, upsert, load, self-healing and delete against a
        scratch owner, reporting each step.
        """
        datastore = self._open_datastore(args)
        owner = f"selftest-{uuid.uuid4()}"
        store = HistoryStore(datastore, Identity(owner_id=owner, email="selftest@example.invalid"))
        search_id = f"test-{uuid.uuid4().hex[:8]}"

        async def step(label: str, coro) -> bool:
            try:
                ok = await coro
            except HistoryError as e:
                print_error(f"{label}: {e}", prefix="FAIL")
                return False
            if ok:
                print_success(label, prefix="PASS")
            else:
                print_error(label, prefix="FAIL")
            return ok

        async def reachable():
            return await datastore.count(owner) == 0

        async def insert():
            await store.save(search_id, "selftest query", [{"title": "selftest"}])
            return await store.count() == 1

        async def upsert():
            await store.save(search_id, "updated query", [])
            items = await store.load_all()
            return len(items) == 1 and items[0].query == "updated query"

        async def self_heal():
            await datastore.upsert(owner, "corrupted", "short", "short")
            items = await store.load_all()
            return [i.id for i in items] == [search_id] and await store.count() == 1

        async def delete():
            await store.delete_one(search_id)
            await store.clear_all()
            return await store.count() == 0

        passed = True
        for label, coro in (
            ("Datastore reachable", reachable()),
            ("Insert", insert()),
            ("Upsert overwrites", upsert()),
            ("Corrupted rows purged on load", self_heal()),
            ("Delete and clear", delete()),
        ):
            if passed:
                passed = await step(label, coro)
            else:
                coro.close()
        return passed

    # ======== Parser / Dispatch ========

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog=PROG,
            description="Encrypted search history - operator tool",
            epilog=f"For detailed help: {PROG} <command> --help"
        )
        parser.add_argument('--db', default=DB_PATH, help='SQLite database path')
        parser.add_argument('--memory', action='store_true',
                            help='Use a throwaway in-memory datastore')
        parser.add_argument('--log-level', default=None, help='Logging level (default: HISTORY_LOG_LEVEL)')
        parser.add_argument('--version', action='version', version=f'{PROG} {VERSION}')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        diag = subparsers.add_parser('diagnose', help='Check an envelope without decrypting it')
        diag.add_argument('envelope', help='Envelope string')

        save = subparsers.add_parser('save', help='Encrypt and store a search')
        save.add_argument('--owner', required=True, help='Owner id')
        save.add_argument('--email', required=True, help='Owner email (key derivation identifier)')
        save.add_argument('--id', required=True, help='Search id')
        save.add_argument('--query', '-q', required=True, help='Search query')
        save.add_argument('--results', '-r', default='[]', help='Results as a JSON array')

        list_cmd = subparsers.add_parser('list', help='Decrypt and list stored searches')
        list_cmd.add_argument('--owner', required=True, help='Owner id')
        list_cmd.add_argument('--email', required=True, help='Owner email (key derivation identifier)')

        delete = subparsers.add_parser('delete', help='Delete one stored search')
        delete.add_argument('--owner', required=True, help='Owner id')
        delete.add_argument('--id', required=True, help='Search id')

        clear = subparsers.add_parser('clear', help='Delete all stored searches of an owner')
        clear.add_argument('--owner', required=True, help='Owner id')

        count = subparsers.add_parser('count', help='Count stored searches of an owner')
        count.add_argument('--owner', required=True, help='Owner id')

        subparsers.add_parser('selftest', help='Run datastore self-test against a scratch owner')

        return parser

    async def _run_async(self, handler, args) -> bool:
        try:
            return await handler(args)
        finally:
            if self._datastore is not None:
                await self._datastore.close()

    def dispatch(self, args) -> bool:
        """Dispatch command to appropriate handler"""
        if args.command == 'diagnose':
            return self.cmd_diagnose(args)

        handlers = {
            'save': self.cmd_save,
            'list': self.cmd_list,
            'delete': self.cmd_delete,
            'clear': self.cmd_clear,
            'count': self.cmd_count,
            'selftest': self.cmd_selftest,
        }
        handler = handlers.get(args.command)
        if handler is None:
            return False
        return asyncio.run(self._run_async(handler, args))


# ============ Main Entry Point ============

def main(argv: Optional[List[str]] = None) -> int:
    cli = HistoryCLI()
    parser = cli.build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        configure_logging(args.log_level)
        return 0 if cli.dispatch(args) else 1
    except KeyboardInterrupt:
        print_error("Interrupted by user.")
        return 130
    except (HistoryError, ValueError) as e:
        print_error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
