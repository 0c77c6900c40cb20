#!/usr/bin/env python3
"""Run a CRM migration for one org from the command line.

The API key is read from CRM_MIGRATION_API_KEY or prompted for. It is never
accepted as an argument.

Usage:
    python scripts/run_crm_migration.py --source jobnimbus --org org_123 --user user_1 --dry-run
    python scripts/run_crm_migration.py --source acculynx --org org_123 --user user_1 --skip claims
    python scripts/run_crm_migration.py --release-lock --org org_123
"""
from __future__ import annotations

import argparse
import getpass
import json
import os
import sys

from pydantic import ValidationError

from app.db import get_session
from app.logging import configure_logging
from app.models.migration import EntityKind, MigrationSource
from app.schemas.migrations import MigrationRequest
from app.services.migrations import run_migration
from app.services.migrations.errors import MigrationInProgressError, UnsupportedSourceError
from app.services.migrations.locks import release_lock


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import historical CRM records for an org.")
    parser.add_argument("--org", required=True, help="Destination org id")
    parser.add_argument("--user", default="cli", help="User id recorded on the migration run")
    parser.add_argument("--source", choices=[s.value for s in MigrationSource])
    parser.add_argument("--base-url", help="Override the provider API base URL")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    parser.add_argument(
        "--skip",
        action="append",
        default=[],
        choices=[k.value for k in EntityKind],
        help="Entity kind to leave out (repeatable)",
    )
    parser.add_argument("--max-records", type=int, help="Read at most this many records per kind")
    parser.add_argument("--created-after", help="Only import records created at or after this ISO date")
    parser.add_argument("--created-before", help="Only import records created before this ISO date")
    parser.add_argument(
        "--release-lock",
        action="store_true",
        help="Clear the org's active migration marker and exit",
    )
    args = parser.parse_args(argv)
    if not args.release_lock and not args.source:
        parser.error("--source is required unless --release-lock is given")
    return args


def _date_filter(args: argparse.Namespace) -> dict[str, str] | None:
    if not (args.created_after or args.created_before):
        return None
    return {"after": args.created_after, "before": args.created_before}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    db = get_session()
    try:
        if args.release_lock:
            released = release_lock(db, args.org)
            print("Lock released" if released else "No active migration lock")
            return 0

        api_key = os.getenv("CRM_MIGRATION_API_KEY") or getpass.getpass(f"{args.source} API key: ")
        try:
            request = MigrationRequest(
                api_key=api_key,
                base_url=args.base_url,
                dry_run=args.dry_run,
                options={
                    "skip_kinds": args.skip,
                    "max_records": args.max_records,
                    "date_filter": _date_filter(args),
                },
            )
        except ValidationError as exc:
            print(f"Invalid request: {exc}", file=sys.stderr)
            return 2
        del api_key

        try:
            response = run_migration(db, args.org, args.user, args.source, request)
        except (MigrationInProgressError, UnsupportedSourceError) as exc:
            print(str(exc), file=sys.stderr)
            return 2

        print(json.dumps(response.to_payload(), indent=2))
        return 0 if response.ok else 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
