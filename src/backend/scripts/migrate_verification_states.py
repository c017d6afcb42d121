"""
Migration script to rewrite legacy verification state literals.

Accounts written before the current state schema carry the old literals
(``pending_manual``, ``verified``, ``rejected`` ...). This maps each one to
its current state and bumps ``state_schema_version``. Unknown literals abort
the run before anything is written.
"""

import asyncio
import os
import sys

# Add the backend root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import close_db, get_engine
from db.state_migrations import UnknownLegacyState, migrate_legacy_states


async def run_migration(dry_run: bool = False) -> None:
    """Migrate every account still on an older state schema."""
    print("Starting verification state migration..." + (" (dry run)" if dry_run else ""))

    try:
        async with get_engine().begin() as conn:
            summary = await migrate_legacy_states(conn, dry_run=dry_run)
    except UnknownLegacyState as e:
        print(f"❌ {e}")
        print("No accounts were changed.")
        raise SystemExit(1)
    finally:
        await close_db()

    if not summary:
        print("✅ All accounts already on the current state schema.")
        return

    for mapping, count in sorted(summary.items()):
        print(f"  {mapping}: {count} account(s)")
    verb = "Would migrate" if dry_run else "Migrated"
    print(f"✅ {verb} {sum(summary.values())} account(s).")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Verification state literal migration")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the mapping without writing",
    )
    args = parser.parse_args()

    asyncio.run(run_migration(dry_run=args.dry_run))
