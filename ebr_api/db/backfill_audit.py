"""
Audit trail normalization runner.

Links batch rows to their entity, renames legacy action codes to dot notation
and adds backfilled creation entries for records that predate audit logging.
Safe to run repeatedly.

Usage:
    python -m ebr_api.db.backfill_audit
    python -m ebr_api.db.backfill_audit --tenant demo
    python -m ebr_api.db.backfill_audit --dry-run
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import List, Optional

from ebr_api.core.logging import configure_logging
from ebr_api.core.settings import get_app_settings
from ebr_api.db.session import get_session_maker, tenant_context
from ebr_api.repositories.tenancy import TenantRepository
from ebr_api.services.audit_backfill import apply_audit_backfill

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def backfill(tenant_slug: Optional[str] = None, *, dry_run: bool = False) -> int:
    """Run the pass for one tenant (or all) and return the number of changes."""
    total = 0
    async with get_session_maker()() as session:
        tenants = await TenantRepository(session).list_tenants()
        if tenant_slug:
            tenants = [t for t in tenants if t.slug == tenant_slug]
            if not tenants:
                raise SystemExit(f"Unknown tenant: {tenant_slug}")
        await session.commit()

        for tenant in tenants:
            async with tenant_context(session, tenant.id):
                plan = await apply_audit_backfill(session, tenant.id, dry_run=dry_run)
                if dry_run:
                    await session.rollback()
                else:
                    await session.commit()
            print(f"{tenant.slug}: {plan.change_count} change(s){' (dry run)' if dry_run else ''}")
            total += plan.change_count
    return total


# PUBLIC_INTERFACE
def main(argv: List[str] | None = None) -> None:
    args = list(sys.argv[1:] if argv is None else argv)
    tenant_slug: Optional[str] = None
    dry_run = False
    while args:
        arg = args.pop(0)
        if arg == "--tenant" and args:
            tenant_slug = args.pop(0)
        elif arg == "--dry-run":
            dry_run = True
        else:
            print("Usage: python -m ebr_api.db.backfill_audit [--tenant SLUG] [--dry-run]")
            sys.exit(2)

    configure_logging(get_app_settings().LOG_LEVEL)
    total = asyncio.run(backfill(tenant_slug, dry_run=dry_run))
    print(f"Audit backfill complete: {total} change(s).")


if __name__ == "__main__":
    main()
