"""CLI entry points for the birthday bonus sweep."""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
from typing import Any, Sequence

from loguru import logger

from tillpoint_api.core.settings import settings
from tillpoint_api.db.session import async_session
from tillpoint_api.jobs.loyalty.birthday import run_birthday_bonuses
from tillpoint_api.services.loyalty import SessionFactory


async def run_configured_birthday_bonuses(
    *,
    session_factory: SessionFactory | None = None,
    tenant_ids: Sequence[str] | None = None,
    today: dt.date | None = None,
) -> dict[str, Any]:
    """Sweep the configured tenants (all active tenants when none are listed)."""

    factory = session_factory or async_session
    targets = list(tenant_ids if tenant_ids is not None else settings.loyalty_birthday_tenant_ids)
    if not targets:
        summary = await run_birthday_bonuses(session_factory=factory, today=today)
    else:
        summary = {"awarded_count": 0, "skipped_count": 0, "failed_count": 0, "results": []}
        for tenant_id in targets:
            partial = await run_birthday_bonuses(session_factory=factory, tenant_id=tenant_id, today=today)
            for key in ("awarded_count", "skipped_count", "failed_count"):
                summary[key] += partial[key]
            summary["results"].extend(partial["results"])

    logger.info(
        "Birthday bonus sweep finished",
        awarded=summary["awarded_count"],
        skipped=summary["skipped_count"],
        failed=summary["failed_count"],
    )
    return summary


def run_birthday_bonuses_sync(
    *,
    tenant_ids: Sequence[str] | None = None,
    today: dt.date | None = None,
) -> dict[str, Any]:
    """Blocking helper for schedulers that cannot await."""

    return asyncio.run(run_configured_birthday_bonuses(tenant_ids=tenant_ids, today=today))


def cli(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Credit today's birthday bonuses once.")
    parser.add_argument("--tenant", action="append", dest="tenants", help="Tenant id (repeatable)")
    parser.add_argument("--date", type=dt.date.fromisoformat, help="Override the local date (YYYY-MM-DD)")
    args = parser.parse_args(argv)
    summary = run_birthday_bonuses_sync(tenant_ids=args.tenants, today=args.date)
    print(
        f"awarded={summary['awarded_count']} skipped={summary['skipped_count']} failed={summary['failed_count']}"
    )


if __name__ == "__main__":
    cli()


__all__ = ["cli", "run_birthday_bonuses_sync", "run_configured_birthday_bonuses"]
