#!/usr/bin/env python3
"""Post-deploy health check for the Tillpoint loyalty ledger.

Usage:
    python tooling/scripts/check_loyalty_health.py \
        --base-url https://staging-api.example.com \
        --tenant-id "$TENANT_ID"

The script validates:
  * Ledger balances reconcile: no customer balance differs from its ledger sum.
  * Ledger write conflicts that exhausted their retries stay within threshold.
  * The last birthday bonus runs did not fail customers beyond threshold.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tillpoint loyalty health checker")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Base URL of the Tillpoint API.")
    parser.add_argument("--tenant-id", required=True, help="Tenant whose ledger is reconciled.")
    parser.add_argument(
        "--max-exhausted-conflicts",
        type=int,
        default=0,
        help="Maximum ledger writes abandoned after retries before failing (default: 0).",
    )
    parser.add_argument(
        "--max-birthday-failures",
        type=int,
        default=0,
        help="Maximum customers failed by birthday sweeps before failing (default: 0).",
    )
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP request timeout in seconds.")
    return parser.parse_args()


def _fail(message: str) -> None:
    print(f"[check-loyalty] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-loyalty] OK {message}")


async def _get_json(client: httpx.AsyncClient, path: str) -> Any:
    response = await client.get(path)
    response.raise_for_status()
    return response.json()


async def validate_reconciliation(client: httpx.AsyncClient) -> None:
    drift = await _get_json(client, "/api/v1/loyalty/reconciliation")
    if drift:
        sample = ", ".join(f"{item['customerId']} ({item['difference']:+d})" for item in drift[:5])
        _fail(f"{len(drift)} customer balances disagree with the ledger: {sample}")
    _log_ok("Ledger balances reconcile")


async def validate_counters(client: httpx.AsyncClient, max_exhausted: int, max_birthday_failures: int) -> None:
    payload: Dict[str, Any] = await _get_json(client, "/api/v1/loyalty/observability")
    loyalty = payload.get("loyalty", {})

    exhausted = sum(int(value) for value in (loyalty.get("conflicts", {}).get("exhausted", {}) or {}).values())
    if exhausted > max_exhausted:
        _fail(f"Ledger writes abandoned after retries {exhausted} exceed threshold {max_exhausted}")

    birthday_failed = int(loyalty.get("birthday", {}).get("failed", 0))
    if birthday_failed > max_birthday_failures:
        _fail(f"Birthday bonus failures {birthday_failed} exceed threshold {max_birthday_failures}")

    scheduler_totals = payload.get("scheduler", {}).get("totals", {})
    _log_ok(
        f"Counters OK (exhausted_conflicts={exhausted}, birthday_failed={birthday_failed}, "
        f"scheduler_runs={scheduler_totals.get('runs', 0)})"
    )


async def main() -> None:
    args = parse_args()
    headers = {"X-Tenant-ID": args.tenant_id, "X-Staff-Role": "admin"}

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout, headers=headers) as client:
        await validate_reconciliation(client)
        await validate_counters(client, args.max_exhausted_conflicts, args.max_birthday_failures)

    _log_ok("Loyalty checks completed successfully")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
