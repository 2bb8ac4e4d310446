from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    ledger: Dict[str, Dict[str, int]]
    tiers: Dict[str, int]
    conflicts: Dict[str, Dict[str, int]]
    birthday: Dict[str, int]
    rejections: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": {key: dict(value) for key, value in self.ledger.items()},
            "tier_upgrades": dict(self.tiers),
            "conflicts": {key: dict(value) for key, value in self.conflicts.items()},
            "birthday": dict(self.birthday),
            "rejections": dict(self.rejections),
        }


class LoyaltyObservabilityStore:
    """In-process counters for ledger writes, conflicts and the birthday job."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._tier_upgrades: Dict[str, int] = defaultdict(int)
        self._conflict_retries: Dict[str, int] = defaultdict(int)
        self._conflicts_exhausted: Dict[str, int] = defaultdict(int)
        self._birthday: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)

    def record_ledger_append(self, transaction_type: str, points: int) -> None:
        with self._lock:
            self._entries[transaction_type] += 1
            self._points[transaction_type] += points

    def record_tier_upgrade(self, tier: str) -> None:
        with self._lock:
            self._tier_upgrades[tier] += 1

    def record_insufficient_points(self) -> None:
        with self._lock:
            self._rejections["insufficient_points"] += 1

    def record_conflict_retry(self, operation: str) -> None:
        with self._lock:
            self._conflict_retries[operation] += 1

    def record_conflict_exhausted(self, operation: str) -> None:
        with self._lock:
            self._conflicts_exhausted[operation] += 1

    def record_birthday_run(self, *, awarded: int, skipped: int, failed: int) -> None:
        with self._lock:
            self._birthday["runs"] += 1
            self._birthday["awarded"] += awarded
            self._birthday["skipped"] += skipped
            self._birthday["failed"] += failed

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            ledger = {
                "entries": dict(self._entries),
                "points": dict(self._points),
            }
            conflicts = {
                "retries": dict(self._conflict_retries),
                "exhausted": dict(self._conflicts_exhausted),
            }
            return LoyaltySnapshot(
                ledger=ledger,
                tiers=dict(self._tier_upgrades),
                conflicts=conflicts,
                birthday=dict(self._birthday),
                rejections=dict(self._rejections),
            )

    def reset(self) -> None:
        with self._lock:
            for counter in (
                self._entries,
                self._points,
                self._tier_upgrades,
                self._conflict_retries,
                self._conflicts_exhausted,
                self._birthday,
                self._rejections,
            ):
                counter.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
