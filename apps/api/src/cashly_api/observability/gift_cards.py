"""In-memory observability helper for gift card webhook + reconciliation flows."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class WebhookSyncLog:
    last_event_at: datetime | None = None
    last_event_type: str | None = None
    last_gift_card_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_type: str | None = None
    last_failure_reason: str | None = None


@dataclass
class ReconciliationLog:
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None
    last_discrepancy_count: int | None = None


@dataclass
class GiftCardSyncSnapshot:
    webhook_totals: Dict[str, Dict[str, int]]
    reconciliation_totals: Dict[str, int]
    webhook_events: WebhookSyncLog
    reconciliation_events: ReconciliationLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "webhooks": {
                "totals": self.webhook_totals,
                "events": {
                    "last_event_at": _iso(self.webhook_events.last_event_at),
                    "last_event_type": self.webhook_events.last_event_type,
                    "last_gift_card_id": self.webhook_events.last_gift_card_id,
                    "last_failure_at": _iso(self.webhook_events.last_failure_at),
                    "last_failure_type": self.webhook_events.last_failure_type,
                    "last_failure_reason": self.webhook_events.last_failure_reason,
                },
            },
            "reconciliation": {
                "totals": self.reconciliation_totals,
                "events": {
                    "last_success_at": _iso(self.reconciliation_events.last_success_at),
                    "last_failure_at": _iso(self.reconciliation_events.last_failure_at),
                    "last_failure_reason": self.reconciliation_events.last_failure_reason,
                    "last_discrepancy_count": self.reconciliation_events.last_discrepancy_count,
                },
            },
        }


@dataclass
class GiftCardSyncObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _webhook_totals: Dict[str, Counter] = field(
        default_factory=lambda: {"synced": Counter(), "ignored": Counter(), "failed": Counter()}
    )
    _webhook_events: WebhookSyncLog = field(default_factory=WebhookSyncLog)
    _reconciliation_totals: Counter = field(default_factory=Counter)
    _reconciliation_events: ReconciliationLog = field(default_factory=ReconciliationLog)

    def record_webhook(
        self,
        event_type: str,
        status: str,
        gift_card_id: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            self._webhook_totals.setdefault(status, Counter())[event_type] += 1
            now = _utcnow()
            self._webhook_events.last_event_at = now
            self._webhook_events.last_event_type = event_type
            self._webhook_events.last_gift_card_id = gift_card_id
            if status == "failed":
                self._webhook_events.last_failure_at = now
                self._webhook_events.last_failure_type = event_type
                self._webhook_events.last_failure_reason = error

    def record_reconciliation_success(self, discrepancies: int) -> None:
        with self._lock:
            self._reconciliation_totals["completed"] += 1
            self._reconciliation_events.last_success_at = _utcnow()
            self._reconciliation_events.last_discrepancy_count = discrepancies

    def record_reconciliation_failure(self, reason: str) -> None:
        with self._lock:
            self._reconciliation_totals["failed"] += 1
            self._reconciliation_events.last_failure_at = _utcnow()
            self._reconciliation_events.last_failure_reason = reason

    def record_reconciliation_skipped(self) -> None:
        with self._lock:
            self._reconciliation_totals["skipped"] += 1

    def snapshot(self) -> GiftCardSyncSnapshot:
        with self._lock:
            return GiftCardSyncSnapshot(
                webhook_totals={bucket: dict(counter) for bucket, counter in self._webhook_totals.items()},
                reconciliation_totals=dict(self._reconciliation_totals),
                webhook_events=WebhookSyncLog(**vars(self._webhook_events)),
                reconciliation_events=ReconciliationLog(**vars(self._reconciliation_events)),
            )

    def reset(self) -> None:
        with self._lock:
            self._webhook_totals = {"synced": Counter(), "ignored": Counter(), "failed": Counter()}
            self._webhook_events = WebhookSyncLog()
            self._reconciliation_totals = Counter()
            self._reconciliation_events = ReconciliationLog()


_STORE = GiftCardSyncObservabilityStore()


def get_gift_card_sync_store() -> GiftCardSyncObservabilityStore:
    return _STORE


__all__ = [
    "GiftCardSyncObservabilityStore",
    "GiftCardSyncSnapshot",
    "get_gift_card_sync_store",
]
