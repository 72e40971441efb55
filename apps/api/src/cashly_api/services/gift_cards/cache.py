"""Write-through local cache of gift card state and reconciliation history."""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List
from uuid import uuid4

from loguru import logger

from .models import CacheEntry, Discrepancy, DiscrepancyDetails, GiftCard, SyncSource, copy_card

DEFAULT_DISCREPANCY_LIMIT = 50

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GiftCardCache:
    """Key-value store of card snapshots persisted as a single JSON document.

    Every mutating call rewrites the full snapshot before returning, so a crash
    loses at most the call in flight. The in-memory map stays authoritative for
    the life of the process even when a write fails.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        max_discrepancies: int = DEFAULT_DISCREPANCY_LIMIT,
        clock: Clock | None = None,
    ) -> None:
        self.path = Path(path)
        self._max_discrepancies = max_discrepancies
        self._clock = clock or _utcnow
        self._lock = Lock()
        self._cards: Dict[str, CacheEntry] = {}
        self._discrepancies: List[Discrepancy] = []
        self._last_reconciled_at: datetime | None = None
        self.is_open: bool = False
        self._log = logger.bind(component="gift_card_cache", path=str(self.path))

    def open(self) -> "GiftCardCache":
        with self._lock:
            self._load()
            self.is_open = True
        self._log.info("Gift card cache loaded", cards=len(self._cards), discrepancies=len(self._discrepancies))
        return self

    def close(self) -> None:
        self.is_open = False

    def __enter__(self) -> "GiftCardCache":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Cards

    def upsert_card(
        self,
        card: GiftCard,
        *,
        source: SyncSource = SyncSource.MANUAL,
        event_type: str | None = None,
    ) -> CacheEntry | None:
        if card is None or not card.id:
            return None
        entry = CacheEntry(
            card=copy_card(card),
            cached_at=self._clock(),
            last_sync_source=source,
            last_event_type=event_type,
        )
        with self._lock:
            self._cards[card.id] = entry
            self._persist()
        return entry

    def get_card(self, gift_card_id: str) -> CacheEntry | None:
        return self._cards.get(gift_card_id)

    def list_cards(self) -> list[CacheEntry]:
        return list(self._cards.values())

    def list_cards_for_customer(self, customer_id: str) -> list[CacheEntry]:
        return [entry for entry in self._cards.values() if customer_id in entry.card.customer_ids]

    # Reconciliation history

    def record_discrepancy(self, details: DiscrepancyDetails) -> Discrepancy:
        discrepancy = Discrepancy.from_details(details, id=str(uuid4()), detected_at=self._clock())
        with self._lock:
            self._discrepancies.insert(0, discrepancy)
            del self._discrepancies[self._max_discrepancies :]
            self._persist()
        return discrepancy

    def list_discrepancies(self, limit: int = 10) -> list[Discrepancy]:
        if limit <= 0:
            return []
        return self._discrepancies[:limit]

    def mark_reconciled(self) -> datetime:
        reconciled_at = self._clock()
        with self._lock:
            self._last_reconciled_at = reconciled_at
            self._persist()
        return reconciled_at

    def get_last_reconciled_at(self) -> datetime | None:
        return self._last_reconciled_at

    # Persistence

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "cards": [entry.as_dict() for entry in self._cards.values()],
            "discrepancies": [item.as_dict() for item in self._discrepancies],
            "lastReconciledAt": self._last_reconciled_at.isoformat() if self._last_reconciled_at else None,
        }

    def _persist(self) -> None:
        payload = json.dumps(self._snapshot(), indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            self._log.exception("Failed to persist gift card cache", error=str(exc))
        finally:
            if tmp_name is not None:
                with suppress(OSError):
                    os.unlink(tmp_name)

    def _load(self) -> None:
        self._cards = {}
        self._discrepancies = []
        self._last_reconciled_at = None
        if not self.path.exists():
            return
        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
            cards = {}
            for raw in parsed.get("cards") or []:
                if isinstance(raw, dict) and raw.get("id"):
                    entry = CacheEntry.from_dict(raw)
                    cards[entry.id] = entry
            discrepancies = [Discrepancy.from_dict(raw) for raw in parsed.get("discrepancies") or []]
            raw_reconciled = parsed.get("lastReconciledAt")
            last_reconciled_at = datetime.fromisoformat(raw_reconciled) if raw_reconciled else None
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            self._log.warning("Ignoring unreadable gift card cache snapshot", error=str(exc))
            return
        self._cards = cards
        self._discrepancies = discrepancies[: self._max_discrepancies]
        self._last_reconciled_at = last_reconciled_at


__all__ = ["DEFAULT_DISCREPANCY_LIMIT", "GiftCardCache"]
