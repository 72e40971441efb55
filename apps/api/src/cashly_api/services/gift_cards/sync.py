"""Keeps the gift card cache aligned with Square via webhooks and full sweeps."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Literal, Mapping, Sequence

from loguru import logger

from cashly_api.core.settings import settings
from cashly_api.observability.gift_cards import GiftCardSyncObservabilityStore, get_gift_card_sync_store
from cashly_api.observability.tracing import get_tracer

from .cache import GiftCardCache
from .models import CacheEntry, DiscrepancyDetails, DiscrepancyKind, GiftCard, SyncSource
from .service import GiftCardService

WebhookSyncStatus = Literal["synced", "ignored", "failed"]

_tracer = get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class WebhookSyncOutcome:
    """Result of a webhook-driven refresh; handlers never see an exception."""

    status: WebhookSyncStatus
    gift_card_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class ReconciliationSummary:
    remote_cards: int = 0
    matched: int = 0
    balance_mismatches: int = 0
    missing_local: int = 0
    missing_remote: int = 0

    @property
    def discrepancies(self) -> int:
        return self.balance_mismatches + self.missing_local + self.missing_remote

    def as_dict(self) -> dict[str, int]:
        payload = asdict(self)
        payload["discrepancies"] = self.discrepancies
        return payload


def extract_gift_card_id(payload: Mapping[str, Any] | None) -> str | None:
    """Pull the card id out of a gift card or gift card activity event body."""

    if not isinstance(payload, Mapping):
        return None
    data_object = payload.get("object")
    if not isinstance(data_object, Mapping):
        return None
    card = data_object.get("gift_card")
    if isinstance(card, Mapping) and card.get("id"):
        return str(card["id"])
    activity = data_object.get("gift_card_activity")
    if isinstance(activity, Mapping):
        if activity.get("gift_card_id"):
            return str(activity["gift_card_id"])
        nested = activity.get("gift_card")
        if isinstance(nested, Mapping) and nested.get("id"):
            return str(nested["id"])
    return None


def _matches(cached: CacheEntry, remote: GiftCard) -> bool:
    return cached.balance.amount == remote.balance.amount and cached.state == remote.state


class GiftCardSyncCoordinator:
    """Funnels webhook pushes and scheduled sweeps into the cache.

    Both paths write the remote-authoritative value per card, so ordering
    between them does not matter. Sweeps are non-reentrant: a call made while
    one is in flight returns immediately instead of queueing.
    """

    def __init__(
        self,
        cache: GiftCardCache,
        service: GiftCardService,
        *,
        page_size: int | None = None,
        event_prefixes: Sequence[str] | None = None,
        store: GiftCardSyncObservabilityStore | None = None,
    ) -> None:
        self._cache = cache
        self._service = service
        self._page_size = page_size or settings.gift_card_reconcile_page_size
        self._event_prefixes = tuple(event_prefixes if event_prefixes is not None else settings.gift_card_webhook_event_prefixes)
        self._store = store or get_gift_card_sync_store()
        self._reconciling = False
        self._pending: set[asyncio.Task[WebhookSyncOutcome]] = set()

    @property
    def is_reconciling(self) -> bool:
        return self._reconciling

    def accepts(self, event_type: object) -> bool:
        if not isinstance(event_type, str) or not event_type:
            return False
        return any(event_type.startswith(prefix) for prefix in self._event_prefixes)

    # Single-card refresh

    async def sync_card(
        self,
        gift_card_id: str,
        *,
        source: SyncSource = SyncSource.MANUAL,
        event_type: str | None = None,
    ) -> CacheEntry | None:
        card = await self._service.retrieve_gift_card(gift_card_id)
        return self._cache.upsert_card(card, source=source, event_type=event_type)

    async def handle_event(self, event_type: str | None, payload: Mapping[str, Any] | None) -> WebhookSyncOutcome:
        if not isinstance(event_type, str) or not event_type or not payload:
            return WebhookSyncOutcome(status="ignored")
        gift_card_id = extract_gift_card_id(payload)
        if not gift_card_id:
            self._store.record_webhook(event_type, "ignored")
            return WebhookSyncOutcome(status="ignored")

        outcome = await self._sync_from_webhook(gift_card_id, event_type)
        self._store.record_webhook(event_type, outcome.status, gift_card_id, outcome.error)
        if outcome.status == "failed":
            logger.warning(
                "Gift card webhook sync failed",
                gift_card_id=gift_card_id,
                event_type=event_type,
                error=outcome.error,
            )
        return outcome

    async def _sync_from_webhook(self, gift_card_id: str, event_type: str) -> WebhookSyncOutcome:
        try:
            await self.sync_card(gift_card_id, source=SyncSource.WEBHOOK, event_type=event_type)
        except Exception as exc:  # the next sweep repairs whatever this missed
            return WebhookSyncOutcome(status="failed", gift_card_id=gift_card_id, error=str(exc))
        return WebhookSyncOutcome(status="synced", gift_card_id=gift_card_id)

    def dispatch_event(self, event_type: str, payload: Mapping[str, Any]) -> asyncio.Task[WebhookSyncOutcome]:
        """Schedule ``handle_event`` without making the caller wait on Square."""

        task = asyncio.get_running_loop().create_task(self.handle_event(event_type, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # Full reconciliation

    async def fetch_all_gift_cards(self) -> list[GiftCard]:
        cards: list[GiftCard] = []
        cursor: str | None = None
        while True:
            page = await self._service.list_gift_cards(limit=self._page_size, cursor=cursor)
            cards.extend(page.cards)
            cursor = page.next_cursor
            if not cursor:
                return cards

    async def reconcile(self) -> ReconciliationSummary | None:
        """Run one sweep; ``None`` when skipped or when the sweep failed."""

        if self._reconciling:
            logger.info("Gift card reconciliation already running; skipping")
            self._store.record_reconciliation_skipped()
            return None

        self._reconciling = True
        try:
            with _tracer.start_as_current_span("gift_cards.reconcile"):
                summary = await self._sweep()
        except Exception as exc:
            logger.exception("Gift card reconciliation failed", error=str(exc))
            self._store.record_reconciliation_failure(str(exc))
            return None
        finally:
            self._reconciling = False

        self._store.record_reconciliation_success(summary.discrepancies)
        logger.info("Gift card reconciliation completed", **summary.as_dict())
        return summary

    async def _sweep(self) -> ReconciliationSummary:
        remote_cards = await self.fetch_all_gift_cards()
        expected = {entry.id: entry for entry in self._cache.list_cards()}
        seen: set[str] = set()
        summary = ReconciliationSummary()

        for card in remote_cards:
            if not card.id or card.id in seen:
                continue
            seen.add(card.id)
            summary.remote_cards += 1
            cached = expected.pop(card.id, None)

            if cached is None:
                summary.missing_local += 1
                self._cache.record_discrepancy(
                    DiscrepancyDetails(
                        gift_card_id=card.id,
                        kind=DiscrepancyKind.MISSING_LOCAL,
                        square_balance=card.balance.amount,
                        square_state=card.state,
                    )
                )
            elif _matches(cached, card):
                summary.matched += 1
            else:
                summary.balance_mismatches += 1
                self._cache.record_discrepancy(
                    DiscrepancyDetails(
                        gift_card_id=card.id,
                        kind=DiscrepancyKind.BALANCE_MISMATCH,
                        cached_balance=cached.balance.amount,
                        square_balance=card.balance.amount,
                        cached_state=cached.state,
                        square_state=card.state,
                    )
                )
            self._cache.upsert_card(card, source=SyncSource.RECONCILER)

        # Whatever Square did not report is flagged for an operator, never deleted.
        for cached in expected.values():
            summary.missing_remote += 1
            self._cache.record_discrepancy(
                DiscrepancyDetails(
                    gift_card_id=cached.id,
                    kind=DiscrepancyKind.MISSING_SQUARE,
                    cached_balance=cached.balance.amount,
                    cached_state=cached.state,
                )
            )

        self._cache.mark_reconciled()
        return summary


__all__ = [
    "GiftCardSyncCoordinator",
    "ReconciliationSummary",
    "WebhookSyncOutcome",
    "extract_gift_card_id",
]
