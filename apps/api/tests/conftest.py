import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping

import pytest
import pytest_asyncio


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from cashly_api.api.dependencies.gift_cards import (  # noqa: E402
    get_gift_card_cache,
    get_gift_card_service,
    get_gift_card_sync,
)
from cashly_api.app import create_app  # noqa: E402
from cashly_api.observability.gift_cards import get_gift_card_sync_store  # noqa: E402
from cashly_api.services.gift_cards import GiftCardCache, GiftCardService, GiftCardSyncCoordinator  # noqa: E402
from cashly_api.services.square import SquareApiError  # noqa: E402


def square_card(
    card_id: str,
    *,
    amount: int = 0,
    state: str = "ACTIVE",
    gan: str | None = None,
    card_type: str = "DIGITAL",
    customer_ids: list[str] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": card_id,
        "type": card_type,
        "gan_source": "SQUARE",
        "state": state,
        "balance_money": {"amount": amount, "currency": "USD"},
        "gan": gan or f"7783-{card_id}",
        "created_at": "2024-01-01T00:00:00Z",
    }
    if customer_ids:
        payload["customer_ids"] = list(customer_ids)
    return payload


class TickingClock:
    """Deterministic clock that advances one second per read."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.current = self.current + self.step
        return self.current


class FakeSquareRemote:
    """In-memory stand-in for the Square gift card endpoints."""

    def __init__(self, cards: list[dict[str, Any]] | None = None) -> None:
        self.cards: dict[str, dict[str, Any]] = {card["id"]: card for card in cards or []}
        self.activities: list[dict[str, Any]] = []
        self.created_cards: list[Mapping[str, Any]] = []
        self.activity_requests: list[Mapping[str, Any]] = []
        self.linked_customers: list[tuple[str, str]] = []
        self.list_calls: list[dict[str, Any]] = []
        self.retrieve_calls: list[str] = []
        self.list_gate: asyncio.Event | None = None
        self.list_error: Exception | None = None
        self.retrieve_error: Exception | None = None
        self.location_id = "LOC-MAIN"

    @staticmethod
    def _not_found(detail: str) -> SquareApiError:
        return SquareApiError(404, [{"category": "INVALID_REQUEST_ERROR", "code": "NOT_FOUND", "detail": detail}])

    @staticmethod
    def _paginate(items: list[dict[str, Any]], limit: int | None, cursor: str | None) -> tuple[list, str | None]:
        start = int(cursor or 0)
        size = limit or max(len(items), 1)
        page = items[start : start + size]
        next_cursor = str(start + size) if start + size < len(items) else None
        return page, next_cursor

    async def create_gift_card(self, body: Mapping[str, Any]) -> Mapping[str, Any]:
        self.created_cards.append(body)
        card_id = f"gftc:new-{len(self.created_cards)}"
        card = square_card(card_id, state="PENDING", card_type=body["gift_card"]["type"])
        self.cards[card_id] = card
        return {"gift_card": card}

    async def link_customer_to_gift_card(self, gift_card_id: str, customer_id: str) -> Mapping[str, Any]:
        self.linked_customers.append((gift_card_id, customer_id))
        card = self.cards[gift_card_id]
        card.setdefault("customer_ids", []).append(customer_id)
        return {"gift_card": card}

    async def list_gift_cards(
        self,
        *,
        type: str | None = None,
        state: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        customer_id: str | None = None,
    ) -> Mapping[str, Any]:
        self.list_calls.append({"type": type, "state": state, "limit": limit, "cursor": cursor, "customer_id": customer_id})
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.list_error is not None:
            raise self.list_error
        items = [
            card
            for card in self.cards.values()
            if (type is None or card["type"] == type)
            and (state is None or card["state"] == state)
            and (customer_id is None or customer_id in card.get("customer_ids", []))
        ]
        page, next_cursor = self._paginate(items, limit, cursor)
        result: dict[str, Any] = {"gift_cards": page}
        if next_cursor:
            result["cursor"] = next_cursor
        return result

    async def retrieve_gift_card(self, gift_card_id: str) -> Mapping[str, Any]:
        self.retrieve_calls.append(gift_card_id)
        if self.retrieve_error is not None:
            raise self.retrieve_error
        if gift_card_id not in self.cards:
            raise self._not_found("Gift card not found.")
        return {"gift_card": self.cards[gift_card_id]}

    async def retrieve_gift_card_from_gan(self, gan: str) -> Mapping[str, Any]:
        for card in self.cards.values():
            if card["gan"] == gan:
                return {"gift_card": card}
        raise self._not_found("Gift card with that GAN not found.")

    async def list_gift_card_activities(self, *, limit: int | None = None, cursor: str | None = None, **filters: Any) -> Mapping[str, Any]:
        gift_card_id = filters.get("gift_card_id")
        items = [item for item in self.activities if gift_card_id is None or item.get("gift_card_id") == gift_card_id]
        page, next_cursor = self._paginate(items, limit, cursor)
        result: dict[str, Any] = {"gift_card_activities": page}
        if next_cursor:
            result["cursor"] = next_cursor
        return result

    async def create_gift_card_activity(self, body: Mapping[str, Any]) -> Mapping[str, Any]:
        self.activity_requests.append(body)
        activity = dict(body["gift_card_activity"])
        activity["id"] = f"gcact-{len(self.activity_requests)}"
        card = self.cards.get(activity["gift_card_id"])
        if card is not None:
            details = activity.get(f"{activity['type'].lower()}_activity_details") or {}
            delta = (details.get("amount_money") or {}).get("amount", 0)
            if activity["type"] == "ADJUST_DECREMENT":
                delta = -delta
            card["balance_money"]["amount"] += delta
            if activity["type"] in {"ACTIVATE", "UNBLOCK"}:
                card["state"] = "ACTIVE"
            elif activity["type"] == "BLOCK":
                card["state"] = "BLOCKED"
            activity["gift_card_balance_money"] = dict(card["balance_money"])
        self.activities.append(activity)
        return {"gift_card_activity": activity}

    async def retrieve_location(self, location_id: str) -> Mapping[str, Any]:
        return {"location": {"id": self.location_id, "name": "Main"}}


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def cache(tmp_path, clock) -> GiftCardCache:
    return GiftCardCache(tmp_path / "gift-cards.json", clock=clock).open()


@pytest.fixture
def remote() -> FakeSquareRemote:
    return FakeSquareRemote()


@pytest.fixture
def service(remote) -> GiftCardService:
    return GiftCardService(remote, default_page_size=30, location_id="")


@pytest.fixture
def sync_store():
    store = get_gift_card_sync_store()
    store.reset()
    yield store
    store.reset()


@pytest.fixture
def coordinator(cache, service, sync_store) -> GiftCardSyncCoordinator:
    return GiftCardSyncCoordinator(
        cache,
        service,
        page_size=2,
        event_prefixes=["gift_card", "gift_card_activity"],
        store=sync_store,
    )


@pytest_asyncio.fixture
async def app_with_gift_cards(cache, service, coordinator):
    app = create_app()
    app.state.gift_card_cache = cache
    app.state.gift_card_service = service
    app.state.gift_card_sync = coordinator

    app.dependency_overrides[get_gift_card_cache] = lambda: cache
    app.dependency_overrides[get_gift_card_service] = lambda: service
    app.dependency_overrides[get_gift_card_sync] = lambda: coordinator

    try:
        yield app
    finally:
        await coordinator.drain()
        app.dependency_overrides.clear()


@pytest.fixture
def make_card():
    return square_card
