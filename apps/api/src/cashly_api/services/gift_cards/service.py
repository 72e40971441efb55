"""Gift card facade translating Square wire shapes and errors for the console."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar
from uuid import uuid4

from loguru import logger

from cashly_api.core.settings import settings
from cashly_api.services.square import GiftCardRemote, SquareApiError

from .models import GiftCard, GiftCardActivity, GiftCardActivityType, GiftCardState, Money

T = TypeVar("T")

DEFAULT_CURRENCY = "USD"
PRIMARY_LOCATION_ALIAS = "main"

# Exactly one of these is populated per activity.
_AMOUNT_DETAIL_KEYS = (
    "load_activity_details",
    "activate_activity_details",
    "adjust_increment_activity_details",
    "adjust_decrement_activity_details",
    "redeem_activity_details",
    "clear_balance_activity_details",
)


class GiftCardServiceError(Exception):
    """Uniform error surfaced to console callers."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(slots=True)
class GiftCardPage:
    cards: list[GiftCard]
    next_cursor: str | None


@dataclass(slots=True)
class GiftCardActivityPage:
    activities: list[GiftCardActivity]
    next_cursor: str | None


def normalize_money(money: Mapping[str, Any] | None) -> Money:
    money = money or {}
    return Money(amount=int(money.get("amount") or 0), currency=str(money.get("currency") or DEFAULT_CURRENCY))


def map_gift_card(raw: Mapping[str, Any]) -> GiftCard:
    return GiftCard(
        id=raw.get("id"),
        gan=raw.get("gan"),
        type=raw.get("type"),
        state=raw.get("state"),
        balance=normalize_money(raw.get("balance_money")),
        customer_ids=list(raw.get("customer_ids") or []),
        created_at=raw.get("created_at"),
    )


def _extract_activity_amount(raw: Mapping[str, Any]) -> Money:
    for key in _AMOUNT_DETAIL_KEYS:
        details = raw.get(key)
        if details and details.get("amount_money"):
            return normalize_money(details["amount_money"])
    return normalize_money(None)


def map_activity(raw: Mapping[str, Any]) -> GiftCardActivity:
    return GiftCardActivity(
        id=raw.get("id"),
        type=raw.get("type"),
        location_id=raw.get("location_id"),
        created_at=raw.get("created_at"),
        gift_card_id=raw.get("gift_card_id") or raw.get("gift_card_gan"),
        balance=normalize_money(raw.get("gift_card_balance_money")),
        amount=_extract_activity_amount(raw),
    )


def cents_from_amount(amount: object) -> int | None:
    """Convert a decimal amount such as ``"12.50"`` into integer minor units."""

    if amount is None or (isinstance(amount, str) and not amount.strip()):
        return None
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_gift_card_stats(cards: Iterable[GiftCard]) -> dict[str, int]:
    cards = list(cards)
    by_state = Counter(card.state for card in cards)
    return {
        "totalBalance": sum(card.balance.amount for card in cards),
        "activeCards": by_state[GiftCardState.ACTIVE.value],
        "blockedCards": by_state[GiftCardState.BLOCKED.value],
        "deactivatedCards": by_state[GiftCardState.DEACTIVATED.value],
        "totalIssued": len(cards),
    }


def _require_card(result: Mapping[str, Any]) -> GiftCard:
    raw = result.get("gift_card")
    if not raw or not raw.get("id"):
        raise GiftCardServiceError("Gift card not found", 404)
    return map_gift_card(raw)


def _translate_remote_error(exc: SquareApiError) -> GiftCardServiceError:
    details = [str(item.get("detail") or item.get("code")) for item in exc.errors if item.get("detail") or item.get("code")]
    message = ", ".join(details) or "Square API request failed"
    return GiftCardServiceError(message, exc.status_code or 400)


class GiftCardService:
    """Stateless translator between the console and the Square gift card API."""

    def __init__(
        self,
        remote: GiftCardRemote,
        *,
        default_page_size: int | None = None,
        location_id: str | None = None,
        idempotency_key_factory: Callable[[], str] | None = None,
    ) -> None:
        self._remote = remote
        self._default_page_size = default_page_size or settings.gift_card_default_page_size
        self._location_id = location_id if location_id is not None else settings.square_location_id
        self._new_idempotency_key = idempotency_key_factory or (lambda: str(uuid4()))

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except SquareApiError as exc:
            raise _translate_remote_error(exc) from exc

    # Reads

    async def resolve_location_id(self) -> str:
        if self._location_id:
            return self._location_id
        result = await self._call(lambda: self._remote.retrieve_location(PRIMARY_LOCATION_ALIAS))
        location = result.get("location") or {}
        if not location.get("id"):
            raise GiftCardServiceError("Square did not return a primary location", 502)
        return location["id"]

    async def list_gift_cards(
        self,
        *,
        type: str | None = None,
        state: str | None = None,
        customer_id: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> GiftCardPage:
        result = await self._call(
            lambda: self._remote.list_gift_cards(
                type=type,
                state=state,
                limit=limit or self._default_page_size,
                cursor=cursor,
                customer_id=customer_id,
            )
        )
        return GiftCardPage(
            cards=[map_gift_card(raw) for raw in result.get("gift_cards") or []],
            next_cursor=result.get("cursor") or None,
        )

    async def list_gift_card_activities(
        self,
        *,
        gift_card_id: str | None = None,
        type: str | None = None,
        location_id: str | None = None,
        begin_time: str | None = None,
        end_time: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        sort_order: str = "DESC",
    ) -> GiftCardActivityPage:
        result = await self._call(
            lambda: self._remote.list_gift_card_activities(
                gift_card_id=gift_card_id,
                type=type,
                location_id=location_id,
                begin_time=begin_time,
                end_time=end_time,
                limit=limit or self._default_page_size,
                cursor=cursor,
                sort_order=sort_order,
            )
        )
        return GiftCardActivityPage(
            activities=[map_activity(raw) for raw in result.get("gift_card_activities") or []],
            next_cursor=result.get("cursor") or None,
        )

    async def retrieve_gift_card(self, gift_card_id: str) -> GiftCard:
        if not gift_card_id:
            raise GiftCardServiceError("Gift card id is required")
        result = await self._call(lambda: self._remote.retrieve_gift_card(gift_card_id))
        return _require_card(result)

    async def retrieve_gift_card_by_gan(self, gan: str) -> GiftCard:
        value = (gan or "").strip()
        if not value:
            raise GiftCardServiceError("GAN is required")
        result = await self._call(lambda: self._remote.retrieve_gift_card_from_gan(value))
        return _require_card(result)

    async def search_gift_card(self, query: str | None) -> GiftCard | None:
        """Look a card up by id, then by GAN; ``None`` when neither matches."""

        value = (query or "").strip()
        if not value:
            return None
        try:
            return await self.retrieve_gift_card(value)
        except GiftCardServiceError as exc:
            logger.debug("Gift card id lookup missed, trying GAN", query=value, status_code=exc.status_code)
        try:
            return await self.retrieve_gift_card_by_gan(value)
        except GiftCardServiceError as exc:
            logger.info("Gift card search found no match", query=value, status_code=exc.status_code)
            return None

    # Mutations

    async def issue_gift_card(
        self,
        *,
        location_id: str,
        type: str = "DIGITAL",
        amount_cents: int | None = None,
        currency: str = DEFAULT_CURRENCY,
        customer_id: str | None = None,
        reference_id: str | None = None,
    ) -> GiftCard:
        if not location_id:
            raise GiftCardServiceError("Location ID is required to issue a gift card")
        result = await self._call(
            lambda: self._remote.create_gift_card(
                {
                    "idempotency_key": self._new_idempotency_key(),
                    "location_id": location_id,
                    "gift_card": {"type": type},
                }
            )
        )
        raw_card = result.get("gift_card")
        if not raw_card:
            raise GiftCardServiceError("Gift card creation response did not include a card", 502)
        card = map_gift_card(raw_card)

        if customer_id:
            linked = await self._call(lambda: self._remote.link_customer_to_gift_card(card.id, customer_id))
            if linked.get("gift_card"):
                card = map_gift_card(linked["gift_card"])

        if amount_cents and amount_cents > 0:
            details: dict[str, Any] = {"amount_money": {"amount": amount_cents, "currency": currency}}
            if reference_id:
                details["reference_id"] = reference_id
            activity = await self._create_activity(
                GiftCardActivityType.ACTIVATE,
                gift_card_id=card.id,
                location_id=location_id,
                details=details,
            )
            card.balance = activity.balance if activity.balance.amount else Money(amount_cents, currency)
            card.state = GiftCardState.ACTIVE.value

        logger.info("Issued gift card", gift_card_id=card.id, type=type, amount_cents=amount_cents or 0)
        return card

    async def load_gift_card_balance(
        self,
        *,
        gift_card_id: str,
        amount_cents: int | None,
        location_id: str,
        currency: str = DEFAULT_CURRENCY,
        reference_id: str | None = None,
    ) -> GiftCardActivity:
        if not gift_card_id or not amount_cents or amount_cents <= 0:
            raise GiftCardServiceError("Gift card ID and a positive amount are required")
        if not location_id:
            raise GiftCardServiceError("Location ID is required")
        details: dict[str, Any] = {"amount_money": {"amount": amount_cents, "currency": currency}}
        if reference_id:
            details["reference_id"] = reference_id
        return await self._create_activity(
            GiftCardActivityType.LOAD,
            gift_card_id=gift_card_id,
            location_id=location_id,
            details=details,
        )

    async def block_gift_card(
        self,
        *,
        gift_card_id: str,
        location_id: str,
        reason: str | None = None,
    ) -> GiftCardActivity:
        if not gift_card_id or not location_id:
            raise GiftCardServiceError("Gift card and location are required")
        return await self._create_activity(
            GiftCardActivityType.BLOCK,
            gift_card_id=gift_card_id,
            location_id=location_id,
            details={"reason": reason or "Blocked via dashboard"},
        )

    async def unblock_gift_card(
        self,
        *,
        gift_card_id: str,
        location_id: str,
        reason: str | None = None,
    ) -> GiftCardActivity:
        if not gift_card_id or not location_id:
            raise GiftCardServiceError("Gift card and location are required")
        return await self._create_activity(
            GiftCardActivityType.UNBLOCK,
            gift_card_id=gift_card_id,
            location_id=location_id,
            details={"reason": reason or "Unblocked via dashboard"},
        )

    async def adjust_gift_card_balance(
        self,
        *,
        gift_card_id: str,
        amount_cents: int | None,
        location_id: str,
        currency: str = DEFAULT_CURRENCY,
        reason: str | None = None,
    ) -> GiftCardActivity:
        """Apply a signed balance delta as an increment or decrement activity."""

        if not gift_card_id or not location_id:
            raise GiftCardServiceError("Gift card and location are required")
        if not amount_cents:
            raise GiftCardServiceError("Adjustment amount must be non-zero")
        activity_type = (
            GiftCardActivityType.ADJUST_INCREMENT if amount_cents > 0 else GiftCardActivityType.ADJUST_DECREMENT
        )
        return await self._create_activity(
            activity_type,
            gift_card_id=gift_card_id,
            location_id=location_id,
            details={
                "amount_money": {"amount": abs(amount_cents), "currency": currency},
                "reason": reason or "Manual adjustment",
            },
        )

    async def _create_activity(
        self,
        activity_type: GiftCardActivityType,
        *,
        gift_card_id: str,
        location_id: str,
        details: Mapping[str, Any],
    ) -> GiftCardActivity:
        body = {
            "idempotency_key": self._new_idempotency_key(),
            "gift_card_activity": {
                "type": activity_type.value,
                "location_id": location_id,
                "gift_card_id": gift_card_id,
                f"{activity_type.value.lower()}_activity_details": dict(details),
            },
        }
        result = await self._call(lambda: self._remote.create_gift_card_activity(body))
        activity = map_activity(result.get("gift_card_activity") or body["gift_card_activity"])
        logger.info(
            "Created gift card activity",
            gift_card_id=gift_card_id,
            activity_type=activity_type.value,
            activity_id=activity.id,
        )
        return activity


__all__ = [
    "GiftCardActivityPage",
    "GiftCardPage",
    "GiftCardService",
    "GiftCardServiceError",
    "build_gift_card_stats",
    "cents_from_amount",
    "map_activity",
    "map_gift_card",
    "normalize_money",
]
