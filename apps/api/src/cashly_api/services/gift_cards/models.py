"""Normalized gift card shapes shared by the facade, cache, and sync paths."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class GiftCardType(str, Enum):
    DIGITAL = "DIGITAL"
    PHYSICAL = "PHYSICAL"


class GiftCardState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    DEACTIVATED = "DEACTIVATED"


class GiftCardActivityType(str, Enum):
    """Activity types the console creates against the remote service."""

    ACTIVATE = "ACTIVATE"
    LOAD = "LOAD"
    BLOCK = "BLOCK"
    UNBLOCK = "UNBLOCK"
    ADJUST_INCREMENT = "ADJUST_INCREMENT"
    ADJUST_DECREMENT = "ADJUST_DECREMENT"


class SyncSource(str, Enum):
    """Channel that last wrote a cache entry."""

    MANUAL = "manual"
    WEBHOOK = "webhook"
    RECONCILER = "reconciler"


class DiscrepancyKind(str, Enum):
    BALANCE_MISMATCH = "BALANCE_MISMATCH"
    MISSING_LOCAL = "MISSING_LOCAL"
    MISSING_SQUARE = "MISSING_SQUARE"


@dataclass(frozen=True, slots=True)
class Money:
    amount: int = 0
    currency: str = "USD"

    def as_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "Money":
        if not payload:
            return cls()
        return cls(amount=int(payload.get("amount") or 0), currency=str(payload.get("currency") or "USD"))


@dataclass(slots=True)
class GiftCard:
    """Remote-owned gift card, normalized from the wire shape."""

    id: str
    gan: str | None = None
    type: str | None = None
    state: str | None = None
    balance: Money = field(default_factory=Money)
    customer_ids: list[str] = field(default_factory=list)
    created_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "gan": self.gan,
            "type": self.type,
            "state": self.state,
            "balance": self.balance.as_dict(),
            "customerIds": list(self.customer_ids),
            "createdAt": self.created_at,
        }


@dataclass(slots=True)
class GiftCardActivity:
    id: str | None
    type: str | None
    location_id: str | None
    created_at: str | None
    gift_card_id: str | None
    balance: Money
    amount: Money

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "locationId": self.location_id,
            "createdAt": self.created_at,
            "giftCardId": self.gift_card_id,
            "balance": self.balance.as_dict(),
            "amount": self.amount.as_dict(),
        }


@dataclass(slots=True)
class CacheEntry:
    """Local projection of a gift card plus sync provenance."""

    card: GiftCard
    cached_at: datetime
    last_sync_source: SyncSource = SyncSource.MANUAL
    last_event_type: str | None = None

    @property
    def id(self) -> str:
        return self.card.id

    @property
    def balance(self) -> Money:
        return self.card.balance

    @property
    def state(self) -> str | None:
        return self.card.state

    def as_dict(self) -> dict[str, Any]:
        payload = self.card.as_dict()
        payload.update(
            {
                "cachedAt": self.cached_at.isoformat(),
                "lastSyncSource": self.last_sync_source.value,
                "lastEventType": self.last_event_type,
            }
        )
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CacheEntry":
        card = GiftCard(
            id=str(payload["id"]),
            gan=payload.get("gan"),
            type=payload.get("type"),
            state=payload.get("state"),
            balance=Money.from_dict(payload.get("balance")),
            customer_ids=list(payload.get("customerIds") or []),
            created_at=payload.get("createdAt"),
        )
        return cls(
            card=card,
            cached_at=datetime.fromisoformat(payload["cachedAt"]),
            last_sync_source=SyncSource(payload.get("lastSyncSource") or SyncSource.MANUAL.value),
            last_event_type=payload.get("lastEventType"),
        )


@dataclass(frozen=True, slots=True)
class DiscrepancyDetails:
    """What the reconciler observed; the cache stamps id and detection time."""

    gift_card_id: str
    kind: DiscrepancyKind
    cached_balance: int | None = None
    square_balance: int | None = None
    cached_state: str | None = None
    square_state: str | None = None


@dataclass(frozen=True, slots=True)
class Discrepancy:
    id: str
    detected_at: datetime
    gift_card_id: str
    kind: DiscrepancyKind
    cached_balance: int | None
    square_balance: int | None
    cached_state: str | None
    square_state: str | None

    @classmethod
    def from_details(cls, details: DiscrepancyDetails, *, id: str, detected_at: datetime) -> "Discrepancy":
        return cls(
            id=id,
            detected_at=detected_at,
            gift_card_id=details.gift_card_id,
            kind=details.kind,
            cached_balance=details.cached_balance,
            square_balance=details.square_balance,
            cached_state=details.cached_state,
            square_state=details.square_state,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "detectedAt": self.detected_at.isoformat(),
            "giftCardId": self.gift_card_id,
            "kind": self.kind.value,
            "cachedBalance": self.cached_balance,
            "squareBalance": self.square_balance,
            "cachedState": self.cached_state,
            "squareState": self.square_state,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Discrepancy":
        return cls(
            id=str(payload["id"]),
            detected_at=datetime.fromisoformat(payload["detectedAt"]),
            gift_card_id=str(payload["giftCardId"]),
            kind=DiscrepancyKind(payload["kind"]),
            cached_balance=payload.get("cachedBalance"),
            square_balance=payload.get("squareBalance"),
            cached_state=payload.get("cachedState"),
            square_state=payload.get("squareState"),
        )


def copy_card(card: GiftCard) -> GiftCard:
    return replace(card, customer_ids=list(card.customer_ids))


__all__ = [
    "CacheEntry",
    "Discrepancy",
    "DiscrepancyDetails",
    "DiscrepancyKind",
    "GiftCard",
    "GiftCardActivity",
    "GiftCardActivityType",
    "GiftCardState",
    "GiftCardType",
    "Money",
    "SyncSource",
    "copy_card",
]
