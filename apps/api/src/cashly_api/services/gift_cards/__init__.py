"""Gift card facade, local cache, and Square sync coordination."""

from .cache import GiftCardCache
from .models import (
    CacheEntry,
    Discrepancy,
    DiscrepancyDetails,
    DiscrepancyKind,
    GiftCard,
    GiftCardActivity,
    GiftCardState,
    GiftCardType,
    Money,
    SyncSource,
)
from .service import GiftCardService, GiftCardServiceError, build_gift_card_stats, cents_from_amount
from .sync import GiftCardSyncCoordinator, ReconciliationSummary, WebhookSyncOutcome, extract_gift_card_id

__all__ = [
    "CacheEntry",
    "Discrepancy",
    "DiscrepancyDetails",
    "DiscrepancyKind",
    "GiftCard",
    "GiftCardActivity",
    "GiftCardCache",
    "GiftCardService",
    "GiftCardServiceError",
    "GiftCardState",
    "GiftCardSyncCoordinator",
    "GiftCardType",
    "Money",
    "ReconciliationSummary",
    "SyncSource",
    "WebhookSyncOutcome",
    "build_gift_card_stats",
    "cents_from_amount",
    "extract_gift_card_id",
]
