"""Background workers supporting async processing."""

from .gift_card_reconciliation import GiftCardReconciliationWorker

__all__ = ["GiftCardReconciliationWorker"]
