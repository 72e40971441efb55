"""Square API access for the billing console."""

from .client import GiftCardRemote, SquareApiError, SquareGiftCardClient

__all__ = ["GiftCardRemote", "SquareApiError", "SquareGiftCardClient"]
