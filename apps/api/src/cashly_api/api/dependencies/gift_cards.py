"""Resolve the gift card components wired onto ``app.state`` by the lifespan."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from cashly_api.services.gift_cards import GiftCardCache, GiftCardService, GiftCardSyncCoordinator


def _from_state(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gift card services are not initialized",
        )
    return component


def get_gift_card_cache(request: Request) -> GiftCardCache:
    return _from_state(request, "gift_card_cache")


def get_gift_card_service(request: Request) -> GiftCardService:
    return _from_state(request, "gift_card_service")


def get_gift_card_sync(request: Request) -> GiftCardSyncCoordinator:
    return _from_state(request, "gift_card_sync")
