from fastapi import APIRouter

from .endpoints import (
    gift_cards,
    health,
    square_webhooks,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(gift_cards.router)
router.include_router(square_webhooks.router)
