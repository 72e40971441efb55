"""Square webhook receiver; gift card events are synced in the background."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger

from cashly_api.api.dependencies.gift_cards import get_gift_card_sync
from cashly_api.core.settings import settings
from cashly_api.services.gift_cards import GiftCardSyncCoordinator

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


def compute_signature(body: bytes, *, signature_key: str, notification_url: str = "") -> str:
    """Square signs ``notification_url + raw body`` with HMAC-SHA256, base64 encoded."""

    digest = hmac.new(signature_key.encode("utf-8"), notification_url.encode("utf-8") + body, hashlib.sha256)
    return base64.b64encode(digest.digest()).decode("ascii")


def verify_signature(body: bytes, signature: str | None) -> bool:
    signature_key = settings.square_webhook_signature_key
    if not signature_key:
        return True
    if not signature:
        return False
    expected = compute_signature(
        body,
        signature_key=signature_key,
        notification_url=settings.square_webhook_notification_url,
    )
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", errors="ignore"))


@router.post("/square")
async def square_webhook(
    request: Request,
    sync: GiftCardSyncCoordinator = Depends(get_gift_card_sync),
) -> dict[str, Any]:
    body = await request.body()
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected Square webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        event = json.loads(body or b"{}")
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload body") from exc
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload body")

    event_type = event.get("type")
    if not event_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event type")
    if not isinstance(event_type, str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid event type")

    data = event.get("data")
    logger.info("Received Square webhook", event_type=event_type, event_id=event.get("event_id"))

    if sync.accepts(event_type) and isinstance(data, dict):
        sync.dispatch_event(event_type, data)

    return {"received": True}
