"""Operator endpoints for issuing, managing, and auditing gift cards."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from pydantic import BaseModel, Field

from cashly_api.api.dependencies.gift_cards import (
    get_gift_card_cache,
    get_gift_card_service,
    get_gift_card_sync,
)
from cashly_api.api.dependencies.security import require_console_api_key
from cashly_api.services.gift_cards import (
    GiftCardCache,
    GiftCardService,
    GiftCardServiceError,
    GiftCardState,
    GiftCardSyncCoordinator,
    GiftCardType,
    SyncSource,
    build_gift_card_stats,
    cents_from_amount,
)

router = APIRouter(
    prefix="/gift-cards",
    tags=["gift-cards"],
    dependencies=[Depends(require_console_api_key)],
)

T = TypeVar("T")

SYNC_META_DISCREPANCIES = 5
DETAIL_ACTIVITY_LIMIT = 50


class IssueGiftCardRequest(BaseModel):
    type: GiftCardType = GiftCardType.DIGITAL
    amount: str | None = Field(default=None, description="Decimal amount, e.g. 25.00")
    currency: str = "USD"
    customer_id: str | None = Field(default=None, alias="customerId")
    reference_id: str | None = Field(default=None, alias="referenceId")

    model_config = {"populate_by_name": True}


class LoadGiftCardRequest(BaseModel):
    gift_card_id: str = Field(alias="giftCardId")
    amount: str
    currency: str = "USD"
    reference_id: str | None = Field(default=None, alias="referenceId")

    model_config = {"populate_by_name": True}


class BlockGiftCardRequest(BaseModel):
    reason: str | None = None


class AdjustGiftCardRequest(BaseModel):
    amount: str = Field(description="Signed decimal amount; negative values decrement")
    currency: str = "USD"
    reason: str | None = None


async def _perform(action: Awaitable[T], *, failure_message: str) -> T:
    """Await a facade call, turning remote failures into action-specific errors."""

    try:
        return await action
    except GiftCardServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message or failure_message) from exc
    except httpx.HTTPError as exc:
        logger.error("Square request did not complete", action=failure_message, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=failure_message) from exc


async def _gather(*actions: Awaitable[Any]) -> list[Any]:
    """Run facade calls concurrently; re-raise the first failure once all have settled."""

    results = await asyncio.gather(*actions, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def _sync_meta(cache: GiftCardCache, limit: int) -> dict[str, Any]:
    last_reconciled_at = cache.get_last_reconciled_at()
    return {
        "lastReconciledAt": last_reconciled_at.isoformat() if last_reconciled_at else None,
        "discrepancies": [item.as_dict() for item in cache.list_discrepancies(limit)],
    }


@router.get("")
async def gift_card_overview(
    type: GiftCardType | None = Query(default=None),
    state: GiftCardState | None = Query(default=None),
    customer_id: str | None = Query(default=None, alias="customerId"),
    activity_card_id: str | None = Query(default=None, alias="activityCardId"),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=25, ge=1, le=200),
    service: GiftCardService = Depends(get_gift_card_service),
    cache: GiftCardCache = Depends(get_gift_card_cache),
) -> dict[str, Any]:
    cards_page, activity_page, location_id = await _perform(
        _gather(
            service.list_gift_cards(
                type=type.value if type else None,
                state=state.value if state else None,
                customer_id=customer_id,
                limit=limit,
                cursor=cursor,
            ),
            service.list_gift_card_activities(
                gift_card_id=activity_card_id or customer_id,
                limit=limit,
            ),
            service.resolve_location_id(),
        ),
        failure_message="Unable to load gift cards",
    )
    return {
        "giftCards": [card.as_dict() for card in cards_page.cards],
        "cardsCursor": cards_page.next_cursor,
        "activities": [activity.as_dict() for activity in activity_page.activities],
        "activitiesCursor": activity_page.next_cursor,
        "stats": build_gift_card_stats(cards_page.cards),
        "locationId": location_id,
        "filters": {
            "type": type.value if type else "",
            "state": state.value if state else "",
            "customerId": customer_id or "",
            "activityCardId": activity_card_id or "",
        },
        "filterChoices": {
            "types": [item.value for item in GiftCardType],
            "states": [item.value for item in GiftCardState],
        },
        "syncMeta": _sync_meta(cache, SYNC_META_DISCREPANCIES),
    }


@router.post("/issue", status_code=status.HTTP_201_CREATED)
async def issue_gift_card(
    payload: IssueGiftCardRequest,
    service: GiftCardService = Depends(get_gift_card_service),
    cache: GiftCardCache = Depends(get_gift_card_cache),
) -> dict[str, Any]:
    failure = "Unable to issue gift card"
    location_id = await _perform(service.resolve_location_id(), failure_message=failure)
    card = await _perform(
        service.issue_gift_card(
            location_id=location_id,
            type=payload.type.value,
            amount_cents=cents_from_amount(payload.amount),
            currency=payload.currency or "USD",
            customer_id=payload.customer_id or None,
            reference_id=payload.reference_id or None,
        ),
        failure_message=failure,
    )
    cache.upsert_card(card, source=SyncSource.MANUAL)
    return {"status": "issued", "card": card.as_dict()}


@router.post("/load")
async def load_gift_card(
    payload: LoadGiftCardRequest,
    service: GiftCardService = Depends(get_gift_card_service),
) -> dict[str, Any]:
    failure = "Unable to load gift card"
    location_id = await _perform(service.resolve_location_id(), failure_message=failure)
    activity = await _perform(
        service.load_gift_card_balance(
            gift_card_id=payload.gift_card_id,
            amount_cents=cents_from_amount(payload.amount),
            currency=payload.currency or "USD",
            reference_id=payload.reference_id or None,
            location_id=location_id,
        ),
        failure_message=failure,
    )
    return {"status": "loaded", "activity": activity.as_dict()}


@router.get("/search")
async def search_gift_card(
    query: str = Query(default=""),
    service: GiftCardService = Depends(get_gift_card_service),
) -> dict[str, Any]:
    card = await _perform(service.search_gift_card(query), failure_message="Unable to search gift cards")
    return {"query": query.strip(), "card": card.as_dict() if card else None}


@router.get("/cached")
async def list_cached_gift_cards(
    customer_id: str | None = Query(default=None, alias="customerId"),
    cache: GiftCardCache = Depends(get_gift_card_cache),
) -> dict[str, Any]:
    entries = cache.list_cards_for_customer(customer_id) if customer_id else cache.list_cards()
    return {"cards": [entry.as_dict() for entry in sorted(entries, key=lambda entry: entry.id)]}


@router.get("/sync/status")
async def gift_card_sync_status(
    limit: int = Query(default=10, ge=0, le=50),
    cache: GiftCardCache = Depends(get_gift_card_cache),
    sync: GiftCardSyncCoordinator = Depends(get_gift_card_sync),
) -> dict[str, Any]:
    payload = _sync_meta(cache, limit)
    payload.update({"reconciling": sync.is_reconciling, "cachedCards": len(cache.list_cards())})
    return payload


@router.get("/sync/discrepancies")
async def list_gift_card_discrepancies(
    limit: int = Query(default=10, ge=0, le=50),
    cache: GiftCardCache = Depends(get_gift_card_cache),
) -> dict[str, Any]:
    return {"discrepancies": [item.as_dict() for item in cache.list_discrepancies(limit)]}


@router.post("/sync/reconcile")
async def trigger_gift_card_reconciliation(
    sync: GiftCardSyncCoordinator = Depends(get_gift_card_sync),
) -> dict[str, Any]:
    if sync.is_reconciling:
        return {"status": "skipped"}
    summary = await sync.reconcile()
    if summary is None:
        return {"status": "failed"}
    return {"status": "completed", "summary": summary.as_dict()}


@router.get("/{gift_card_id}/detail")
async def gift_card_detail(
    gift_card_id: str,
    service: GiftCardService = Depends(get_gift_card_service),
) -> dict[str, Any]:
    card, activity_page = await _perform(
        _gather(
            service.retrieve_gift_card(gift_card_id),
            service.list_gift_card_activities(gift_card_id=gift_card_id, limit=DETAIL_ACTIVITY_LIMIT),
        ),
        failure_message="Unable to load gift card detail",
    )
    return {"card": card.as_dict(), "activities": [activity.as_dict() for activity in activity_page.activities]}


@router.post("/{gift_card_id}/block")
async def block_gift_card(
    gift_card_id: str,
    payload: BlockGiftCardRequest,
    service: GiftCardService = Depends(get_gift_card_service),
) -> dict[str, bool]:
    failure = "Unable to block gift card"
    location_id = await _perform(service.resolve_location_id(), failure_message=failure)
    await _perform(
        service.block_gift_card(gift_card_id=gift_card_id, location_id=location_id, reason=payload.reason),
        failure_message=failure,
    )
    return {"success": True}


@router.post("/{gift_card_id}/unblock")
async def unblock_gift_card(
    gift_card_id: str,
    payload: BlockGiftCardRequest,
    service: GiftCardService = Depends(get_gift_card_service),
) -> dict[str, bool]:
    failure = "Unable to unblock gift card"
    location_id = await _perform(service.resolve_location_id(), failure_message=failure)
    await _perform(
        service.unblock_gift_card(gift_card_id=gift_card_id, location_id=location_id, reason=payload.reason),
        failure_message=failure,
    )
    return {"success": True}


@router.post("/{gift_card_id}/adjust")
async def adjust_gift_card(
    gift_card_id: str,
    payload: AdjustGiftCardRequest,
    service: GiftCardService = Depends(get_gift_card_service),
) -> dict[str, bool]:
    failure = "Unable to adjust card balance"
    location_id = await _perform(service.resolve_location_id(), failure_message=failure)
    await _perform(
        service.adjust_gift_card_balance(
            gift_card_id=gift_card_id,
            amount_cents=cents_from_amount(payload.amount),
            currency=payload.currency,
            location_id=location_id,
            reason=payload.reason,
        ),
        failure_message=failure,
    )
    return {"success": True}


@router.post("/{gift_card_id}/refresh")
async def refresh_gift_card(
    gift_card_id: str,
    sync: GiftCardSyncCoordinator = Depends(get_gift_card_sync),
) -> dict[str, Any]:
    entry = await _perform(
        sync.sync_card(gift_card_id, source=SyncSource.MANUAL),
        failure_message="Unable to refresh gift card",
    )
    return {"card": entry.as_dict() if entry else None}
