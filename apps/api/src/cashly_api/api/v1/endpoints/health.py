from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from cashly_api.core.settings import settings
from cashly_api.observability.gift_cards import get_gift_card_sync_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    sync: Dict[str, object] = Field(default_factory=dict)


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


def _reconciler_component(request: Request) -> ComponentStatus:
    if settings.gift_card_sync_disabled:
        return ComponentStatus(status="disabled", detail="Gift card sync disabled via settings")

    worker = getattr(request.app.state, "gift_card_reconciliation_worker", None)
    cache = getattr(request.app.state, "gift_card_cache", None)
    if worker is None or cache is None:
        return ComponentStatus(status="starting", detail="Gift card reconciler not initialized")

    events = get_gift_card_sync_store().snapshot().reconciliation_events
    last_error_at = events.last_failure_at.isoformat() if events.last_failure_at else None
    last_reconciled_at = cache.get_last_reconciled_at()
    last_success_at = last_reconciled_at.isoformat() if last_reconciled_at else None

    if not getattr(worker, "is_running", False):
        return ComponentStatus(
            status="starting",
            detail="Gift card reconciliation worker not running",
            last_error_at=last_error_at,
            last_success_at=last_success_at,
        )
    if last_reconciled_at is None:
        return ComponentStatus(
            status="degraded",
            detail=events.last_failure_reason or "No reconciliation has completed yet",
            last_error_at=last_error_at,
        )
    stale_after = timedelta(seconds=settings.gift_card_reconcile_interval_seconds * 2)
    if datetime.now(timezone.utc) - last_reconciled_at > stale_after:
        return ComponentStatus(
            status="degraded",
            detail=f"Last reconciliation at {last_success_at} is stale",
            last_error_at=last_error_at,
            last_success_at=last_success_at,
        )
    return ComponentStatus(status="ready", last_error_at=last_error_at, last_success_at=last_success_at)


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    cache = getattr(request.app.state, "gift_card_cache", None)
    if cache is not None and cache.is_open:
        components["gift_card_cache"] = ComponentStatus(status="ready", detail=str(cache.path))
    else:
        components["gift_card_cache"] = ComponentStatus(status="error", detail="Gift card cache not open")
        status = "error"

    reconciler = _reconciler_component(request)
    components["gift_card_reconciler"] = reconciler
    if reconciler.status in {"degraded", "starting"} and status == "ready":
        status = "degraded"

    return ReadinessPayload(
        status=status,
        components=components,
        sync=get_gift_card_sync_store().snapshot().as_dict(),
    )
