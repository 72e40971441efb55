"""Worker driving the periodic gift card reconciliation sweep."""

from __future__ import annotations

import asyncio

from loguru import logger

from cashly_api.core.settings import settings
from cashly_api.services.gift_cards.sync import GiftCardSyncCoordinator, ReconciliationSummary


class GiftCardReconciliationWorker:
    """Runs one sweep at start-up, then one per interval until stopped."""

    def __init__(
        self,
        coordinator: GiftCardSyncCoordinator,
        *,
        interval_seconds: int | None = None,
    ) -> None:
        self._coordinator = coordinator
        self.interval_seconds = interval_seconds or settings.gift_card_reconcile_interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self._logger = logger.bind(worker="gift_card_reconciliation")

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        self._logger.info("Gift card reconciliation worker started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        self._logger.info("Gift card reconciliation worker stopped")

    async def run_once(self) -> ReconciliationSummary | None:
        return await self._coordinator.reconcile()

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - reconcile already logs its failures
                self._logger.exception("Gift card reconciliation iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
