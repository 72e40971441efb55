import asyncio

import pytest

from cashly_api.workers import GiftCardReconciliationWorker


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met")


@pytest.mark.asyncio
async def test_worker_run_once_delegates_to_coordinator(cache, remote, coordinator, make_card):
    remote.cards["gftc:1"] = make_card("gftc:1", amount=75)
    worker = GiftCardReconciliationWorker(coordinator, interval_seconds=60)

    summary = await worker.run_once()

    assert summary is not None
    assert summary.missing_local == 1
    assert cache.get_card("gftc:1").balance.amount == 75


@pytest.mark.asyncio
async def test_worker_sweeps_eagerly_on_start_and_stops_cleanly(cache, remote, coordinator, make_card):
    remote.cards["gftc:1"] = make_card("gftc:1", amount=10)
    worker = GiftCardReconciliationWorker(coordinator, interval_seconds=3600)

    worker.start()
    assert worker.is_running
    await _wait_for(lambda: cache.get_last_reconciled_at() is not None)
    await worker.stop()

    assert not worker.is_running
    assert len(remote.list_calls) == 1


@pytest.mark.asyncio
async def test_worker_keeps_looping_after_failed_sweep(cache, remote, coordinator, sync_store):
    remote.list_error = RuntimeError("square unavailable")
    worker = GiftCardReconciliationWorker(coordinator, interval_seconds=1)
    worker.interval_seconds = 0.01

    worker.start()
    await _wait_for(lambda: sync_store.snapshot().reconciliation_totals.get("failed", 0) >= 2)
    remote.list_error = None
    await _wait_for(lambda: cache.get_last_reconciled_at() is not None)
    await worker.stop()

    assert sync_store.snapshot().reconciliation_totals["completed"] >= 1


@pytest.mark.asyncio
async def test_worker_start_is_idempotent(coordinator):
    worker = GiftCardReconciliationWorker(coordinator, interval_seconds=3600)

    worker.start()
    first_task = worker._task
    worker.start()

    assert worker._task is first_task
    await worker.stop()
    await worker.stop()
