from __future__ import annotations

import json

from cashly_api.services.gift_cards import (
    DiscrepancyDetails,
    DiscrepancyKind,
    GiftCard,
    GiftCardCache,
    Money,
    SyncSource,
)


def _card(card_id: str, amount: int = 0, state: str = "ACTIVE", customers: list[str] | None = None) -> GiftCard:
    return GiftCard(
        id=card_id,
        gan=f"7783-{card_id}",
        type="DIGITAL",
        state=state,
        balance=Money(amount=amount, currency="USD"),
        customer_ids=customers or [],
        created_at="2024-01-01T00:00:00Z",
    )


def test_upsert_is_idempotent_and_refreshes_cached_at(cache) -> None:
    card = _card("gftc:1", amount=500)

    first = cache.upsert_card(card)
    second = cache.upsert_card(card)

    assert len(cache.list_cards()) == 1
    stored = cache.get_card("gftc:1")
    assert stored is second
    assert stored.card == card
    assert second.cached_at > first.cached_at


def test_upsert_without_id_is_a_no_op(cache) -> None:
    assert cache.upsert_card(_card("")) is None
    assert cache.list_cards() == []


def test_upsert_records_provenance(cache) -> None:
    entry = cache.upsert_card(_card("gftc:2"), source=SyncSource.WEBHOOK, event_type="gift_card.updated")

    assert entry.last_sync_source is SyncSource.WEBHOOK
    assert entry.last_event_type == "gift_card.updated"
    assert cache.get_card("missing") is None


def test_stored_card_is_isolated_from_caller_mutation(cache) -> None:
    card = _card("gftc:3", customers=["cust-1"])
    cache.upsert_card(card)
    card.customer_ids.append("cust-2")

    assert cache.get_card("gftc:3").card.customer_ids == ["cust-1"]


def test_discrepancy_log_keeps_the_fifty_most_recent(cache) -> None:
    recorded = [
        cache.record_discrepancy(
            DiscrepancyDetails(gift_card_id=f"gftc:{index}", kind=DiscrepancyKind.BALANCE_MISMATCH)
        )
        for index in range(60)
    ]

    listed = cache.list_discrepancies(100)

    assert len(listed) == 50
    assert listed == list(reversed(recorded[10:]))
    assert listed[0].gift_card_id == "gftc:59"
    assert cache.list_discrepancies(3) == listed[:3]
    assert cache.list_discrepancies(0) == []


def test_customer_lookup_reads_the_local_snapshot(cache) -> None:
    cache.upsert_card(_card("gftc:a", customers=["cust-1"]))
    cache.upsert_card(_card("gftc:b", customers=["cust-2"]))
    cache.upsert_card(_card("gftc:c", customers=["cust-1", "cust-2"]))

    ids = sorted(entry.id for entry in cache.list_cards_for_customer("cust-1"))

    assert ids == ["gftc:a", "gftc:c"]


def test_snapshot_round_trips_into_a_fresh_instance(tmp_path, clock) -> None:
    path = tmp_path / "state" / "gift-cards.json"
    written = GiftCardCache(path, clock=clock).open()
    for index in range(3):
        written.upsert_card(_card(f"gftc:{index}", amount=index * 100), source=SyncSource.RECONCILER)
    written.record_discrepancy(
        DiscrepancyDetails(
            gift_card_id="gftc:1",
            kind=DiscrepancyKind.BALANCE_MISMATCH,
            cached_balance=50,
            square_balance=100,
            cached_state="ACTIVE",
            square_state="ACTIVE",
        )
    )
    written.record_discrepancy(DiscrepancyDetails(gift_card_id="gftc:9", kind=DiscrepancyKind.MISSING_SQUARE))
    written.mark_reconciled()
    written.close()

    reloaded = GiftCardCache(path).open()

    assert sorted(reloaded.list_cards(), key=lambda e: e.id) == sorted(written.list_cards(), key=lambda e: e.id)
    assert reloaded.list_discrepancies(50) == written.list_discrepancies(50)
    assert reloaded.get_last_reconciled_at() == written.get_last_reconciled_at()


def test_snapshot_file_is_readable_json(cache) -> None:
    cache.upsert_card(_card("gftc:json", amount=250))

    payload = json.loads(cache.path.read_text(encoding="utf-8"))

    assert set(payload) == {"cards", "discrepancies", "lastReconciledAt"}
    assert payload["cards"][0]["id"] == "gftc:json"
    assert payload["cards"][0]["balance"] == {"amount": 250, "currency": "USD"}
    assert payload["cards"][0]["lastSyncSource"] == "manual"
    assert payload["lastReconciledAt"] is None


def test_missing_snapshot_opens_empty(tmp_path) -> None:
    cache = GiftCardCache(tmp_path / "absent.json").open()

    assert cache.list_cards() == []
    assert cache.list_discrepancies() == []
    assert cache.get_last_reconciled_at() is None


def test_corrupt_snapshot_is_ignored(tmp_path) -> None:
    path = tmp_path / "gift-cards.json"
    path.write_text("{not json", encoding="utf-8")

    cache = GiftCardCache(path).open()

    assert cache.is_open
    assert cache.list_cards() == []
    assert cache.get_last_reconciled_at() is None


def test_persist_failure_keeps_in_memory_state(tmp_path) -> None:
    blocked = tmp_path / "snapshot"
    blocked.mkdir()
    cache = GiftCardCache(blocked).open()

    entry = cache.upsert_card(_card("gftc:mem", amount=10))

    assert entry is not None
    assert cache.get_card("gftc:mem").balance.amount == 10
    assert blocked.is_dir()
    assert list(tmp_path.glob(".snapshot.*.tmp")) == []
