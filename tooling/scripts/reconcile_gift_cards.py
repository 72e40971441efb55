#!/usr/bin/env python3
"""Run one gift card reconciliation sweep for cron/CI workflows."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile the local gift card cache against Square")
    parser.add_argument(
        "--cache-path",
        type=Path,
        default=None,
        help="Override the gift card cache file (defaults to DATA_DIR/gift-cards.json).",
    )
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help="Exit with status 1 when the sweep fails or is skipped.",
    )
    return parser.parse_args()


async def _run_once(cache_path: Path | None) -> bool:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cashly_api.core.settings import settings  # type: ignore import-position
    from cashly_api.services.gift_cards import (  # type: ignore import-position
        GiftCardCache,
        GiftCardService,
        GiftCardSyncCoordinator,
    )
    from cashly_api.services.square import SquareGiftCardClient  # type: ignore import-position

    client = SquareGiftCardClient.from_settings()
    try:
        with GiftCardCache(
            cache_path or settings.gift_card_cache_path,
            max_discrepancies=settings.gift_card_discrepancy_limit,
        ) as cache:
            coordinator = GiftCardSyncCoordinator(cache, GiftCardService(client))
            summary = await coordinator.reconcile()
    finally:
        await client.aclose()

    if summary is None:
        return False
    logger.info("Gift card reconciliation sweep complete", **summary.as_dict())
    return True


def main() -> int:
    args = parse_args()
    success = asyncio.run(_run_once(args.cache_path))
    if not success and args.fail_on_error:
        logger.error("Gift card reconciliation did not complete")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
