"""Async Square REST client covering the gift card and location endpoints."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence
from urllib.parse import quote

import httpx
from loguru import logger

from cashly_api.core.settings import Settings, settings as default_settings


class SquareApiError(RuntimeError):
    """Raised when Square answers with a non-success status."""

    def __init__(
        self,
        status_code: int,
        errors: Sequence[Mapping[str, Any]] | None = None,
        *,
        path: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.errors: list[Mapping[str, Any]] = list(errors or [])
        self.path = path
        codes = ", ".join(str(item.get("code")) for item in self.errors if item.get("code"))
        super().__init__(f"Square responded with {status_code} for {path or 'request'}" + (f" ({codes})" if codes else ""))


class GiftCardRemote(Protocol):
    """Subset of the Square API the gift card facade depends on."""

    async def create_gift_card(self, body: Mapping[str, Any]) -> Mapping[str, Any]: ...

    async def link_customer_to_gift_card(self, gift_card_id: str, customer_id: str) -> Mapping[str, Any]: ...

    async def list_gift_cards(
        self,
        *,
        type: str | None = None,
        state: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        customer_id: str | None = None,
    ) -> Mapping[str, Any]: ...

    async def retrieve_gift_card(self, gift_card_id: str) -> Mapping[str, Any]: ...

    async def retrieve_gift_card_from_gan(self, gan: str) -> Mapping[str, Any]: ...

    async def list_gift_card_activities(
        self,
        *,
        gift_card_id: str | None = None,
        type: str | None = None,
        location_id: str | None = None,
        begin_time: str | None = None,
        end_time: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        sort_order: str | None = None,
    ) -> Mapping[str, Any]: ...

    async def create_gift_card_activity(self, body: Mapping[str, Any]) -> Mapping[str, Any]: ...

    async def retrieve_location(self, location_id: str) -> Mapping[str, Any]: ...


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _compact(params: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None and value != ""}


class SquareGiftCardClient:
    """Thin ``httpx`` wrapper; every method returns the decoded JSON body."""

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str,
        api_version: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Square-Version": api_version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SquareGiftCardClient":
        config = config or default_settings
        if not config.square_access_token:
            logger.warning("Square access token is not configured; remote calls will be rejected")
        return cls(
            access_token=config.square_access_token,
            base_url=config.square_api_base_url,
            api_version=config.square_api_version,
            timeout_seconds=config.square_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> Mapping[str, Any]:
        response = await self._client.request(method, path, params=_compact(params or {}), json=json)
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if response.is_success:
            return body if isinstance(body, Mapping) else {}
        errors = body.get("errors") if isinstance(body, Mapping) else None
        logger.warning(
            "Square request failed",
            method=method,
            path=path,
            status_code=response.status_code,
            error_codes=[item.get("code") for item in errors or [] if isinstance(item, Mapping)],
        )
        raise SquareApiError(response.status_code, errors if isinstance(errors, list) else None, path=path)

    async def create_gift_card(self, body: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._request("POST", "/v2/gift-cards", json=body)

    async def link_customer_to_gift_card(self, gift_card_id: str, customer_id: str) -> Mapping[str, Any]:
        return await self._request(
            "POST",
            f"/v2/gift-cards/{_segment(gift_card_id)}/link-customer",
            json={"customer_id": customer_id},
        )

    async def list_gift_cards(
        self,
        *,
        type: str | None = None,
        state: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        customer_id: str | None = None,
    ) -> Mapping[str, Any]:
        params = {"type": type, "state": state, "limit": limit, "cursor": cursor, "customer_id": customer_id}
        return await self._request("GET", "/v2/gift-cards", params=params)

    async def retrieve_gift_card(self, gift_card_id: str) -> Mapping[str, Any]:
        return await self._request("GET", f"/v2/gift-cards/{_segment(gift_card_id)}")

    async def retrieve_gift_card_from_gan(self, gan: str) -> Mapping[str, Any]:
        return await self._request("POST", "/v2/gift-cards/from-gan", json={"gan": gan})

    async def list_gift_card_activities(
        self,
        *,
        gift_card_id: str | None = None,
        type: str | None = None,
        location_id: str | None = None,
        begin_time: str | None = None,
        end_time: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        sort_order: str | None = None,
    ) -> Mapping[str, Any]:
        params = {
            "gift_card_id": gift_card_id,
            "type": type,
            "location_id": location_id,
            "begin_time": begin_time,
            "end_time": end_time,
            "limit": limit,
            "cursor": cursor,
            "sort_order": sort_order,
        }
        return await self._request("GET", "/v2/gift-cards/activities", params=params)

    async def create_gift_card_activity(self, body: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._request("POST", "/v2/gift-cards/activities", json=body)

    async def retrieve_location(self, location_id: str) -> Mapping[str, Any]:
        return await self._request("GET", f"/v2/locations/{_segment(location_id)}")


__all__ = ["GiftCardRemote", "SquareApiError", "SquareGiftCardClient"]
