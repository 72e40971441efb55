from __future__ import annotations

import json

import httpx
import pytest

from cashly_api.core.settings import Settings
from cashly_api.services.square import SquareApiError, SquareGiftCardClient


class RecordingTransport:
    def __init__(self, responder) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _client(recorder: RecordingTransport) -> SquareGiftCardClient:
    return SquareGiftCardClient(
        access_token="sq-token",
        base_url="https://connect.squareupsandbox.com/",
        api_version="2024-07-17",
        transport=recorder.transport,
    )


@pytest.mark.asyncio
async def test_client_sends_square_headers_and_compacts_params():
    recorder = RecordingTransport(lambda request: httpx.Response(200, json={"gift_cards": [], "cursor": "abc"}))
    client = _client(recorder)

    result = await client.list_gift_cards(state="ACTIVE", limit=25, cursor=None, type="")
    await client.aclose()

    assert result == {"gift_cards": [], "cursor": "abc"}
    [request] = recorder.requests
    assert request.method == "GET"
    assert request.url.path == "/v2/gift-cards"
    assert dict(request.url.params) == {"state": "ACTIVE", "limit": "25"}
    assert request.headers["Authorization"] == "Bearer sq-token"
    assert request.headers["Square-Version"] == "2024-07-17"


@pytest.mark.asyncio
async def test_client_posts_json_bodies():
    recorder = RecordingTransport(lambda request: httpx.Response(200, json={"gift_card": {"id": "gftc:1"}}))
    client = _client(recorder)

    await client.link_customer_to_gift_card("gftc:1", "CUST-9")
    await client.retrieve_gift_card_from_gan("7783 0000 0000 0001")
    await client.aclose()

    link, from_gan = recorder.requests
    assert link.url.path == "/v2/gift-cards/gftc:1/link-customer"
    assert json.loads(link.content) == {"customer_id": "CUST-9"}
    assert from_gan.method == "POST"
    assert from_gan.url.path == "/v2/gift-cards/from-gan"
    assert json.loads(from_gan.content) == {"gan": "7783 0000 0000 0001"}


@pytest.mark.asyncio
async def test_client_raises_square_api_error_with_error_list():
    errors = [{"category": "INVALID_REQUEST_ERROR", "code": "NOT_FOUND", "detail": "Gift card not found."}]
    recorder = RecordingTransport(lambda request: httpx.Response(404, json={"errors": errors}))
    client = _client(recorder)

    with pytest.raises(SquareApiError) as exc_info:
        await client.retrieve_gift_card("gftc:missing")
    await client.aclose()

    assert exc_info.value.status_code == 404
    assert exc_info.value.errors == errors
    assert exc_info.value.path == "/v2/gift-cards/gftc%3Amissing"
    assert "NOT_FOUND" in str(exc_info.value)


@pytest.mark.asyncio
async def test_client_tolerates_non_json_error_body():
    recorder = RecordingTransport(lambda request: httpx.Response(502, text="Bad gateway"))
    client = _client(recorder)

    with pytest.raises(SquareApiError) as exc_info:
        await client.retrieve_location("main")
    await client.aclose()

    assert exc_info.value.status_code == 502
    assert exc_info.value.errors == []


@pytest.mark.asyncio
async def test_client_encodes_ids_as_single_path_segments():
    recorder = RecordingTransport(lambda request: httpx.Response(200, json={}))
    client = _client(recorder)

    await client.retrieve_gift_card("abc?limit=1#x")
    await client.retrieve_gift_card("../locations/main")
    await client.link_customer_to_gift_card("gftc/1", "CUST-1")
    await client.retrieve_location("main/../x")
    await client.aclose()

    assert [request.url.raw_path for request in recorder.requests] == [
        b"/v2/gift-cards/abc%3Flimit%3D1%23x",
        b"/v2/gift-cards/..%2Flocations%2Fmain",
        b"/v2/gift-cards/gftc%2F1/link-customer",
        b"/v2/locations/main%2F..%2Fx",
    ]
    assert all(request.url.query == b"" for request in recorder.requests)


def test_from_settings_uses_environment_base_url():
    config = Settings(square_access_token="prod-token", square_environment="production")

    assert config.square_api_base_url == "https://connect.squareup.com"
    assert Settings(square_base_url="http://localhost:9000").square_api_base_url == "http://localhost:9000"
    client = SquareGiftCardClient.from_settings(config)
    assert client._client.base_url.host == "connect.squareup.com"
    assert client._client.headers["Authorization"] == "Bearer prod-token"
