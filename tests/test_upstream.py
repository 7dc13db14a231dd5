from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from relay_server.errors import ErrorKind, UpstreamError
from relay_server.upstream import GenerativeClient, create_from_config

ENDPOINT = "https://upstream.test/v1beta/models/m:generateContent"
CONTENTS = [{"role": "user", "parts": [{"text": "hello"}]}]


def _client(handler, api_key="secret") -> GenerativeClient:
    return GenerativeClient(ENDPOINT, api_key, transport=httpx.MockTransport(handler))


def test_posts_contents_with_key_param():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": []})

    data = asyncio.run(_client(handler).generate_content(CONTENTS))

    assert data == {"candidates": []}
    assert seen["url"].params["key"] == "secret"
    assert seen["url"].path == "/v1beta/models/m:generateContent"
    assert seen["body"] == {"contents": CONTENTS}


def test_non_2xx_carries_status_and_message():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "Quota exceeded"}})

    with pytest.raises(UpstreamError) as info:
        asyncio.run(_client(handler).generate_content(CONTENTS))

    assert info.value.upstream_status == 429
    assert info.value.message == "Quota exceeded"
    assert info.value.kind is ErrorKind.UPSTREAM


def test_503_is_overloaded_with_fallback_message():
    def handler(request):
        return httpx.Response(503, text="<html>busy</html>")

    with pytest.raises(UpstreamError) as info:
        asyncio.run(_client(handler).generate_content(CONTENTS))

    assert info.value.is_overloaded
    assert info.value.message == "Unknown error"


def test_transport_error_has_no_status():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError) as info:
        asyncio.run(_client(handler).generate_content(CONTENTS))

    assert info.value.upstream_status is None
    assert "connection refused" in info.value.message


def test_undecodable_success_body():
    def handler(request):
        return httpx.Response(200, text="not json")

    with pytest.raises(UpstreamError):
        asyncio.run(_client(handler).generate_content(CONTENTS))


def test_create_from_config_requires_key(monkeypatch):
    cfg = {"upstream": {"endpoint": ENDPOINT, "api_key_env": "GEMINI_API_KEY"}}
    with pytest.raises(ValueError):
        create_from_config(cfg)

    monkeypatch.setenv("GEMINI_API_KEY", "k")
    client = create_from_config(cfg, {"error_messages": {"unknown_error": "???"}})
    assert client.endpoint == ENDPOINT


def test_connection_pool_is_reused_until_closed():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"candidates": []})

    client = _client(handler)

    async def two_calls_then_close():
        await client.generate_content(CONTENTS)
        first = client._client
        await client.generate_content(CONTENTS)
        assert client._client is first
        await client.aclose()
        return first

    http = asyncio.run(two_calls_then_close())

    assert len(calls) == 2
    assert http.is_closed
    assert client._client is None


def test_aclose_without_requests_is_harmless():
    client = _client(lambda request: httpx.Response(200, json={}))
    asyncio.run(client.aclose())
    assert client._client is None
