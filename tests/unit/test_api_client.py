from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from entryface.api.client import UPSERT_PATH, LocalOnlyError, UpsertClient, UpsertError, build_payload
from entryface.models.config_models import ApiConfig

PAYLOAD = build_payload(
    [{"identifiercode": "cat", "output_value": "cat", "status": "active"}],
    language="en",
    tenant=None,
    reason="demo",
)


def _run(client: UpsertClient, payload=PAYLOAD):
    async def go():
        async with client:
            return await client.upsert(payload)
    return asyncio.run(go())


def _client(handler, base: str = "http://api.test") -> UpsertClient:
    return UpsertClient(ApiConfig(base=base), timeout=5, transport=httpx.MockTransport(handler))


def test_build_payload_shape():
    assert PAYLOAD == {
        "language": "en",
        "tenant": None,
        "reason": "demo",
        "rows": [{"identifiercode": "cat", "output_value": "cat", "status": "active"}],
    }


def test_upsert_posts_json_to_upsert_path():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"upserted": 1})

    assert _run(_client(handler)) == {"upserted": 1}
    req = seen[0]
    assert req.method == "POST"
    assert str(req.url) == f"http://api.test{UPSERT_PATH}"
    assert json.loads(req.content) == PAYLOAD
    assert req.headers["content-type"] == "application/json"


def test_base_path_prefix_is_kept():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200)

    _run(_client(handler, base="http://api.test/v1"))
    assert seen == [f"/v1{UPSERT_PATH}"]


def test_empty_success_body_returns_empty_dict():
    assert _run(_client(lambda request: httpx.Response(204))) == {}


def test_non_dict_json_returns_empty_dict():
    assert _run(_client(lambda request: httpx.Response(200, json=[1, 2]))) == {}


def test_error_status_includes_body_text():
    with pytest.raises(UpsertError) as e:
        _run(_client(lambda request: httpx.Response(500, text="boom")))
    assert str(e.value) == f"API POST {UPSERT_PATH} 500: boom"


def test_error_status_without_body_uses_reason_phrase():
    with pytest.raises(UpsertError) as e:
        _run(_client(lambda request: httpx.Response(404)))
    assert str(e.value) == f"API POST {UPSERT_PATH} 404: Not Found"


def test_transport_error_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpsertError) as e:
        _run(_client(handler))
    assert "failed: connection refused" in str(e.value)
    assert isinstance(e.value.__cause__, httpx.ConnectError)


def test_timeout_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpsertError) as e:
        _run(_client(handler))
    assert isinstance(e.value.__cause__, httpx.TimeoutException)


def test_local_only_fails_fast():
    client = UpsertClient(ApiConfig())
    assert client.local_only is True
    with pytest.raises(LocalOnlyError):
        _run(client)


def test_close_is_idempotent():
    client = _client(lambda request: httpx.Response(200))

    async def go():
        _ = client.client
        await client.close()
        await client.close()

    asyncio.run(go())
    assert client._client is None
