from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..models.config_models import LOCAL_ONLY, ApiConfig

"""Upsert endpoint client.

POST {base}/stage1/text:upsert
    {"language": str, "tenant": str | null, "reason": str,
     "rows": [{"identifiercode": str, "output_value": str, "status": "active"}]}

Any 2xx is success (JSON body optional). Non-2xx responses, transport errors
and timeouts raise UpsertError. In LOCAL_ONLY mode every request fails fast
with LocalOnlyError, which the upload pipeline reads as "use the local queue".
"""

logger = logging.getLogger(__name__)

__all__ = [
    "UPSERT_PATH",
    "LocalOnlyError",
    "UpsertError",
    "UpsertClient",
    "build_payload",
]

UPSERT_PATH = "/stage1/text:upsert"


class LocalOnlyError(Exception):
    """Sentinel: no network configured."""


class UpsertError(Exception):
    pass


def build_payload(
    rows: list[dict[str, str]], language: str, tenant: str | None, reason: str
) -> dict[str, Any]:
    return {"language": language, "tenant": tenant, "reason": reason, "rows": rows}


class UpsertClient:
    """Async client for the upsert endpoint.

    Usage:
        async with UpsertClient(api_config, timeout=30) as client:
            await client.upsert(payload)
    """

    def __init__(
        self,
        config: ApiConfig,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def local_only(self) -> bool:
        return self.config.local_only

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> UpsertClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def upsert(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST one chunk. Returns the decoded JSON body ({} when there is none)."""
        if self.local_only:
            raise LocalOnlyError(LOCAL_ONLY)
        try:
            response = await self.client.post(UPSERT_PATH, json=payload)
        except httpx.HTTPError as e:
            raise UpsertError(f"API POST {UPSERT_PATH} failed: {e}") from e

        if not response.is_success:
            text = response.text
            raise UpsertError(
                f"API POST {UPSERT_PATH} {response.status_code}: {text or response.reason_phrase}"
            )
        try:
            body = response.json()
        except json.JSONDecodeError:
            return {}
        return body if isinstance(body, dict) else {}
