"""Async HTTP client for the upstream generateContent endpoint."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from .errors import UpstreamError
from .protocol import extract_error_message

logger = logging.getLogger(__name__)


class GenerativeClient:
    """Thin wrapper around :class:`httpx.AsyncClient` for one endpoint.

    Every call makes exactly one request. Non-2xx responses, transport errors
    and undecodable bodies all surface as :class:`UpstreamError`; retrying is
    left to the caller.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str],
        *,
        timeout: float = 60.0,
        unknown_error: str = "Unknown error",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        endpoint : str
            Full generateContent URL, without the key.
        api_key : str | None
            Sent as the ``key`` query parameter when set.
        timeout : float
            Seconds before a request is abandoned.
        unknown_error : str
            Message used when a failure body carries no ``error.message``.
        transport : httpx.AsyncBaseTransport | None
            Custom transport (tests use :class:`httpx.MockTransport`).
        """
        self.endpoint = endpoint
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout)
        self._unknown_error = unknown_error
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _http(self) -> httpx.AsyncClient:
        # Created on first use so it binds to the running loop; kept for
        # connection reuse until aclose().
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def generate_content(self, contents: List[Dict[str, Any]]) -> Dict[str, Any]:
        """POST the encoded conversation and return the decoded JSON body."""
        params = {"key": self._api_key} if self._api_key else None
        body = {"contents": contents}
        logger.debug("Sending request body upstream: %s", json.dumps(body, ensure_ascii=False))

        try:
            response = await self._http().post(self.endpoint, params=params, json=body)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream request failed: {e}") from e

        if not response.is_success:
            raise UpstreamError(self._failure_message(response), status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Upstream returned an undecodable body: {e}") from e

    def _failure_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return self._unknown_error
        return extract_error_message(data, self._unknown_error)


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any], strings: Optional[Dict[str, Any]] = None) -> GenerativeClient:
    """Create a GenerativeClient from a config dict (e.g., loaded YAML)."""
    up_cfg = (cfg or {}).get("upstream", {}) if isinstance(cfg, dict) else {}
    endpoint = up_cfg.get("endpoint")
    if not endpoint:
        raise ValueError("No upstream.endpoint configured.")

    env_var = up_cfg.get("api_key_env", "GEMINI_API_KEY")
    api_key = os.getenv(env_var)
    if not api_key:
        raise ValueError(
            f"API key not found. Set the '{env_var}' environment variable "
            "before starting the server."
        )

    unknown_error = ((strings or {}).get("error_messages") or {}).get("unknown_error", "Unknown error")
    return GenerativeClient(
        endpoint,
        api_key,
        timeout=float(up_cfg.get("timeout", 60.0)),
        unknown_error=unknown_error,
    )
