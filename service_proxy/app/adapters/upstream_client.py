"""
Async HTTP client for the upstream procurement registry.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from shared.logging import get_logger


@dataclass(frozen=True)
class Success:
    """2xx response with a parsed JSON body."""

    payload: Any
    status_code: int = 200

    outcome = "success"


@dataclass(frozen=True)
class UpstreamError:
    """Upstream answered with a non-2xx status."""

    status_code: int
    body: str

    outcome = "upstream_error"


@dataclass(frozen=True)
class TransportError:
    """Connection-level failure or an unparseable 2xx body."""

    reason: str

    outcome = "transport_error"


@dataclass(frozen=True)
class Timeout:
    """The upstream did not answer within the allotted time."""

    seconds: float

    outcome = "timeout"


UpstreamResult = Union[Success, UpstreamError, TransportError, Timeout]

MALFORMED_BODY = "malformed body"


class UpstreamClient:
    """
    Performs single GET attempts against the upstream registry.

    Every call resolves to exactly one ``UpstreamResult`` variant; nothing is
    raised for HTTP or network failures and no retry happens here.
    """

    def __init__(
        self,
        *,
        user_agent: str = "pncp-access-proxy/1.0",
        default_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.default_timeout = default_timeout
        self.logger = get_logger("proxy.upstream")
        self._client = httpx.AsyncClient(
            timeout=default_timeout,
            headers={
                "accept": "application/json",
                "user-agent": user_agent,
            },
            follow_redirects=True,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch(self, url: str, *, timeout: Optional[float] = None) -> UpstreamResult:
        """GET ``url`` and classify the outcome."""
        wait = self.default_timeout if timeout is None else timeout
        start = time.perf_counter()

        try:
            response = await self._client.get(url, timeout=wait)
        except httpx.TimeoutException as exc:
            self.logger.warning("Upstream request timed out", url=url, timeout=wait, error=str(exc))
            return Timeout(seconds=wait)
        except httpx.HTTPError as exc:
            reason = str(exc) or exc.__class__.__name__
            self.logger.error("Upstream transport failure", url=url, error=reason)
            return TransportError(reason=reason)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        if not response.is_success:
            self.logger.warning(
                "Upstream returned error status",
                url=url,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            return UpstreamError(status_code=response.status_code, body=response.text)

        if not response.content:
            self.logger.error("Upstream returned empty body", url=url, status_code=response.status_code)
            return TransportError(reason=MALFORMED_BODY)

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            self.logger.error(
                "Upstream returned malformed JSON",
                url=url,
                status_code=response.status_code,
                preview=response.text[:200],
            )
            return TransportError(reason=MALFORMED_BODY)

        self.logger.debug(
            "Upstream request succeeded",
            url=url,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        return Success(payload=payload, status_code=response.status_code)
