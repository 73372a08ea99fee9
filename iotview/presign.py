"""Client for the credential presigning authority.

The authority signs a short-lived (15 minute) MQTT-over-WebSocket URL so this
process never holds long-lived broker credentials.  One URL is requested per
connection attempt and handed straight to the transport; it is never cached.

Contract::

    GET <endpoint_url>?clientId=<id>
    200 {"url": "wss://…/mqtt?X-Amz-…", "clientId": "<id>"}
    5xx {"error": "<message>"}
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlsplit, urlunsplit
from urllib.request import Request, urlopen

from .errors import PresignError

LOGGER = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_S = 10.0
_MAX_ERROR_BODY_BYTES = 4096


def new_client_id(prefix: str = "web-") -> str:
    return f"{prefix}{uuid.uuid4()}"


@dataclass(frozen=True, slots=True)
class PresignedUrl:
    """A signed, single-use connection URL and the client id it was signed for."""

    url: str
    client_id: str

    def __repr__(self) -> str:
        # Keep the signature out of logs and tracebacks.
        parts = urlsplit(self.url)
        redacted = f"{parts.scheme}://{parts.netloc}{parts.path}?…"
        return f"PresignedUrl(url={redacted!r}, client_id={self.client_id!r})"


def _with_query(endpoint_url: str, params: dict[str, str]) -> str:
    parts = urlsplit(endpoint_url)
    query = "&".join(q for q in (parts.query, urlencode(params)) if q)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _error_message(body: bytes, fallback: str) -> str:
    try:
        payload = json.loads(body.decode("utf-8", errors="replace"))
    except ValueError:
        return fallback
    if isinstance(payload, dict) and isinstance(payload.get("error"), str) and payload["error"]:
        return payload["error"]
    return fallback


def parse_presign_response(payload: Any, requested_client_id: str) -> PresignedUrl:
    """Validate a decoded authority response; never returns a partial URL."""
    if not isinstance(payload, dict):
        raise PresignError("presign failed: response is not a JSON object")
    url = payload.get("url")
    if not isinstance(url, str) or not url:
        message = payload.get("error")
        raise PresignError(message if isinstance(message, str) and message else "presign failed")
    scheme = urlsplit(url).scheme
    if scheme not in ("ws", "wss"):
        raise PresignError(f"presign failed: unexpected URL scheme {scheme!r}")
    client_id = payload.get("clientId")
    if not isinstance(client_id, str) or not client_id:
        client_id = requested_client_id
    return PresignedUrl(url=url, client_id=client_id)


class PresignClient:
    """Fetch presigned connection URLs from the authority over HTTP."""

    def __init__(self, endpoint_url: str, timeout_s: float = _DEFAULT_TIMEOUT_S) -> None:
        self._endpoint_url = endpoint_url
        self._timeout_s = timeout_s

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    def _fetch(self, client_id: str) -> PresignedUrl:
        url = _with_query(self._endpoint_url, {"clientId": client_id})
        req = Request(
            url,
            headers={"Accept": "application/json", "Cache-Control": "no-store"},
        )
        try:
            with urlopen(req, timeout=self._timeout_s) as resp:  # noqa: S310
                body = resp.read()
        except HTTPError as exc:
            body = exc.read(_MAX_ERROR_BODY_BYTES) if exc.fp is not None else b""
            message = _error_message(body, f"presign failed: HTTP {exc.code}")
            raise PresignError(message, status_code=exc.code) from exc
        except (URLError, OSError) as exc:
            raise PresignError(f"presign failed: {exc}") from exc

        try:
            payload = json.loads(body.decode("utf-8", errors="replace"))
        except ValueError as exc:
            raise PresignError("presign failed: response is not valid JSON") from exc
        return parse_presign_response(payload, client_id)

    async def presign(self, client_id: str) -> PresignedUrl:
        LOGGER.info("Requesting presigned URL for client %s", client_id)
        presigned = await asyncio.to_thread(self._fetch, client_id)
        LOGGER.debug("Received %r", presigned)
        return presigned
