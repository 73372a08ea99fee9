"""Tests for the presigning authority client."""

from __future__ import annotations

import io
import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urlsplit

import pytest

from iotview.errors import PresignError
from iotview.presign import (
    PresignClient,
    PresignedUrl,
    new_client_id,
    parse_presign_response,
)

ENDPOINT = "http://127.0.0.1:3000/api/iot-presign"
SIGNED = "wss://abc-ats.iot.eu-west-1.amazonaws.com/mqtt?X-Amz-Signature=secret"


def _response(body: bytes) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = body
    cm = MagicMock()
    cm.__enter__.return_value = resp
    cm.__exit__.return_value = False
    return cm


def _http_error(code: int, body: bytes) -> HTTPError:
    return HTTPError(ENDPOINT, code, "error", {}, io.BytesIO(body))


def test_new_client_id_prefix_and_uniqueness() -> None:
    a = new_client_id()
    b = new_client_id("viewer-")
    assert a.startswith("web-")
    assert b.startswith("viewer-")
    assert a != new_client_id()


class TestParsePresignResponse:
    def test_valid_response(self) -> None:
        result = parse_presign_response({"url": SIGNED, "clientId": "web-1"}, "web-1")
        assert result == PresignedUrl(url=SIGNED, client_id="web-1")

    def test_missing_client_id_falls_back_to_request(self) -> None:
        result = parse_presign_response({"url": SIGNED}, "web-req")
        assert result.client_id == "web-req"

    def test_error_body_becomes_message(self) -> None:
        with pytest.raises(PresignError, match="credentials expired"):
            parse_presign_response({"error": "credentials expired"}, "web-1")

    def test_missing_url_is_generic_failure(self) -> None:
        with pytest.raises(PresignError, match="presign failed"):
            parse_presign_response({}, "web-1")

    def test_non_object_rejected(self) -> None:
        with pytest.raises(PresignError):
            parse_presign_response(["wss://x"], "web-1")

    def test_non_websocket_scheme_rejected(self) -> None:
        with pytest.raises(PresignError, match="scheme"):
            parse_presign_response({"url": "https://example.com/mqtt"}, "web-1")


def test_repr_hides_signature() -> None:
    text = repr(PresignedUrl(url=SIGNED, client_id="web-1"))
    assert "secret" not in text
    assert "web-1" in text


class TestPresignClient:
    @pytest.mark.asyncio
    async def test_presign_requests_client_id_without_cache(self) -> None:
        client = PresignClient(ENDPOINT, timeout_s=2.0)
        body = json.dumps({"url": SIGNED, "clientId": "web-42"}).encode()
        with patch("iotview.presign.urlopen", return_value=_response(body)) as mock_open:
            result = await client.presign("web-42")

        assert result.url == SIGNED
        assert result.client_id == "web-42"
        req = mock_open.call_args[0][0]
        assert parse_qs(urlsplit(req.full_url).query) == {"clientId": ["web-42"]}
        assert req.get_header("Cache-control") == "no-store"
        assert mock_open.call_args.kwargs["timeout"] == 2.0

    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_message(self) -> None:
        client = PresignClient(ENDPOINT)
        err = _http_error(500, json.dumps({"error": "missing AWS credentials"}).encode())
        with patch("iotview.presign.urlopen", side_effect=err):
            with pytest.raises(PresignError, match="missing AWS credentials") as exc_info:
                await client.presign("web-1")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_http_error_without_json_body(self) -> None:
        client = PresignClient(ENDPOINT)
        with patch("iotview.presign.urlopen", side_effect=_http_error(502, b"<html>")):
            with pytest.raises(PresignError, match="HTTP 502"):
                await client.presign("web-1")

    @pytest.mark.asyncio
    async def test_unreachable_authority(self) -> None:
        client = PresignClient(ENDPOINT)
        with patch("iotview.presign.urlopen", side_effect=URLError("connection refused")):
            with pytest.raises(PresignError, match="connection refused"):
                await client.presign("web-1")

    @pytest.mark.asyncio
    async def test_invalid_json_body(self) -> None:
        client = PresignClient(ENDPOINT)
        with patch("iotview.presign.urlopen", return_value=_response(b"not json")):
            with pytest.raises(PresignError, match="not valid JSON"):
                await client.presign("web-1")

    def test_existing_query_is_preserved(self) -> None:
        client = PresignClient(f"{ENDPOINT}?region=eu-west-1")
        body = json.dumps({"url": SIGNED}).encode()
        with patch("iotview.presign.urlopen", return_value=_response(body)) as mock_open:
            client._fetch("web-7")
        query = parse_qs(urlsplit(mock_open.call_args[0][0].full_url).query)
        assert query == {"region": ["eu-west-1"], "clientId": ["web-7"]}
