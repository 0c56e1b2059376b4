"""Tests for ConfigFetcher (remote via respx, local files)."""

from __future__ import annotations

import codecs
from pathlib import Path

import httpx
import pytest
import respx

from vodhub.domain.errors import FormatError, NetworkError
from vodhub.infrastructure.config_source.fetcher import ConfigFetcher, decode_document
from vodhub.infrastructure.http.invoker import ResilientInvoker

CONFIG_URL = "https://cfg.example.com/sites.json"


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture()
async def invoker() -> ResilientInvoker:
    async with ResilientInvoker(max_retries=2, sleep=_no_sleep, name="config") as inv:
        yield inv


class TestDecodeDocument:
    def test_strips_utf8_bom(self) -> None:
        assert decode_document(codecs.BOM_UTF8 + b'{"sites": []}') == '{"sites": []}'

    def test_declared_charset(self) -> None:
        assert decode_document("é".encode("latin-1"), "latin-1") == "é"

    def test_unknown_charset_falls_back_to_utf8(self) -> None:
        assert decode_document("ü".encode(), "no-such-codec") == "ü"

    def test_nul_bytes_rejected(self) -> None:
        with pytest.raises(FormatError):
            decode_document(b"PK\x03\x04\x00\x00")

    def test_undecodable_rejected(self) -> None:
        with pytest.raises(FormatError):
            decode_document(b"\xff\xfe\xfa")


class TestRemoteFetch:
    @respx.mock
    async def test_returns_document_text(self, invoker: ResilientInvoker) -> None:
        respx.get(CONFIG_URL).mock(
            return_value=httpx.Response(200, text='{"sites": []}')
        )
        fetcher = ConfigFetcher(invoker)
        assert await fetcher.fetch(CONFIG_URL) == '{"sites": []}'

    @respx.mock
    async def test_transient_errors_retried(self, invoker: ResilientInvoker) -> None:
        route = respx.get(CONFIG_URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.ConnectError("reset"),
                httpx.Response(200, text="{}"),
            ]
        )
        assert await ConfigFetcher(invoker).fetch(CONFIG_URL) == "{}"
        assert route.call_count == 3

    @respx.mock
    async def test_error_status_becomes_network_error(
        self, invoker: ResilientInvoker
    ) -> None:
        respx.get(CONFIG_URL).mock(return_value=httpx.Response(404))
        with pytest.raises(NetworkError, match="404"):
            await ConfigFetcher(invoker).fetch(CONFIG_URL)

    @respx.mock
    async def test_unreachable_after_retries(self, invoker: ResilientInvoker) -> None:
        route = respx.get(CONFIG_URL).mock(side_effect=httpx.ConnectError("down"))
        with pytest.raises(NetworkError):
            await ConfigFetcher(invoker).fetch(CONFIG_URL)
        assert route.call_count == 3

    @respx.mock
    async def test_timeout_becomes_network_error(self, invoker: ResilientInvoker) -> None:
        respx.get(CONFIG_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(NetworkError, match="timed out"):
            await ConfigFetcher(invoker).fetch(CONFIG_URL)

    @respx.mock
    async def test_binary_content_type_rejected(self, invoker: ResilientInvoker) -> None:
        respx.get(CONFIG_URL).mock(
            return_value=httpx.Response(
                200, content=b"\x89PNG", headers={"content-type": "image/png"}
            )
        )
        with pytest.raises(FormatError):
            await ConfigFetcher(invoker).fetch(CONFIG_URL)


class TestLocalFetch:
    async def test_reads_plain_path(self, tmp_path: Path, mock_invoker) -> None:
        path = tmp_path / "sites.json"
        path.write_text('{"sites": []}', encoding="utf-8")
        assert await ConfigFetcher(mock_invoker).fetch(str(path)) == '{"sites": []}'
        mock_invoker.invoke.assert_not_awaited()

    async def test_reads_file_url(self, tmp_path: Path, mock_invoker) -> None:
        path = tmp_path / "sites.json"
        path.write_text("{}", encoding="utf-8")
        assert await ConfigFetcher(mock_invoker).fetch(path.as_uri()) == "{}"

    async def test_missing_file_is_network_error(self, tmp_path: Path, mock_invoker) -> None:
        with pytest.raises(NetworkError):
            await ConfigFetcher(mock_invoker).fetch(str(tmp_path / "missing.json"))
