"""Tests for the OCR API client, provider fallback and result parsing."""

import io
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest
from PIL import Image

from docscan.errors import ConfigError, OCRError, OCRTimeoutError
from docscan.ocr.eden_client import EdenAIClient, OCRService
from docscan.ocr.local_engine import LocalOCREngine
from docscan.ocr.results import (
    OCRResult,
    average_block_confidence,
    parse_provider_result,
    provider_error,
)
from docscan.utils.config import OCRConfig


def _config(**overrides) -> OCRConfig:
    values = {"api_key": "eden-key", "poll_interval_seconds": 0, "max_poll_attempts": 3}
    values.update(overrides)
    return OCRConfig(**values)


def _client(handler, config: OCRConfig | None = None) -> EdenAIClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return EdenAIClient(config or _config(), client=http, sleep=lambda _: None)


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buf, format="PNG")
    return buf.getvalue()


class TestParseProviderResult:
    """Tests for normalizing provider results."""

    def test_data_text(self) -> None:
        result = parse_provider_result(
            "google",
            {
                "data": {
                    "text": "Invoice 42",
                    "entities": [{"value": "42", "label": "number"}],
                },
                "confidence": 0.93,
            },
        )
        assert result.text == "Invoice 42"
        assert result.confidence == 0.93
        assert result.provider == "google"
        assert result.entities == [
            {"text": "42", "description": "number", "confidence": 0.5}
        ]

    def test_joined_texts(self) -> None:
        result = parse_provider_result(
            "mistral", {"data": {"texts": [{"text": "Page one"}, "Page two"]}}
        )
        assert result.text == "Page one\n\nPage two"

    def test_raw_text_fallback(self) -> None:
        result = parse_provider_result("microsoft", {"raw_text": "Receipt"})
        assert result.text == "Receipt"
        assert result.confidence == 0.8

    def test_error_ignores_data(self) -> None:
        result = parse_provider_result(
            "google", {"error": "quota", "data": {"text": "stale"}, "text": ""}
        )
        assert result.text == ""

    def test_block_confidence_average(self) -> None:
        pages = [{"blocks": [{"confidence": 0.9}, {"confidence": 0.7}]}]
        assert average_block_confidence(pages) == pytest.approx(0.8)
        result = parse_provider_result("google", {"text": "x", "pages": pages})
        assert result.confidence == pytest.approx(0.8)

    def test_no_blocks(self) -> None:
        assert average_block_confidence([]) is None
        assert average_block_confidence([{"blocks": []}]) is None

    def test_provider_error(self) -> None:
        assert provider_error({"error": {"message": "bad key"}}) == "bad key"
        assert provider_error({"status": "fail"}) == "provider status fail"
        assert provider_error({"status": "success"}) is None


class TestEdenAIClient:
    """Tests for the remote OCR endpoints."""

    def test_ocr_image_multipart(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.content
            return httpx.Response(200, json={"google": {"text": "Hello"}})

        result = _client(handler).ocr_image(b"img", "a.png", "image/png", "google")

        assert result.text == "Hello"
        assert seen["url"] == "https://api.edenai.run/v2/ocr/ocr"
        assert seen["auth"] == "Bearer eden-key"
        assert b'name="providers"' in seen["body"]
        assert b"google" in seen["body"]

    def test_ocr_image_http_error(self) -> None:
        client = _client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(OCRError, match="500"):
            client.ocr_image(b"img", "a.png", "image/png", "google")

    def test_ocr_image_empty_text(self) -> None:
        client = _client(
            lambda request: httpx.Response(200, json={"google": {"text": ""}})
        )
        with pytest.raises(OCRError, match="no text"):
            client.ocr_image(b"img", "a.png", "image/png", "google")

    def test_async_job_polls_until_finished(self) -> None:
        polls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                body = json.loads(request.content)
                assert body["file_url"] == "https://signed/doc.pdf"
                assert body["providers"] == "mistral"
                return httpx.Response(200, json={"public_id": "job-1"})
            assert request.url.path.endswith("/ocr/ocr_async/job-1")
            polls["count"] += 1
            if polls["count"] < 2:
                return httpx.Response(200, json={"status": "processing"})
            return httpx.Response(
                200,
                json={
                    "status": "finished",
                    "results": {"mistral": {"raw_text": "Contract text"}},
                },
            )

        result = _client(handler).ocr_document("https://signed/doc.pdf", "mistral")
        assert result.text == "Contract text"
        assert polls["count"] == 2

    def test_polling_survives_errors(self) -> None:
        polls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            polls["count"] += 1
            if polls["count"] == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"status": "finished", "results": {}})

        body = _client(handler).wait_for_job("job-2")
        assert body["status"] == "finished"

    def test_failed_job(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                200, json={"status": "failed", "error": "corrupt file"}
            )
        )
        with pytest.raises(OCRError, match="corrupt file"):
            client.wait_for_job("job-3")

    def test_polling_timeout(self) -> None:
        sleeps: list[float] = []
        http = httpx.Client(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"status": "processing"})
            )
        )
        client = EdenAIClient(
            _config(poll_interval_seconds=10), client=http, sleep=sleeps.append
        )
        with pytest.raises(OCRTimeoutError):
            client.wait_for_job("job-4")
        assert sleeps == [10, 10, 10]

    def test_missing_public_id(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(OCRError, match="No job ID"):
            client.submit_async("https://signed/doc.pdf", "mistral")

    def test_ocr_image_html_body(self) -> None:
        client = _client(
            lambda request: httpx.Response(200, text="<html>Bad gateway</html>")
        )
        with pytest.raises(OCRError, match="non-JSON"):
            client.ocr_image(b"img", "a.png", "image/png", "google")

    def test_submit_html_body(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html></html>"))
        with pytest.raises(OCRError, match="non-JSON"):
            client.submit_async("https://signed/doc.pdf", "mistral")

    def test_polling_skips_undecodable_body(self) -> None:
        polls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            polls["count"] += 1
            if polls["count"] == 1:
                return httpx.Response(200, text="<html>upstream reset</html>")
            return httpx.Response(200, json={"status": "finished", "results": {}})

        body = _client(handler).wait_for_job("job-5")
        assert body["status"] == "finished"
        assert polls["count"] == 2


class TestOCRService:
    """Tests for sequential provider fallback."""

    def test_image_providers_in_order(self) -> None:
        client = MagicMock()
        client.ocr_image.side_effect = [
            OCRError("google down"),
            OCRResult(text="Found", confidence=0.9, provider="microsoft"),
        ]
        service = OCRService(_config(), client=client)

        result = service.extract(b"img", "a.png", "image/png")

        assert result.provider == "microsoft"
        providers = [call.args[3] for call in client.ocr_image.call_args_list]
        assert providers == ["google", "microsoft"]

    def test_html_response_moves_to_next_provider(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if b"microsoft" in request.content:
                return httpx.Response(200, json={"microsoft": {"text": "Receipt"}})
            return httpx.Response(200, text="<html>Bad gateway</html>")

        service = OCRService(_config(), client=_client(handler))

        result = service.extract(b"img", "a.png", "image/png")
        assert result.provider == "microsoft"
        assert result.text == "Receipt"

    def test_stops_at_first_success(self) -> None:
        client = MagicMock()
        client.ocr_image.return_value = OCRResult("Text", 0.9, "google")
        service = OCRService(_config(), client=client)

        service.extract(b"img", "a.png", "image/png")
        assert client.ocr_image.call_count == 1

    def test_pdf_uses_async_with_url(self) -> None:
        client = MagicMock()
        client.ocr_document.return_value = OCRResult("Pdf text", 0.8, "mistral")
        service = OCRService(_config(), client=client)

        result = service.extract(
            b"%PDF", "a.pdf", "application/pdf", file_url="https://signed"
        )
        assert result.text == "Pdf text"
        client.ocr_document.assert_called_once_with("https://signed", "mistral")
        client.ocr_image.assert_not_called()

    def test_all_providers_fail(self) -> None:
        client = MagicMock()
        client.ocr_image.side_effect = OCRError("nope")
        service = OCRService(_config(), client=client)

        with pytest.raises(OCRError, match="google: nope; microsoft: nope"):
            service.extract(b"img", "a.png", "image/png")

    def test_local_fallback_after_remote_failures(self) -> None:
        client = MagicMock()
        client.ocr_image.side_effect = OCRError("nope")
        local = MagicMock()
        local.extract.return_value = OCRResult("Local text", 0.7, "tesseract")
        service = OCRService(_config(), client=client, local_engine=local)

        result = service.extract(b"img", "a.png", "image/png")
        assert result.provider == "tesseract"

    def test_no_key_and_no_local_engine(self) -> None:
        service = OCRService(_config(api_key=""))
        with pytest.raises(ConfigError):
            service.extract(b"img", "a.png", "image/png")

    def test_providers_for(self) -> None:
        service = OCRService(_config(), client=MagicMock())
        assert service.providers_for("application/pdf") == ["mistral", "google"]
        assert service.providers_for("image/jpeg") == ["google", "microsoft"]


class TestLocalOCREngine:
    """Tests for the Tesseract last-resort engine."""

    @patch("docscan.ocr.local_engine.pytesseract.image_to_data")
    def test_extract_groups_lines(self, mock_image_to_data: MagicMock) -> None:
        mock_image_to_data.return_value = {
            "text": ["Hello", "World", "", "Total"],
            "conf": [90, 80, -1, 70],
            "block_num": [1, 1, 1, 2],
            "line_num": [1, 1, 2, 1],
        }
        result = LocalOCREngine().extract(_png_bytes(), "image/png")

        assert result.text == "Hello World\nTotal"
        assert result.provider == "tesseract"
        assert result.confidence == pytest.approx(0.8)

    @patch("docscan.ocr.local_engine.pytesseract.image_to_data")
    def test_extract_empty_page(self, mock_image_to_data: MagicMock) -> None:
        mock_image_to_data.return_value = {
            "text": [],
            "conf": [],
            "block_num": [],
            "line_num": [],
        }
        result = LocalOCREngine().extract(_png_bytes(), "image/png")
        assert result.text == ""
        assert result.confidence == 0.0

    @patch("docscan.ocr.local_engine.convert_from_bytes")
    def test_pdf_pages_rendered(self, mock_convert: MagicMock) -> None:
        mock_convert.side_effect = ValueError("broken pdf")
        with pytest.raises(RuntimeError, match="Could not load"):
            LocalOCREngine(dpi=150).extract(b"%PDF-1.4", "application/pdf")
        mock_convert.assert_called_once_with(b"%PDF-1.4", dpi=150)

    def test_undecodable_image(self) -> None:
        with pytest.raises(RuntimeError):
            LocalOCREngine().extract(b"not an image", "image/png")
