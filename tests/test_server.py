from __future__ import annotations

import base64
import unittest
from unittest.mock import AsyncMock, patch

from starlette.testclient import TestClient

from form_pdf_capture.content.pdf_metadata import PdfMetadata
from form_pdf_capture.errors import NO_PDF_FOUND_MESSAGE
from form_pdf_capture.orchestrator import CaptureFailure, CaptureOutcome
from form_pdf_capture.scrape.records import CapturedDocument

from _fakes import PDF_BYTES


def _success() -> CaptureOutcome:
    return CaptureOutcome(
        document=CapturedDocument(data=PDF_BYTES, strategy="response_event"),
        filename="48359566-2025-12-15-2025-12-15T10-20-30-123Z-aHR0cHM6Ly.pdf",
        metadata=PdfMetadata(rut="48359566", issue_date="2025-12-15"),
    )


class TestHttpRoutes(unittest.TestCase):
    def setUp(self) -> None:
        from form_pdf_capture.server import build_http_app

        self.client = TestClient(build_http_app())

    def test_missing_url(self) -> None:
        for path in ("/download-pdf", "/download-pdf?url="):
            resp = self.client.get(path)
            self.assertEqual(resp.status_code, 400)
            self.assertEqual(
                resp.json(),
                {
                    "error": "Missing required parameter: url",
                    "message": "Please provide a URL query parameter",
                },
            )

    def test_invalid_url(self) -> None:
        run_capture = AsyncMock()
        with patch("form_pdf_capture.server.run_capture", run_capture):
            for value in ("not-a-url", "ftp://example.com/a.pdf"):
                resp = self.client.get("/download-pdf", params={"url": value})
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(
                    resp.json(),
                    {"error": "Invalid URL format", "message": "Please provide a valid URL"},
                )
        run_capture.assert_not_awaited()

    def test_success_payload(self) -> None:
        run_capture = AsyncMock(return_value=_success())
        with patch("form_pdf_capture.server.run_capture", run_capture):
            resp = self.client.get("/download-pdf", params={"url": "https://example.com/form.asp?id=1"})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(
            set(body),
            {"success", "pdf", "contentType", "filename"},
        )
        self.assertTrue(body["success"])
        self.assertEqual(base64.b64decode(body["pdf"]), PDF_BYTES)
        self.assertEqual(body["contentType"], "application/pdf")
        self.assertEqual(body["filename"], _success().filename)
        run_capture.assert_awaited_once_with("https://example.com/form.asp?id=1")

    def test_capture_failure_is_500(self) -> None:
        outcome = CaptureOutcome(failure=CaptureFailure.NO_PDF_FOUND, message=NO_PDF_FOUND_MESSAGE)
        with patch("form_pdf_capture.server.run_capture", AsyncMock(return_value=outcome)):
            resp = self.client.get("/download-pdf", params={"url": "https://example.com/form.asp"})

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Failed to download PDF", "message": NO_PDF_FOUND_MESSAGE})

    def test_long_failure_message_is_truncated(self) -> None:
        outcome = CaptureOutcome(failure=CaptureFailure.UNEXPECTED_ERROR, message="x" * 500)
        with patch("form_pdf_capture.server.run_capture", AsyncMock(return_value=outcome)):
            resp = self.client.get("/download-pdf", params={"url": "https://example.com/form.asp"})

        self.assertEqual(resp.status_code, 500)
        self.assertLessEqual(len(resp.json()["message"]), 201)

    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "ok")
        self.assertTrue(body["timestamp"].endswith("Z"))

    def test_root_describes_endpoints(self) -> None:
        body = self.client.get("/").json()
        self.assertEqual(body["message"], "PDF Downloader API")
        self.assertIn("GET /download-pdf?url=<ASP_URL>", body["endpoints"])
        self.assertIn("GET /health", body["endpoints"])

    def test_cors_allows_any_origin(self) -> None:
        resp = self.client.get("/health", headers={"Origin": "https://app.example"})
        self.assertEqual(resp.headers.get("access-control-allow-origin"), "*")


class TestDownloadPdfTool(unittest.IsolatedAsyncioTestCase):
    async def test_tool_validates_url(self) -> None:
        from form_pdf_capture.server import download_pdf

        result = await download_pdf("")
        self.assertEqual(result["success"], False)
        self.assertEqual(result["error"], "Missing required parameter: url")

        result = await download_pdf("file:///etc/passwd")
        self.assertEqual(result["error"], "Invalid URL format")

    async def test_tool_returns_payload(self) -> None:
        from form_pdf_capture.server import download_pdf

        with patch("form_pdf_capture.server.run_capture", AsyncMock(return_value=_success())):
            result = await download_pdf("https://example.com/form.asp")

        self.assertTrue(result["success"])
        self.assertEqual(result["contentType"], "application/pdf")

    async def test_tool_reports_failure(self) -> None:
        from form_pdf_capture.server import download_pdf

        outcome = CaptureOutcome(failure=CaptureFailure.BROWSER_UNAVAILABLE, message="BrowserLaunchError: no chromium")
        with patch("form_pdf_capture.server.run_capture", AsyncMock(return_value=outcome)):
            result = await download_pdf("https://example.com/form.asp")

        self.assertEqual(
            result,
            {"error": "Failed to download PDF", "message": "BrowserLaunchError: no chromium", "success": False},
        )

    def test_success_payload_rejects_failed_outcome(self) -> None:
        from form_pdf_capture.server import _success_payload

        with self.assertRaises(ValueError):
            _success_payload(CaptureOutcome(failure=CaptureFailure.NO_PDF_FOUND, message=NO_PDF_FOUND_MESSAGE))


class TestArgParsing(unittest.TestCase):
    def test_transport_defaults_to_http(self) -> None:
        from form_pdf_capture.server import _build_arg_parser, _resolve_transport

        args = _build_arg_parser().parse_args([])
        self.assertEqual(_resolve_transport(args.transport), "streamable-http")
        args = _build_arg_parser().parse_args(["--stdio"])
        self.assertEqual(_resolve_transport(args.transport), "stdio")

    def test_main_runs_uvicorn_with_port_override(self) -> None:
        from form_pdf_capture import server

        with patch("uvicorn.run") as run:
            server.main(["--port", "4123", "--host", "127.0.0.1"])

        _, kwargs = run.call_args
        self.assertEqual(kwargs["port"], 4123)
        self.assertEqual(kwargs["host"], "127.0.0.1")


if __name__ == "__main__":
    unittest.main()
