from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from form_pdf_capture.content.filename import build_filename, format_timestamp, url_hash
from form_pdf_capture.content.pdf_metadata import PdfMetadata
from form_pdf_capture.content.storage import save_pdf_best_effort

NOW = datetime(2025, 12, 15, 10, 20, 30, 123456, tzinfo=timezone.utc)
URL = "https://example.com/form.asp"


class TestFilename(unittest.TestCase):
    def test_timestamp_format(self) -> None:
        self.assertEqual(format_timestamp(NOW), "2025-12-15T10-20-30-123Z")

    def test_timestamp_converts_to_utc(self) -> None:
        local = datetime(2025, 12, 15, 7, 20, 30, 5000, tzinfo=timezone(timedelta(hours=-3)))
        self.assertEqual(format_timestamp(local), "2025-12-15T10-20-30-005Z")

    def test_url_hash(self) -> None:
        self.assertEqual(url_hash(URL), "aHR0cHM6Ly")
        self.assertEqual(url_hash("??????????"), "Pz8Pz8Pz")

    def test_named_after_metadata(self) -> None:
        name = build_filename(PdfMetadata(rut="48359566", issue_date="2025-12-15"), URL, NOW)
        self.assertEqual(name, "48359566-2025-12-15-2025-12-15T10-20-30-123Z-aHR0cHM6Ly.pdf")

    def test_generic_name_when_metadata_is_partial(self) -> None:
        expected = "pdf-2025-12-15T10-20-30-123Z-aHR0cHM6Ly.pdf"
        self.assertEqual(build_filename(PdfMetadata(rut="48359566"), URL, NOW), expected)
        self.assertEqual(build_filename(PdfMetadata(issue_date="2025-12-15"), URL, NOW), expected)
        self.assertEqual(build_filename(None, URL, NOW), expected)


class TestStorage(unittest.TestCase):
    def test_writes_into_created_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = save_pdf_best_effort(b"%PDF-1.4", "a.pdf", Path(tmp) / "downloads")
            self.assertIsNotNone(target)
            self.assertEqual(target.read_bytes(), b"%PDF-1.4")

    def test_failure_is_logged_not_raised(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "downloads"
            blocker.write_text("not a directory")
            with self.assertLogs("form_pdf_capture.content.storage", level="WARNING"):
                self.assertIsNone(save_pdf_best_effort(b"%PDF", "a.pdf", blocker))


if __name__ == "__main__":
    unittest.main()
