from __future__ import annotations

import unittest

from form_pdf_capture.content.pdf_metadata import (
    RUN_SEPARATOR,
    PdfMetadata,
    collapsed_view,
    extract_issue_date,
    extract_metadata_from_text,
    extract_pdf_metadata,
    extract_pdf_text,
    extract_rut,
    find_rut_candidates,
    no_space_view,
    normalize_rut,
    pick_rut_candidate,
)


def _glyphs(*runs: str) -> str:
    """Text shaped like the extractor output: glyphs space-separated, runs end with RUN_SEPARATOR."""
    return "".join(" ".join(run) + RUN_SEPARATOR for run in runs)


class TestTextViews(unittest.TestCase):
    def test_no_space_view(self) -> None:
        self.assertEqual(no_space_view(_glyphs("RUT: 4.835.956-6")), "RUT:4.835.956-6")

    def test_collapsed_view_rejoins_words_and_numbers(self) -> None:
        text = collapsed_view(_glyphs("Fecha Emisión | 15 de diciembre de 2025", "RUT 4.835.956-6"))
        self.assertEqual(text, "Fecha Emisión | 15 de diciembre de 2025 RUT 4.835.956-6")

    def test_collapsed_view_joins_dates_with_slashes(self) -> None:
        self.assertEqual(collapsed_view(_glyphs("15/12/2025")), "15/12/2025")

    def test_collapsed_view_keeps_run_boundaries(self) -> None:
        text = collapsed_view(_glyphs("Fecha Emisión:", "15", "de diciembre de 2025"))
        self.assertEqual(text, "Fecha Emisión : 15 de diciembre de 2025")

    def test_collapsed_view_never_joins_digit_and_letter(self) -> None:
        self.assertEqual(collapsed_view("1 5 d e"), "15 de")


class TestRut(unittest.TestCase):
    def test_single_rut(self) -> None:
        meta = extract_metadata_from_text(_glyphs("R.U.T. emisor", "RUT: 4.835.956-6"))
        self.assertEqual(meta.rut, "48359566")

    def test_rut_after_pipe(self) -> None:
        meta = extract_metadata_from_text(_glyphs("RUT | 12.345.678-K", "RUT | 4.835.956-6"))
        self.assertEqual(meta.rut, "48359566")

    def test_prefers_rut_following_addressee(self) -> None:
        text = _glyphs(
            "RUT: 76.123.456-7",
            "Señor(es): Comercial Ejemplo Ltda",
            "RUT: 4.835.956-6",
            "RUT: 9.999.999-9",
        )
        self.assertEqual(extract_metadata_from_text(text).rut, "48359566")

    def test_last_rut_without_addressee(self) -> None:
        text = _glyphs("RUT: 76.123.456-7", "RUT: 4.835.956-6")
        self.assertEqual(extract_metadata_from_text(text).rut, "48359566")

    def test_no_rut(self) -> None:
        self.assertIsNone(extract_metadata_from_text(_glyphs("Sin identificador")).rut)

    def test_normalize_is_idempotent(self) -> None:
        once = normalize_rut("4.835.956-6")
        self.assertEqual(once, "48359566")
        self.assertEqual(normalize_rut(once), once)

    def test_find_candidates_reports_positions(self) -> None:
        candidates = find_rut_candidates("xxRUT:1.234.567-8yyrut9.876.543-2")
        self.assertEqual(candidates, [(2, "1.234.567-8"), (19, "9.876.543-2")])

    def test_anchor_position_survives_case_folding(self) -> None:
        text = "İ" * 10 + "SeñorRUT:2.222.222-2RUT:3.333.333-3"
        self.assertEqual(extract_rut(text), "22222222")


class TestPickRutCandidate(unittest.TestCase):
    def test_nearest_after_any_anchor(self) -> None:
        candidates = [(5, "a"), (40, "b"), (70, "c")]
        self.assertEqual(pick_rut_candidate(candidates, [30]), "b")
        self.assertEqual(pick_rut_candidate(candidates, [30, 65]), "c")

    def test_falls_back_to_last(self) -> None:
        self.assertEqual(pick_rut_candidate([(5, "a"), (10, "b")], [50]), "b")
        self.assertEqual(pick_rut_candidate([(5, "a"), (10, "b")], []), "b")

    def test_single_and_empty(self) -> None:
        self.assertEqual(pick_rut_candidate([(5, "a")], [50]), "a")
        self.assertIsNone(pick_rut_candidate([], [1]))


class TestIssueDate(unittest.TestCase):
    def test_spanish_long_date(self) -> None:
        meta = extract_metadata_from_text(_glyphs("Fecha Emisión | 15 de diciembre de 2025"))
        self.assertEqual(meta.issue_date, "2025-12-15")

    def test_label_with_de_and_colon(self) -> None:
        meta = extract_metadata_from_text(_glyphs("Fecha de Emision:", "5 de mayo de 2024"))
        self.assertEqual(meta.issue_date, "2024-05-05")

    def test_unknown_month_defaults_to_january(self) -> None:
        meta = extract_metadata_from_text(_glyphs("Fecha Emisión: 7 de brumario de 2024"))
        self.assertEqual(meta.issue_date, "2024-01-07")

    def test_no_space_fallback(self) -> None:
        meta = extract_metadata_from_text(_glyphs("Fecha Emisión:", "15dediciembrede2025"))
        self.assertEqual(meta.issue_date, "2025-12-15")

    def test_missing_date(self) -> None:
        self.assertIsNone(extract_metadata_from_text(_glyphs("Factura 123")).issue_date)

    def test_day_and_month_in_separate_runs(self) -> None:
        text = _glyphs("Fecha Vencimiento: 30 de enero de 2026", "Fecha Emisión:", "15", "de diciembre de 2025")
        self.assertEqual(extract_metadata_from_text(text).issue_date, "2025-12-15")

    def test_spaced_pattern_wins_over_no_space_fallback(self) -> None:
        self.assertEqual(
            extract_issue_date(
                "Fecha Vencimiento 30 de enero de 2026 Fecha Emisión : 15 de diciembre de 2025",
                "FechaVencimiento30deenerode2026FechaEmisión:15dediciembrede2025",
            ),
            "2025-12-15",
        )


class TestPdfBytes(unittest.TestCase):
    def test_invalid_pdf_yields_empty_metadata(self) -> None:
        meta = extract_pdf_metadata(b"%PDF-1.4 truncated garbage")
        self.assertEqual(meta, PdfMetadata())
        self.assertFalse(meta.complete)

    def test_generated_pdf(self) -> None:
        import pymupdf

        doc = pymupdf.open()
        page = doc.new_page()
        page.insert_text((72, 72), "Fecha Emision: 3 de marzo de 2024")
        page.insert_text((72, 100), "RUT: 12.345.678-5")
        data = doc.tobytes()
        doc.close()

        text = extract_pdf_text(data)
        self.assertIn("R U T", text)

        meta = extract_pdf_metadata(data)
        self.assertEqual(meta, PdfMetadata(rut="123456785", issue_date="2024-03-03"))
        self.assertTrue(meta.complete)


if __name__ == "__main__":
    unittest.main()
