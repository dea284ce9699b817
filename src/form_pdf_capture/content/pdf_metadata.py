from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote

LOGGER = logging.getLogger(__name__)

RUT_PATTERN = re.compile(r"RUT[|:]?(\d+\.\d+\.\d+-\d)", re.IGNORECASE)
ADDRESSEE_ANCHOR = re.compile("señor", re.IGNORECASE)
RUN_SEPARATOR = "  "

ISSUE_DATE_PATTERN = re.compile(
    r"Fecha\s*(?:de\s*)?Emisi[óo]n[:\s|]*(\d{1,2})\s+de\s+(\w+)\s+de\s+(\d{4})",
    re.IGNORECASE,
)
ISSUE_DATE_NO_SPACE_PATTERN = re.compile(r"Fecha.*?(\d{1,2})de(\w+)de(\d{4})", re.IGNORECASE)

SPANISH_MONTHS = {
    "enero": "01",
    "febrero": "02",
    "marzo": "03",
    "abril": "04",
    "mayo": "05",
    "junio": "06",
    "julio": "07",
    "agosto": "08",
    "septiembre": "09",
    "octubre": "10",
    "noviembre": "11",
    "diciembre": "12",
}

_LETTER_GAP_RE = re.compile(r"(?<=[^\W\d_]) (?=[^\W\d_])")
_DIGIT_GAP_RE = re.compile(r"(?<=\d) (?=\d)")
_NUMERIC_PUNCT_RE = re.compile(r"(?<=\d) ?([.\-/]) ?(?=\d)")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class PdfMetadata:
    rut: str | None = None
    issue_date: str | None = None

    @property
    def complete(self) -> bool:
        return bool(self.rut and self.issue_date)


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """
    Return the document text glyph by glyph.

    Each span of the `rawdict` layout is treated as one text run: it is
    URI-decoded and its glyphs are joined with single spaces. Every run ends
    with `RUN_SEPARATOR`, which is wider than a glyph gap, so neither run
    boundaries nor spaces inside a run are mistaken for the gap between two
    glyphs of the same word.
    """
    import pymupdf  # type: ignore

    parts: list[str] = []
    doc = pymupdf.open(stream=pdf_bytes, filetype="pdf")
    try:
        for page in doc:
            layout = page.get_text("rawdict")
            for block in layout.get("blocks", []):
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        run = "".join(ch.get("c", "") for ch in span.get("chars", []))
                        if not run:
                            continue
                        parts.append(" ".join(unquote(run)) + RUN_SEPARATOR)
    finally:
        doc.close()
    return "".join(parts)


def no_space_view(raw_text: str) -> str:
    return _WHITESPACE_RE.sub("", raw_text)


def collapsed_view(raw_text: str) -> str:
    """Rejoin letter/letter, digit/digit and digit-punctuation-digit glyphs."""
    text = _LETTER_GAP_RE.sub("", raw_text)
    text = _DIGIT_GAP_RE.sub("", text)
    text = _NUMERIC_PUNCT_RE.sub(r"\1", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_rut(value: str) -> str:
    return value.replace(".", "").replace("-", "")


def find_rut_candidates(text: str) -> list[tuple[int, str]]:
    return [(match.start(), match.group(1)) for match in RUT_PATTERN.finditer(text)]


def pick_rut_candidate(candidates: list[tuple[int, str]], anchors: list[int]) -> str | None:
    """
    Choose the RUT that belongs to the addressee.

    `candidates` are `(position, value)` pairs in document order and `anchors`
    are the positions of addressee markers. The candidate closest after any
    anchor wins; with none after an anchor the last candidate is used, since
    the client's RUT usually follows the issuer's.
    """
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0][1]

    best: str | None = None
    best_distance: int | None = None
    for position, value in candidates:
        for anchor in anchors:
            if anchor < 0 or position <= anchor:
                continue
            distance = position - anchor
            if best_distance is None or distance < best_distance:
                best_distance = distance
                best = value
    if best is not None:
        return best
    return candidates[-1][1]


def extract_rut(no_space_text: str) -> str | None:
    candidates = find_rut_candidates(no_space_text)
    if not candidates:
        return None
    anchor = ADDRESSEE_ANCHOR.search(no_space_text)
    anchors = [anchor.start()] if anchor else []
    selected = pick_rut_candidate(candidates, anchors)
    return normalize_rut(selected) if selected else None


def _format_issue_date(day: str, month_name: str, year: str) -> str:
    month = SPANISH_MONTHS.get(_WHITESPACE_RE.sub("", month_name.lower()), "01")
    return f"{year}-{month}-{day.zfill(2)}"


def extract_issue_date(collapsed_text: str, no_space_text: str) -> str | None:
    match = ISSUE_DATE_PATTERN.search(collapsed_text)
    if match is None:
        match = ISSUE_DATE_NO_SPACE_PATTERN.search(no_space_text)
    if match is None:
        return None
    return _format_issue_date(match.group(1), match.group(2), match.group(3))


def extract_metadata_from_text(raw_text: str) -> PdfMetadata:
    compact = no_space_view(raw_text)
    rut: str | None = None
    issue_date: str | None = None
    try:
        rut = extract_rut(compact)
    except Exception as exc:
        LOGGER.warning("RUT extraction failed: %s", exc)
    try:
        issue_date = extract_issue_date(collapsed_view(raw_text), compact)
    except Exception as exc:
        LOGGER.warning("Issue date extraction failed: %s", exc)
    return PdfMetadata(rut=rut, issue_date=issue_date)


def extract_pdf_metadata(pdf_bytes: bytes) -> PdfMetadata:
    """Best-effort RUT and issue date; any failure leaves the field as None."""
    try:
        raw_text = extract_pdf_text(pdf_bytes)
    except Exception as exc:
        LOGGER.warning("Could not read PDF text: %s", exc)
        return PdfMetadata()

    metadata = extract_metadata_from_text(raw_text)
    if metadata.rut is None:
        LOGGER.info("Could not extract RUT from PDF")
    if metadata.issue_date is None:
        LOGGER.info("Could not extract issue date from PDF")
    return metadata
