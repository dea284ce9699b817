from __future__ import annotations

import base64
import re
from datetime import datetime, timezone

from .pdf_metadata import PdfMetadata

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def format_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with milliseconds, `:` and `.` replaced by `-` (e.g. `2025-12-15T10-20-30-123Z`)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    millis = moment.microsecond // 1000
    return moment.strftime("%Y-%m-%dT%H-%M-%S-") + f"{millis:03d}Z"


def url_hash(url: str) -> str:
    encoded = base64.b64encode(url.encode("utf-8")).decode("ascii")
    return _NON_ALNUM_RE.sub("", encoded[:10])


def build_filename(metadata: PdfMetadata | None, url: str, now: datetime) -> str:
    stamp = format_timestamp(now)
    suffix = url_hash(url)
    if metadata is not None and metadata.complete:
        return f"{metadata.rut}-{metadata.issue_date}-{stamp}-{suffix}.pdf"
    return f"pdf-{stamp}-{suffix}.pdf"
