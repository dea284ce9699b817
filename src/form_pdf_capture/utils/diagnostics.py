from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger("form_pdf_capture.diagnostics")

MAX_LINE_CHARS = 8000
MAX_DETAIL_CHARS = 200


def diagnostics_enabled() -> bool:
    raw = (os.environ.get("FORM_PDF_DIAGNOSTICS") or "").strip().lower()
    return raw in ("1", "true", "yes", "on")


def truncate_text(text: str, limit: int) -> tuple[str, bool, int]:
    """Return `(sample, truncated, original_len)` for log-safe payloads."""
    value = text or ""
    if len(value) <= limit:
        return value, False, len(value)
    return value[:limit].rstrip() + "…", True, len(value)


def describe_error(exc: BaseException) -> str:
    detail, _, _ = truncate_text(str(exc).strip(), MAX_DETAIL_CHARS)
    if detail:
        return f"{type(exc).__name__}: {detail}"
    return type(exc).__name__


@dataclass
class Diagnostics:
    """
    Structured, request-scoped trace of a capture run.

    Every entry is kept in `entries` and written to the log as one JSON line.
    With `FORM_PDF_DIAGNOSTICS=1` lines are logged at INFO so they show up in
    container logs; otherwise they stay at DEBUG.
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    enabled: bool = field(default_factory=diagnostics_enabled)
    started: float = field(default_factory=time.monotonic)
    entries: list[dict[str, Any]] = field(default_factory=list)

    def emit(self, stage: str, msg: str, data: dict[str, Any] | None = None) -> None:
        entry = {
            "request_id": self.request_id,
            "stage": stage,
            "msg": msg,
            "elapsed_ms": int((time.monotonic() - self.started) * 1000),
            "data": data or {},
        }
        self.entries.append(entry)

        level = logging.INFO if self.enabled else logging.DEBUG
        if not LOGGER.isEnabledFor(level):
            return
        try:
            payload = json.dumps(entry, ensure_ascii=True, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            payload = json.dumps({**entry, "data": {"note": "unserializable payload"}})
        if len(payload) > MAX_LINE_CHARS:
            payload = json.dumps(
                {
                    **{k: v for k, v in entry.items() if k != "data"},
                    "line_truncated": True,
                    "data": {"note": "diagnostic payload truncated", "original_len": len(payload)},
                },
                ensure_ascii=True,
                separators=(",", ":"),
            )
        LOGGER.log(level, "FORM_PDF_DIAG %s", payload)
