from __future__ import annotations

import os
from dataclasses import dataclass, field


def get_int_env(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def get_float_env(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def get_bool_env(key: str, default: bool = False) -> bool:
    raw = (os.environ.get(key) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def _resolve_port() -> int:
    value = get_int_env("PORT", 3000)
    if value <= 0 or value > 65535:
        return 3000
    return value


@dataclass
class Settings:
    """Runtime configuration (env-first).

    Note: keep this module lightweight; it is imported by tests.
    """

    host: str = field(default_factory=lambda: os.environ.get("HOST", "0.0.0.0").strip() or "0.0.0.0")
    port: int = field(default_factory=_resolve_port)
    # Only the literal string "true" enables local copies.
    save_pdf_files: bool = field(
        default_factory=lambda: (os.environ.get("SAVE_PDF_FILES") or "").strip() == "true"
    )
    downloads_dir: str = field(
        default_factory=lambda: os.environ.get("PDF_DOWNLOADS_DIR", "downloads").strip() or "downloads"
    )


settings = Settings()
