from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def save_pdf_best_effort(data: bytes, filename: str, directory: str | Path) -> Path | None:
    """Write a local copy of a captured PDF. Failures are logged and otherwise ignored."""
    try:
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / Path(filename).name
        target.write_bytes(data)
    except OSError as exc:
        LOGGER.warning("Could not save %s locally: %s", filename, exc)
        return None
    LOGGER.info("PDF saved to %s", target)
    return target
