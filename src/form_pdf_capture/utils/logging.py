from __future__ import annotations

import logging
import os


def configure_logging() -> None:
    """
    Configure logging defaults for the HTTP service and MCP stdio hosts.

    Goals:
    - Keep per-request capture logs visible at INFO by default.
    - Avoid noisy third-party logs (CDP traffic, websocket frames, access logs).
    - Keep configuration idempotent so hosts can override it safely.
    """
    root = logging.getLogger()

    # Only set up basicConfig if nothing configured yet (common for scripts).
    if not root.handlers:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    noisy_loggers = (
        "httpx",
        "httpcore",
        "asyncio",
        "nodriver",
        "websockets",
        "uc.connection",
        "uvicorn.access",
    )
    for name in noisy_loggers:
        # `asyncio` can emit noisy warnings about slow callbacks when Chromium is busy.
        level = logging.ERROR if name == "asyncio" else logging.WARNING
        logging.getLogger(name).setLevel(level)
