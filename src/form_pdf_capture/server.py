from __future__ import annotations

import argparse
import base64
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Literal

from mcp.server.fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from .errors import InvalidTargetUrlError
from .models import (
    ApiDescriptionResponse,
    DownloadPdfResponse,
    ErrorResponse,
    HealthResponse,
    ToolErrorResponse,
)
from .orchestrator import CaptureOrchestrator, CaptureOutcome, validate_target_url
from .scrape.browser_session import get_browser_session
from .scrape.records import CaptureRequest
from .settings import settings
from .utils.diagnostics import truncate_text
from .utils.logging import configure_logging

configure_logging()
LOGGER = logging.getLogger(__name__)

mcp = FastMCP(
    "form-pdf-capture",
    instructions=(
        "Captures the PDF produced by pages that auto-submit a form, and names it after the "
        "RUT and issue date printed in the document."
    ),
    host=settings.host,
)

Transport = Literal["stdio", "streamable-http"]

MISSING_URL = ErrorResponse(
    error="Missing required parameter: url",
    message="Please provide a URL query parameter",
)
INVALID_URL = ErrorResponse(error="Invalid URL format", message="Please provide a valid URL")
DOWNLOAD_FAILED = "Failed to download PDF"

_ORCHESTRATOR: CaptureOrchestrator | None = None


def _get_orchestrator() -> CaptureOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = CaptureOrchestrator(get_browser_session())
    return _ORCHESTRATOR


async def run_capture(url: str) -> CaptureOutcome:
    LOGGER.info("Capturing PDF from %s", url)
    return await _get_orchestrator().capture(CaptureRequest(target_url=url))


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _failure_message(outcome: CaptureOutcome) -> str:
    message, _, _ = truncate_text((outcome.message or "Unknown error").strip(), 200)
    return message


def _success_payload(outcome: CaptureOutcome) -> dict:
    if not outcome.ok or outcome.document is None or outcome.filename is None:
        raise ValueError("Cannot build a success payload from a failed capture")
    return DownloadPdfResponse(
        pdf=base64.b64encode(outcome.document.data).decode("ascii"),
        filename=outcome.filename,
    ).model_dump(by_alias=True)


@mcp.custom_route("/download-pdf", methods=["GET"])
async def download_pdf_route(request: Request) -> JSONResponse:
    raw_url = request.query_params.get("url")
    if not raw_url:
        return JSONResponse(MISSING_URL.model_dump(), status_code=400)
    try:
        url = validate_target_url(raw_url)
    except InvalidTargetUrlError:
        return JSONResponse(INVALID_URL.model_dump(), status_code=400)

    outcome = await run_capture(url)
    if not outcome.ok:
        body = ErrorResponse(error=DOWNLOAD_FAILED, message=_failure_message(outcome))
        return JSONResponse(body.model_dump(), status_code=500)
    return JSONResponse(_success_payload(outcome))


@mcp.custom_route("/health", methods=["GET"])
async def health_route(request: Request) -> JSONResponse:
    return JSONResponse(HealthResponse(timestamp=_iso_now()).model_dump())


@mcp.custom_route("/", methods=["GET"])
async def root_route(request: Request) -> JSONResponse:
    body = ApiDescriptionResponse(
        endpoints={
            "GET /download-pdf?url=<ASP_URL>": "Download PDF from ASP URL",
            "GET /health": "Health check",
        }
    )
    return JSONResponse(body.model_dump())


@mcp.tool()
async def download_pdf(url: str) -> dict:
    """Open a page that auto-submits a form and return the PDF it produces.

    When to use:
    - The URL is a landing page (often ASP/ASP.NET) that posts a form on load and answers with a PDF.

    Args:
    - url: Absolute http(s) URL of the landing page.

    Returns:
    - `{"success": true, "pdf": <base64>, "contentType": "application/pdf", "filename": str}`
    - On failure: `{"success": false, "error": str, "message": str}`.

    Notes:
    - The filename embeds the RUT and issue date found in the PDF when both can be read.
    - Capturing can take up to about a minute for slow issuers.
    """
    if not (url or "").strip():
        return ToolErrorResponse(**MISSING_URL.model_dump()).model_dump()
    try:
        target = validate_target_url(url)
    except InvalidTargetUrlError:
        return ToolErrorResponse(**INVALID_URL.model_dump()).model_dump()

    outcome = await run_capture(target)
    if not outcome.ok:
        return ToolErrorResponse(error=DOWNLOAD_FAILED, message=_failure_message(outcome)).model_dump()
    return _success_payload(outcome)


def build_http_app() -> Starlette:
    """Streamable-HTTP MCP app plus the REST routes, open to every origin."""
    app = mcp.streamable_http_app()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="form-pdf-capture",
        description="PDF capture service for auto-submitting form pages (REST + MCP).",
    )

    transport_group = parser.add_mutually_exclusive_group()
    transport_group.add_argument(
        "--transport",
        choices=("stdio", "streamable-http"),
        help="Transport to use (default: streamable-http).",
    )
    transport_group.add_argument(
        "--stdio",
        dest="transport",
        action="store_const",
        const="stdio",
        help="Run the MCP server over stdio (no REST routes).",
    )
    transport_group.add_argument(
        "--http",
        "--streamable-http",
        dest="transport",
        action="store_const",
        const="streamable-http",
        help="Serve the REST routes and Streamable HTTP MCP endpoint (default).",
    )

    parser.add_argument("--host", default=None, help="Bind host (overrides HOST).")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides PORT).")
    return parser


def _resolve_transport(raw: str | None) -> Transport:
    if raw in ("stdio", "streamable-http"):
        return raw
    return "streamable-http"


def main(argv: list[str] | None = None) -> None:
    """
    Entrypoint for the capture service.

    Notes:
    - The HTTP transport is the default: it serves `/download-pdf`, `/health`,
      `/` and the MCP endpoint on one port.
    - `--stdio` exposes only the `download_pdf` tool to an MCP client.
    """
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    transport = _resolve_transport(args.transport)

    if transport == "stdio":
        if sys.stdin.isatty() and os.environ.get("MCP_ALLOW_TTY_STDIO", "").strip().lower() not in (
            "1",
            "true",
            "yes",
        ):
            print(
                "Error: `--stdio` transport is intended to be launched by an MCP client.",
                file=sys.stderr,
            )
            print("Tip: run without flags to serve the HTTP API instead.", file=sys.stderr)
            raise SystemExit(2)
        mcp.run(transport="stdio")
        return

    import uvicorn

    host = args.host or settings.host
    port = args.port if args.port is not None else settings.port
    LOGGER.info("PDF Downloader API listening on %s:%s", host, port)
    uvicorn.run(build_http_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
