from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from urllib.parse import urlparse

from .content.filename import build_filename
from .content.pdf_metadata import PdfMetadata, extract_pdf_metadata
from .content.storage import save_pdf_best_effort
from .errors import NO_PDF_FOUND_MESSAGE, BrowserLaunchError, InvalidTargetUrlError, NoPdfFoundError
from .scrape.capture import ResponseCapture
from .scrape.fallback import FallbackRecoverer, close_page_best_effort
from .scrape.navigation import NavigationDriver
from .scrape.page import CdpPage
from .scrape.records import CaptureRequest, CaptureSlot, CapturedDocument
from .scrape.timing import CaptureTimings, resolve_capture_timings, run_passive_phase
from .settings import Settings
from .settings import settings as default_settings
from .utils.diagnostics import Diagnostics, describe_error

LOGGER = logging.getLogger(__name__)


class PageSource(Protocol):
    async def new_page(self, diagnostics: Diagnostics | None = None) -> CdpPage: ...


class CaptureFailure(str, Enum):
    BROWSER_UNAVAILABLE = "browser_unavailable"
    NO_PDF_FOUND = "no_pdf_found"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(frozen=True)
class CaptureOutcome:
    document: CapturedDocument | None = None
    filename: str | None = None
    metadata: PdfMetadata | None = None
    failure: CaptureFailure | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.document is not None


def validate_target_url(url: str | None) -> str:
    """Accept only absolute http(s) URLs; raises `InvalidTargetUrlError` otherwise."""
    value = (url or "").strip()
    if not value:
        raise InvalidTargetUrlError("Missing required parameter: url")
    parsed = urlparse(value)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        raise InvalidTargetUrlError("Invalid URL format")
    return value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CaptureOrchestrator:
    """
    Runs one capture end to end and turns it into a single `CaptureOutcome`.

    The page opened for the request is closed on every exit path, and pending
    capture tasks are cancelled before the outcome is returned.
    """

    def __init__(
        self,
        session: PageSource,
        *,
        timings: CaptureTimings | None = None,
        now: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._timings = timings
        self._now = now or _utc_now
        self._settings = settings

    async def capture(self, request: CaptureRequest) -> CaptureOutcome:
        timings = self._timings or resolve_capture_timings()
        settings = self._settings or default_settings
        diag = Diagnostics()
        diag.emit("capture.start", "Starting capture", {"url": request.target_url})

        page: CdpPage | None = None
        capture: ResponseCapture | None = None
        try:
            page = await self._session.new_page(diag)
            slot = CaptureSlot()
            capture = ResponseCapture(page, slot, diagnostics=diag)
            capture.arm()
            driver = NavigationDriver(page)

            start = await driver.load(request.target_url, timeout=timings.navigation_timeout_seconds)
            if not slot.captured:
                followed = await driver.wait_for_navigation(timeout=timings.auto_submit_wait_seconds)
                diag.emit(
                    "capture.navigation",
                    "Auto-submit wait finished",
                    {"followed": followed, "in_flight": driver.in_flight},
                )

            document: CapturedDocument | None = None
            if await run_passive_phase(
                slot, timings=timings, wait_for_network_idle=driver.wait_for_network_idle
            ):
                document = slot.document
            else:
                LOGGER.info("No PDF captured passively; trying fallbacks for %s", request.target_url)
                recoverer = FallbackRecoverer(
                    page,
                    capture,
                    target_url=request.target_url,
                    navigation=start,
                    open_page=lambda: self._session.new_page(diag),
                    secondary_timeout=timings.secondary_page_timeout_seconds,
                    diagnostics=diag,
                )
                document = await recoverer.recover() or slot.document

            if document is None:
                raise NoPdfFoundError(NO_PDF_FOUND_MESSAGE)

            metadata = await asyncio.to_thread(extract_pdf_metadata, document.data)
            filename = build_filename(metadata, request.target_url, self._now())
            if settings.save_pdf_files:
                await asyncio.to_thread(
                    save_pdf_best_effort, document.data, filename, settings.downloads_dir
                )
            diag.emit(
                "capture.done",
                "PDF captured",
                {"strategy": document.strategy, "bytes": len(document.data), "filename": filename},
            )
            return CaptureOutcome(document=document, filename=filename, metadata=metadata)
        except BrowserLaunchError as exc:
            LOGGER.error("Browser unavailable: %s", exc)
            return CaptureOutcome(failure=CaptureFailure.BROWSER_UNAVAILABLE, message=describe_error(exc))
        except NoPdfFoundError as exc:
            LOGGER.warning("No PDF found for %s", request.target_url)
            diag.emit("capture.no_pdf", "No PDF found", {})
            return CaptureOutcome(failure=CaptureFailure.NO_PDF_FOUND, message=str(exc))
        except Exception as exc:
            LOGGER.exception("Capture failed for %s", request.target_url)
            return CaptureOutcome(failure=CaptureFailure.UNEXPECTED_ERROR, message=describe_error(exc))
        finally:
            if capture is not None:
                await capture.close()
            await close_page_best_effort(page)
