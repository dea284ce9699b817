from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from urllib.parse import quote, urlencode

from ..utils.diagnostics import Diagnostics, describe_error
from .capture import ResponseCapture
from .in_page import FORM_URLENCODED, extract_form, fetch_in_page
from .navigation import NavigationDriver
from .page import CdpPage
from .records import CaptureSlot, CapturedDocument, NavigationStart, is_pdf_bytes

LOGGER = logging.getLogger(__name__)


def _append_query(url: str, query: str) -> str:
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


async def close_page_best_effort(page: CdpPage | None) -> None:
    if page is None:
        return
    try:
        await page.close()
    except Exception as exc:
        LOGGER.warning("page.close failed: %s", exc)


class FallbackRecoverer:
    """
    Active recovery once the passive phase came back empty.

    Tries, in order, stopping at the first buffer that starts with `%PDF`:

    1. the landing navigation's own document response, if it was typed as PDF;
    2. resubmitting the page's form with an in-page `fetch()` when the page
       has moved away from the target URL;
    3. a fresh page navigated to the current URL, with its own capture armed.
    """

    def __init__(
        self,
        page: CdpPage,
        capture: ResponseCapture,
        *,
        target_url: str,
        navigation: NavigationStart | None,
        open_page: Callable[[], Awaitable[CdpPage]],
        secondary_timeout: float = 30.0,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self._page = page
        self._capture = capture
        self._target_url = target_url
        self._navigation = navigation
        self._open_page = open_page
        self._secondary_timeout = secondary_timeout
        self._diag = diagnostics or Diagnostics(enabled=False)

    async def recover(self) -> CapturedDocument | None:
        document = await self.from_direct_response()
        if document is not None:
            return document

        try:
            current_url = await self._page.current_url()
        except Exception as exc:
            LOGGER.warning("Could not read current URL: %s", exc)
            return None
        self._diag.emit("fallback.current_url", "Resolved current URL", {"url": current_url})

        if current_url and current_url != self._target_url:
            try:
                document = await self.resubmit_form(current_url)
            except Exception as exc:
                LOGGER.warning("Form resubmission failed: %s", exc)
                self._diag.emit("fallback.resubmit_failed", "Form resubmission failed", {"error": describe_error(exc)})
                document = None
            if document is not None:
                return document
            return await self.from_secondary_page(current_url)

        return None

    async def from_direct_response(self) -> CapturedDocument | None:
        loader_id = self._navigation.loader_id if self._navigation else None
        if not loader_id:
            return None
        record = self._capture.record(loader_id)
        if record is None or not record.is_pdf_like:
            return None
        try:
            body = await self._page.get_response_body(loader_id)
        except Exception as exc:
            LOGGER.info("Direct response body unavailable: %s", exc)
            return None
        if not is_pdf_bytes(body):
            LOGGER.warning("Direct response for %s is typed PDF but is not one", record.url)
            return None
        return CapturedDocument(data=body, strategy="direct_response", source_url=record.url)

    async def resubmit_form(self, current_url: str) -> CapturedDocument | None:
        form = await extract_form(self._page)
        if form is None:
            LOGGER.info("No form on %s; fetching it directly", current_url)
            fetched = await fetch_in_page(self._page, current_url)
            source_url = current_url
        else:
            query = urlencode(form.fields, quote_via=quote)
            action = form.action or current_url
            LOGGER.info("Resubmitting form: %s %s (%d fields)", form.method, action, len(form.fields))
            if form.method == "POST":
                fetched = await fetch_in_page(
                    self._page, action, method="POST", body=query, content_type=FORM_URLENCODED
                )
                source_url = action
            else:
                source_url = _append_query(action, query)
                fetched = await fetch_in_page(self._page, source_url)

        if fetched is None or not is_pdf_bytes(fetched.data):
            LOGGER.info("Form resubmission did not return a PDF (status=%s)", fetched.status if fetched else None)
            return None
        return CapturedDocument(data=fetched.data, strategy="form_resubmit", source_url=source_url)

    async def from_secondary_page(self, url: str) -> CapturedDocument | None:
        LOGGER.info("Opening a secondary page for %s", url)
        page: CdpPage | None = None
        capture: ResponseCapture | None = None
        try:
            page = await self._open_page()
            slot = CaptureSlot()
            capture = ResponseCapture(page, slot, diagnostics=self._diag)
            capture.arm()
            driver = NavigationDriver(page)
            start = await driver.goto(url, timeout=self._secondary_timeout)

            captured = slot.document
            if captured is not None:
                return CapturedDocument(
                    data=captured.data, strategy="secondary_page", source_url=captured.source_url or url
                )

            loader_id = start.loader_id if start else None
            if not loader_id:
                return None
            body = await page.get_response_body(loader_id)
            if not is_pdf_bytes(body):
                return None
            return CapturedDocument(data=body, strategy="secondary_page", source_url=url)
        except Exception as exc:
            LOGGER.warning("Secondary page attempt failed: %s", exc)
            self._diag.emit("fallback.secondary_failed", "Secondary page failed", {"error": describe_error(exc)})
            return None
        finally:
            if capture is not None:
                await capture.close()
            await close_page_best_effort(page)
