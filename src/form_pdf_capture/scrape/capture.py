from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from ..utils.diagnostics import Diagnostics, describe_error
from .in_page import fetch_in_page
from .page import CdpPage
from .records import CaptureSlot, CapturedDocument, RequestRecord, ResponseRecord, is_pdf_bytes

LOGGER = logging.getLogger(__name__)

_CANDIDATE_RESOURCE_TYPES = frozenset({"Document", "XHR", "Fetch", "Other"})


def is_capture_candidate(record: ResponseRecord) -> bool:
    if record.is_pdf_like:
        return True
    if "pdf" in record.url.lower():
        return True
    return record.status == 200 and record.resource_type in _CANDIDATE_RESOURCE_TYPES


class ResponseCapture:
    """
    Watches one page's network traffic and fills `slot` with the first valid PDF.

    Two channels run side by side:

    - the response channel reacts to response events, waits for the body to
      finish loading and reads it, replaying the request in-page when the read
      fails for a response that claims to be a PDF;
    - the network channel reacts to `loadingFinished` for PDF-typed responses
      and reads the body straight from the network domain, retrying once.

    Both go through `_commit`, which enforces the magic-byte check; the slot
    keeps whichever document arrives first.
    """

    def __init__(
        self,
        page: CdpPage,
        slot: CaptureSlot,
        *,
        diagnostics: Diagnostics | None = None,
        body_wait_seconds: float = 30.0,
        network_read_delay: float = 0.3,
        network_retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._page = page
        self._slot = slot
        self._diag = diagnostics or Diagnostics(enabled=False)
        self._body_wait_seconds = body_wait_seconds
        self._network_read_delay = network_read_delay
        self._network_retry_delay = network_retry_delay
        self._sleep = sleep
        self._records: dict[str, ResponseRecord] = {}
        self._completions: dict[str, asyncio.Future[bool]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._armed = False
        self._closed = False

    @property
    def slot(self) -> CaptureSlot:
        return self._slot

    def record(self, request_id: str) -> ResponseRecord | None:
        return self._records.get(request_id)

    def arm(self) -> None:
        if self._armed:
            return
        self._armed = True
        self._page.on("request", self._on_request)
        self._page.on("response", self._on_response)
        self._page.on("loading_finished", self._on_loading_finished)
        self._page.on("loading_failed", self._on_loading_failed)

    async def close(self) -> None:
        self._closed = True
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        if self._closed:
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _completion(self, request_id: str) -> asyncio.Future[bool]:
        future = self._completions.get(request_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._completions[request_id] = future
        return future

    def _on_request(self, request: RequestRecord) -> None:
        if request.method == "POST":
            LOGGER.info("POST request: %s", request.url)
            self._diag.emit("capture.post", "POST request observed", {"url": request.url})

    def _on_response(self, record: ResponseRecord) -> None:
        self._records[record.request_id] = record
        if self._slot.captured or not is_capture_candidate(record):
            return
        self._diag.emit(
            "capture.response",
            "Candidate response",
            {
                "url": record.url,
                "status": record.status,
                "content_type": record.content_type,
                "resource_type": record.resource_type,
            },
        )
        self._spawn(self._read_from_response(record))

    def _on_loading_finished(self, request_id: str) -> None:
        future = self._completion(request_id)
        if not future.done():
            future.set_result(True)
        record = self._records.get(request_id)
        if record is None or not record.is_pdf_like or self._slot.captured:
            return
        self._spawn(self._read_from_network(record))

    def _on_loading_failed(self, request_id: str) -> None:
        future = self._completion(request_id)
        if not future.done():
            future.set_result(False)

    async def _read_from_response(self, record: ResponseRecord) -> None:
        try:
            finished = await asyncio.wait_for(
                asyncio.shield(self._completion(record.request_id)),
                timeout=self._body_wait_seconds,
            )
        except asyncio.TimeoutError:
            finished = True
        if self._slot.captured:
            return

        body = b""
        if finished:
            try:
                body = await self._page.get_response_body(record.request_id)
            except Exception as exc:
                LOGGER.debug("Response body unavailable for %s: %s", record.url, exc)
        if body:
            self._commit(record, body, "response_event")
            return

        if not record.is_pdf_like or self._slot.captured:
            return
        try:
            fetched = await fetch_in_page(self._page, record.url)
        except Exception as exc:
            LOGGER.warning("In-page replay of %s failed: %s", record.url, exc)
            self._diag.emit("capture.replay_failed", "Replay failed", {"error": describe_error(exc)})
            return
        if fetched is not None:
            self._commit(record, fetched.data, "response_replay")

    async def _read_from_network(self, record: ResponseRecord) -> None:
        await self._sleep(self._network_read_delay)
        for attempt in range(2):
            if self._slot.captured:
                return
            body = b""
            try:
                body = await self._page.get_response_body(record.request_id)
            except Exception as exc:
                LOGGER.debug(
                    "getResponseBody failed for %s (attempt %d): %s", record.url, attempt + 1, exc
                )
            if body:
                self._commit(record, body, "network_event")
                return
            if attempt == 0:
                await self._sleep(self._network_retry_delay)
        LOGGER.info("Network channel could not read %s", record.url)

    def _commit(self, record: ResponseRecord, body: bytes, strategy: str) -> bool:
        if not is_pdf_bytes(body):
            if record.is_pdf_like:
                LOGGER.warning(
                    "Response for %s claims %s but is not a PDF (starts with %r)",
                    record.url,
                    record.content_type or record.mime_type,
                    body[:8],
                )
            return False
        accepted = self._slot.offer(CapturedDocument(data=body, strategy=strategy, source_url=record.url))
        if accepted:
            LOGGER.info("Captured PDF (%d bytes) via %s from %s", len(body), strategy, record.url)
            self._diag.emit(
                "capture.committed",
                "PDF captured",
                {"strategy": strategy, "url": record.url, "bytes": len(body)},
            )
        return accepted
