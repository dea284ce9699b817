from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from types import ModuleType
from typing import Any

from ..errors import PageEvaluationError
from ._nodriver import load_nodriver
from .records import FrameNavigation, NavigationStart, RequestRecord, ResponseRecord

LOGGER = logging.getLogger(__name__)

# Names accepted by `CdpPage.on`, mapped to (CDP domain, event class name).
_EVENTS: dict[str, tuple[str, str]] = {
    "request": ("network", "RequestWillBeSent"),
    "response": ("network", "ResponseReceived"),
    "loading_finished": ("network", "LoadingFinished"),
    "loading_failed": ("network", "LoadingFailed"),
    "frame_navigated": ("page", "FrameNavigated"),
    "dom_content_loaded": ("page", "DomContentEventFired"),
}


def _header(headers: Any, name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    try:
        items = dict(headers).items()
    except (TypeError, ValueError):
        return ""
    for key, value in items:
        if str(key).lower() == wanted:
            return str(value)
    return ""


def _enum_value(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value))


def _to_response_record(event: Any) -> ResponseRecord:
    response = event.response
    return ResponseRecord(
        request_id=str(event.request_id),
        url=str(getattr(response, "url", "") or ""),
        content_type=_header(getattr(response, "headers", None), "content-type"),
        status=int(getattr(response, "status", 0) or 0),
        mime_type=str(getattr(response, "mime_type", "") or ""),
        resource_type=_enum_value(getattr(event, "type_", None)),
    )


def _to_request_record(event: Any) -> RequestRecord:
    request = event.request
    return RequestRecord(
        request_id=str(event.request_id),
        url=str(getattr(request, "url", "") or ""),
        method=str(getattr(request, "method", "GET") or "GET").upper(),
    )


def _to_frame_navigation(event: Any) -> FrameNavigation:
    frame = event.frame
    return FrameNavigation(
        frame_id=str(getattr(frame, "id_", "") or ""),
        url=str(getattr(frame, "url", "") or ""),
        is_main_frame=getattr(frame, "parent_id", None) is None,
    )


_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "request": _to_request_record,
    "response": _to_response_record,
    "loading_finished": lambda event: str(event.request_id),
    "loading_failed": lambda event: str(event.request_id),
    "frame_navigated": _to_frame_navigation,
    "dom_content_loaded": lambda event: None,
}


class CdpPage:
    """
    Adapter over one nodriver tab.

    Everything above this class sees plain records (`ResponseRecord`,
    `FrameNavigation`, request ids as `str`) instead of CDP objects, so the
    capture logic can be driven by fakes in tests.

    Listeners are synchronous callables. nodriver dispatches events from its
    websocket listener loop, so listeners must return quickly and schedule any
    awaiting work as tasks themselves.
    """

    def __init__(self, tab: Any, *, cdp: ModuleType | Any | None = None) -> None:
        self._tab = tab
        self._cdp = cdp if cdp is not None else load_nodriver().cdp
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}
        self._closed = False

    @property
    def tab(self) -> Any:
        return self._tab

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, name: str, listener: Callable[[Any], None]) -> None:
        if name not in _EVENTS:
            raise ValueError(f"Unsupported page event: {name}")
        listeners = self._listeners.get(name)
        if listeners is None:
            listeners = self._listeners[name] = []
            domain, event_name = _EVENTS[name]
            event_type = getattr(getattr(self._cdp, domain), event_name)
            self._tab.add_handler(event_type, self._make_dispatcher(name))
        listeners.append(listener)

    def _make_dispatcher(self, name: str) -> Callable[..., None]:
        convert = _CONVERTERS[name]

        def _dispatch(event: Any, *_: Any) -> None:
            try:
                payload = convert(event)
            except Exception:
                LOGGER.debug("Could not convert %s event", name, exc_info=True)
                return
            for listener in list(self._listeners.get(name, ())):
                try:
                    listener(payload)
                except Exception:
                    LOGGER.exception("Listener for %s failed", name)

        return _dispatch

    async def enable_network(self) -> None:
        await self._tab.send(self._cdp.network.enable())

    async def enable_page(self) -> None:
        await self._tab.send(self._cdp.page.enable())

    async def navigate(self, url: str) -> NavigationStart:
        result = await self._tab.send(self._cdp.page.navigate(url))
        if not isinstance(result, (tuple, list)):
            result = (result,)
        frame_id = result[0] if len(result) > 0 else ""
        loader_id = result[1] if len(result) > 1 else None
        error_text = result[2] if len(result) > 2 else None
        return NavigationStart(
            frame_id=str(frame_id or ""),
            loader_id=str(loader_id) if loader_id else None,
            error_text=str(error_text) if error_text else None,
        )

    async def get_response_body(self, request_id: str) -> bytes:
        network = self._cdp.network
        body, base64_encoded = await self._tab.send(
            network.get_response_body(request_id=network.RequestId(request_id))
        )
        if not body:
            return b""
        if base64_encoded:
            return base64.b64decode(body)
        return body.encode("utf-8")

    async def evaluate(self, expression: str, *, await_promise: bool = False) -> Any:
        result = await self._tab.send(
            self._cdp.runtime.evaluate(
                expression=expression,
                await_promise=await_promise,
                return_by_value=True,
            )
        )
        remote, exception_details = result if isinstance(result, (tuple, list)) else (result, None)
        if exception_details is not None:
            exception = getattr(exception_details, "exception", None)
            detail = getattr(exception, "description", None) or getattr(exception_details, "text", "")
            raise PageEvaluationError(f"In-page script failed: {detail}")
        return getattr(remote, "value", None)

    async def current_url(self) -> str:
        value = await self.evaluate("location.href")
        return str(value or "")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._tab.close()
