from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

PDF_MAGIC = b"%PDF"
PDF_MIME_TYPE = "application/pdf"


def is_pdf_bytes(data: bytes | bytearray | None) -> bool:
    """Magic-byte check; declared content types are never trusted on their own."""
    if not data:
        return False
    return bytes(data[:4]) == PDF_MAGIC


@dataclass(frozen=True)
class CaptureRequest:
    target_url: str


@dataclass(frozen=True)
class ResponseRecord:
    request_id: str
    url: str
    content_type: str = ""
    status: int = 0
    mime_type: str = ""
    resource_type: str = ""

    @property
    def is_pdf_like(self) -> bool:
        return PDF_MIME_TYPE in self.content_type.lower() or self.mime_type.lower() == PDF_MIME_TYPE


@dataclass(frozen=True)
class RequestRecord:
    request_id: str
    url: str
    method: str = "GET"


@dataclass(frozen=True)
class NavigationStart:
    frame_id: str
    loader_id: str | None = None
    error_text: str | None = None


@dataclass(frozen=True)
class FrameNavigation:
    frame_id: str
    url: str
    is_main_frame: bool


@dataclass(frozen=True)
class CapturedDocument:
    data: bytes
    strategy: str
    source_url: str = ""

    def __post_init__(self) -> None:
        if not is_pdf_bytes(self.data):
            raise ValueError(f"Refusing non-PDF buffer from strategy {self.strategy!r}")


@dataclass
class CaptureSlot:
    """
    Single-resolution holder for the captured document of one request.

    Whichever channel offers a document first wins; every later offer is a
    no-op. The event loop is single-threaded, so the done-check and the
    result assignment cannot interleave.
    """

    _future: asyncio.Future[CapturedDocument] | None = field(default=None, repr=False)

    def _ensure_future(self) -> asyncio.Future[CapturedDocument]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def captured(self) -> bool:
        return self._future is not None and self._future.done()

    @property
    def document(self) -> CapturedDocument | None:
        if not self.captured:
            return None
        return self._future.result()  # type: ignore[union-attr]

    def offer(self, document: CapturedDocument) -> bool:
        future = self._ensure_future()
        if future.done():
            return False
        future.set_result(document)
        return True
