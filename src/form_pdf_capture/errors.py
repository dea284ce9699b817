from __future__ import annotations


class CaptureError(RuntimeError):
    pass


class InvalidTargetUrlError(CaptureError):
    pass


class BrowserLaunchError(CaptureError):
    pass


class NoPdfFoundError(CaptureError):
    pass


class PageEvaluationError(CaptureError):
    """An in-page script threw or the evaluation itself failed."""


NO_PDF_FOUND_MESSAGE = (
    "No PDF found. The URL may not redirect to a PDF file, or the PDF download failed."
)
