from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field

from .page import CdpPage

LOGGER = logging.getLogger(__name__)

PDF_ACCEPT_HEADER = "application/pdf,application/octet-stream,*/*"
FORM_URLENCODED = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class FetchedBody:
    data: bytes
    content_type: str = ""
    status: int = 0


@dataclass(frozen=True)
class PageForm:
    action: str
    method: str = "GET"
    fields: list[tuple[str, str]] = field(default_factory=list)


def build_fetch_script(
    url: str,
    *,
    method: str = "GET",
    body: str | None = None,
    content_type: str | None = None,
) -> str:
    init: dict[str, object] = {
        "method": method.upper(),
        "credentials": "include",
        "headers": {"Accept": PDF_ACCEPT_HEADER},
    }
    if body is not None:
        init["body"] = body
        init["headers"]["Content-Type"] = content_type or FORM_URLENCODED  # type: ignore[index]
    return (
        "(async function() {"
        f"  const resp = await fetch({json.dumps(url)}, {json.dumps(init)});"
        "  const blob = await resp.blob();"
        "  const b64 = await new Promise((resolve, reject) => {"
        "    const reader = new FileReader();"
        "    reader.onloadend = () => {"
        "      const res = reader.result || '';"
        "      const idx = res.indexOf(',');"
        "      resolve(idx >= 0 ? res.slice(idx + 1) : '');"
        "    };"
        "    reader.onerror = () => reject(reader.error);"
        "    reader.readAsDataURL(blob);"
        "  });"
        "  return {"
        "    base64: b64,"
        "    contentType: resp.headers.get('content-type') || '',"
        "    status: resp.status"
        "  };"
        "})()"
    )


FORM_EXTRACTION_SCRIPT = (
    "(function() {"
    "  const form = document.querySelector('form');"
    "  if (!form) { return null; }"
    "  const fields = [];"
    "  for (const el of form.querySelectorAll('input, textarea, select')) {"
    "    if (!el.name) { continue; }"
    "    const type = (el.type || '').toLowerCase();"
    "    if ((type === 'checkbox' || type === 'radio') && !el.checked) { continue; }"
    "    let value = el.value;"
    "    if ((type === 'checkbox' || type === 'radio') && !value) { value = 'on'; }"
    "    fields.push([el.name, value == null ? '' : String(value)]);"
    "  }"
    "  return {"
    "    action: form.action || location.href,"
    "    method: (form.getAttribute('method') || 'GET').toUpperCase(),"
    "    fields: fields"
    "  };"
    "})()"
)


async def fetch_in_page(
    page: CdpPage,
    url: str,
    *,
    method: str = "GET",
    body: str | None = None,
    content_type: str | None = None,
) -> FetchedBody | None:
    """
    Re-issue a request from inside the page so it carries the page's cookies.

    Returns None when the script produced nothing decodable. Evaluation
    failures propagate as `PageEvaluationError`.
    """
    script = build_fetch_script(url, method=method, body=body, content_type=content_type)
    payload = await page.evaluate(script, await_promise=True)
    if not isinstance(payload, dict):
        return None
    b64_val = payload.get("base64") or ""
    if not b64_val:
        return None
    try:
        data = base64.b64decode(b64_val)
    except (binascii.Error, ValueError) as exc:
        LOGGER.debug("Failed to decode base64 from in-page fetch of %s: %s", url, exc)
        return None
    return FetchedBody(
        data=data,
        content_type=str(payload.get("contentType") or ""),
        status=int(payload.get("status") or 0),
    )


async def extract_form(page: CdpPage) -> PageForm | None:
    payload = await page.evaluate(FORM_EXTRACTION_SCRIPT)
    if not isinstance(payload, dict):
        return None
    fields = [
        (str(item[0]), str(item[1]))
        for item in payload.get("fields") or []
        if isinstance(item, (list, tuple)) and len(item) == 2
    ]
    return PageForm(
        action=str(payload.get("action") or ""),
        method=str(payload.get("method") or "GET").upper(),
        fields=fields,
    )
