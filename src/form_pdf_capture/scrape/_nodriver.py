from __future__ import annotations

import importlib
import importlib.util
import logging
import os
import re
import sys
import tempfile
from types import ModuleType

LOGGER = logging.getLogger(__name__)

_CODING_COOKIE_RE = re.compile(r"coding[:=]\s*([-\w.]+)")


def _has_encoding_cookie(lines: list[bytes]) -> bool:
    for idx in range(min(2, len(lines))):
        line = lines[idx]
        if idx == 0 and line.startswith(b"\xef\xbb\xbf"):
            line = line[3:]
        if _CODING_COOKIE_RE.search(line.decode("latin-1", errors="ignore")):
            return True
    return False


def _inject_encoding_cookie(lines: list[bytes]) -> list[bytes]:
    line_ending = b"\r\n" if lines and lines[0].endswith(b"\r\n") else b"\n"
    # nodriver CDP sources contain non-UTF-8 bytes; latin-1 keeps raw bytes stable.
    cookie = b"# coding: latin-1" + line_ending
    if lines and lines[0].startswith(b"#!"):
        return [lines[0], cookie] + lines[1:]
    return [cookie] + lines


def _is_non_utf8_syntax_error(exc: SyntaxError) -> bool:
    msg = str(getattr(exc, "msg", "") or exc).lower()
    return "non-utf-8" in msg or "encoding problem" in msg


def _resolve_nodriver_network_path(exc: SyntaxError) -> str | None:
    candidates: list[str] = []
    filename = getattr(exc, "filename", None)
    if filename:
        candidates.append(os.path.realpath(filename))
    spec = importlib.util.find_spec("nodriver.cdp.network")
    if spec and spec.origin:
        candidates.append(os.path.realpath(spec.origin))
    for path in candidates:
        if path.replace("\\", "/").lower().endswith("/nodriver/cdp/network.py"):
            return path
    return None


def _patch_nodriver_network_encoding(exc: SyntaxError) -> bool:
    if not _is_non_utf8_syntax_error(exc):
        return False
    path = _resolve_nodriver_network_path(exc)
    if not path:
        return False

    with open(path, "rb") as handle:
        lines = handle.read().splitlines(keepends=True)
    if _has_encoding_cookie(lines):
        return True

    directory = os.path.dirname(path) or "."
    fd, tmp_path = tempfile.mkstemp(prefix="._nodriver_", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as tmp_handle:
            tmp_handle.writelines(_inject_encoding_cookie(lines))
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
    LOGGER.warning("Added an encoding cookie to %s so nodriver can be imported", path)
    return True


def load_nodriver() -> ModuleType:
    """
    Import nodriver, repairing the known non-UTF-8 `cdp/network.py` packaging issue once.

    Imported lazily so the HTTP layer and the metadata code stay importable
    on machines without a browser stack.
    """
    try:
        import nodriver  # type: ignore
    except SyntaxError as exc:
        if not _patch_nodriver_network_encoding(exc):
            raise RuntimeError(
                "nodriver is required for PDF capture. Install with: pip install nodriver"
            ) from exc
        for key in list(sys.modules):
            if key == "nodriver" or key.startswith("nodriver."):
                sys.modules.pop(key, None)
        importlib.invalidate_caches()
        import nodriver  # type: ignore
    except ImportError as exc:
        raise RuntimeError(
            "nodriver is required for PDF capture. Install with: pip install nodriver"
        ) from exc
    return nodriver
