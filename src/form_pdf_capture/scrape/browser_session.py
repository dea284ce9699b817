from __future__ import annotations

import asyncio
import atexit
import contextlib
import logging
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import BrowserLaunchError
from ..utils.diagnostics import Diagnostics, describe_error
from . import chromium
from ._nodriver import load_nodriver
from .page import CdpPage

LOGGER = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_SECONDS = 2.0


@dataclass
class BrowserSession:
    """
    The one Chromium process shared by every capture request.

    `acquire()` health-checks the running process and replaces it when it is
    gone or unresponsive. A failed launch is retried once with a minimal flag
    set before `BrowserLaunchError` is raised.
    """

    host: str = "127.0.0.1"
    user_agent: str = chromium.DEFAULT_USER_AGENT
    port: int | None = None
    proc: asyncio.subprocess.Process | None = None
    browser: Any = None
    user_data_dir: tempfile.TemporaryDirectory[str] | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def acquire(self, diagnostics: Diagnostics | None = None) -> Any:
        async with self._lock:
            if await self._is_healthy(diagnostics):
                return self.browser
            await self._teardown()
            await self._start(diagnostics)
            return self.browser

    async def new_page(self, diagnostics: Diagnostics | None = None) -> CdpPage:
        browser = await self.acquire(diagnostics)
        tab = await browser.get("about:blank", new_tab=True)
        return CdpPage(tab)

    async def _is_healthy(self, diagnostics: Diagnostics | None) -> bool:
        if self.browser is None or self.proc is None or self.port is None:
            return False
        if self.proc.returncode is not None:
            LOGGER.warning("Chromium exited (code=%s); relaunching", self.proc.returncode)
            return False
        try:
            await chromium.wait_for_devtools_ready(
                host=self.host,
                port=self.port,
                proc=self.proc,
                timeout_seconds=HEALTH_CHECK_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            LOGGER.warning("Chromium health check failed: %s", exc)
            if diagnostics:
                diagnostics.emit("browser.probe_failed", "Health check failed", {"error": describe_error(exc)})
            return False
        return True

    async def _start(self, diagnostics: Diagnostics | None) -> None:
        executable_path = chromium.resolve_browser_executable_path()
        if not executable_path:
            raise BrowserLaunchError(
                "No Chromium-based browser executable found. "
                "Install Chromium/Chrome or set FORM_PDF_BROWSER_EXECUTABLE_PATH."
            )
        sandbox_enabled = chromium.resolve_sandbox_enabled()
        ready_timeout = chromium.resolve_devtools_ready_timeout_seconds()
        self.user_data_dir = tempfile.TemporaryDirectory(
            prefix="form-pdf-capture-", ignore_cleanup_errors=True
        )

        try:
            port = chromium.pick_free_port(self.host)
            args = chromium.build_chromium_launch_args(
                host=self.host,
                port=port,
                user_data_dir=self.user_data_dir.name,
                user_agent=self.user_agent,
                sandbox_enabled=sandbox_enabled,
            )
            await self._launch(executable_path, args, port, ready_timeout, diagnostics)
        except Exception as exc:
            LOGGER.warning("Chromium launch failed (%s); retrying with minimal flags", exc)
            if diagnostics:
                diagnostics.emit("browser.launch_retry", "Retrying with minimal flags", {"error": describe_error(exc)})
            await self._terminate_process()
            try:
                port = chromium.pick_free_port(self.host)
                args = chromium.build_minimal_launch_args(
                    host=self.host, port=port, user_data_dir=self.user_data_dir.name
                )
                await self._launch(executable_path, args, port, ready_timeout, diagnostics)
            except Exception as retry_exc:
                await self._teardown()
                raise BrowserLaunchError(f"Failed to launch Chromium: {retry_exc}") from retry_exc

        try:
            self.browser = await self._connect(self.host, self.port)
        except Exception as exc:
            await self._teardown()
            raise BrowserLaunchError(f"Failed to connect to Chromium: {exc}") from exc
        LOGGER.info("Chromium ready on %s:%s", self.host, self.port)
        if diagnostics:
            diagnostics.emit("browser.ready", "Chromium ready", {"host": self.host, "port": self.port})

    async def _launch(
        self,
        executable_path: str,
        args: list[str],
        port: int,
        ready_timeout: float,
        diagnostics: Diagnostics | None,
    ) -> None:
        if diagnostics:
            diagnostics.emit(
                "browser.launch",
                "Starting Chromium",
                {"executable": executable_path, "port": port, "args": len(args)},
            )
        self.port = port
        self.proc = await chromium.launch_chromium(executable_path, args)
        await chromium.wait_for_devtools_ready(
            host=self.host, port=port, proc=self.proc, timeout_seconds=ready_timeout
        )

    async def _connect(self, host: str, port: int | None) -> Any:
        uc = load_nodriver()
        return await uc.start(host=host, port=port)

    async def _terminate_process(self) -> None:
        if self.proc is not None:
            await chromium.terminate_process(self.proc)
            self.proc = None

    async def _teardown(self) -> None:
        if self.browser is not None:
            with contextlib.suppress(Exception):
                result = self.browser.stop()
                if asyncio.iscoroutine(result):
                    await result
            self.browser = None
        await self._terminate_process()
        self.port = None
        if self.user_data_dir is not None:
            self.user_data_dir.cleanup()
            self.user_data_dir = None

    async def shutdown(self) -> None:
        async with self._lock:
            await self._teardown()

    def shutdown_sync(self) -> None:
        proc = self.proc
        if proc is not None:
            try:
                if proc.returncode is None:
                    proc.terminate()
                    time.sleep(0.2)
                    if proc.returncode is None:
                        proc.kill()
            except Exception:
                pass
            self.proc = None
        self.browser = None
        if self.user_data_dir is not None:
            with contextlib.suppress(Exception):
                self.user_data_dir.cleanup()
            self.user_data_dir = None


_SESSION: BrowserSession | None = None
_SHUTDOWN_REGISTERED = False


def get_browser_session() -> BrowserSession:
    global _SESSION
    if _SESSION is None:
        _SESSION = BrowserSession()
        _register_shutdown(_SESSION)
    return _SESSION


def _register_shutdown(session: BrowserSession) -> None:
    global _SHUTDOWN_REGISTERED
    if _SHUTDOWN_REGISTERED:
        return
    _SHUTDOWN_REGISTERED = True

    def _shutdown() -> None:
        session.shutdown_sync()

    atexit.register(_shutdown)
