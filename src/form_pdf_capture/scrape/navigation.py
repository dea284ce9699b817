from __future__ import annotations

import asyncio
import logging

from .page import CdpPage
from .records import FrameNavigation, NavigationStart, RequestRecord

LOGGER = logging.getLogger(__name__)


class NavigationDriver:
    """Drives one page through the landing load and its auto-submit navigation."""

    def __init__(self, page: CdpPage, *, quiet_seconds: float = 0.5, poll_seconds: float = 0.05) -> None:
        self._page = page
        self._quiet_seconds = quiet_seconds
        self._poll_seconds = poll_seconds
        self._armed = False
        self._in_flight: set[str] = set()
        self._last_activity = 0.0
        self._main_navigations = 0
        self._dom_ready = asyncio.Event()
        self._followed = asyncio.Event()

    @property
    def main_frame_navigations(self) -> int:
        return self._main_navigations

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def arm(self) -> None:
        if self._armed:
            return
        self._armed = True
        self._page.on("frame_navigated", self._on_frame_navigated)
        self._page.on("dom_content_loaded", self._on_dom_content_loaded)
        self._page.on("request", self._on_request)
        self._page.on("loading_finished", self._on_request_done)
        self._page.on("loading_failed", self._on_request_done)
        await self._page.enable_page()
        await self._page.enable_network()

    def _touch(self) -> None:
        self._last_activity = asyncio.get_running_loop().time()

    def _on_frame_navigated(self, navigation: FrameNavigation) -> None:
        if not navigation.is_main_frame:
            return
        self._main_navigations += 1
        LOGGER.debug("Main frame navigated (%d): %s", self._main_navigations, navigation.url)
        if self._main_navigations >= 2:
            self._followed.set()

    def _on_dom_content_loaded(self, _: object) -> None:
        self._dom_ready.set()

    def _on_request(self, request: RequestRecord) -> None:
        self._in_flight.add(request.request_id)
        self._touch()

    def _on_request_done(self, request_id: str) -> None:
        self._in_flight.discard(request_id)
        self._touch()

    async def load(self, url: str, *, timeout: float = 60.0) -> NavigationStart | None:
        """
        Navigate to `url` and wait for DOMContentLoaded.

        A timeout or a navigation error is logged, not raised: the capture
        channels may already hold the document even when the page never
        finishes loading.
        """
        await self.arm()
        self._main_navigations = 0
        self._dom_ready.clear()
        self._followed.clear()
        self._touch()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        try:
            start = await asyncio.wait_for(self._page.navigate(url), timeout=max(0.1, timeout))
        except asyncio.TimeoutError:
            LOGGER.warning("Navigation to %s timed out after %.1fs", url, timeout)
            return None
        except Exception as exc:
            LOGGER.warning("Navigation to %s failed: %s", url, exc)
            return None

        if start.error_text:
            LOGGER.warning("Navigation to %s reported: %s", url, start.error_text)
            return start

        try:
            await asyncio.wait_for(self._dom_ready.wait(), timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            LOGGER.warning("DOMContentLoaded not reached for %s within %.1fs", url, timeout)
        return start

    async def wait_for_navigation(self, *, timeout: float = 30.0) -> bool:
        """Wait for the main-frame navigation that follows the landing load, then for network idle."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        try:
            await asyncio.wait_for(self._followed.wait(), timeout=max(0.0, timeout))
        except asyncio.TimeoutError:
            LOGGER.info("No follow-on navigation within %.1fs", timeout)
            return False
        return await self.wait_for_network_idle(max(0.0, deadline - loop.time()))

    async def wait_for_network_idle(self, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while True:
            now = loop.time()
            if not self._in_flight and now - self._last_activity >= self._quiet_seconds:
                return True
            if now >= deadline:
                LOGGER.debug("Network not idle after %.1fs (%d in flight)", timeout, len(self._in_flight))
                return False
            await asyncio.sleep(self._poll_seconds)

    async def goto(self, url: str, *, timeout: float = 30.0) -> NavigationStart | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        start = await self.load(url, timeout=timeout)
        await self.wait_for_network_idle(max(0.0, deadline - loop.time()))
        return start
