from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..settings import get_float_env, get_int_env
from .records import CaptureSlot

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class CaptureTimings:
    poll_interval_seconds: float = 0.5
    poll_attempts: int = 80
    idle_wait_seconds: float = 20.0
    settle_seconds: float = 3.0
    final_grace_seconds: float = 2.0
    navigation_timeout_seconds: float = 60.0
    auto_submit_wait_seconds: float = 30.0
    secondary_page_timeout_seconds: float = 30.0


def _clamped_float(key: str, default: float, *, max_value: float) -> float:
    value = get_float_env(key, default)
    if value < 0:
        value = default
    return min(value, max_value)


def _clamped_int(key: str, default: int, *, max_value: int) -> int:
    value = get_int_env(key, default)
    if value < 0:
        value = default
    return min(value, max_value)


def resolve_capture_timings() -> CaptureTimings:
    """Build timings from `FORM_PDF_*` env vars; invalid values fall back to defaults."""
    defaults = CaptureTimings()
    return CaptureTimings(
        poll_interval_seconds=_clamped_float(
            "FORM_PDF_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds, max_value=10.0
        ),
        poll_attempts=_clamped_int("FORM_PDF_POLL_ATTEMPTS", defaults.poll_attempts, max_value=1000),
        idle_wait_seconds=_clamped_float(
            "FORM_PDF_IDLE_WAIT_SECONDS", defaults.idle_wait_seconds, max_value=300.0
        ),
        settle_seconds=_clamped_float(
            "FORM_PDF_SETTLE_SECONDS", defaults.settle_seconds, max_value=60.0
        ),
        final_grace_seconds=_clamped_float(
            "FORM_PDF_FINAL_GRACE_SECONDS", defaults.final_grace_seconds, max_value=60.0
        ),
        navigation_timeout_seconds=_clamped_float(
            "FORM_PDF_NAVIGATION_TIMEOUT_SECONDS", defaults.navigation_timeout_seconds, max_value=600.0
        ),
        auto_submit_wait_seconds=_clamped_float(
            "FORM_PDF_AUTO_SUBMIT_WAIT_SECONDS", defaults.auto_submit_wait_seconds, max_value=600.0
        ),
        secondary_page_timeout_seconds=_clamped_float(
            "FORM_PDF_SECONDARY_PAGE_TIMEOUT_SECONDS",
            defaults.secondary_page_timeout_seconds,
            max_value=600.0,
        ),
    )


async def run_passive_phase(
    slot: CaptureSlot,
    *,
    timings: CaptureTimings,
    wait_for_network_idle: Callable[[float], Awaitable[bool]],
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """
    Give the capture channels time to fill `slot` without touching the page.

    Polls every `poll_interval_seconds` for up to `poll_attempts` rounds,
    returning as soon as the slot is filled. If it is still empty, waits once
    for network idle, then the settle delay and the final grace period,
    checking after each.
    """
    for _ in range(timings.poll_attempts):
        if slot.captured:
            return True
        await sleep(timings.poll_interval_seconds)
    if slot.captured:
        return True

    LOGGER.info("No PDF after polling; waiting for network idle")
    try:
        await wait_for_network_idle(timings.idle_wait_seconds)
    except Exception:
        LOGGER.warning("Network idle wait failed", exc_info=True)

    await sleep(timings.settle_seconds)
    if slot.captured:
        return True

    await sleep(timings.final_grace_seconds)
    return slot.captured
