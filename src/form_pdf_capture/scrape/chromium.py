from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import signal
import socket
import time

import httpx

from ..settings import get_float_env

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def resolve_browser_executable_path(explicit_path: str | None = None) -> str | None:
    if explicit_path and explicit_path.strip():
        return explicit_path.strip()

    for key in (
        "FORM_PDF_BROWSER_EXECUTABLE_PATH",
        "BROWSER_EXECUTABLE_PATH",
        "CHROME_BIN",
        "CHROME_PATH",
    ):
        value = (os.environ.get(key) or "").strip()
        if value:
            return value

    for name in ("chromium", "google-chrome", "google-chrome-stable", "chrome", "chromium-browser"):
        resolved = shutil.which(name)
        if resolved:
            return resolved

    return None


def resolve_sandbox_enabled() -> bool:
    """
    Determine whether Chromium sandbox should be enabled.

    - In containers the service usually runs as root; Chromium cannot start sandboxed as root.
    - Default is sandbox disabled, matching the usual Docker/Railway deployment.
    """
    try:
        if hasattr(os, "geteuid") and os.geteuid() == 0:
            return False
    except Exception:
        pass

    raw_sandbox = (os.environ.get("FORM_PDF_SANDBOX") or "").strip().lower()
    return raw_sandbox in ("1", "true", "yes", "on")


def resolve_devtools_ready_timeout_seconds() -> float:
    value = get_float_env("FORM_PDF_DEVTOOLS_READY_TIMEOUT_SECONDS", 12.0)
    if value <= 0:
        value = 12.0
    return max(0.5, min(value, 120.0))


def pick_free_port(host: str = "127.0.0.1") -> int:
    # Best-effort selection: inherently racy, so startup must tolerate collisions.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return int(s.getsockname()[1])


def _devtools_args(*, host: str, port: int, user_data_dir: str) -> list[str]:
    return [
        # Only bind DevTools to loopback.
        f"--remote-debugging-host={host}",
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        "--headless=new",
    ]


def build_chromium_launch_args(
    *,
    host: str,
    port: int,
    user_data_dir: str,
    user_agent: str,
    sandbox_enabled: bool,
    platform_name: str | None = None,
) -> list[str]:
    args = _devtools_args(host=host, port=port, user_data_dir=user_data_dir)
    args.extend(
        [
            "--window-size=1920,1080",
            *([] if sandbox_enabled else ["--no-sandbox", "--disable-setuid-sandbox"]),
            "--disable-dev-shm-usage",
            "--disable-accelerated-2d-canvas",
            "--disable-gpu",
            "--no-first-run",
            "--no-zygote",
            # The form replay runs `fetch()` from the landing page's origin.
            "--disable-web-security",
            "--disable-features=IsolateOrigins,site-per-process",
            "--disable-blink-features=AutomationControlled",
            "--disable-logging",
            "--log-level=3",
            f"--user-agent={user_agent}",
        ]
    )
    if (platform_name or os.name) == "nt":
        args.extend(
            [
                "--disable-background-timer-throttling",
                "--disable-backgrounding-occluded-windows",
                "--disable-renderer-backgrounding",
            ]
        )
    return args


def build_minimal_launch_args(*, host: str, port: int, user_data_dir: str) -> list[str]:
    """Bare flag set used for the single retry after a failed launch."""
    return [
        *_devtools_args(host=host, port=port, user_data_dir=user_data_dir),
        "--no-sandbox",
        "--disable-setuid-sandbox",
    ]


async def launch_chromium(executable_path: str, args: list[str]) -> asyncio.subprocess.Process:
    # Discard Chromium stdout/stderr to avoid deadlocks on filled pipes.
    return await asyncio.create_subprocess_exec(
        executable_path,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        start_new_session=(os.name == "posix"),
    )


async def terminate_process(proc: asyncio.subprocess.Process, *, grace_seconds: float = 1.5) -> None:
    if proc.returncode is not None:
        return

    terminated = False
    if os.name == "posix" and proc.pid is not None:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
            terminated = True
        except OSError:
            terminated = False
    if not terminated:
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()

    try:
        await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
        return
    except asyncio.TimeoutError:
        pass

    if os.name == "posix" and proc.pid is not None:
        with contextlib.suppress(OSError):
            os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    with contextlib.suppress(Exception):
        await proc.wait()


async def wait_for_devtools_ready(
    *,
    host: str,
    port: int,
    proc: asyncio.subprocess.Process,
    timeout_seconds: float,
) -> None:
    """
    Wait until the DevTools HTTP endpoint responds.

    Chrome exposes `webSocketDebuggerUrl` via GET `/json/version`. This is a stronger readiness signal
    than a raw TCP connect because it requires the browser to be responsive, not just listening.
    """
    deadline = time.monotonic() + max(0.1, timeout_seconds)
    url = f"http://{host}:{port}/json/version"

    # Never allow proxy env vars to hijack localhost traffic.
    async with httpx.AsyncClient(trust_env=False) as client:
        while time.monotonic() < deadline:
            if proc.returncode is not None:
                raise RuntimeError(f"Chromium exited early (code={proc.returncode})")
            try:
                resp = await client.get(url, timeout=0.75)
                if resp.status_code == 200:
                    return
            except httpx.HTTPError:
                pass
            await asyncio.sleep(0.1)

    raise RuntimeError("DevTools endpoint did not become ready in time")
