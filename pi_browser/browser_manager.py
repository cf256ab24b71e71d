"""
Browser session management for Pi Browser.

Launches Chrome processes with the remote debugging port open, waits for the
CDP endpoint to come up and attaches Playwright to each. Every session owns
its own process, profile directory and active page.
"""

import asyncio
import logging
import os
import platform
import shutil
from pathlib import Path
from typing import Optional

import httpx
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .config import AgentConfig
from .errors import SessionProvisioningError

# Get logger for this module
logger = logging.getLogger(__name__)


CHROME_FLAGS = (
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-sync",
)


def find_chrome_executable() -> Optional[str]:
    """Locate a Chrome or Chromium binary for this platform."""
    system = platform.system()
    if system == "Darwin":
        candidates = [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    elif system == "Windows":
        candidates = [
            os.path.join(os.environ.get("PROGRAMFILES", ""), "Google/Chrome/Application/chrome.exe"),
            os.path.join(os.environ.get("LOCALAPPDATA", ""), "Google/Chrome/Application/chrome.exe"),
        ]
    else:
        candidates = ["/usr/bin/google-chrome", "/usr/bin/chromium", "/usr/bin/chromium-browser"]

    for path in candidates:
        if os.path.exists(path):
            return path
    for name in ("google-chrome", "chromium", "chromium-browser"):
        found = shutil.which(name)
        if found:
            return found
    return None


async def wait_for_cdp(port: int, attempts: int = 50, interval: float = 0.2) -> bool:
    """Poll the CDP version endpoint until it answers.

    Args:
        port: Remote debugging port
        attempts: Maximum number of probes
        interval: Seconds between probes

    Returns:
        True once the endpoint answers 200, False after all attempts fail
    """
    url = f"http://127.0.0.1:{port}/json/version"
    async with httpx.AsyncClient(timeout=0.5) as client:
        for attempt in range(attempts):
            try:
                response = await client.get(url)
                if response.status_code == 200:
                    return True
            except httpx.HTTPError as e:
                logger.debug("CDP probe %d on port %d failed: %s", attempt + 1, port, e)
            await asyncio.sleep(interval)
    return False


class BrowserSession:
    """One browser the agent drives: process, CDP connection and active page."""

    def __init__(
        self,
        label: str,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        process: Optional[asyncio.subprocess.Process] = None,
        owns_browser: bool = True,
    ):
        self.label = label
        self.browser = browser
        self.context = context
        self._page = page
        self.process = process
        self.owns_browser = owns_browser
        self._closed = False

    @property
    def page(self) -> Page:
        """The active page; follows a replacement if the page was closed."""
        if self._page.is_closed() and self.context.pages:
            self._page = self.context.pages[0]
        return self._page

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Disconnect and stop the browser process.

        Safe to call multiple times. A browser that was already running
        before we attached to it is left open.
        """
        if self._closed:
            return
        self._closed = True

        if not self.owns_browser:
            logger.debug("%s: leaving attached browser running", self.label)
            return

        try:
            await self.browser.close()
        except Exception as e:
            logger.debug("%s: browser close failed: %s", self.label, e)

        if self.process is not None and self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self.process.kill()

    def __repr__(self) -> str:
        return f"BrowserSession({self.label!r})"


class SessionProvider:
    """Provisions isolated Chrome sessions over CDP.

    Usage:
        provider = SessionProvider(config)
        sessions = await provider.provision(3)
        ...
        await provider.close_all()
    """

    def __init__(self, config: AgentConfig):
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._sessions: list[BrowserSession] = []
        self._start_lock = asyncio.Lock()

    @property
    def sessions(self) -> list[BrowserSession]:
        return list(self._sessions)

    async def _ensure_playwright(self) -> Playwright:
        # Concurrent launches share one driver
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return self._playwright

    async def _open(self, label: str, port: int) -> tuple[Browser, BrowserContext, Page]:
        playwright = await self._ensure_playwright()
        browser = await playwright.chromium.connect_over_cdp(f"http://127.0.0.1:{port}")
        context = browser.contexts[0] if browser.contexts else await browser.new_context()
        page = context.pages[0] if context.pages else await context.new_page()
        logger.debug("%s: attached over CDP on port %d", label, port)
        return browser, context, page

    async def _attach_existing(self) -> Optional[BrowserSession]:
        port = self.config.existing_cdp_port
        if not await wait_for_cdp(port, attempts=1, interval=0):
            return None
        try:
            browser, context, page = await self._open("session-0", port)
        except Exception as e:
            logger.warning("Could not attach to browser on port %d: %s", port, e)
            return None
        logger.info("Attached to running browser on port %d", port)
        return BrowserSession("session-0", browser, context, page, owns_browser=False)

    def _profile_dir(self, index: int, count: int) -> Path:
        if count == 1 and not self.config.no_persist:
            path = self.config.profile_dir
        else:
            path = self.config.session_profile_dir(index)
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def _launch(self, index: int, count: int) -> BrowserSession:
        """Start one Chrome process and attach to it.

        Raises:
            SessionProvisioningError: If Chrome is missing or never becomes ready
        """
        label = f"session-{index}"
        executable = self.config.chrome_path or find_chrome_executable()
        if not executable:
            raise SessionProvisioningError("Chrome not found. Set PI_BROWSER_CHROME to its path.")

        port = self.config.cdp_port + index
        args = [
            f"--remote-debugging-port={port}",
            f"--user-data-dir={self._profile_dir(index, count)}",
            *CHROME_FLAGS,
        ]
        if self.config.headless:
            args.append("--headless=new")
        args.append("about:blank")

        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

        ready = await wait_for_cdp(
            port,
            attempts=self.config.readiness_attempts,
            interval=self.config.readiness_interval_s,
        )
        if not ready:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise SessionProvisioningError(f"{label}: CDP endpoint did not come up on port {port}")

        try:
            browser, context, page = await self._open(label, port)
        except Exception:
            process.kill()
            await process.wait()
            raise
        logger.info("%s: Chrome ready on port %d", label, port)
        return BrowserSession(label, browser, context, page, process=process)

    async def provision(self, count: int) -> list[BrowserSession]:
        """Launch `count` sessions concurrently.

        Sessions that fail to start are logged and skipped.

        Returns:
            Ready sessions, in index order

        Raises:
            SessionProvisioningError: If no session could be started
        """
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")

        if count == 1 and self.config.attach_existing:
            existing = await self._attach_existing()
            if existing is not None:
                self._sessions.append(existing)
                return [existing]

        results = await asyncio.gather(
            *(self._launch(index, count) for index in range(count)),
            return_exceptions=True,
        )

        ready = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.warning("session-%d failed to start: %s", index, result)
                continue
            ready.append(result)

        if not ready:
            raise SessionProvisioningError(f"None of {count} browser sessions could be started")

        self._sessions.extend(ready)
        return ready

    async def close_all(self) -> None:
        """Close every session, stop Playwright and remove temp profiles."""
        for session in self._sessions:
            await session.close()
        self._sessions.clear()

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

        self.config.cleanup_profile_dirs()

    async def __aenter__(self) -> "SessionProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close_all()
