"""
Browser tools for Pi Browser.

Provides browser action execution via Playwright (Direct backend): the agent
drives a Chrome instance it owns over CDP.
"""

import base64
import logging
import re
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import Page

from .conversation import ImageContent, ToolOutput
from .errors import UnknownTool
from .locators import resolve_locator

logger = logging.getLogger(__name__)


INTERACTIVE_ROLES = ("button", "link", "textbox", "searchbox", "combobox", "checkbox", "radio")
SNAPSHOT_LIMIT = 20
GET_TEXT_LIMIT = 2000
SCROLL_STEP = 500

# browser_wait limits (ms)
MAX_WAIT_MS = 60000
TEXT_VISIBLE_TIMEOUT_MS = 30000
TEXT_GONE_TIMEOUT_MS = 60000
SELECTOR_VISIBLE_TIMEOUT_MS = 30000
DOWNLOAD_TIMEOUT_MS = 120000

_ARIA_LINE = re.compile(r'^\s*-\s*(\w+)(?:\s+"([^"]*)")?')
_LEADING_INT = re.compile(r"^\s*(\d+)")


def parse_duration_ms(value: Optional[str]) -> int:
    """Leading integer of a millisecond value ("5000", "5000ms"); 0 if none."""
    if not value:
        return 0
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def format_aria_snapshot(snapshot: str, limit: int = SNAPSHOT_LIMIT) -> list[str]:
    """Extract interactive elements from a Playwright ARIA snapshot.

    Args:
        snapshot: YAML-ish text from locator.aria_snapshot()
        limit: Maximum number of elements

    Returns:
        Lines like ``[e1] button "Sign in" → button:"Sign in"``
    """
    lines = []
    for raw in (snapshot or "").splitlines():
        match = _ARIA_LINE.match(raw)
        if not match:
            continue
        role, name = match.group(1), match.group(2)
        if role.lower() not in INTERACTIVE_ROLES:
            continue

        ref = f'{role}:"{name}"' if name else role
        label = f' "{name}"' if name else ""
        lines.append(f"[e{len(lines) + 1}] {role}{label} → {ref}")
        if len(lines) >= limit:
            break
    return lines


class DirectBackend:
    """Executes browser tools on a Playwright page."""

    def __init__(self, session: Any, download_dir: Optional[Path] = None):
        """Initialize the backend.

        Args:
            session: Object exposing the active Playwright page as ``.page``
                (a BrowserSession)
            download_dir: Where browser_download saves files
        """
        self.session = session
        self.download_dir = Path(download_dir or Path.home() / "Downloads").expanduser()

    @property
    def page(self) -> Page:
        return self.session.page

    async def execute(self, name: str, args: dict[str, Any]) -> ToolOutput:
        """Execute a browser tool.

        Args:
            name: Tool name (browser_*)
            args: Validated tool arguments

        Returns:
            ToolOutput with text and optional image

        Raises:
            UnknownTool: If the tool has no Direct implementation
        """
        method_map = {
            "browser_navigate": self.navigate,
            "browser_click": self.click,
            "browser_fill": self.fill,
            "browser_press": self.press,
            "browser_screenshot": self.screenshot,
            "browser_snapshot": self.snapshot,
            "browser_scroll": self.scroll,
            "browser_get_text": self.get_text,
            "browser_wait": self.wait,
            "browser_download": self.download,
        }

        method = method_map.get(name)
        if method is None:
            raise UnknownTool(name)
        return await method(**args)

    async def navigate(self, url: str) -> ToolOutput:
        page = self.page
        await page.goto(url, wait_until="domcontentloaded")
        title = await page.title()
        return ToolOutput(f"Navigated to {url}. Title: {title}")

    async def click(self, selector: str) -> ToolOutput:
        page = self.page
        locator = await resolve_locator(page, selector)
        await locator.click()
        await page.wait_for_timeout(1000)
        return ToolOutput(f"Clicked: {selector}")

    async def fill(self, selector: str, text: str) -> ToolOutput:
        locator = await resolve_locator(self.page, selector)
        await locator.fill(text)
        return ToolOutput(f'Filled "{text}" into {selector}')

    async def press(self, key: str) -> ToolOutput:
        page = self.page
        await page.keyboard.press(key)
        await page.wait_for_timeout(500)
        return ToolOutput(f"Pressed: {key}")

    async def screenshot(self) -> ToolOutput:
        data = await self.page.screenshot(type="jpeg", quality=80)
        return ToolOutput(
            "Screenshot captured",
            image=ImageContent(base64.b64encode(data).decode("ascii"), "image/jpeg"),
        )

    async def snapshot(self) -> ToolOutput:
        aria = await self.page.locator(":root").aria_snapshot()
        lines = format_aria_snapshot(aria)
        return ToolOutput("Page elements (use ref value for selector):\n" + "\n".join(lines))

    async def scroll(self, direction: str = "down") -> ToolOutput:
        amount = SCROLL_STEP if direction == "down" else -SCROLL_STEP
        await self.page.evaluate(f"window.scrollBy(0, {amount})")
        return ToolOutput(f"Scrolled {direction}")

    async def get_text(self, selector: str = "") -> ToolOutput:
        page = self.page
        if selector:
            text = await page.locator(selector).first.text_content() or ""
        else:
            text = await page.evaluate("() => document.body.innerText") or ""
        return ToolOutput(text[:GET_TEXT_LIMIT])

    async def wait(
        self,
        timeMs: Optional[str] = None,
        text: Optional[str] = None,
        textGone: Optional[str] = None,
        selector: Optional[str] = None,
    ) -> ToolOutput:
        """Wait for each given condition in turn."""
        page = self.page
        parts = []

        duration = min(parse_duration_ms(timeMs), MAX_WAIT_MS)
        if duration > 0:
            await page.wait_for_timeout(duration)
            parts.append(f"Waited {duration}ms")

        if text:
            await page.get_by_text(text).first.wait_for(
                state="visible", timeout=TEXT_VISIBLE_TIMEOUT_MS
            )
            parts.append(f'Text "{text}" appeared')

        if textGone:
            await page.get_by_text(textGone).first.wait_for(
                state="hidden", timeout=TEXT_GONE_TIMEOUT_MS
            )
            parts.append(f'Text "{textGone}" disappeared')

        if selector:
            await page.locator(selector).first.wait_for(
                state="visible", timeout=SELECTOR_VISIBLE_TIMEOUT_MS
            )
            parts.append(f'Element "{selector}" visible')

        return ToolOutput(", ".join(parts) if parts else "Wait completed")

    async def download(self, selector: str, filename: Optional[str] = None) -> ToolOutput:
        """Click a download control and save the resulting file.

        The download listener is armed before the click so a fast download
        is not missed.
        """
        page = self.page
        locator = await resolve_locator(page, selector)

        async with page.expect_download(timeout=DOWNLOAD_TIMEOUT_MS) as download_info:
            await locator.click()
        download = await download_info.value

        suggested = download.suggested_filename
        self.download_dir.mkdir(parents=True, exist_ok=True)
        save_path = self.download_dir / Path(filename or suggested).name
        await download.save_as(save_path)

        logger.info("Saved download to %s", save_path)
        return ToolOutput(f"Downloaded: {save_path} ({suggested})")
