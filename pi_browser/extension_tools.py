"""
Extension tools for Pi Browser.

Runs the browser tools through the Pi-Browser extension (Remote backend).
Each tool becomes one or more commands on the CommandChannel and the reply
is reshaped into the same ToolOutput the Direct backend produces.
"""

import asyncio
import json
import logging
import re
import time
from typing import Any, Optional

from .conversation import ImageContent, ToolOutput
from .errors import ActionFailed, ActuatorUnavailable, UnknownTool
from .remote import NOT_CONNECTED_MESSAGE, CommandChannel
from .tools import (
    MAX_WAIT_MS,
    SCROLL_STEP,
    SELECTOR_VISIBLE_TIMEOUT_MS,
    SNAPSHOT_LIMIT,
    TEXT_GONE_TIMEOUT_MS,
    TEXT_VISIBLE_TIMEOUT_MS,
    parse_duration_ms,
)

logger = logging.getLogger(__name__)


REMOTE_TEXT_LIMIT = 5000
POLL_INTERVAL_S = 0.5

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


class RemoteBackend:
    """Executes browser tools through the extension."""

    def __init__(self, channel: CommandChannel):
        self.channel = channel

    async def execute(self, name: str, args: dict[str, Any]) -> ToolOutput:
        """Execute a browser tool via the extension.

        Raises:
            UnknownTool: If the tool has no Remote implementation
            ActuatorUnavailable: If the extension is not connected
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
        if not self.channel.is_connected:
            raise ActuatorUnavailable(NOT_CONNECTED_MESSAGE)
        return await method(**args)

    async def navigate(self, url: str) -> ToolOutput:
        result = await self.channel.send("navigate", {"url": url}) or {}
        return ToolOutput(f"Navigated to {result.get('url', url)}. Title: {result.get('title', '')}")

    async def click(self, selector: str) -> ToolOutput:
        await self.channel.send("click", {"selector": selector})
        return ToolOutput(f"Clicked: {selector}")

    async def fill(self, selector: str, text: str) -> ToolOutput:
        await self.channel.send("fill", {"selector": selector, "value": text})
        return ToolOutput(f'Filled "{text}" into {selector}')

    async def press(self, key: str) -> ToolOutput:
        await self.channel.send("press", {"key": key})
        return ToolOutput(f"Pressed: {key}")

    async def screenshot(self) -> ToolOutput:
        result = await self.channel.send("screenshot", {}) or {}
        data_url = result.get("image") or ""
        if not data_url:
            raise ActionFailed("Extension returned no screenshot")
        return ToolOutput(
            "Screenshot captured",
            image=ImageContent(_DATA_URL_PREFIX.sub("", data_url), "image/png"),
        )

    async def snapshot(self) -> ToolOutput:
        result = await self.channel.send("snapshot", {}) or {}
        lines = []
        for i, element in enumerate((result.get("elements") or [])[:SNAPSHOT_LIMIT], start=1):
            text = str(element.get("text") or "")[:50]
            lines.append(f'[e{i}] {element.get("tag", "")} "{text}" → {element.get("selector", "")}')
        return ToolOutput("Page elements:\n" + "\n".join(lines))

    async def scroll(self, direction: str = "down") -> ToolOutput:
        await self.channel.send("scroll", {"direction": direction, "amount": SCROLL_STEP})
        return ToolOutput(f"Scrolled {direction}")

    async def _page_text(self) -> str:
        result = await self.channel.send("getText", {}) or {}
        return str(result.get("text") or "")

    async def get_text(self, selector: str = "") -> ToolOutput:
        # The extension only reads the whole page
        text = (await self._page_text())[:REMOTE_TEXT_LIMIT]
        return ToolOutput(f"Page text:\n{text}")

    async def _poll(self, check, timeout_ms: int, description: str) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while not await check():
            if time.monotonic() >= deadline:
                raise ActionFailed(f"Timed out after {timeout_ms}ms waiting for {description}")
            await asyncio.sleep(POLL_INTERVAL_S)

    async def _selector_visible(self, selector: str) -> bool:
        script = (
            f"(() => {{ const el = document.querySelector({json.dumps(selector)});"
            " return !!el && !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length); })()"
        )
        result = await self.channel.send("evaluate", {"script": script}) or {}
        return bool(result.get("result"))

    async def wait(
        self,
        timeMs: Optional[str] = None,
        text: Optional[str] = None,
        textGone: Optional[str] = None,
        selector: Optional[str] = None,
    ) -> ToolOutput:
        """Same conditions as the Direct backend, polled over the channel."""
        parts = []

        duration = min(parse_duration_ms(timeMs), MAX_WAIT_MS)
        if duration > 0:
            await asyncio.sleep(duration / 1000)
            parts.append(f"Waited {duration}ms")

        if text:
            async def appeared() -> bool:
                return text in await self._page_text()
            await self._poll(appeared, TEXT_VISIBLE_TIMEOUT_MS, f'text "{text}"')
            parts.append(f'Text "{text}" appeared')

        if textGone:
            async def gone() -> bool:
                return textGone not in await self._page_text()
            await self._poll(gone, TEXT_GONE_TIMEOUT_MS, f'text "{textGone}" to disappear')
            parts.append(f'Text "{textGone}" disappeared')

        if selector:
            async def visible() -> bool:
                return await self._selector_visible(selector)
            await self._poll(visible, SELECTOR_VISIBLE_TIMEOUT_MS, f'element "{selector}"')
            parts.append(f'Element "{selector}" visible')

        return ToolOutput(", ".join(parts) if parts else "Wait completed")

    async def download(self, selector: str, filename: Optional[str] = None) -> ToolOutput:
        raise ActionFailed("browser_download is not supported in extension mode")
