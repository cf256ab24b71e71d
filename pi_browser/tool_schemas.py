"""
Typed tool schemas for Pi Browser.

Provides Pydantic models for the arguments of every browser tool. Tool
names and field names are shared verbatim by the model-side schema and the
dispatcher, so they must not be renamed.
"""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolArgs(BaseModel):
    """Base for tool arguments: flat, string-typed, lenient about extras."""

    # Models regularly send numbers for string fields ("timeMs": 5000)
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")


# =============================================================================
# Browser Tool Schemas
# =============================================================================

class NavigateArgs(ToolArgs):
    url: str = Field(description="The URL to navigate to")


class ClickArgs(ToolArgs):
    selector: str = Field(
        description='Selector from browser_snapshot (role:"name"), a role, or a CSS selector'
    )


class FillArgs(ToolArgs):
    selector: str = Field(
        description='Selector of the input field: role:"name", a role, or a CSS selector'
    )
    text: str = Field(description="Text to fill")


class PressArgs(ToolArgs):
    key: str = Field(description="Key to press such as Enter, Tab, Escape")


class ScreenshotArgs(ToolArgs):
    pass


class SnapshotArgs(ToolArgs):
    pass


class ScrollArgs(ToolArgs):
    direction: str = Field(default="down", description="Scroll direction: up or down")


class GetTextArgs(ToolArgs):
    selector: str = Field(
        default="",
        description="CSS selector or empty string for full page",
    )


class WaitArgs(ToolArgs):
    """All conditions are optional; the ones given run in field order."""

    timeMs: Optional[str] = Field(
        default=None,
        description="Wait time in milliseconds (e.g. 5000 for 5 seconds)",
    )
    text: Optional[str] = Field(
        default=None,
        description="Wait for this text to appear on page",
    )
    textGone: Optional[str] = Field(
        default=None,
        description="Wait for this text to disappear (e.g. Loading...)",
    )
    selector: Optional[str] = Field(
        default=None,
        description="Wait for this element to be visible",
    )


class DownloadArgs(ToolArgs):
    selector: str = Field(description="Selector of download button/link to click")
    filename: Optional[str] = Field(
        default=None,
        description="Filename to save as (e.g. song.mp3)",
    )


# =============================================================================
# Registry
# =============================================================================

@dataclass(frozen=True)
class ToolSpec:
    """A named tool exposed to the model."""
    name: str
    description: str
    args_model: type[ToolArgs]

    def parameters(self) -> dict[str, Any]:
        """JSON schema of the flat parameter object."""
        schema = self.args_model.model_json_schema()
        properties = {}
        for field_name, prop in schema.get("properties", {}).items():
            properties[field_name] = {
                "type": "string",
                "description": prop.get("description", ""),
            }
        return {
            "type": "object",
            "properties": properties,
            "required": list(schema.get("required", [])),
        }

    def to_openai(self) -> dict[str, Any]:
        """Render in the OpenAI function-tool format accepted by bind_tools()."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters(),
            },
        }


BROWSER_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec("browser_navigate", "Navigate to a URL", NavigateArgs),
    ToolSpec("browser_click", "Click an element by selector", ClickArgs),
    ToolSpec("browser_fill", "Fill text into an input field", FillArgs),
    ToolSpec("browser_press", "Press a keyboard key", PressArgs),
    ToolSpec("browser_screenshot", "Take a screenshot of the current page", ScreenshotArgs),
    ToolSpec(
        "browser_snapshot",
        "Get the accessibility snapshot of the page with interactive elements",
        SnapshotArgs,
    ),
    ToolSpec("browser_scroll", "Scroll the page up or down", ScrollArgs),
    ToolSpec("browser_get_text", "Get text content from the page", GetTextArgs),
    ToolSpec(
        "browser_wait",
        "Wait for a condition: time, text to appear, text to disappear, or element",
        WaitArgs,
    ),
    ToolSpec(
        "browser_download",
        "Click a download button/link and save the file",
        DownloadArgs,
    ),
)

TOOLS_BY_NAME: dict[str, ToolSpec] = {spec.name: spec for spec in BROWSER_TOOLS}

TOOL_NAMES: frozenset[str] = frozenset(TOOLS_BY_NAME)


def openai_tools() -> list[dict[str, Any]]:
    """All browser tools in bind_tools() format."""
    return [spec.to_openai() for spec in BROWSER_TOOLS]
