"""
Configuration management for Pi Browser.

Provides configuration dataclass and environment variable loading.
"""

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()


BROWSER_MODES = ("cdp", "extension")


def get_base_dir() -> Path:
    """Get the base directory for pi browser data."""
    return Path.home() / ".pi_browser"


def get_profiles_dir() -> Path:
    """Get the directory for browser profiles."""
    return get_base_dir() / "profiles"


def get_runs_dir() -> Path:
    """Get the directory for run logs."""
    return get_base_dir() / "runs"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


@dataclass
class AgentConfig:
    """Configuration for the browser agent."""

    # Mission to accomplish (empty for parallel batches)
    mission: str = ""

    # Backend: "cdp" drives a local Chrome, "extension" drives the extension
    browser_mode: str = field(
        default_factory=lambda: os.getenv("PI_BROWSER_MODE", "cdp")
    )

    # Profile settings
    profile_name: str = "default"
    no_persist: bool = False

    # Browser settings
    headless: bool = False
    chrome_path: Optional[str] = field(
        default_factory=lambda: os.getenv("PI_BROWSER_CHROME")
    )
    attach_existing: bool = True

    # Turn budgets (interactive mission vs. orchestrated batch)
    max_turns: int = 100
    parallel_max_turns: int = 30
    sessions: int = 2

    # LLM settings
    model_endpoint: str = field(
        default_factory=lambda: os.getenv(
            "PI_BROWSER_ENDPOINT",
            "http://127.0.0.1:1234/v1"
        )
    )
    model: str = field(
        default_factory=lambda: os.getenv(
            "PI_BROWSER_MODEL",
            "qwen2.5:7b"
        )
    )
    api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("PI_BROWSER_API_KEY")
    )
    temperature: float = 0.1
    max_tokens: int = 4096

    # Extension bridge
    extension_host: str = "127.0.0.1"
    extension_port: int = 9876
    extension_connect_timeout_s: float = 60.0
    remote_timeout_s: float = 60.0

    # CDP provisioning
    cdp_port: int = 9444
    existing_cdp_port: int = 9222
    readiness_attempts: int = 50
    readiness_interval_s: float = 0.2

    # Downloads land here
    download_dir: Path = field(
        default_factory=lambda: Path.home() / "Downloads"
    )

    # Debug mode - enables verbose logging (off by default)
    debug: bool = field(
        default_factory=lambda: _env_flag("PI_BROWSER_DEBUG")
    )

    def __post_init__(self):
        """Validate settings and initialize internal state."""
        if self.browser_mode not in BROWSER_MODES:
            raise ValueError(
                f"browser_mode must be one of {BROWSER_MODES}, got {self.browser_mode!r}"
            )
        for name in ("max_turns", "parallel_max_turns"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        if self.sessions < 1:
            raise ValueError(f"sessions must be at least 1, got {self.sessions}")

        # Cache for temp profile directories (when no_persist=True)
        self._temp_dirs: list[Path] = []

    @property
    def profile_dir(self) -> Path:
        """Get the path to the persistent browser profile directory."""
        return get_profiles_dir() / self.profile_name

    def session_profile_dir(self, index: int) -> Path:
        """Get an isolated profile directory for one parallel session.

        With no_persist=True every call creates a fresh temp directory which
        is removed by cleanup_profile_dirs().
        """
        if self.no_persist:
            path = Path(tempfile.mkdtemp(prefix=f"pi_browser_{index}_"))
            self._temp_dirs.append(path)
            return path
        return get_profiles_dir() / f"{self.profile_name}-{index}"

    def cleanup_profile_dirs(self) -> None:
        """Remove temp profile directories created for this run."""
        for path in self._temp_dirs:
            shutil.rmtree(path, ignore_errors=True)
        self._temp_dirs.clear()

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        get_base_dir().mkdir(parents=True, exist_ok=True)
        get_profiles_dir().mkdir(parents=True, exist_ok=True)
        get_runs_dir().mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_cli_args(
        cls,
        mission: str = "",
        profile: str = "default",
        headless: bool = False,
        max_turns: Optional[int] = None,
        sessions: Optional[int] = None,
        model_endpoint: Optional[str] = None,
        model: Optional[str] = None,
        extension: bool = False,
        no_persist: bool = False,
        debug: bool = False,
    ) -> "AgentConfig":
        """Create configuration from CLI arguments."""
        overrides = {}
        if max_turns is not None:
            overrides["max_turns"] = max_turns
            overrides["parallel_max_turns"] = max_turns
        if model_endpoint:
            overrides["model_endpoint"] = model_endpoint
        if model:
            overrides["model"] = model
        if extension:
            overrides["browser_mode"] = "extension"
        if debug:
            overrides["debug"] = True

        return cls(
            mission=mission,
            profile_name=profile,
            headless=headless,
            no_persist=no_persist,
            sessions=sessions or DEFAULTS["sessions"],
            **overrides,
        )


# Default configuration values for documentation
DEFAULTS = {
    "profile": "default",
    "headless": False,
    "max_turns": 100,
    "parallel_max_turns": 30,
    "sessions": 2,
    "model_endpoint": "http://127.0.0.1:1234/v1",
    "model": "qwen2.5:7b",
    "extension_port": 9876,
    "cdp_port": 9444,
    "remote_timeout_s": 60,
}
