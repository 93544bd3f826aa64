"""Configuration loader for login capture using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (LOGINCAPTURE_* with __ for nesting)
  3. settings.local.toml
  4. settings.<env>.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("LOGINCAPTURE_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"
STATE_DIR = Path(os.getenv("LOGINCAPTURE_STATE_DIR", Path.home() / ".logincapture"))

ENV_VAR_NAME = "LOGINCAPTURE_ENV"
DEFAULT_ENV = "local"

# Client identification strings for the embedded browsing context.
PLATFORM_USER_AGENTS: dict[str, str] = {
    "ios": (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
    ),
    "android": (
        "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/119.0.0.0 Mobile Safari/537.36"
    ),
    "desktop": "",
}


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class CaptureSettings(BaseSettings):
    """Timing and matching knobs for the capture engine.

    All durations are in seconds.
    """

    model_config = SettingsConfigDict(env_prefix="LOGINCAPTURE_CAPTURE__")

    login_url: str = "https://x.com/i/flow/login"
    landing_hosts: list[str] = Field(default_factory=lambda: ["x.com", "twitter.com"])

    poll_interval: float = 1.0
    retry_initial_delay: float = 1.0
    retry_step: float = 0.5
    retry_max_attempts: int = 10
    heartbeat_interval: float = 2.0

    cookie_retry_delay: float = 1.0
    cookie_retry_limit: int = 1
    username_wait_timeout: float = 6.0
    completion_delay: float = 1.0
    overall_timeout: float = 300.0


class BrowserSettings(BaseSettings):
    """Playwright browser settings for the embedded login page."""

    model_config = SettingsConfigDict(env_prefix="LOGINCAPTURE_BROWSER__")

    headless: bool = False
    platform: Literal["ios", "android", "desktop"] = "ios"
    user_agent: str = ""
    persist_cookies: bool = True
    storage_state_path: str = str(STATE_DIR / "storage_state.json")
    timeout_ms: int = 30_000

    @property
    def effective_user_agent(self) -> str:
        """Explicit user agent if set, else the per-platform default."""
        return self.user_agent or PLATFORM_USER_AGENTS.get(self.platform, "")


class SessionSettings(BaseSettings):
    """Captured-session persistence."""

    model_config = SettingsConfigDict(env_prefix="LOGINCAPTURE_SESSION__")

    store_path: str = str(STATE_DIR / "session.json")
    timeout_days: int = 7


class CacheSettings(BaseSettings):
    """Community cache reporting."""

    model_config = SettingsConfigDict(env_prefix="LOGINCAPTURE_CACHE__")

    enabled: bool = False
    api_url: str = "https://x-posed-cache.xaitax.workers.dev"
    timeout_sec: float = 5.0


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="LOGINCAPTURE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)

    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _expand_paths(self) -> "Settings":
        """Expand ``~`` in user-facing file paths."""
        self.session.store_path = str(Path(self.session.store_path).expanduser())
        self.browser.storage_state_path = str(Path(self.browser.storage_state_path).expanduser())
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
