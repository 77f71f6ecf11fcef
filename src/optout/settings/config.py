"""Configuration loader for optout using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (OPTOUT_* with __ for nesting)
  3. settings.local.toml
  4. settings.{env}.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tempfile
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("OPTOUT_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "OPTOUT_ENV"
DEFAULT_ENV = "local"


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


class BrowserSettings(BaseSettings):
    """Chrome / Playwright session settings."""

    model_config = SettingsConfigDict(env_prefix="OPTOUT_BROWSER__")

    chrome_binary: str = ""  # empty → search the platform's standard install paths
    headless: bool = False
    persistent_profile: bool = False  # False → fresh throwaway profile per session
    user_data_dir: str = str(Path(tempfile.gettempdir()) / "opt-outta-chrome")
    navigation_timeout_ms: int = 30_000
    action_timeout_ms: int = 10_000
    element_poll_timeout_ms: int = 5_000
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--disable-blink-features=AutomationControlled",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-background-timer-throttling",
        ]
    )


class EngineSettings(BaseSettings):
    """Run state machine and step executor tuning."""

    model_config = SettingsConfigDict(env_prefix="OPTOUT_ENGINE__")

    wait_for_timeout_ms: int = 10_000
    max_wait_ms: int = 30_000
    action_delay_ms_min: int = 500
    action_delay_ms_max: int = 1_500
    post_resume_delay_ms: int = 1_000
    report_outcomes: bool = True
    app_version: str = "0.1.0"


class RecorderSettings(BaseSettings):
    """Action recorder settings."""

    model_config = SettingsConfigDict(env_prefix="OPTOUT_RECORDER__")

    click_dedupe_ms: int = 500
    element_text_max: int = 100


class CatalogSettings(BaseSettings):
    """Community playbook catalog API configuration."""

    model_config = SettingsConfigDict(env_prefix="OPTOUT_CATALOG__")

    api_base: str = "https://opt-outta.com/api/v1"
    sandbox: bool = False
    sandbox_api_base: str = "https://sandbox.opt-outta.com/api/v1"
    sandbox_token: str = ""
    signing_key: str = ""  # base64 Ed25519 seed (32 bytes) or libsodium secret key (64 bytes)
    playbook_public_key: str = ""  # base64 Ed25519 verify key for community playbooks
    timeout_sec: float = 10.0
    list_limit: int = 10

    @property
    def base_url(self) -> str:
        """Return the effective API base, honouring sandbox mode."""
        return self.sandbox_api_base if self.sandbox else self.api_base


class StorageSettings(BaseSettings):
    """Local JSON store locations."""

    model_config = SettingsConfigDict(env_prefix="OPTOUT_STORAGE__")

    data_dir: str = "data"
    local_playbooks_file: str = "local_playbooks.json"
    history_file: str = "submissions.json"
    registry_file: str = "brokers.json"
    profile_file: str = "profile.json"

    def path_for(self, filename: str) -> Path:
        """Return *filename* resolved inside ``data_dir``."""
        return Path(self.data_dir) / filename


class APISettings(BaseSettings):
    """API server configuration."""

    model_config = SettingsConfigDict(env_prefix="OPTOUT_API__")

    host: str = "127.0.0.1"
    port: int = 8300
    cors_origins: list[str] = ["http://localhost:1420", "http://localhost:5173"]


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root optout settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="OPTOUT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    recorder: RecorderSettings = Field(default_factory=RecorderSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    api: APISettings = Field(default_factory=APISettings)

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
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths against project_root."""
        if not Path(self.storage.data_dir).is_absolute():
            self.storage.data_dir = str(self.project_root / self.storage.data_dir)
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
