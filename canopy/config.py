"""Configuration management for Canopy.

Three config sections:
- cache: default revalidation window and stale mode for runtime-static entries
- render: producer concurrency and timeout
- defaults: snapshot database path and log level

Config resolution order (highest priority first):
1. Programmatic (CanopyConfig constructed in code)
2. Environment variables (CANOPY_REVALIDATE_AFTER, CANOPY_STALE_MODE, etc.)
3. Config file (~/.config/canopy/config.json, managed by `canopy config`)
4. Hardcoded defaults

Components never read the global config implicitly once constructed:
CacheStore and RenderExecutor take it (or explicit values) at construction.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

from .core.models import StaleMode


logger = logging.getLogger(__name__)


# =============================================================================
# Config file location
# =============================================================================

CONFIG_DIR = Path.home() / ".config" / "canopy"
CONFIG_FILE = CONFIG_DIR / "config.json"


# =============================================================================
# Config sections
# =============================================================================


@dataclass
class CacheConfig:
    """Memoization cache defaults.

    - revalidate_after: seconds a runtime-static entry stays fresh
    - stale_mode: "serve_stale" (serve old value, refresh in background)
      or "block" (wait for the fresh value)
    """

    revalidate_after: float = 60.0
    stale_mode: str = StaleMode.SERVE_STALE.value


@dataclass
class RenderConfig:
    """Render executor tuning."""

    max_concurrency: int = 32
    producer_timeout: float | None = None  # seconds; None = no timeout


@dataclass
class DefaultsConfig:
    """Non-pipeline settings."""

    db_path: str = "./storage/canopy.db"
    log_level: str = "WARNING"


# =============================================================================
# Main config class
# =============================================================================


@dataclass
class CanopyConfig:
    """Top-level canopy configuration.

    Examples:
        # Package use, no files needed
        config = CanopyConfig(cache=CacheConfig(revalidate_after=30.0))
        store = CacheStore(config=config)

        # CLI use, loads from ~/.config/canopy/config.json
        config = CanopyConfig.load()
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)

    @classmethod
    def load(cls) -> "CanopyConfig":
        """Build a config from the JSON file, then apply env var overrides."""
        config = cls()

        # Layer 1: config file
        if CONFIG_FILE.exists():
            try:
                with open(CONFIG_FILE) as f:
                    data = json.load(f)
                _apply_dict(config, data)
            except (json.JSONDecodeError, OSError, TypeError, ValueError) as exc:
                logger.warning("Failed to load config from %s: %s", CONFIG_FILE, exc)

        # Layer 2: env var overrides
        _ensure_dotenv()
        _apply_env(config)

        return config

    def save(self) -> None:
        """Save config to ~/.config/canopy/config.json."""
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict[str, Any]:
        """Plain nested dict, one key per section."""
        return {
            "cache": asdict(self.cache),
            "render": asdict(self.render),
            "defaults": asdict(self.defaults),
        }

    @property
    def stale_mode(self) -> StaleMode:
        return StaleMode(self.cache.stale_mode)

    @property
    def db_path_resolved(self) -> Path:
        """Resolve snapshot database path."""
        path = Path(self.defaults.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


# =============================================================================
# Config dict / env application
# =============================================================================

FLOAT_FIELDS = {"revalidate_after", "producer_timeout"}
INT_FIELDS = {"max_concurrency"}


def coerce_value(key: str, value: Any) -> Any:
    """Coerce a raw config value to the field's type.

    Raises:
        ValueError: If the value does not parse or is out of range.
    """
    if value is None or (isinstance(value, str) and value.lower() in ("", "none")):
        if key == "producer_timeout":
            return None
        raise ValueError(f"{key} requires a value")
    if key in FLOAT_FIELDS:
        parsed = float(value)
        if parsed <= 0:
            raise ValueError(f"{key} must be positive, got {value!r}")
        return parsed
    if key in INT_FIELDS:
        parsed = int(value)
        if parsed < 1:
            raise ValueError(f"{key} must be >= 1, got {value!r}")
        return parsed
    if key == "stale_mode":
        return StaleMode(value).value
    if key == "log_level":
        level = str(value).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level {value!r}")
        return level
    return value


def _apply_dict(config: CanopyConfig, data: dict) -> None:
    """Apply a dict of values onto a CanopyConfig."""
    for section_name in ("cache", "render", "defaults"):
        section_data = data.get(section_name)
        if not isinstance(section_data, dict):
            continue
        section = getattr(config, section_name)
        for k, v in section_data.items():
            if hasattr(section, k):
                setattr(section, k, coerce_value(k, v))


_ENV_VARS = {
    "CANOPY_REVALIDATE_AFTER": ("cache", "revalidate_after"),
    "CANOPY_STALE_MODE": ("cache", "stale_mode"),
    "CANOPY_MAX_CONCURRENCY": ("render", "max_concurrency"),
    "CANOPY_PRODUCER_TIMEOUT": ("render", "producer_timeout"),
    "CANOPY_DB_PATH": ("defaults", "db_path"),
    "CANOPY_LOG_LEVEL": ("defaults", "log_level"),
}


def _apply_env(config: CanopyConfig) -> None:
    for env_name, (section_name, key) in _ENV_VARS.items():
        val = os.environ.get(env_name)
        if not val:
            continue
        try:
            setattr(getattr(config, section_name), key, coerce_value(key, val))
        except ValueError:
            logger.warning("Invalid %s=%r, ignoring", env_name, val)


_dotenv_loaded = False


def _ensure_dotenv() -> None:
    """Read the nearest .env into os.environ once per process (no override)."""
    global _dotenv_loaded
    if _dotenv_loaded:
        return
    _dotenv_loaded = True

    from dotenv import find_dotenv, load_dotenv

    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)


# =============================================================================
# Global config
# =============================================================================

_config: CanopyConfig | None = None


def get_config() -> CanopyConfig:
    """Get the global CanopyConfig instance.

    Loaded lazily on first use. Library code passes configs explicitly; this
    is for the CLI and for callers that want the file + env defaults.
    """
    global _config
    if _config is None:
        _config = CanopyConfig.load()
    return _config


def configure(config: CanopyConfig) -> None:
    """Set the global CanopyConfig programmatically."""
    global _config
    _config = config


def reset_config() -> None:
    """Drop the process-wide config so the next get_config() reloads it."""
    global _config
    _config = None
