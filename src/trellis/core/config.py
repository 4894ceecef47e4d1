"""
Trellis runtime configuration.

Configuration is loaded from the ``[trellis]`` section of ``trellis.toml``.
The ``TRELLIS_CONFIG`` environment variable may point at another file.
A missing file or section yields the defaults.

Example:
    [trellis]
    default_retention_ms = 86400000
    badge_interval_ms = 30000

    [trellis.logging]
    level = "DEBUG"

    [trellis.confirmations.leave-group]
    title = "Leave Group"
    message = "You will stop receiving updates from this group."
    destructive = true
    action = "api://groups/leave"
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from trellis.core.errors import ConfigError

CONFIG_FILENAME = "trellis.toml"
CONFIG_ENV_VAR = "TRELLIS_CONFIG"

DAY_MS = 24 * 60 * 60 * 1000


# =============================================================================
# Sub-configuration Models
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = ".trellis/logs"
    jsonl: bool = True


class ConfirmationConfig(BaseModel):
    """
    A named confirmation dialog for ``confirm://<name>`` actions.

    ``action`` is the action string executed once the user confirms.
    """

    title: str
    message: str
    destructive: bool = False
    action: str


def _builtin_confirmations() -> dict[str, ConfirmationConfig]:
    return {
        "block-user": ConfirmationConfig(
            title="Block User",
            message="They will no longer be able to see your activities or message you.",
            destructive=True,
            action="api://users/block",
        ),
        "delete-activity": ConfirmationConfig(
            title="Delete Activity",
            message="This activity will be permanently removed.",
            destructive=True,
            action="api://activities/delete",
        ),
    }


# =============================================================================
# Main Configuration Model
# =============================================================================


class TrellisConfig(BaseModel):
    """Complete Trellis runtime configuration."""

    default_retention_ms: float = Field(default=DAY_MS, gt=0)
    default_retry: int = Field(default=2, ge=0, le=5)
    activity_window_s: float = Field(default=30, gt=0)
    badge_interval_ms: int = Field(default=60_000, ge=5_000)
    badge_timeout_s: float = Field(default=10, gt=0)
    share_base_url: str = "https://app.example.com"

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    confirmations: dict[str, ConfirmationConfig] = Field(
        default_factory=_builtin_confirmations
    )

    def get_confirmation(self, name: str) -> ConfirmationConfig | None:
        return self.confirmations.get(name)


# =============================================================================
# Configuration Loading
# =============================================================================


def find_config_path(start: Path | None = None) -> Path:
    """Resolve the config file path (``TRELLIS_CONFIG`` wins over ``start``)."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return (start or Path.cwd()) / CONFIG_FILENAME


def load_config(toml_path: Path | None = None) -> TrellisConfig:
    """
    Load Trellis configuration from trellis.toml.

    Args:
        toml_path: Path to the config file. Defaults to ``$TRELLIS_CONFIG``
            or ``./trellis.toml``.

    Returns:
        TrellisConfig with values from file or defaults

    Raises:
        ConfigError: If the file exists but is not valid TOML or holds
            invalid values.
    """
    path = toml_path or find_config_path()
    if not path.exists():
        return TrellisConfig()

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    section = data.get("trellis", {})
    if not section:
        return TrellisConfig()

    return _parse_config(section, path)


def _parse_config(data: dict[str, Any], path: Path) -> TrellisConfig:
    """Parse the [trellis] section, layering custom confirmations over built-ins."""
    config_data = dict(data)
    if "confirmations" in config_data:
        confirmations: dict[str, Any] = dict(_builtin_confirmations())
        confirmations.update(config_data["confirmations"])
        config_data["confirmations"] = confirmations

    try:
        return TrellisConfig.model_validate(config_data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
