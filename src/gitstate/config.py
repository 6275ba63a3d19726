"""Configuration for repositories and working checkouts.

Two layers:

- :class:`GitStateSettings` holds process-wide tuning (timeouts, poll
  interval, retry budgets). It is loaded from ``GITSTATE_*`` environment
  variables, ``./gitstate.yaml`` and ``~/.config/gitstate/config.yaml``.
- :class:`CheckoutConfig` describes one working checkout. Every field is
  supplied by the caller; nothing is defaulted from the environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from gitstate.exceptions import ConfigError
from gitstate.logging import get_logger

__all__ = [
    "CheckoutConfig",
    "GitStateSettings",
    "get_user_config_path",
    "load_settings",
]

logger = get_logger(__name__)


class CheckoutConfig(BaseModel):
    """Settings for one working checkout, fixed at clone time.

    Attributes:
        branch: Branch the checkout tracks and pushes to.
        user_name: Committer name written into the checkout's git config.
        user_email: Committer email written into the checkout's git config.
        sync_tag: Tag advanced after each successful push; ``""`` disables it.
        notes_ref: Short notes ref name, stored under ``refs/notes/``.
        paths: Manifest subdirectories relative to the checkout root. Empty
            means the root itself.
        skip_message: Marker appended verbatim to every commit message.
    """

    model_config = ConfigDict(frozen=True)

    branch: str = Field(min_length=1)
    user_name: str = Field(min_length=1)
    user_email: str = Field(min_length=1)
    sync_tag: str
    notes_ref: str = Field(min_length=1)
    paths: tuple[str, ...] = ()
    skip_message: str = ""

    @field_validator("paths")
    @classmethod
    def check_relative_paths(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for path in v:
            p = Path(path)
            if p.is_absolute() or ".." in p.parts:
                raise ValueError(f"manifest path must be inside the checkout: {path}")
        return v

    @field_validator("notes_ref")
    @classmethod
    def strip_notes_prefix(cls, v: str) -> str:
        return v.removeprefix("refs/notes/")

    @property
    def full_notes_ref(self) -> str:
        return f"refs/notes/{self.notes_ref}"


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source that reads a single YAML mapping."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: Path | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file = yaml_file
        self._config_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            try:
                with open(yaml_file) as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {yaml_file}: {e}") from e
            if loaded is None:
                logger.warning("config_file_empty", path=str(yaml_file))
            elif not isinstance(loaded, dict):
                raise ConfigError(
                    f"Expected a mapping at the top of {yaml_file}",
                    value=type(loaded).__name__,
                )
            else:
                self._config_data = loaded

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        if field_name in self._config_data:
            return self._config_data[field_name], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._config_data


class GitStateSettings(BaseSettings):
    """Process-wide tuning for repositories and checkouts.

    Attributes:
        timeout: Seconds allowed per git invocation.
        clone_timeout: Seconds allowed for mirror clones and fetches.
        poll_interval: Seconds between background refreshes.
        push_retries: Push attempts (including the first) before a
            non-fast-forward rejection is surfaced.
        network_retries: Extra attempts for transient fetch failures.
        readonly: Refuse to push anything to the remote.
        cache_root: Parent directory for mirrors and checkouts; the system
            temp directory when unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="GITSTATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    timeout: float = Field(default=20.0, gt=0)
    clone_timeout: float = Field(default=120.0, gt=0)
    poll_interval: float = Field(default=300.0, gt=0)
    push_retries: int = Field(default=3, ge=1, le=20)
    network_retries: int = Field(default=2, ge=0, le=10)
    readonly: bool = False
    cache_root: Path | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Order sources from highest to lowest priority.

        1. Explicit keyword arguments
        2. Environment variables (GITSTATE_*)
        3. Project YAML config (./gitstate.yaml)
        4. User YAML config (~/.config/gitstate/config.yaml)
        """
        return (
            init_settings,
            env_settings,
            YamlConfigSource(settings_cls, Path.cwd() / "gitstate.yaml"),
            YamlConfigSource(settings_cls, get_user_config_path()),
        )


def get_user_config_path() -> Path:
    """Return ``~/.config/gitstate/config.yaml``."""
    return Path.home() / ".config" / "gitstate" / "config.yaml"


def load_settings(config_path: Path | None = None, **overrides: Any) -> GitStateSettings:
    """Load settings with hierarchy: defaults -> user -> project -> env -> overrides.

    Args:
        config_path: Explicit config file. Its values are applied as
            keyword arguments, so they win over the environment.
        **overrides: Field values that win over every other source.

    Returns:
        GitStateSettings instance with merged configuration.

    Raises:
        ConfigError: If any source holds an invalid value.
    """
    try:
        if config_path is not None:
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
            file_values = YamlConfigSource(GitStateSettings, config_path)()
            return GitStateSettings(**{**file_values, **overrides})
        return GitStateSettings(**overrides)
    except ValidationError as e:
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error["loc"])
        raise ConfigError(
            f"Invalid configuration: {first_error['msg']}",
            field=field,
            value=first_error.get("input"),
        ) from e
