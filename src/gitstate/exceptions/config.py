from __future__ import annotations

from typing import Any

from gitstate.exceptions.base import GitStateError


class ConfigError(GitStateError):
    """Settings or checkout configuration could not be loaded or validated.

    Covers YAML syntax errors in ``gitstate.yaml``, pydantic validation
    failures and bad ``GITSTATE_*`` environment values.

    Attributes:
        field: Dotted name of the offending field (e.g. "push_retries").
        value: The rejected value, for diagnostics.

    Example:
        ```python
        raise ConfigError("push_retries must be >= 1", field="push_retries", value=0)
        ```
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
    ) -> None:
        self.field = field
        self.value = value
        super().__init__(message)
