from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ISO_DATE_FLAG = "--date=iso-strict"

# Separates hash and committer date in single-line commit records.
COMMIT_FIELD_SEPARATOR = "<->"
COMMIT_LINE_FORMAT = f"%H{COMMIT_FIELD_SEPARATOR}%cd"

# Prefix of the header line emitted for every revision of a stat history.
STAT_HEADER_MARKER = "@@rev@@"
STAT_HISTORY_FORMAT = f"{STAT_HEADER_MARKER}{COMMIT_LINE_FORMAT}"

REVISION_HASH_FORMAT = "%H"
COMMIT_DATE_FORMAT = "%cd"

# Applied to every git invocation: unescaped paths, no colour codes.
GIT_GLOBAL_OPTIONS = ["-c", "core.quotePath=false", "-c", "color.ui=never"]

# Stat summaries are localized; parsers expect the untranslated text.
GIT_ENVIRONMENT = {"LC_ALL": "C"}

DAYS_PER_WEEK = 7.0

_ENV_PREFIX = "EVOTRACE_"


def _default_workers() -> int:
    return os.cpu_count() or 1


class MinerSettings(BaseModel):
    """Runtime settings for history mining."""

    model_config = ConfigDict(extra="forbid")

    git_binary: str = "git"
    workers: int = Field(default_factory=_default_workers, ge=1)
    timeout_s: float | None = Field(default=None, gt=0)
    strict: bool = True

    @field_validator("timeout_s", mode="before")
    @classmethod
    def _normalize_timeout(cls, value: Any) -> float | None:
        if value in (None, "", "0", 0):
            return None
        return float(value)

    @field_validator("strict", mode="before")
    @classmethod
    def _normalize_strict(cls, value: Any) -> bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"0", "false", "no", "off", "n"}:
                return False
            if lowered in {"", "1", "true", "yes", "on", "y"}:
                return True
        return bool(value)

    @classmethod
    def from_env(cls, **overrides: Any) -> MinerSettings:
        """Build settings from EVOTRACE_* variables, then apply non-None overrides."""
        values: dict[str, Any] = {}
        for field_name, env_name in [
            ("git_binary", "GIT"),
            ("workers", "WORKERS"),
            ("timeout_s", "TIMEOUT"),
            ("strict", "STRICT"),
        ]:
            raw = os.environ.get(_ENV_PREFIX + env_name)
            if raw is not None:
                values[field_name] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)
