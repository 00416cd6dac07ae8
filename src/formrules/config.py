"""Runtime configuration for form handlers.

Every setting can be given explicitly or read from the environment. Numeric
variables are clamped to their valid range; unparseable values fall back to
the default.

Environment variables:
    FORMRULES_HISTORY_LIMIT       Undo history entries kept (default 50, 1-10000)
    FORMRULES_EXECUTION_TIMEOUT   Seconds one queued rule batch may run (default 30, 0.001-3600)
    FORMRULES_MAX_CASCADE_DEPTH   Re-trigger hops after rule commits (default 0 = off, 0-100)
    FORMRULES_VALIDATE_ON_CHANGE  Run field validation after each change (default true)
    FORMRULES_STRICT              Re-raise the first engine error of a change (default false)
    FORMRULES_LOG_LEVEL           Log level for the command-line tools (default INFO)
"""

import logging
import os
import sys
from dataclasses import dataclass

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_EXECUTION_TIMEOUT = 30.0
DEFAULT_MAX_CASCADE_DEPTH = 0

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def get_history_limit() -> int:
    """Get undo history limit from environment.

    Reads FORMRULES_HISTORY_LIMIT environment variable.
    Default: 50, Valid range: 1-10000 (clamped automatically)
    """
    try:
        limit = int(os.getenv("FORMRULES_HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT)))
        return max(1, min(10000, limit))
    except ValueError:
        return DEFAULT_HISTORY_LIMIT


def get_execution_timeout() -> float:
    """Get per-batch rule execution timeout (seconds) from environment.

    Reads FORMRULES_EXECUTION_TIMEOUT environment variable.
    Default: 30.0, Valid range: 0.001-3600 (clamped automatically)
    """
    try:
        timeout = float(os.getenv("FORMRULES_EXECUTION_TIMEOUT", str(DEFAULT_EXECUTION_TIMEOUT)))
        return max(0.001, min(3600.0, timeout))
    except ValueError:
        return DEFAULT_EXECUTION_TIMEOUT


def get_max_cascade_depth() -> int:
    """Get maximum cascade depth from environment.

    Reads FORMRULES_MAX_CASCADE_DEPTH environment variable.
    Default: 0 (single pass, no cascading), Valid range: 0-100
    """
    try:
        depth = int(os.getenv("FORMRULES_MAX_CASCADE_DEPTH", str(DEFAULT_MAX_CASCADE_DEPTH)))
        return max(0, min(100, depth))
    except ValueError:
        return DEFAULT_MAX_CASCADE_DEPTH


def _get_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in {"1", "true", "yes"}


def get_log_level() -> int:
    """Resolve FORMRULES_LOG_LEVEL to a logging level, warning on bad values."""
    level_name = os.getenv("FORMRULES_LOG_LEVEL", "INFO").upper()
    if level_name not in VALID_LOG_LEVELS:
        print(
            f"Warning: Invalid FORMRULES_LOG_LEVEL '{level_name}'. "
            f"Valid levels: {', '.join(sorted(VALID_LOG_LEVELS))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        level_name = "INFO"
    return getattr(logging, level_name)


@dataclass(frozen=True)
class FormConfig:
    """
    Settings shared by one form handler and its components.

    Attributes:
        history_limit: Maximum undo entries kept by the state manager
        execution_timeout: Seconds one queued rule batch may run before it is abandoned
        max_cascade_depth: Extra trigger-resolution hops after rules commit (0 disables)
        validate_on_change: Validate touched fields after every change
        strict: Re-raise the first engine error of a change instead of only reporting it
    """

    history_limit: int = DEFAULT_HISTORY_LIMIT
    execution_timeout: float = DEFAULT_EXECUTION_TIMEOUT
    max_cascade_depth: int = DEFAULT_MAX_CASCADE_DEPTH
    validate_on_change: bool = True
    strict: bool = False

    def __post_init__(self) -> None:
        if self.history_limit < 1:
            raise ValueError(f"history_limit must be >= 1, got {self.history_limit}")
        if self.execution_timeout <= 0:
            raise ValueError(f"execution_timeout must be > 0, got {self.execution_timeout}")
        if self.max_cascade_depth < 0:
            raise ValueError(f"max_cascade_depth must be >= 0, got {self.max_cascade_depth}")

    @classmethod
    def from_env(cls) -> "FormConfig":
        """Build a configuration from FORMRULES_* environment variables."""
        return cls(
            history_limit=get_history_limit(),
            execution_timeout=get_execution_timeout(),
            max_cascade_depth=get_max_cascade_depth(),
            validate_on_change=_get_flag("FORMRULES_VALIDATE_ON_CHANGE", True),
            strict=_get_flag("FORMRULES_STRICT", False),
        )
