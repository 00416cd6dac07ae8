"""LoadResult for safe schema and rule loading.

Error monad used by the loader/registry layer for file I/O and document
validation. Rule execution does not use it: the engine raises and reports
exceptions instead.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class LoadStatus(str, Enum):
    """Status of a loading/validation operation."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class LoadResult(Generic[T]):
    """
    Result of a loading/validation operation (loader/registry layer).

    Usage:
        load_result = load_form_from_file(path)
        if load_result.is_success:
            schema = load_result.value
        else:
            print(f"Load error: {load_result.error}")
    """

    status: LoadStatus
    value: T | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Reject results whose payload contradicts their status."""
        if self.status == LoadStatus.SUCCESS and self.value is None:
            raise ValueError("Success result must have a value")
        if self.status == LoadStatus.FAILED and not self.error:
            raise ValueError("Failed result must have an error message")

    @property
    def is_success(self) -> bool:
        """Check if load operation was successful."""
        return self.status == LoadStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        """Check if load operation failed."""
        return self.status == LoadStatus.FAILED

    @classmethod
    def success(cls, value: T, metadata: dict[str, Any] | None = None) -> "LoadResult[T]":
        """Create a successful load result."""
        return cls(status=LoadStatus.SUCCESS, value=value, metadata=metadata or {})

    @classmethod
    def failure(cls, error: str, metadata: dict[str, Any] | None = None) -> "LoadResult[T]":
        """
        Create a failed load result.

        Args:
            error: Error message describing the failure
            metadata: Optional metadata (e.g. per-file errors of a directory load)
        """
        return cls(status=LoadStatus.FAILED, error=error, metadata=metadata or {})

    def __bool__(self) -> bool:
        """Allow using result in if statements."""
        return self.is_success

    def unwrap(self) -> T:
        """Get value or raise ValueError if failed."""
        if not self.is_success or self.value is None:
            raise ValueError(f"Cannot unwrap failed result: {self.error}")
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or return default if failed."""
        if self.is_success and self.value is not None:
            return self.value
        return default
