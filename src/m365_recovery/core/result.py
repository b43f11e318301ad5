"""Result type returned by every public recovery operation.

Recovery commands are routinely run unattended across many sub-workloads and
accounts, so a single failure must never abort a batch. Public operations
therefore return a RecoveryResult instead of raising: callers check ``ok``
and decide for themselves whether an error is fatal, or call ``unwrap()`` to
get exception semantics back.

Usage:
    result = service.get_progress(instance_id, "Contoso")
    if result.ok:
        print(result.value.status)
    else:
        print(f"Progress unavailable: {result.error}")
"""

from __future__ import annotations

from dataclasses import dataclass

from m365_recovery.core.errors import RecoveryToolError


@dataclass(frozen=True)
class RecoveryResult[T]:
    """Either a value or a typed error, never both."""

    value: T | None = None
    error: RecoveryToolError | None = None

    def __post_init__(self) -> None:
        if self.error is not None and self.value is not None:
            raise ValueError("RecoveryResult cannot carry both a value and an error")

    @classmethod
    def success(cls, value: T) -> RecoveryResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: RecoveryToolError) -> RecoveryResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        """Human-readable error line, or an empty string on success."""
        return str(self.error) if self.error is not None else ""

    def unwrap(self) -> T:
        """Return the value, raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
