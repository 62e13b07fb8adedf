from __future__ import annotations

from typing import Any


class MaestroError(RuntimeError):
    """Base error for workflow decisions that need a human."""

    def __init__(
        self,
        message: str,
        *,
        options: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.options = list(options or [])
        self.details = dict(details or {})


class MaestroStateError(MaestroError):
    """Raised when workspace state or plan persistence fails."""


class ConfigurationMissing(MaestroError):
    """No usable stack signal, RULEBOOK or Plan where one is required."""

    def __init__(self, message: str, *, report: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.report = report


class AmbiguousDetection(MaestroError):
    """Conflicting stack signals for one category."""

    def __init__(self, message: str, *, report: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.report = report


class UnclassifiedTask(MaestroError):
    """No task-type rule matched the description."""


class ValidationFailure(MaestroError):
    """A drafted plan violates configuration rules."""


class BlockingIssue(MaestroError):
    """A step precondition failed at execution time."""


class PlanChangeConflict(MaestroError):
    """A plan change touches steps that already started."""


class PlanConflict(MaestroError):
    """A second Plan was requested while one is active."""


class GateError(MaestroError):
    """An operation was attempted in the wrong phase or at the wrong gate."""
