"""Error taxonomy for knowledge-store operations.

Every error carries the operation that was attempted and the target path so
that a failure is actionable without reading the implementation.
"""

from __future__ import annotations

from pathlib import Path


class KnowsysError(Exception):
    """Base class for all knowsys failures."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        path: Path | str | None = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.path = str(path) if path is not None else None
        super().__init__(self._render())

    def _render(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.path:
            parts.append(self.path)
        prefix = " ".join(parts)
        return f"{prefix}: {self.message}" if prefix else self.message

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "operation": self.operation,
            "path": self.path,
            "message": self.message,
        }


class ValidationError(KnowsysError):
    """Frontmatter is missing, malformed, or violates the kind's schema."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        operation: str = "",
        path: Path | str | None = None,
    ) -> None:
        self.field = field
        if field:
            message = f"field '{field}': {message}"
        super().__init__(message, operation=operation, path=path)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class NotFoundError(KnowsysError):
    """The target document (or section) does not exist."""


class AmbiguousTargetError(KnowsysError):
    """A section pattern did not resolve to exactly one section."""

    def __init__(
        self,
        message: str,
        *,
        pattern: str = "",
        matches: list[str] | None = None,
        operation: str = "",
        path: Path | str | None = None,
    ) -> None:
        self.pattern = pattern
        self.matches = list(matches or [])
        super().__init__(message, operation=operation, path=path)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["pattern"] = self.pattern
        data["matches"] = self.matches
        return data


class SectionNotFoundError(NotFoundError, AmbiguousTargetError):
    """No section matched the pattern.

    Callers may catch it either as a missing target or as an unresolved
    insert target.
    """

    def __init__(
        self,
        pattern: str,
        *,
        available: list[str] | None = None,
        operation: str = "",
        path: Path | str | None = None,
    ) -> None:
        self.available = list(available or [])
        message = f"no section matches '{pattern}'"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        AmbiguousTargetError.__init__(
            self, message, pattern=pattern, matches=[], operation=operation, path=path
        )


class DocumentIOError(KnowsysError):
    """Filesystem failure while reading or writing a document."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        path: Path | str | None = None,
        cause: OSError | None = None,
    ) -> None:
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, operation=operation, path=path)


class IndexStoreError(KnowsysError):
    """The secondary index could not be read, written, or queried."""


class IndexDesyncWarning(UserWarning):
    """A mutation was committed but the index refresh failed.

    Self-heals on the next full rebuild.
    """
