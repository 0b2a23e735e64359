"""Lorebook error types."""

from __future__ import annotations


class LorebookError(Exception):
    """Base class for lorebook errors."""


class FormatError(LorebookError):
    """Input is not JSON or has no recognizable lorebook shape."""


class ValidationError(LorebookError):
    """Structural violations that reject an import."""

    def __init__(self, errors: list[str], fmt: str | None = None, warnings: list[str] | None = None) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        self.format = fmt
        first = self.errors[0] if self.errors else "Unknown error"
        label = f"Invalid {fmt} lorebook" if fmt else "Invalid lorebook"
        super().__init__(f"{label}: {first}")


class NameConflictError(LorebookError):
    """No free "Name (n)" variant was found."""


class NotFoundError(LorebookError):
    """A lorebook or chat binding does not exist."""
