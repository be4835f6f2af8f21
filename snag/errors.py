"""Structured errors for snag.

Every user-facing failure is a :class:`SnagError` carrying a short reason and a
suggestion the CLI prints as ``Try: ...``. Subclasses exist so callers (and tests)
can tell failure kinds apart without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class SnagError(Exception):
    """Structured error with a remediation hint."""

    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.reason)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.reason}. Suggestion: {self.suggestion}"
        return self.reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "kind": type(self).__name__,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class BrowserNotFound(SnagError):
    pass


class BrowserConnection(SnagError):
    pass


class NoBrowserRunning(SnagError):
    pass


class PageLoadTimeout(SnagError):
    pass


class NavigationFailed(SnagError):
    pass


class AuthRequired(SnagError):
    pass


class TabIndexInvalid(SnagError):
    pass


class NoTabMatch(SnagError):
    pass


class TabURLConflict(SnagError):
    pass


class OutputFlagConflict(SnagError):
    pass


class FlagConflict(SnagError):
    pass


class NoValidURLs(SnagError):
    pass


class InvalidURL(SnagError):
    pass


class ValidationError(SnagError):
    pass


class FilenameConflict(SnagError):
    pass


class ConversionFailed(SnagError):
    pass


class BatchFailed(SnagError):
    pass


__all__ = [
    "AuthRequired",
    "BatchFailed",
    "BrowserConnection",
    "BrowserNotFound",
    "ConversionFailed",
    "FilenameConflict",
    "FlagConflict",
    "InvalidURL",
    "NavigationFailed",
    "NoBrowserRunning",
    "NoTabMatch",
    "NoValidURLs",
    "OutputFlagConflict",
    "PageLoadTimeout",
    "SnagError",
    "TabIndexInvalid",
    "TabURLConflict",
    "ValidationError",
]
