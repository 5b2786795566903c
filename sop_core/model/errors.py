"""
SOP Core - Errors

Exception hierarchy rooted at SopModelError, plus the Issue payloads the
SuggestionEngine renders for configuration problems.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


class SopModelError(Exception):
    """Base class for every error raised by the SOP model and its engines."""
    pass


@dataclass(frozen=True)
class Issue:
    kind: str  # "INFEASIBLE_FACTS" | "INVALID_BOUND" | "VALIDATION" | "INTERNAL_ERROR"
    message: str
    facts: List[str]
    severity: str = "error"  # "error" | "warning"
    unsat_core: Optional[List[str]] = None
    meta: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConfigurationError(SopModelError):
    """
    Raised before search starts when bounds or static facts are unusable.

    `issues` holds structured payloads (SuggestionEngine friendly), e.g. the
    UNSAT core of an infeasible ServerAssumption assignment.
    """
    def __init__(self, message: str, issues: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.issues = issues or []


def invalid_bound(name: str, message: str) -> ConfigurationError:
    return ConfigurationError(message, [Issue(kind="INVALID_BOUND", message=message, facts=[name]).to_dict()])
