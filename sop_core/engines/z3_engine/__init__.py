from __future__ import annotations

from .static_solver import PartialFacts, StaticFactsSolver
from .suggestion import SuggestionEngine

__all__ = [
    "PartialFacts",
    "StaticFactsSolver",
    "SuggestionEngine",
]
