from .z3_engine.static_solver import PartialFacts, StaticFactsSolver
from .z3_engine.suggestion import SuggestionEngine

__all__ = [
    "PartialFacts",
    "StaticFactsSolver",
    "SuggestionEngine",
]
