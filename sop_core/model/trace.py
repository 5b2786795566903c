"""
SOP Core - Execution Traces

A trace is the static world, the initial snapshot and the applied steps.
Predicates in `policies.py` are evaluated against it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from .actions import ActionKind, ActionRecord
from .schema import StaticFacts
from .store import Snapshot


@dataclass(frozen=True)
class Step:
    action: ActionRecord
    before: Snapshot
    after: Snapshot


@dataclass(frozen=True)
class Trace:
    """
    An execution transcript: the static world, the first snapshot and every
    applied action with its before/after snapshots. Extending a trace returns
    a new one, so a trace handed to a predicate is never modified later.
    """
    facts: StaticFacts
    initial: Snapshot
    steps: Tuple[Step, ...] = ()

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def final(self) -> Snapshot:
        return self.steps[-1].after if self.steps else self.initial

    @property
    def last(self) -> Optional[Step]:
        return self.steps[-1] if self.steps else None

    def actions(self) -> Iterator[ActionRecord]:
        return (s.action for s in self.steps)

    def steps_of(self, *kinds: ActionKind) -> Iterator[Step]:
        return (s for s in self.steps if s.action.kind in kinds)

    def extend(self, step: Step) -> "Trace":
        return Trace(self.facts, self.initial, self.steps + (step,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "static_facts": self.facts.to_dict(),
            "initial": self.initial.to_dict(),
            "actions": [
                {**s.action.to_dict(), "before": s.before.to_dict(), "after": s.after.to_dict()}
                for s in self.steps
            ],
            "final": self.final.to_dict(),
        }
