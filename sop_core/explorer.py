"""
SOP Core - Bounded State Explorer

Deterministic, exhaustive depth-first search over every applicable action
binding up to a step bound.
Designed for:
- reproducible first results (catalog order, then lexicographic binding order)
- persistent stores (siblings never observe each other's effects)
- fail-closed internals (a frame or functionality breach aborts with the partial trace)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple

from .model.actions import CATALOG, ActionRecord, ActionType, ModelContext, PreconditionFailed
from .model.errors import ConfigurationError, SopModelError, invalid_bound
from .model.schema import AtomPools, SeedDocument, StaticFacts
from .model.store import Store
from .model.trace import Step, Trace
from .policies import Predicate

logger = logging.getLogger(__name__)

Mode = Literal["run", "check"]
Visitor = Callable[[Trace], bool]


@dataclass(frozen=True)
class ExplorerConfig:
    """
    Search configuration. Defaults are small: the search is exhaustive.
    """
    steps: int = 3
    mode: Mode = "run"
    predicate: Optional[str] = None
    enforce: Tuple[str, ...] = ()
    witnesses: int = 1  # run mode: stop after this many witnesses
    time_budget_s: Optional[float] = None
    max_states: Optional[int] = None
    max_static_models: int = 64

    def validate(self) -> None:
        if not isinstance(self.steps, int) or isinstance(self.steps, bool) or self.steps <= 0:
            raise invalid_bound("steps", f"Step bound must be positive, got {self.steps}.")
        if self.mode not in ("run", "check"):
            raise ConfigurationError(f"Mode must be 'run' or 'check', got {self.mode!r}.")
        if not isinstance(self.witnesses, int) or self.witnesses <= 0:
            raise invalid_bound("witnesses", f"Witness count must be positive, got {self.witnesses}.")
        if self.time_budget_s is not None and (not isinstance(self.time_budget_s, (int, float)) or self.time_budget_s <= 0):
            raise invalid_bound("time_budget_s", f"Time budget must be positive, got {self.time_budget_s}.")
        if self.max_states is not None and (not isinstance(self.max_states, int) or self.max_states <= 0):
            raise invalid_bound("max_states", f"State budget must be positive, got {self.max_states}.")
        if not isinstance(self.max_static_models, int) or isinstance(self.max_static_models, bool) or self.max_static_models <= 0:
            raise invalid_bound("max_static_models", f"Static model cap must be positive, got {self.max_static_models}.")


class ExplorationStatus(Enum):
    COMPLETE = "COMPLETE"                  # every branch within the bound was visited
    STOPPED = "STOPPED"                    # the visitor asked to stop
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"  # time or state budget ran out, inconclusive


@dataclass
class ExplorationStats:
    states_visited: int = 0
    bindings_tried: int = 0
    preconditions_rejected: int = 0
    pruned_by_facts: int = 0
    transitions_applied: int = 0
    max_depth_reached: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass
class ExplorationResult:
    status: ExplorationStatus
    stats: ExplorationStats
    deepest: Optional[Trace] = None


class ExplorationError(SopModelError):
    """Internal invariant breach during search. Carries the partial trace for diagnosis."""
    def __init__(self, message: str, trace: Optional[Trace] = None, events: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.trace = trace
        self.events = events or []


class _BudgetExhausted(Exception):
    pass


class BoundedExplorer:
    """
    Usage:
        explorer = BoundedExplorer(pools, ExplorerConfig(steps=3))
        result = explorer.explore(facts, visit=lambda trace: predicate(trace))

    `visit` is called on every reachable trace (the empty one included) in
    DFS order; returning True stops the search. Statistics and budgets are
    cumulative across `explore` calls on one instance.
    """

    def __init__(
        self,
        pools: AtomPools,
        config: Optional[ExplorerConfig] = None,
        *,
        catalog: Sequence[ActionType] = CATALOG,
        enforce: Sequence[Predicate] = (),
        seed: Sequence[SeedDocument] = (),
        debug: bool = False,
    ):
        self.pools = pools
        self.config = config or ExplorerConfig()
        self.config.validate()
        self.catalog = tuple(catalog)
        self.enforce = tuple(enforce)
        self.seed = tuple(seed)
        self.stats = ExplorationStats()

        self.debug = bool(debug)
        self._events: List[Dict[str, Any]] = []
        self._events_max: int = 400
        self._deadline: Optional[float] = None
        self._deepest: Optional[Trace] = None
        self._current: Optional[Trace] = None
        self._visitor: Visitor = lambda trace: False

    # -----------------------------
    # Public API
    # -----------------------------
    def explore(self, facts: StaticFacts, visit: Visitor) -> ExplorationResult:
        if self._deadline is None and self.config.time_budget_s is not None:
            self._deadline = time.perf_counter() + self.config.time_budget_s

        self._visitor = visit
        store = Store.initial(self.seed)
        root = Trace(facts, store.snapshot)
        self._current = root
        if self._deepest is None:
            self._deepest = root
        self._t("explore_start", steps=self.config.steps)

        if not all(f.holds(root) for f in self.enforce):
            logger.info("initial state violates an enforced fact; nothing to explore")
            return ExplorationResult(ExplorationStatus.COMPLETE, self.stats, self._deepest)

        try:
            stopped = self._dfs(store, root, facts, 0)
        except _BudgetExhausted:
            logger.warning(
                "search budget exhausted after %d states (deepest trace: %d steps)",
                self.stats.states_visited, len(self._deepest or ()),
            )
            return ExplorationResult(ExplorationStatus.BUDGET_EXHAUSTED, self.stats, self._deepest)
        except ExplorationError:
            raise
        except RecursionError as e:
            raise ExplorationError(f"Search recursion limit hit: {e}", self._current, self._events[-80:]) from e
        except Exception as e:
            raise ExplorationError(
                f"Internal error during search: {type(e).__name__}: {e}", self._current, self._events[-80:]
            ) from e

        status = ExplorationStatus.STOPPED if stopped else ExplorationStatus.COMPLETE
        logger.debug("explore finished: %s %s", status.value, self.stats.to_dict())
        return ExplorationResult(status, self.stats, self._deepest)

    # -----------------------------
    # Search
    # -----------------------------
    def _dfs(self, store: Store, trace: Trace, facts: StaticFacts, depth: int) -> bool:
        self._current = trace
        self.stats.states_visited += 1
        if depth > self.stats.max_depth_reached or self._deepest is None:
            self.stats.max_depth_reached = depth
            self._deepest = trace

        if self._visitor(trace):
            return True
        if depth >= self.config.steps:
            return False
        self._check_budget()

        ctx = ModelContext(self.pools, facts, store.snapshot)
        for action in self.catalog:
            for binding in action.bindings(ctx):
                self.stats.bindings_tried += 1
                try:
                    effect = action.apply(ctx, binding)
                except PreconditionFailed:
                    self.stats.preconditions_rejected += 1
                    continue

                touched = set(effect.updates) & action.unchanged
                if touched:
                    raise ExplorationError(
                        f"{action.kind.value} changed framed relation(s) {sorted(touched)}", trace, self._events[-80:]
                    )

                nxt = store.advance(effect.updates)
                broken = nxt.functional_violations()
                if broken:
                    raise ExplorationError(
                        f"{action.kind.value} left non-functional relation(s) {list(broken)}", trace, self._events[-80:]
                    )

                record = ActionRecord(
                    kind=action.kind,
                    from_=binding.from_,
                    to=binding.to,
                    before=store.now,
                    after=nxt.now,
                    fields=binding.args + effect.outputs,
                )
                extended = trace.extend(Step(record, store.snapshot, nxt.snapshot))
                if not all(f.holds_incrementally(extended) for f in self.enforce):
                    self.stats.pruned_by_facts += 1
                    continue

                self.stats.transitions_applied += 1
                self._t("apply", depth=depth, action=str(record))
                if self._dfs(nxt, extended, facts, depth + 1):
                    return True
        return False

    def _check_budget(self) -> None:
        if self.config.max_states is not None and self.stats.states_visited >= self.config.max_states:
            raise _BudgetExhausted()
        if self._deadline is not None and time.perf_counter() >= self._deadline:
            raise _BudgetExhausted()

    def _t(self, event: str, **data):
        if not self.debug:
            return
        rec = {"event": event, **data}
        self._events.append(rec)
        if len(self._events) > self._events_max:
            self._events.pop(0)
