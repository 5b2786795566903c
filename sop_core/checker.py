"""
SOP Core - Policy Checker

Evaluates a predicate at every state the explorer visits, over every static
world the Z3 engine admits.

- run:   return the first k traces satisfying an existential predicate (witnesses)
- check: return the first trace violating a universal assertion (counterexample),
         or report "unsat within bound". That is never a proof beyond the bound.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from .engines.z3_engine import PartialFacts, StaticFactsSolver
from .explorer import BoundedExplorer, ExplorationStats, ExplorationStatus, ExplorerConfig
from .model.actions import CATALOG, ActionType
from .model.errors import ConfigurationError
from .model.schema import AtomBounds, AtomPools, SeedDocument, StaticFacts
from .model.trace import Trace
from .policies import Predicate, get_predicate

logger = logging.getLogger(__name__)

PredicateLike = Union[str, Predicate]


class CheckOutcome(Enum):
    WITNESS_FOUND = "WITNESS_FOUND"
    NO_WITNESS_WITHIN_BOUND = "NO_WITNESS_WITHIN_BOUND"
    COUNTEREXAMPLE_FOUND = "COUNTEREXAMPLE_FOUND"
    UNSAT_WITHIN_BOUND = "UNSAT_WITHIN_BOUND"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"


@dataclass
class CheckResult:
    """Result of a run/check (stable, report-friendly)."""
    mode: str
    predicate: str
    outcome: CheckOutcome
    traces: List[Trace] = field(default_factory=list)
    enforced: List[str] = field(default_factory=list)
    steps: int = 0
    bounds: Optional[AtomBounds] = None
    static_worlds: int = 0
    static_worlds_truncated: bool = False
    stats: ExplorationStats = field(default_factory=ExplorationStats)
    deepest: Optional[Trace] = None
    latency_ms: float = 0.0
    scenario_name: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.outcome in (CheckOutcome.WITNESS_FOUND, CheckOutcome.COUNTEREXAMPLE_FOUND)

    @property
    def counterexample(self) -> Optional[Trace]:
        if self.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND and self.traces:
            return self.traces[0]
        return None

    @property
    def witnesses(self) -> List[Trace]:
        return list(self.traces) if self.mode == "run" else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario_name,
            "mode": self.mode,
            "predicate": self.predicate,
            "outcome": self.outcome.value,
            "enforced": list(self.enforced),
            "steps": self.steps,
            "bounds": dict(self.bounds.__dict__) if self.bounds else None,
            "static_worlds": self.static_worlds,
            "static_worlds_truncated": self.static_worlds_truncated,
            "stats": self.stats.to_dict(),
            "latency_ms": self.latency_ms,
            "traces": [t.to_dict() for t in self.traces],
            "deepest": self.deepest.to_dict() if self.deepest is not None else None,
        }


class PolicyChecker:
    """
    Usage:
        checker = PolicyChecker(pools, ExplorerConfig(steps=2), fixed_facts=facts, seed=seed)
        checker.run("crossOriginDomAccess")
        checker.check("domSop")
    """

    def __init__(
        self,
        pools: AtomPools,
        config: Optional[ExplorerConfig] = None,
        *,
        fixed_facts: Optional[PartialFacts] = None,
        seed: Sequence[SeedDocument] = (),
        catalog: Sequence[ActionType] = CATALOG,
        name: Optional[str] = None,
        debug: bool = False,
    ):
        self.pools = pools
        self.config = config or ExplorerConfig()
        self.config.validate()
        pools.bounds.validate()
        self.fixed_facts = fixed_facts or PartialFacts()
        self.seed = tuple(seed)
        self.catalog = tuple(catalog)
        self.name = name
        self.debug = debug

        self._worlds: Optional[List[StaticFacts]] = None
        self._worlds_truncated = False

    # -----------------------------
    # Static worlds
    # -----------------------------
    def static_worlds(self) -> List[StaticFacts]:
        """Accepted static worlds (ServerAssumption holds in each). Computed once."""
        if self._worlds is not None:
            return self._worlds

        cap = self.config.max_static_models
        solver = StaticFactsSolver(self.pools, self.fixed_facts)
        worlds = list(solver.enumerate(limit=cap + 1))
        self._worlds_truncated = len(worlds) > cap
        if self._worlds_truncated:
            logger.warning("more than %d static worlds; only the first %d are searched, a clean result is inconclusive", cap, cap)
            worlds = worlds[:cap]

        accepted = []
        for w in worlds:
            if w.satisfies_server_assumption():
                accepted.append(w)
            else:
                logger.error("solver produced a world violating ServerAssumption: %s", w.server_assumption_violations())
        if not accepted:
            raise ConfigurationError("No static world satisfies ServerAssumption.")
        self._worlds = accepted
        return accepted

    # -----------------------------
    # Modes
    # -----------------------------
    def execute(self) -> CheckResult:
        """Dispatch on the configured mode and predicate."""
        if not self.config.predicate:
            raise ConfigurationError("No predicate configured.")
        if self.config.mode == "check":
            return self.check(self.config.predicate)
        return self.run(self.config.predicate)

    def run(self, predicate: PredicateLike, k: Optional[int] = None) -> CheckResult:
        pred = self._resolve(predicate)
        wanted = k if k is not None else self.config.witnesses
        if wanted <= 0:
            raise ConfigurationError(f"Witness count must be positive, got {wanted}.")

        found: List[Trace] = []

        def visit(trace: Trace) -> bool:
            if pred.holds(trace):
                found.append(trace)
                return len(found) >= wanted
            return False

        return self._search("run", pred, visit, found)

    def check(self, assertion: PredicateLike) -> CheckResult:
        pred = self._resolve(assertion)
        found: List[Trace] = []

        def visit(trace: Trace) -> bool:
            # every prefix was visited (and passed) before this trace
            ok = pred.holds_incrementally(trace) if pred.prefix_closed else pred.holds(trace)
            if not ok:
                found.append(trace)
                return True
            return False

        return self._search("check", pred, visit, found)

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _search(self, mode: str, pred: Predicate, visit, found: List[Trace]) -> CheckResult:
        start_time = time.perf_counter()
        enforced = [get_predicate(n) for n in self.config.enforce]
        worlds = self.static_worlds()

        explorer = BoundedExplorer(
            self.pools,
            self.config,
            catalog=self.catalog,
            enforce=enforced,
            seed=self.seed,
            debug=self.debug,
        )

        searched = 0
        status = ExplorationStatus.COMPLETE
        deepest: Optional[Trace] = None
        for world in worlds:
            searched += 1
            res = explorer.explore(world, visit)
            deepest = res.deepest
            status = res.status
            if status != ExplorationStatus.COMPLETE:
                break

        # a completed search over a truncated world set is inconclusive
        exhausted = status == ExplorationStatus.BUDGET_EXHAUSTED or (
            status == ExplorationStatus.COMPLETE and self._worlds_truncated
        )
        if found and (mode == "check" or not exhausted):
            outcome = CheckOutcome.WITNESS_FOUND if mode == "run" else CheckOutcome.COUNTEREXAMPLE_FOUND
        elif exhausted:
            outcome = CheckOutcome.BUDGET_EXHAUSTED
        else:
            outcome = CheckOutcome.NO_WITNESS_WITHIN_BOUND if mode == "run" else CheckOutcome.UNSAT_WITHIN_BOUND

        latency = (time.perf_counter() - start_time) * 1000.0
        logger.info(
            "%s %s: %s (%d world(s), %d states, %.1fms)",
            mode, pred.name, outcome.value, searched, explorer.stats.states_visited, latency,
        )
        return CheckResult(
            mode=mode,
            predicate=pred.name,
            outcome=outcome,
            traces=list(found),
            enforced=[p.name for p in enforced],
            steps=self.config.steps,
            bounds=self.pools.bounds,
            static_worlds=searched,
            static_worlds_truncated=self._worlds_truncated,
            stats=explorer.stats,
            deepest=deepest,
            latency_ms=float(latency),
            scenario_name=self.name,
        )

    def _resolve(self, p: PredicateLike) -> Predicate:
        return get_predicate(p) if isinstance(p, str) else p
