"""
SOP Core - Static Facts Solver (Z3 Engine)

Enumerates the static worlds a search may start from: DNS map, server
resource tables, script contexts and cookie scopes.

What this solver guarantees:
1) ServerAssumption: any two servers that DNS maps one host to expose identical
   resource tables in every produced assignment.
2) User-fixed facts are honoured exactly (a fixed host lists *all* its servers,
   a fixed server lists *all* its paths).
3) Infeasible configurations are rejected before search with the UNSAT core of
   the assumption literals that clash (actionable: it names the facts).

Encoding:
    dns::<host>::<server>        Bool   host resolves to server
    res::<server>::<path>        Int    index into the resource pool, -1 = none
    ctx::<script>                Int    index into the document pool
    scope::<cookie>::<host>      Bool   cookie is scoped to host
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import z3

from ...model.errors import ConfigurationError, Issue
from ...model.relation import Relation
from ...model.schema import AtomPools, Endpoint, StaticFacts

logger = logging.getLogger(__name__)

NO_RESOURCE = -1


@dataclass(frozen=True)
class PartialFacts:
    """Static facts pinned by the scenario. Anything not listed is left free."""
    dns: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    resources: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    contexts: Dict[str, str] = field(default_factory=dict)
    cookie_scopes: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


def _sanitize_lit(s: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.:/\-]", "_", s)


def _conj(parts: List[z3.BoolRef]) -> z3.BoolRef:
    return z3.And(parts) if parts else z3.BoolVal(True)


class StaticFactsSolver:
    def __init__(self, pools: AtomPools, fixed: Optional[PartialFacts] = None):
        self.pools = pools
        self.fixed = fixed or PartialFacts()
        self.solver = z3.Solver()
        self.solver.set(unsat_core=True)

        self.dns_vars: Dict[Tuple[str, Endpoint], z3.BoolRef] = {}
        self.res_vars: Dict[Tuple[Endpoint, str], z3.ArithRef] = {}
        self.ctx_vars: Dict[Endpoint, z3.ArithRef] = {}
        self.scope_vars: Dict[Tuple[str, str], z3.BoolRef] = {}
        self._assumptions: List[z3.BoolRef] = []

        self._encode()

    # -----------------------------
    # Public API
    # -----------------------------
    def check(self) -> None:
        """Raise ConfigurationError (with UNSAT core) if no static world satisfies the constraints."""
        result = self.solver.check(*self._assumptions)
        if result == z3.sat:
            return
        if result == z3.unknown:
            raise ConfigurationError(
                "Static facts solver returned UNKNOWN.",
                [Issue(kind="INTERNAL_ERROR", message=str(self.solver.reason_unknown()), facts=[]).to_dict()],
            )

        core = sorted(x.decl().name() for x in self.solver.unsat_core())
        logger.info("static facts infeasible; unsat core: %s", core)
        issue = Issue(
            kind="INFEASIBLE_FACTS",
            message=(
                "No static world satisfies the fixed facts together with ServerAssumption "
                "(servers sharing a host must expose identical resource tables)."
            ),
            facts=core,
            severity="error",
            unsat_core=core,
        )
        raise ConfigurationError("Static facts are infeasible.", [issue.to_dict()])

    def enumerate(self, limit: Optional[int] = None) -> Iterator[StaticFacts]:
        """
        Yield distinct static worlds until exhausted or `limit` reached.
        Each produced world is blocked before the next query.
        """
        self.check()
        all_vars = self._all_vars()
        produced = 0
        self.solver.push()
        try:
            while limit is None or produced < limit:
                if self.solver.check(*self._assumptions) != z3.sat:
                    break
                model = self.solver.model()
                yield self._decode(model)
                produced += 1
                if not all_vars:
                    break
                self.solver.add(z3.Or([v != model.eval(v, model_completion=True) for v in all_vars]))
        finally:
            self.solver.pop()
        logger.debug("enumerated %d static world(s)", produced)

    # -----------------------------
    # Encoding
    # -----------------------------
    def _track(self, name: str, constraint: z3.BoolRef) -> None:
        lit = z3.Bool(_sanitize_lit(name))
        self.solver.add(z3.Implies(lit, constraint))
        self._assumptions.append(lit)

    def _encode(self) -> None:
        p = self.pools
        n_res = len(p.resources)
        n_docs = len(p.documents)

        for h in p.hosts:
            for s in p.servers:
                self.dns_vars[(h, s)] = z3.Bool(f"dns::{h}::{s.name}")
        for s in p.servers:
            for path in p.paths:
                v = z3.Int(f"res::{s.name}::{path}")
                self.res_vars[(s, path)] = v
                self.solver.add(v >= NO_RESOURCE, v < n_res)
        for scr in p.scripts:
            v = z3.Int(f"ctx::{scr.name}")
            self.ctx_vars[scr] = v
            self.solver.add(v >= 0, v < n_docs)
        for c in p.cookies:
            for h in p.hosts:
                self.scope_vars[(c, h)] = z3.Bool(f"scope::{c}::{h}")
            # a cookie without any scope could never be sent or received
            self._track(f"scope_nonempty::{c}", z3.Or([self.scope_vars[(c, h)] for h in p.hosts]))

        self._encode_server_assumption()
        self._encode_fixed()

    def _encode_server_assumption(self) -> None:
        p = self.pools
        for h in p.hosts:
            for i, s1 in enumerate(p.servers):
                for s2 in p.servers[i + 1:]:
                    same_table = _conj([self.res_vars[(s1, path)] == self.res_vars[(s2, path)] for path in p.paths])
                    both = z3.And(self.dns_vars[(h, s1)], self.dns_vars[(h, s2)])
                    self._track(f"server_assumption::{h}::{s1.name}::{s2.name}", z3.Implies(both, same_table))

    def _encode_fixed(self) -> None:
        p = self.pools
        server_by_name = {s.name: s for s in p.servers}
        script_by_name = {s.name: s for s in p.scripts}

        for h, servers in sorted(self.fixed.dns.items()):
            self._require(h in p.hosts, f"dns: unknown host '{h}'")
            for name in servers:
                self._require(name in server_by_name, f"dns: unknown server '{name}' for host '{h}'")
            wanted = set(servers)
            self._track(
                f"fixed_dns::{h}",
                z3.And([self.dns_vars[(h, s)] if s.name in wanted else z3.Not(self.dns_vars[(h, s)]) for s in p.servers]),
            )

        for name, table in sorted(self.fixed.resources.items()):
            self._require(name in server_by_name, f"resources: unknown server '{name}'")
            s = server_by_name[name]
            parts = []
            for path in p.paths:
                res = table.get(path)
                if res is not None:
                    self._require(res in p.resources, f"resources: unknown resource '{res}' on {name}{path}")
                parts.append(self.res_vars[(s, path)] == (p.resources.index(res) if res is not None else NO_RESOURCE))
            for path in table:
                self._require(path in p.paths, f"resources: unknown path '{path}' on server '{name}'")
            self._track(f"fixed_table::{name}", _conj(parts))

        for name, doc in sorted(self.fixed.contexts.items()):
            self._require(name in script_by_name, f"contexts: unknown script '{name}'")
            self._require(doc in p.documents, f"contexts: unknown document '{doc}'")
            self._track(f"fixed_context::{name}", self.ctx_vars[script_by_name[name]] == p.documents.index(doc))

        for c, hosts in sorted(self.fixed.cookie_scopes.items()):
            self._require(c in p.cookies, f"cookie_scopes: unknown cookie '{c}'")
            for h in hosts:
                self._require(h in p.hosts, f"cookie_scopes: unknown host '{h}' for cookie '{c}'")
            wanted = set(hosts)
            self._track(
                f"fixed_scope::{c}",
                z3.And([self.scope_vars[(c, h)] if h in wanted else z3.Not(self.scope_vars[(c, h)]) for h in p.hosts]),
            )

    def _require(self, ok: bool, message: str) -> None:
        if not ok:
            raise ConfigurationError(message, [Issue(kind="VALIDATION", message=message, facts=[]).to_dict()])

    # -----------------------------
    # Decoding
    # -----------------------------
    def _all_vars(self) -> List[z3.ExprRef]:
        return [
            *self.dns_vars.values(),
            *self.res_vars.values(),
            *self.ctx_vars.values(),
            *self.scope_vars.values(),
        ]

    def _decode(self, model: z3.ModelRef) -> StaticFacts:
        p = self.pools

        def is_on(v: z3.BoolRef) -> bool:
            return z3.is_true(model.eval(v, model_completion=True))

        def as_int(v: z3.ArithRef) -> int:
            return model.eval(v, model_completion=True).as_long()

        dns = [(h, s) for (h, s), v in self.dns_vars.items() if is_on(v)]
        resources = [
            (s, path, p.resources[as_int(v)])
            for (s, path), v in self.res_vars.items()
            if as_int(v) != NO_RESOURCE
        ]
        contexts = [(scr, p.documents[as_int(v)]) for scr, v in self.ctx_vars.items()]
        scopes = [(c, h) for (c, h), v in self.scope_vars.items() if is_on(v)]

        return StaticFacts(
            dns=Relation(dns, arity=2),
            resources=Relation(resources, arity=3),
            context=Relation(contexts, arity=2),
            cookie_scope=Relation(scopes, arity=2),
        )
