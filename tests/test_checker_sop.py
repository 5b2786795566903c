from __future__ import annotations

import json

import pytest

from sop_core.checker import CheckOutcome, PolicyChecker
from sop_core.engines.z3_engine import PartialFacts, StaticFactsSolver
from sop_core.explorer import ExplorerConfig
from sop_core.model.actions import DOM_ACTIONS, ActionKind
from sop_core.model.errors import ConfigurationError
from sop_core.policies import PREDICATES, TracePredicate, dom_sop, same_origin
from sop_core.model.schema import URL

from conftest import make_pools


def _checker(fixed_facts, seed, **cfg) -> PolicyChecker:
    return PolicyChecker(make_pools(), ExplorerConfig(**cfg), fixed_facts=fixed_facts, seed=seed)


def test_same_origin_ignores_path():
    assert same_origin(URL("http", "a.com", None, "/"), URL("http", "a.com"))
    assert not same_origin(URL("http", "a.com"), URL("http", "b.com"))
    assert not same_origin(URL("http", "a.com", "80"), URL("http", "a.com"))
    assert not same_origin(None, URL("http", "a.com"))


def test_dom_sop_counterexample_without_enforcement(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=2).check("domSop")

    assert result.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND
    cex = result.counterexample
    assert cex is not None
    step = dom_sop.offending(cex)
    assert step is not None
    assert step.action.kind in DOM_ACTIONS
    assert step.action["doc"] == "docB"
    assert step.before.src_of("docB").host == "b.com"


def test_cross_origin_dom_access_needs_missing_enforcement(fixed_facts, seed):
    unconstrained = _checker(fixed_facts, seed, steps=2).run("crossOriginDomAccess")
    assert unconstrained.outcome == CheckOutcome.WITNESS_FOUND
    assert len(unconstrained.witnesses) == 1

    enforced = _checker(fixed_facts, seed, steps=2, enforce=("domSop",)).run("crossOriginDomAccess")
    assert enforced.outcome == CheckOutcome.NO_WITNESS_WITHIN_BOUND
    assert enforced.enforced == ["domSop"]
    assert enforced.stats.pruned_by_facts > 0


def test_enforced_dom_sop_is_unsat_within_bound(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=2, enforce=("domSop",)).check("domSop")
    assert result.outcome == CheckOutcome.UNSAT_WITHIN_BOUND
    assert result.counterexample is None


def test_xhr_sop_mirrors_dom_sop(fixed_facts, seed):
    cex = _checker(fixed_facts, seed, steps=1).check("xmlHttpReqSop")
    assert cex.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND
    action = cex.counterexample.last.action
    assert action.kind == ActionKind.XML_HTTP_REQUEST
    assert action["url"].host == "b.com"

    enforced = _checker(fixed_facts, seed, steps=1, enforce=("xmlHttpReqSop",)).run("crossOriginXhr")
    assert enforced.outcome == CheckOutcome.NO_WITNESS_WITHIN_BOUND


def test_set_domain_can_drop_src_host(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=1).check("setDomainKeepsSrcHost")
    assert result.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND
    action = result.counterexample.last.action
    assert action.kind == ActionKind.SET_DOMAIN
    assert action["new_domain"] == frozenset({"b.com"})


@pytest.mark.parametrize("assertion", ["responseIntegrity", "readDomIdempotent"])
def test_model_invariants_hold_within_bound(fixed_facts, seed, assertion):
    result = _checker(fixed_facts, seed, steps=2).check(assertion)
    assert result.outcome == CheckOutcome.UNSAT_WITHIN_BOUND
    assert result.stats.max_depth_reached == 2


def test_multiple_witnesses_are_collected(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=2, witnesses=3).run("crossOriginXhr")
    assert result.outcome == CheckOutcome.WITNESS_FOUND
    assert len(result.witnesses) == 3
    assert all(PREDICATES["crossOriginXhr"].holds(t) for t in result.witnesses)


def test_execute_dispatches_on_configured_mode(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=1, mode="check", predicate="xmlHttpReqSop").execute()
    assert result.mode == "check"
    assert result.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND


def test_budget_exhaustion_is_inconclusive(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=3, max_states=3).check("responseIntegrity")
    assert result.outcome == CheckOutcome.BUDGET_EXHAUSTED
    assert result.deepest is not None


def test_result_is_json_serializable(fixed_facts, seed):
    result = _checker(fixed_facts, seed, steps=2).check("domSop")
    data = json.loads(json.dumps(result.to_dict()))
    assert data["outcome"] == "COUNTEREXAMPLE_FOUND"
    assert data["static_worlds"] == 1
    actions = data["traces"][0]["actions"]
    assert actions[-1]["action_kind"] in ("ReadDom", "WriteDom")
    assert actions[0]["before_time"] == 0


def test_static_world_cap_is_reported():
    checker = PolicyChecker(make_pools(), ExplorerConfig(steps=1, max_static_models=2))
    worlds = checker.static_worlds()
    assert len(worlds) == 2
    assert checker._worlds_truncated


_FREE_TABLE = PartialFacts(
    dns={"a.com": ("serverA",), "b.com": ("serverB",)},
    resources={"serverA": {"/": "pageA"}},
    contexts={"script0": "docA"},
)


def _last_world():
    worlds = list(StaticFactsSolver(make_pools(), _FREE_TABLE).enumerate())
    assert len(worlds) == 3
    return worlds[-1]


def test_truncated_world_set_is_inconclusive_in_check_mode(seed):
    target = _last_world()
    only_elsewhere = TracePredicate("notLastWorld", lambda t: t.facts != target)

    capped = _checker(_FREE_TABLE, seed, steps=1, max_static_models=2).check(only_elsewhere)
    assert capped.static_worlds_truncated
    assert capped.outcome == CheckOutcome.BUDGET_EXHAUSTED

    full = _checker(_FREE_TABLE, seed, steps=1, max_static_models=3).check(only_elsewhere)
    assert not full.static_worlds_truncated
    assert full.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND
    assert full.counterexample.facts == target


def test_truncated_world_set_is_inconclusive_in_run_mode(seed):
    target = _last_world()
    in_last = TracePredicate("inLastWorld", lambda t: t.facts == target)

    capped = _checker(_FREE_TABLE, seed, steps=1, max_static_models=2).run(in_last)
    assert capped.outcome == CheckOutcome.BUDGET_EXHAUSTED
    assert _checker(_FREE_TABLE, seed, steps=1, max_static_models=3).run(in_last).outcome == CheckOutcome.WITNESS_FOUND


def test_counterexample_inside_the_cap_is_still_reported(seed):
    result = _checker(_FREE_TABLE, seed, steps=2, max_static_models=2).check("domSop")
    assert result.static_worlds_truncated
    assert result.outcome == CheckOutcome.COUNTEREXAMPLE_FOUND


def test_infeasible_facts_abort_before_search(seed):
    fixed = PartialFacts(
        dns={"a.com": ("serverA", "serverB")},
        resources={"serverA": {"/": "pageA"}, "serverB": {"/": "pageB"}},
    )
    with pytest.raises(ConfigurationError) as e:
        _checker(fixed, seed, steps=1).check("domSop")
    assert e.value.issues[0]["kind"] == "INFEASIBLE_FACTS"


def test_unknown_predicate_is_rejected(fixed_facts, seed):
    with pytest.raises(ConfigurationError):
        _checker(fixed_facts, seed, steps=1).run("noSuchPredicate")
