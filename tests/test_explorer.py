from __future__ import annotations

import pytest

from sop_core.explorer import BoundedExplorer, ExplorationError, ExplorationStatus, ExplorerConfig
from sop_core.model.actions import CATALOG, ActionKind, Effect, ReadDom
from sop_core.model.errors import ConfigurationError
from sop_core.policies import dom_sop


def _collect(explorer, facts):
    seen = []
    res = explorer.explore(facts, lambda t: seen.append(t) or False)
    return res, seen


def test_one_step_visits_every_applicable_action(pools, facts, seed):
    explorer = BoundedExplorer(pools, ExplorerConfig(steps=1), seed=seed)
    res, seen = _collect(explorer, facts)

    assert res.status == ExplorationStatus.COMPLETE
    # 4 BrowserHttpRequest + 4 XmlHttpRequest + 1 ReadDom + 2 WriteDom + 3 SetDomain
    assert res.stats.transitions_applied == 14
    assert res.stats.states_visited == 15
    assert len(seen) == 15
    assert len(seen[0]) == 0
    assert res.stats.preconditions_rejected == res.stats.bindings_tried - 14


def test_search_order_is_deterministic(pools, facts, seed):
    def order():
        _, seen = _collect(BoundedExplorer(pools, ExplorerConfig(steps=2), seed=seed), facts)
        return [tuple(str(a) for a in t.actions()) for t in seen]

    first = order()
    assert first == order()
    assert first[1][0].startswith("BrowserHttpRequest[t0->t1](browser0 -> serverA")


def test_visitor_can_stop_search(pools, facts, seed):
    explorer = BoundedExplorer(pools, ExplorerConfig(steps=3), seed=seed)
    res = explorer.explore(facts, lambda t: len(t) == 1)
    assert res.status == ExplorationStatus.STOPPED
    assert res.stats.states_visited == 2


def test_sibling_branches_share_the_same_before_state(pools, facts, seed):
    _, seen = _collect(BoundedExplorer(pools, ExplorerConfig(steps=1), seed=seed), facts)
    root = seen[0].initial
    for t in seen[1:]:
        assert t.steps[0].before == root
        assert t.steps[0].action.before.index == 0
        assert t.steps[0].action.after.index == 1


def test_enforced_fact_prunes_violating_branches(pools, facts, seed):
    explorer = BoundedExplorer(pools, ExplorerConfig(steps=2), enforce=[dom_sop], seed=seed)
    res, seen = _collect(explorer, facts)
    assert res.stats.pruned_by_facts > 0
    assert all(dom_sop.holds(t) for t in seen)


def test_budget_exhaustion_returns_deepest_trace(pools, facts, seed):
    explorer = BoundedExplorer(pools, ExplorerConfig(steps=3, max_states=5), seed=seed)
    res, seen = _collect(explorer, facts)
    assert res.status == ExplorationStatus.BUDGET_EXHAUSTED
    assert res.deepest is not None
    assert len(res.deepest) == res.stats.max_depth_reached
    assert len(res.deepest) >= 1


class _LeakyRead(ReadDom):
    def effect(self, ctx, b):
        return Effect(updates={"content": ctx.state["content"]})


def test_frame_breach_aborts_with_partial_trace(pools, facts, seed):
    catalog = (_LeakyRead(),)
    explorer = BoundedExplorer(pools, ExplorerConfig(steps=1), catalog=catalog, seed=seed)
    with pytest.raises(ExplorationError) as e:
        explorer.explore(facts, lambda t: False)
    assert "content" in str(e.value)
    assert e.value.trace is not None
    assert len(e.value.trace) == 0


def test_invalid_step_bound_is_rejected(pools):
    with pytest.raises(ConfigurationError):
        BoundedExplorer(pools, ExplorerConfig(steps=0))


def test_catalog_order_is_respected(pools, facts, seed):
    kinds_seen = []
    explorer = BoundedExplorer(pools, ExplorerConfig(steps=1), catalog=CATALOG, seed=seed)
    explorer.explore(facts, lambda t: kinds_seen.append(t.last.action.kind) if t.last else False)
    firsts = []
    for k in kinds_seen:
        if k not in firsts:
            firsts.append(k)
    assert firsts == list(ActionKind)
