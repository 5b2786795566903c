from __future__ import annotations

import pytest

from sop_core.explorer import ExplorerConfig
from sop_core.model.errors import ConfigurationError
from sop_core.model.relation import Relation
from sop_core.model.schema import StaticFacts, cookie_scope_matches


@pytest.mark.parametrize(
    "scope, host, expected",
    [
        ("a.com", "a.com", True),
        ("a.com", "www.a.com", True),
        ("a.com", "x.y.a.com", True),
        ("a.com", "ba.com", False),
        ("a.com", "a.com.evil", False),
        ("www.a.com", "a.com", False),
    ],
)
def test_cookie_scope_is_a_domain_suffix_match(scope, host, expected):
    assert cookie_scope_matches(scope, host) is expected


def test_static_facts_cookie_matches_any_scope():
    facts = StaticFacts(cookie_scope=Relation([("sid", "a.com"), ("sid", "b.com")], arity=2))
    assert facts.cookie_matches("sid", "www.a.com")
    assert facts.cookie_matches("sid", "b.com")
    assert not facts.cookie_matches("sid", "ba.com")
    assert not facts.cookie_matches("other", "a.com")


@pytest.mark.parametrize("field", ["max_static_models", "max_states", "time_budget_s", "steps", "witnesses"])
def test_non_numeric_config_values_are_invalid_bounds(field):
    with pytest.raises(ConfigurationError) as e:
        ExplorerConfig(**{field: "8"}).validate()
    assert e.value.issues[0]["kind"] == "INVALID_BOUND"
    assert e.value.issues[0]["facts"] == [field]
