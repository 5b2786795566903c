from __future__ import annotations

import pytest

from sop_core.model.relation import Relation
from sop_core.model.schema import Time, URL
from sop_core.model.store import TIME_VARYING, Store

from conftest import BROWSER, seed_doc_a


def test_initial_store_holds_seed_documents():
    store = Store.initial([seed_doc_a()])
    snap = store.snapshot
    assert store.now == Time(0)
    assert snap.is_created("docA")
    assert not snap.is_created("docB")
    assert snap.documents_of(BROWSER) == frozenset({"docA"})
    assert snap.src_of("docA") == URL("http", "a.com", None, "/")
    assert snap.content_of("docA") == "pageA"
    assert snap.domain_of("docA") == frozenset({"a.com"})
    assert snap.owners_of("docA") == (BROWSER,)


def test_advance_carries_untouched_relations_forward():
    store = Store.initial([seed_doc_a()])
    new_content = store.snapshot["content"].override(Relation([("docA", "pageB")], arity=2))
    nxt = store.advance({"content": new_content})

    assert nxt.now == Time(1)
    assert nxt.snapshot.content_of("docA") == "pageB"
    for name in TIME_VARYING:
        if name != "content":
            assert nxt.snapshot[name] == store.snapshot[name]


def test_advance_leaves_receiver_untouched():
    store = Store.initial([seed_doc_a()])
    store.advance({"documents": Relation.empty(2)})
    assert store.now == Time(0)
    assert store.snapshot.documents_of(BROWSER) == frozenset({"docA"})


def test_history_keeps_every_instant():
    store = Store.initial([seed_doc_a()])
    nxt = store.advance({"content": Relation([("docA", "pageB")], arity=2)})
    assert nxt.at("content", Time(0)) == Relation([("docA", "pageA")])
    assert nxt.at("content") == Relation([("docA", "pageB")])
    assert nxt.snapshot_at(Time(0)).content_of("docA") == "pageA"
    assert nxt.history("content").arity == 3


def test_unknown_relation_is_rejected():
    with pytest.raises(KeyError):
        Store.initial().advance({"cookiez": Relation.empty(2)})


def test_functional_violations_are_reported():
    store = Store.initial([seed_doc_a()])
    bad = store.advance({"content": Relation([("docA", "pageA"), ("docA", "pageB")], arity=2)})
    assert bad.functional_violations() == ("content",)
    assert store.functional_violations() == ()
