from __future__ import annotations

from dataclasses import replace

import pytest

from sop_core.model.actions import (
    CATALOG, ActionKind, Binding, ModelContext, PreconditionFailed, action_type,
)
from sop_core.model.relation import Relation
from sop_core.model.schema import URL, browser
from sop_core.model.store import Store

from conftest import BROWSER, SCRIPT, SERVER_A, SERVER_B, make_facts, make_pools, seed_doc_a

NO_COOKIES = frozenset()


def _ctx(seed=True, cookies=(), cookie_scopes=(), store=None):
    store = store or Store.initial([seed_doc_a()] if seed else [])
    return ModelContext(make_pools(cookies), make_facts(cookie_scopes), store.snapshot)


def _bhr(url, srv, doc, sent=NO_COOKIES, received=NO_COOKIES):
    return Binding(ActionKind.BROWSER_HTTP_REQUEST, BROWSER, srv, (
        ("url", url), ("sent_cookies", sent), ("received_cookies", received), ("doc", doc),
    ))


B_ROOT = URL("http", "b.com", None, "/")
A_ROOT = URL("http", "a.com", None, "/")


def test_catalog_covers_every_action_kind():
    assert [a.kind for a in CATALOG] == list(ActionKind)
    assert action_type(ActionKind.SET_DOMAIN).kind == ActionKind.SET_DOMAIN


def test_browser_request_creates_document():
    ctx = _ctx()
    effect = action_type(ActionKind.BROWSER_HTTP_REQUEST).apply(ctx, _bhr(B_ROOT, SERVER_B, "docB"))

    assert (BROWSER, "docB") in effect.updates["documents"]
    assert effect.updates["src"].lone("docB") == B_ROOT
    assert effect.updates["content"].lone("docB") == "pageB"
    assert effect.updates["domain"].image("docB") == frozenset({"b.com"})
    assert dict(effect.outputs)["response"] == "pageB"
    # pre-existing document untouched
    assert effect.updates["content"].lone("docA") == "pageA"


def test_browser_request_without_path_has_no_response():
    ctx = _ctx()
    effect = action_type(ActionKind.BROWSER_HTTP_REQUEST).apply(
        ctx, _bhr(URL("http", "b.com"), SERVER_B, "docB")
    )
    assert dict(effect.outputs)["response"] is None
    assert effect.updates["content"].lone("docB") is None


def test_browser_request_requires_dns_target():
    with pytest.raises(PreconditionFailed):
        action_type(ActionKind.BROWSER_HTTP_REQUEST).apply(_ctx(), _bhr(B_ROOT, SERVER_A, "docB"))


def test_browser_request_requires_fresh_document():
    with pytest.raises(PreconditionFailed):
        action_type(ActionKind.BROWSER_HTTP_REQUEST).apply(_ctx(), _bhr(A_ROOT, SERVER_A, "docA"))


def test_role_constraints_are_enforced():
    b = Binding(ActionKind.BROWSER_HTTP_REQUEST, SCRIPT, SERVER_B, (
        ("url", B_ROOT), ("sent_cookies", NO_COOKIES), ("received_cookies", NO_COOKIES), ("doc", "docB"),
    ))
    with pytest.raises(PreconditionFailed):
        action_type(ActionKind.BROWSER_HTTP_REQUEST).apply(_ctx(), b)


def test_received_cookie_must_match_request_host():
    ctx = _ctx(cookies=("sid",), cookie_scopes=[("sid", "a.com")])
    bhr = action_type(ActionKind.BROWSER_HTTP_REQUEST)
    sid = frozenset({"sid"})

    with pytest.raises(PreconditionFailed):
        bhr.apply(ctx, _bhr(B_ROOT, SERVER_B, "docB", received=sid))

    effect = bhr.apply(ctx, _bhr(A_ROOT, SERVER_A, "docB", received=sid))
    assert effect.updates["cookies"].image(BROWSER) == sid


def test_sent_cookies_must_be_held():
    ctx = _ctx(cookies=("sid",), cookie_scopes=[("sid", "a.com")])
    with pytest.raises(PreconditionFailed):
        action_type(ActionKind.BROWSER_HTTP_REQUEST).apply(
            ctx, _bhr(A_ROOT, SERVER_A, "docB", sent=frozenset({"sid"}))
        )


def test_xhr_requires_loaded_context_document():
    xhr = Binding(ActionKind.XML_HTTP_REQUEST, SCRIPT, SERVER_B, (("url", B_ROOT), ("sent_cookies", NO_COOKIES)))
    with pytest.raises(PreconditionFailed):
        action_type(ActionKind.XML_HTTP_REQUEST).apply(_ctx(seed=False), xhr)

    effect = action_type(ActionKind.XML_HTTP_REQUEST).apply(_ctx(), xhr)
    assert effect.updates == {}
    assert dict(effect.outputs)["response"] == "pageB"


def test_read_dom_returns_current_content():
    b = Binding(ActionKind.READ_DOM, SCRIPT, BROWSER, (("doc", "docA"),))
    effect = action_type(ActionKind.READ_DOM).apply(_ctx(), b)
    assert effect.updates == {}
    assert dict(effect.outputs)["result"] == "pageA"


def test_read_dom_rejects_unreachable_document():
    b = Binding(ActionKind.READ_DOM, SCRIPT, BROWSER, (("doc", "docB"),))
    with pytest.raises(PreconditionFailed):
        action_type(ActionKind.READ_DOM).apply(_ctx(), b)


def test_write_dom_overrides_content():
    b = Binding(ActionKind.WRITE_DOM, SCRIPT, BROWSER, (("doc", "docA"), ("new_dom", "pageB")))
    effect = action_type(ActionKind.WRITE_DOM).apply(_ctx(), b)
    assert set(effect.updates) == {"content"}
    assert effect.updates["content"] == Relation([("docA", "pageB")])


def test_set_domain_targets_only_the_context_document():
    ctx = _ctx()
    sd = action_type(ActionKind.SET_DOMAIN)
    ok = Binding(ActionKind.SET_DOMAIN, SCRIPT, BROWSER, (("doc", "docA"), ("new_domain", frozenset({"b.com"}))))
    effect = sd.apply(ctx, ok)
    assert effect.updates["domain"].image("docA") == frozenset({"b.com"})

    other_doc = Binding(ActionKind.SET_DOMAIN, SCRIPT, BROWSER, (("doc", "docB"), ("new_domain", frozenset({"b.com"}))))
    with pytest.raises(PreconditionFailed):
        sd.apply(ctx, other_doc)

    other_browser = Binding(
        ActionKind.SET_DOMAIN, SCRIPT, browser("browser1"), (("doc", "docA"), ("new_domain", frozenset({"a.com"})))
    )
    with pytest.raises(PreconditionFailed):
        sd.apply(ctx, other_browser)


def test_set_domain_bindings_skip_empty_domain():
    bindings = list(action_type(ActionKind.SET_DOMAIN).bindings(_ctx()))
    assert bindings
    assert all(b.arg("new_domain") for b in bindings)


def test_bindings_are_deterministic():
    bhr = action_type(ActionKind.BROWSER_HTTP_REQUEST)
    first = list(bhr.bindings(_ctx()))
    second = list(bhr.bindings(_ctx()))
    assert first == second
    assert first[0].arg("url") == URL("http", "a.com")
    assert first[0].to == SERVER_A


def _subdomain_ctx():
    pools = replace(make_pools(("sid",)), hosts=("a.com", "www.a.com", "ba.com"))
    facts = replace(
        make_facts([("sid", "a.com")]),
        dns=Relation([("a.com", SERVER_A), ("www.a.com", SERVER_A), ("ba.com", SERVER_B)], arity=2),
    )
    store = Store.initial([seed_doc_a()]).advance({"cookies": Relation([(BROWSER, "sid")], arity=2)})
    return ModelContext(pools, facts, store.snapshot)


def test_cookie_scoped_to_parent_domain_is_sent_to_subdomain():
    ctx = _subdomain_ctx()
    sid = frozenset({"sid"})
    bhr = action_type(ActionKind.BROWSER_HTTP_REQUEST)

    effect = bhr.apply(ctx, _bhr(URL("http", "www.a.com", None, "/"), SERVER_A, "docB", sent=sid))
    assert effect.updates["src"].lone("docB").host == "www.a.com"

    with pytest.raises(PreconditionFailed):
        bhr.apply(ctx, _bhr(URL("http", "ba.com", None, "/"), SERVER_B, "docB", sent=sid))
