"""
SOP Core - Action Catalog

State-transition rules of the model. Every action type declares:
- role constraints on `from` / `to`
- candidate bindings drawn from the bounded atom pools (deterministic order)
- a precondition evaluated against the snapshot at `before`
- an effect producing the slices of the relations it changes at `after`
- a frame: the time-varying relations it must leave untouched

Actions never mutate a Store. An inapplicable binding raises
PreconditionFailed and the explorer moves on to the next candidate.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, Mapping, Optional, Tuple

from .errors import SopModelError
from .relation import Relation
from .schema import AtomPools, Endpoint, EndpointKind, StaticFacts, Time, URL
from .store import Snapshot, TIME_VARYING


class ActionKind(Enum):
    BROWSER_HTTP_REQUEST = "BrowserHttpRequest"
    XML_HTTP_REQUEST = "XmlHttpRequest"
    READ_DOM = "ReadDom"
    WRITE_DOM = "WriteDom"
    SET_DOMAIN = "SetDomain"


DOM_ACTIONS = (ActionKind.READ_DOM, ActionKind.WRITE_DOM)
HTTP_ACTIONS = (ActionKind.BROWSER_HTTP_REQUEST, ActionKind.XML_HTTP_REQUEST)


class PreconditionFailed(SopModelError):
    """A candidate binding is not applicable in the current snapshot."""
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


Fields = Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class Binding:
    """One candidate instantiation of an action type's fields."""
    kind: ActionKind
    from_: Endpoint
    to: Endpoint
    args: Fields = ()

    def arg(self, name: str) -> Any:
        for k, v in self.args:
            if k == name:
                return v
        raise KeyError(name)


@dataclass(frozen=True)
class ActionRecord:
    """Immutable transcript entry for one applied action."""
    kind: ActionKind
    from_: Endpoint
    to: Endpoint
    before: Time
    after: Time
    fields: Fields = ()

    def get(self, name: str, default: Any = None) -> Any:
        for k, v in self.fields:
            if k == name:
                return v
        return default

    def __getitem__(self, name: str) -> Any:
        for k, v in self.fields:
            if k == name:
                return v
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_kind": self.kind.value,
            "from": self.from_.name,
            "to": self.to.name,
            "before_time": self.before.index,
            "after_time": self.after.index,
            "fields": {k: _jsonable(v) for k, v in self.fields},
        }

    def __str__(self) -> str:
        args = ", ".join(f"{k}={_jsonable(v)}" for k, v in self.fields)
        return f"{self.kind.value}[{self.before}->{self.after}]({self.from_} -> {self.to}; {args})"


def _jsonable(v: Any) -> Any:
    if isinstance(v, (set, frozenset)):
        return sorted(str(x) for x in v)
    if isinstance(v, (URL, Endpoint)):
        return str(v)
    return v


@dataclass(frozen=True)
class Effect:
    """Slices of the changed relations at `after`, plus derived outputs (response, result)."""
    updates: Mapping[str, Relation]
    outputs: Fields = ()


@dataclass(frozen=True)
class ModelContext:
    """What an action may look at: pools, static facts and the snapshot at `before`."""
    pools: AtomPools
    facts: StaticFacts
    state: Snapshot

    def active_owner(self, scr: Endpoint) -> Optional[Endpoint]:
        """
        The browser running `scr`, i.e. the owner of its context document.
        None while the context document has not been loaded by any browser.
        """
        ctx_doc = self.facts.context_of(scr)
        if ctx_doc is None or not self.state.is_created(ctx_doc):
            return None
        owners = self.state.owners_of(ctx_doc)
        return owners[0] if owners else None


# ============================================================================
# BASE
# ============================================================================

class ActionType(ABC):
    kind: ActionKind
    from_kind: EndpointKind
    to_kind: EndpointKind
    unchanged: FrozenSet[str] = frozenset()

    @abstractmethod
    def bindings(self, ctx: ModelContext) -> Iterator[Binding]:
        ...

    @abstractmethod
    def check(self, ctx: ModelContext, b: Binding) -> None:
        """Raise PreconditionFailed when `b` is not applicable."""
        ...

    @abstractmethod
    def effect(self, ctx: ModelContext, b: Binding) -> Effect:
        ...

    def apply(self, ctx: ModelContext, b: Binding) -> Effect:
        if b.kind != self.kind:
            raise PreconditionFailed(f"binding kind {b.kind.value} does not match {self.kind.value}")
        if b.from_.kind != self.from_kind:
            raise PreconditionFailed(f"'from' must be a {self.from_kind.value}, got {b.from_.kind.value}")
        if b.to.kind != self.to_kind:
            raise PreconditionFailed(f"'to' must be a {self.to_kind.value}, got {b.to.kind.value}")
        self.check(ctx, b)
        return self.effect(ctx, b)

    def _require_active(self, ctx: ModelContext, scr: Endpoint) -> Endpoint:
        owner = ctx.active_owner(scr)
        if owner is None:
            raise PreconditionFailed(f"script {scr} has no loaded context document")
        return owner


def _check_http(
    ctx: ModelContext,
    srv: Endpoint,
    url: URL,
    held: FrozenSet[str],
    sent: FrozenSet[str],
    received: FrozenSet[str] = frozenset(),
) -> None:
    if srv not in ctx.facts.servers_for(url.host):
        raise PreconditionFailed(f"{srv} is not reachable via DNS for host {url.host}")
    if not sent <= held:
        raise PreconditionFailed(f"sent cookies {sorted(sent - held)} are not held by the client")
    for c in sent | received:
        if not ctx.facts.cookie_matches(c, url.host):
            raise PreconditionFailed(f"cookie {c} is not scoped to {url.host}")


# ============================================================================
# HTTP REQUESTS
# ============================================================================

class BrowserHttpRequest(ActionType):
    """A browser loads `url` from a server into a brand-new document."""
    kind = ActionKind.BROWSER_HTTP_REQUEST
    from_kind = EndpointKind.BROWSER
    to_kind = EndpointKind.SERVER
    unchanged = frozenset()

    def bindings(self, ctx: ModelContext) -> Iterator[Binding]:
        p = ctx.pools
        cookie_sets = p.cookie_sets()
        for b, url, srv, sent, received, doc in itertools.product(
            p.browsers, p.urls(), p.servers, cookie_sets, cookie_sets, p.documents
        ):
            yield Binding(self.kind, b, srv, (
                ("url", url),
                ("sent_cookies", sent),
                ("received_cookies", received),
                ("doc", doc),
            ))

    def check(self, ctx: ModelContext, b: Binding) -> None:
        _check_http(
            ctx, b.to, b.arg("url"),
            held=ctx.state.cookies_of(b.from_),
            sent=b.arg("sent_cookies"),
            received=b.arg("received_cookies"),
        )
        if ctx.state.is_created(b.arg("doc")):
            raise PreconditionFailed(f"document {b.arg('doc')} already exists")

    def effect(self, ctx: ModelContext, b: Binding) -> Effect:
        s = ctx.state
        url: URL = b.arg("url")
        doc: str = b.arg("doc")
        response = ctx.facts.resource_at(b.to, url.path)

        content = s["content"]
        if response is not None:
            content = content.override(Relation([(doc, response)], arity=2))

        return Effect(
            updates={
                "documents": s["documents"].union(Relation([(b.from_, doc)], arity=2)),
                "cookies": s["cookies"].union(
                    Relation([(b.from_, c) for c in b.arg("received_cookies")], arity=2)
                ),
                "src": s["src"].union(Relation([(doc, url)], arity=2)),
                "content": content,
                "domain": s["domain"].override(Relation([(doc, url.host)], arity=2)),
            },
            outputs=(("response", response),),
        )


class XmlHttpRequest(ActionType):
    """A script issues a request on behalf of the browser that runs it."""
    kind = ActionKind.XML_HTTP_REQUEST
    from_kind = EndpointKind.SCRIPT
    to_kind = EndpointKind.SERVER
    unchanged = frozenset(TIME_VARYING)

    def bindings(self, ctx: ModelContext) -> Iterator[Binding]:
        p = ctx.pools
        for scr, url, srv, sent in itertools.product(p.scripts, p.urls(), p.servers, p.cookie_sets()):
            yield Binding(self.kind, scr, srv, (("url", url), ("sent_cookies", sent)))

    def check(self, ctx: ModelContext, b: Binding) -> None:
        owner = self._require_active(ctx, b.from_)
        _check_http(ctx, b.to, b.arg("url"), held=ctx.state.cookies_of(owner), sent=b.arg("sent_cookies"))

    def effect(self, ctx: ModelContext, b: Binding) -> Effect:
        response = ctx.facts.resource_at(b.to, b.arg("url").path)
        return Effect(updates={}, outputs=(("response", response),))


# ============================================================================
# DOM OPERATIONS
# ============================================================================

class _DomAction(ActionType):
    from_kind = EndpointKind.SCRIPT
    to_kind = EndpointKind.BROWSER

    def _check_reachable_doc(self, ctx: ModelContext, b: Binding) -> None:
        self._require_active(ctx, b.from_)
        doc = b.arg("doc")
        visible = {ctx.facts.context_of(b.from_)} | set(ctx.state.documents_of(b.to))
        if doc not in visible:
            raise PreconditionFailed(f"document {doc} is neither the script context nor owned by {b.to}")


class ReadDom(_DomAction):
    kind = ActionKind.READ_DOM
    unchanged = frozenset(TIME_VARYING)

    def bindings(self, ctx: ModelContext) -> Iterator[Binding]:
        p = ctx.pools
        for scr, br, doc in itertools.product(p.scripts, p.browsers, p.documents):
            yield Binding(self.kind, scr, br, (("doc", doc),))

    def check(self, ctx: ModelContext, b: Binding) -> None:
        self._check_reachable_doc(ctx, b)

    def effect(self, ctx: ModelContext, b: Binding) -> Effect:
        return Effect(updates={}, outputs=(("result", ctx.state.content_of(b.arg("doc"))),))


class WriteDom(_DomAction):
    kind = ActionKind.WRITE_DOM
    unchanged = frozenset({"domain", "documents", "cookies", "src"})

    def bindings(self, ctx: ModelContext) -> Iterator[Binding]:
        p = ctx.pools
        for scr, br, doc, res in itertools.product(p.scripts, p.browsers, p.documents, p.resources):
            yield Binding(self.kind, scr, br, (("doc", doc), ("new_dom", res)))

    def check(self, ctx: ModelContext, b: Binding) -> None:
        self._check_reachable_doc(ctx, b)

    def effect(self, ctx: ModelContext, b: Binding) -> Effect:
        new = Relation([(b.arg("doc"), b.arg("new_dom"))], arity=2)
        return Effect(updates={"content": ctx.state["content"].override(new)})


class SetDomain(_DomAction):
    """document.domain assignment; only on the script's own context document."""
    kind = ActionKind.SET_DOMAIN
    unchanged = frozenset({"content", "documents", "cookies", "src"})

    def bindings(self, ctx: ModelContext) -> Iterator[Binding]:
        p = ctx.pools
        # empty sets are skipped: overriding with no rows would leave the domain untouched
        host_sets = [hs for hs in p.host_sets() if hs]
        for scr, br, doc, hosts in itertools.product(p.scripts, p.browsers, p.documents, host_sets):
            yield Binding(self.kind, scr, br, (("doc", doc), ("new_domain", hosts)))

    def check(self, ctx: ModelContext, b: Binding) -> None:
        owner = self._require_active(ctx, b.from_)
        if b.to != owner:
            raise PreconditionFailed(f"{b.to} does not run script {b.from_}")
        if b.arg("doc") != ctx.facts.context_of(b.from_):
            raise PreconditionFailed("SetDomain may only target the script's context document")

    def effect(self, ctx: ModelContext, b: Binding) -> Effect:
        new = Relation([(b.arg("doc"), h) for h in b.arg("new_domain")], arity=2)
        return Effect(updates={"domain": ctx.state["domain"].override(new)})


CATALOG: Tuple[ActionType, ...] = (
    BrowserHttpRequest(),
    XmlHttpRequest(),
    ReadDom(),
    WriteDom(),
    SetDomain(),
)


def action_type(kind: ActionKind) -> ActionType:
    for a in CATALOG:
        if a.kind == kind:
            return a
    raise KeyError(kind)
