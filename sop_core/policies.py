"""
SOP Core - Policy predicates

Predicates over execution traces. Universal action predicates
(`ForAllActions`) are prefix-closed: once a prefix satisfies them, an
extension only needs its newest step checked. That is what lets the explorer
enforce them as facts by pruning branches.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from .model.actions import DOM_ACTIONS, HTTP_ACTIONS, ActionKind
from .model.errors import ConfigurationError
from .model.schema import Endpoint, Origin, StaticFacts, URL
from .model.trace import Step, Trace

StepPredicate = Callable[[Step, Trace], bool]


# ============================================================================
# PRIMITIVES
# ============================================================================

def same_origin(u1: Optional[Union[URL, Origin]], u2: Optional[Union[URL, Origin]]) -> bool:
    """Equal protocol, host and port. Two absent ports compare equal."""
    if u1 is None or u2 is None:
        return False
    o1 = u1.origin if isinstance(u1, URL) else u1
    o2 = u2.origin if isinstance(u2, URL) else u2
    return o1 == o2


def cookie_matches(facts: StaticFacts, cookie: str, host: str) -> bool:
    return facts.cookie_matches(cookie, host)


def context_src(step: Step, trace: Trace, scr: Endpoint) -> Optional[URL]:
    doc = trace.facts.context_of(scr)
    return step.before.src_of(doc) if doc is not None else None


# ============================================================================
# PREDICATE TYPES
# ============================================================================

class Predicate:
    """A named boolean property of a trace."""

    prefix_closed: bool = False

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description

    def holds(self, trace: Trace) -> bool:
        raise NotImplementedError

    def holds_incrementally(self, trace: Trace) -> bool:
        """Evaluate `trace` knowing its prefix without the last step already satisfied the predicate."""
        return self.holds(trace)

    def __call__(self, trace: Trace) -> bool:
        return self.holds(trace)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"


class TracePredicate(Predicate):
    def __init__(self, name: str, fn: Callable[[Trace], bool], description: str = "", *, prefix_closed: bool = False):
        super().__init__(name, description)
        self._fn = fn
        self.prefix_closed = prefix_closed

    def holds(self, trace: Trace) -> bool:
        return bool(self._fn(trace))


class ForAllActions(Predicate):
    """Every step of the given kinds satisfies `fn`."""
    prefix_closed = True

    def __init__(self, name: str, kinds: Iterable[ActionKind], fn: StepPredicate, description: str = ""):
        super().__init__(name, description)
        self.kinds: Tuple[ActionKind, ...] = tuple(kinds)
        self._fn = fn

    def holds(self, trace: Trace) -> bool:
        return all(self._fn(s, trace) for s in trace.steps_of(*self.kinds))

    def holds_incrementally(self, trace: Trace) -> bool:
        last = trace.last
        if last is None or last.action.kind not in self.kinds:
            return True
        return bool(self._fn(last, trace))

    def offending(self, trace: Trace) -> Optional[Step]:
        for s in trace.steps_of(*self.kinds):
            if not self._fn(s, trace):
                return s
        return None


class ExistsAction(Predicate):
    """Some step of the given kinds satisfies `fn`."""

    def __init__(self, name: str, kinds: Iterable[ActionKind], fn: StepPredicate, description: str = ""):
        super().__init__(name, description)
        self.kinds = tuple(kinds)
        self._fn = fn

    def holds(self, trace: Trace) -> bool:
        return any(self._fn(s, trace) for s in trace.steps_of(*self.kinds))


def for_all_actions(name: str, kinds: Iterable[ActionKind], fn: StepPredicate, description: str = "") -> ForAllActions:
    return ForAllActions(name, kinds, fn, description)


def exists_action(name: str, kinds: Iterable[ActionKind], fn: StepPredicate, description: str = "") -> ExistsAction:
    return ExistsAction(name, kinds, fn, description)


# ============================================================================
# STEP CONDITIONS
# ============================================================================

def _dom_same_origin(step: Step, trace: Trace) -> bool:
    a = step.action
    return same_origin(step.before.src_of(a["doc"]), context_src(step, trace, a.from_))


def _xhr_same_origin(step: Step, trace: Trace) -> bool:
    a = step.action
    return same_origin(a["url"], context_src(step, trace, a.from_))


def _response_matches_table(step: Step, trace: Trace) -> bool:
    a = step.action
    expected = trace.facts.resource_at(a.to, a["url"].path)
    if a.get("response") != expected:
        return False
    if a.kind == ActionKind.BROWSER_HTTP_REQUEST:
        return step.after.content_of(a["doc"]) == expected
    return True


def _set_domain_keeps_src_host(step: Step, trace: Trace) -> bool:
    a = step.action
    src = step.before.src_of(a["doc"])
    return src is not None and src.host in a["new_domain"]


def _read_dom_idempotent(trace: Trace) -> bool:
    last_read: Dict[str, Optional[str]] = {}
    for step in trace.steps:
        a = step.action
        if a.kind == ActionKind.WRITE_DOM:
            last_read.pop(a["doc"], None)
        elif a.kind == ActionKind.READ_DOM:
            doc = a["doc"]
            if doc in last_read and last_read[doc] != a["result"]:
                return False
            last_read[doc] = a["result"]
    return True


# ============================================================================
# REGISTRY
# ============================================================================

dom_sop = for_all_actions(
    "domSop", DOM_ACTIONS, _dom_same_origin,
    "Every ReadDom/WriteDom targets a document with the same origin as the script context.",
)

xml_http_req_sop = for_all_actions(
    "xmlHttpReqSop", (ActionKind.XML_HTTP_REQUEST,), _xhr_same_origin,
    "Every XmlHttpRequest targets a URL with the same origin as the script context.",
)

response_integrity = for_all_actions(
    "responseIntegrity", HTTP_ACTIONS, _response_matches_table,
    "Every HTTP response equals the server's resource at the request path (absent if none).",
)

set_domain_keeps_src_host = for_all_actions(
    "setDomainKeepsSrcHost", (ActionKind.SET_DOMAIN,), _set_domain_keeps_src_host,
    "Every SetDomain keeps the document's own src host in the new domain.",
)

read_dom_idempotent = TracePredicate(
    "readDomIdempotent", _read_dom_idempotent,
    "Two ReadDom calls on one document without an intervening WriteDom return the same result.",
    prefix_closed=True,
)

cross_origin_dom_access = exists_action(
    "crossOriginDomAccess", DOM_ACTIONS, lambda s, t: not _dom_same_origin(s, t),
    "Some ReadDom/WriteDom crosses origins.",
)

cross_origin_xhr = exists_action(
    "crossOriginXhr", (ActionKind.XML_HTTP_REQUEST,), lambda s, t: not _xhr_same_origin(s, t),
    "Some XmlHttpRequest crosses origins.",
)

PREDICATES: Dict[str, Predicate] = {
    p.name: p
    for p in (
        dom_sop,
        xml_http_req_sop,
        response_integrity,
        set_domain_keeps_src_host,
        read_dom_idempotent,
        cross_origin_dom_access,
        cross_origin_xhr,
    )
}


def get_predicate(name: str) -> Predicate:
    try:
        return PREDICATES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown predicate '{name}'. Known: {sorted(PREDICATES)}"
        ) from None
