from __future__ import annotations

from .actions import CATALOG, ActionKind, ActionRecord, Binding, ModelContext, PreconditionFailed
from .errors import ConfigurationError, Issue, SopModelError
from .relation import Relation, RelationError, join, override, restrict, union
from .schema import (
    AtomBounds, AtomPools, Endpoint, EndpointKind, Origin, SeedDocument, StaticFacts, Time, URL,
    browser, cookie_scope_matches, script, server,
)
from .store import Snapshot, Store
from .trace import Step, Trace

__all__ = [
    "CATALOG",
    "ActionKind",
    "ActionRecord",
    "Binding",
    "ModelContext",
    "PreconditionFailed",
    "ConfigurationError",
    "Issue",
    "SopModelError",
    "Relation",
    "RelationError",
    "join",
    "override",
    "restrict",
    "union",
    "AtomBounds",
    "AtomPools",
    "Endpoint",
    "EndpointKind",
    "Origin",
    "SeedDocument",
    "StaticFacts",
    "Time",
    "URL",
    "browser",
    "cookie_scope_matches",
    "script",
    "server",
    "Snapshot",
    "Store",
    "Step",
    "Trace",
]
