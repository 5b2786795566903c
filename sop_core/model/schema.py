"""
SOP Core - Domain Schema

The typed universe the model ranges over:
- Endpoint variants (Browser, Script, Server) as explicit tagged atoms
- URL / Origin built from opaque Protocol, Host, Port and Path atoms
- Time instants on a single global clock
- Atom pools (per-type bounds) that parametrize the search
- Static facts (DNS map, server resource tables, script contexts, cookie scopes)
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .errors import invalid_bound
from .relation import Relation


# ============================================================================
# ENDPOINTS
# ============================================================================

class EndpointKind(Enum):
    BROWSER = "Browser"
    SCRIPT = "Script"
    SERVER = "Server"


@dataclass(frozen=True)
class Endpoint:
    """An identity-only endpoint atom. Exactly one variant per atom."""
    kind: EndpointKind
    name: str

    @property
    def is_client(self) -> bool:
        return self.kind in (EndpointKind.BROWSER, EndpointKind.SCRIPT)

    @property
    def is_browser(self) -> bool:
        return self.kind == EndpointKind.BROWSER

    @property
    def is_script(self) -> bool:
        return self.kind == EndpointKind.SCRIPT

    @property
    def is_server(self) -> bool:
        return self.kind == EndpointKind.SERVER

    def __str__(self) -> str:
        return self.name


def browser(name: str) -> Endpoint:
    return Endpoint(EndpointKind.BROWSER, name)


def script(name: str) -> Endpoint:
    return Endpoint(EndpointKind.SCRIPT, name)


def server(name: str) -> Endpoint:
    return Endpoint(EndpointKind.SERVER, name)


# ============================================================================
# URL / ORIGIN / TIME
# ============================================================================

@dataclass(frozen=True)
class Origin:
    protocol: str
    host: str
    port: Optional[str] = None

    def __str__(self) -> str:
        port = f":{self.port}" if self.port is not None else ""
        return f"{self.protocol}://{self.host}{port}"


@dataclass(frozen=True)
class URL:
    protocol: str
    host: str
    port: Optional[str] = None
    path: Optional[str] = None

    @property
    def origin(self) -> Origin:
        return Origin(self.protocol, self.host, self.port)

    def __str__(self) -> str:
        return f"{self.origin}{self.path or ''}"


@dataclass(frozen=True, order=True)
class Time:
    index: int

    def next(self) -> "Time":
        return Time(self.index + 1)

    def __str__(self) -> str:
        return f"t{self.index}"


def cookie_scope_matches(scope: str, host: str) -> bool:
    """A scope matches its own host and every sub-domain of it (suffix match)."""
    return host == scope or host.endswith("." + scope)


# ============================================================================
# BOUNDS & POOLS
# ============================================================================

# Types without which no action can ever fire must have at least one atom.
REQUIRED_ATOM_TYPES = ("protocol", "host", "browser", "server", "document")


@dataclass(frozen=True)
class AtomBounds:
    """Per-type pool sizes. Small by default: the search is exhaustive."""
    protocol: int = 1
    host: int = 2
    port: int = 0
    path: int = 1
    resource: int = 2
    cookie: int = 0
    browser: int = 1
    script: int = 1
    server: int = 2
    document: int = 2

    def validate(self) -> None:
        for name, value in self.__dict__.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise invalid_bound(name, f"Atom bound '{name}' must be an integer, got {value!r}.")
            if value < 0:
                raise invalid_bound(name, f"Atom bound '{name}' must not be negative, got {value}.")
            if name in REQUIRED_ATOM_TYPES and value == 0:
                raise invalid_bound(name, f"Atom bound '{name}' must be positive.")


_POOL_PREFIX = {
    "protocol": "proto",
    "host": "host",
    "port": "port",
    "path": "/p",
    "resource": "res",
    "cookie": "cookie",
    "browser": "browser",
    "script": "script",
    "server": "server",
    "document": "doc",
}


@dataclass(frozen=True)
class AtomPools:
    """Concrete atoms per type, in the order the explorer enumerates them."""
    protocols: Tuple[str, ...]
    hosts: Tuple[str, ...]
    ports: Tuple[str, ...] = ()
    paths: Tuple[str, ...] = ()
    resources: Tuple[str, ...] = ()
    cookies: Tuple[str, ...] = ()
    browsers: Tuple[Endpoint, ...] = ()
    scripts: Tuple[Endpoint, ...] = ()
    servers: Tuple[Endpoint, ...] = ()
    documents: Tuple[str, ...] = ()

    @classmethod
    def from_bounds(cls, bounds: AtomBounds) -> "AtomPools":
        bounds.validate()

        def names(kind: str) -> Tuple[str, ...]:
            return tuple(f"{_POOL_PREFIX[kind]}{i}" for i in range(getattr(bounds, kind)))

        return cls(
            protocols=names("protocol"),
            hosts=names("host"),
            ports=names("port"),
            paths=names("path"),
            resources=names("resource"),
            cookies=names("cookie"),
            browsers=tuple(browser(n) for n in names("browser")),
            scripts=tuple(script(n) for n in names("script")),
            servers=tuple(server(n) for n in names("server")),
            documents=names("document"),
        )

    @property
    def bounds(self) -> AtomBounds:
        return AtomBounds(
            protocol=len(self.protocols),
            host=len(self.hosts),
            port=len(self.ports),
            path=len(self.paths),
            resource=len(self.resources),
            cookie=len(self.cookies),
            browser=len(self.browsers),
            script=len(self.scripts),
            server=len(self.servers),
            document=len(self.documents),
        )

    def urls(self) -> Tuple[URL, ...]:
        """Every URL expressible from the pools; absent port/path included."""
        ports: List[Optional[str]] = [None, *self.ports]
        paths: List[Optional[str]] = [None, *self.paths]
        return tuple(
            URL(proto, host, port, path)
            for proto, host, port, path in itertools.product(self.protocols, self.hosts, ports, paths)
        )

    def cookie_sets(self) -> Tuple[FrozenSet[str], ...]:
        return _powerset(self.cookies)

    def host_sets(self) -> Tuple[FrozenSet[str], ...]:
        return _powerset(self.hosts)


def _powerset(items: Tuple[str, ...]) -> Tuple[FrozenSet[str], ...]:
    return tuple(
        frozenset(combo)
        for n in range(len(items) + 1)
        for combo in itertools.combinations(items, n)
    )


# ============================================================================
# STATIC FACTS
# ============================================================================

@dataclass(frozen=True)
class StaticFacts:
    """
    Facts fixed for a whole search:
        dns:           Host -> Server
        resources:     Server -> Path -> Resource   (functional per server/path)
        context:       Script -> Document           (functional)
        cookie_scope:  Cookie -> Host
    """
    dns: Relation = field(default_factory=lambda: Relation.empty(2))
    resources: Relation = field(default_factory=lambda: Relation.empty(3))
    context: Relation = field(default_factory=lambda: Relation.empty(2))
    cookie_scope: Relation = field(default_factory=lambda: Relation.empty(2))

    def servers_for(self, host: str) -> FrozenSet[Endpoint]:
        return self.dns.image(host)

    def resource_at(self, srv: Endpoint, path: Optional[str]) -> Optional[str]:
        if path is None:
            return None
        return self.resources.lone(srv, path)

    def table_of(self, srv: Endpoint) -> Dict[str, str]:
        return {p: r for (s, p, r) in self.resources if s == srv}

    def context_of(self, scr: Endpoint) -> Optional[str]:
        return self.context.lone(scr)

    def scopes_of(self, cookie: str) -> FrozenSet[str]:
        return self.cookie_scope.image(cookie)

    def cookie_matches(self, cookie: str, host: str) -> bool:
        return any(cookie_scope_matches(s, host) for s in self.scopes_of(cookie))

    def server_assumption_violations(self) -> List[Tuple[str, Endpoint, Endpoint]]:
        """(host, s1, s2) triples where two servers behind one host disagree on their tables."""
        out = []
        for host in sorted(self.dns.column(0)):
            targets = sorted(self.servers_for(host), key=lambda s: s.name)
            for s1, s2 in itertools.combinations(targets, 2):
                if self.table_of(s1) != self.table_of(s2):
                    out.append((host, s1, s2))
        return out

    def satisfies_server_assumption(self) -> bool:
        return not self.server_assumption_violations()

    def to_dict(self) -> Dict[str, Any]:
        dns: Dict[str, List[str]] = {}
        for h, s in self.dns.sorted_rows():
            dns.setdefault(h, []).append(s.name)
        resources: Dict[str, Dict[str, str]] = {}
        for s, p, r in self.resources.sorted_rows():
            resources.setdefault(s.name, {})[p] = r
        scopes: Dict[str, List[str]] = {}
        for c, h in self.cookie_scope.sorted_rows():
            scopes.setdefault(c, []).append(h)
        return {
            "dns": dns,
            "resources": resources,
            "contexts": {s.name: d for s, d in self.context.sorted_rows()},
            "cookie_scopes": scopes,
        }


@dataclass(frozen=True)
class SeedDocument:
    """A document that already exists (owned by `owner`) at the first instant."""
    doc: str
    owner: Endpoint
    src: URL
    content: Optional[str] = None
    domain: FrozenSet[str] = frozenset()
