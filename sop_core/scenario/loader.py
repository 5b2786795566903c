"""
Scenario Loader

Reads a JSON scenario into typed model objects:

    {
      "name": "...",
      "atoms":  {"hosts": ["a.com", "b.com"], "browsers": ["browser0"], ...},
      "bounds": {"resource": 2, ...},            # counts for types not named in "atoms"
      "static_facts": {"dns": {...}, "resources": {...}, "contexts": {...}, "cookie_scopes": {...}},
      "seed": {"documents": [{"id": "docA", "browser": "browser0", "src": "http://a.com/", ...}]},
      "config": {"mode": "run", "steps": 2, "predicate": "crossOriginDomAccess", "enforce": []}
    }

Static facts left out are enumerated by the Z3 engine.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..engines.z3_engine import PartialFacts
from ..explorer import ExplorerConfig
from ..model.schema import AtomBounds, AtomPools, SeedDocument, URL, browser, script, server
from .validator import ValidationError

URL_PATTERN = re.compile(
    r"^(?P<protocol>[^:/]+)://(?P<host>[^:/]+)(?::(?P<port>[^/]+))?(?P<path>/.*)?$"
)

# scenario key -> AtomBounds field
_ATOM_KEYS = {
    "protocols": "protocol",
    "hosts": "host",
    "ports": "port",
    "paths": "path",
    "resources": "resource",
    "cookies": "cookie",
    "browsers": "browser",
    "scripts": "script",
    "servers": "server",
    "documents": "document",
}


@dataclass(frozen=True)
class Scenario:
    pools: AtomPools
    config: ExplorerConfig = field(default_factory=ExplorerConfig)
    fixed_facts: PartialFacts = field(default_factory=PartialFacts)
    seed: Tuple[SeedDocument, ...] = ()
    name: Optional[str] = None


def parse_url(raw: Union[str, Mapping[str, Any]], location: str = "url") -> URL:
    if isinstance(raw, Mapping):
        try:
            return URL(
                protocol=str(raw["protocol"]),
                host=str(raw["host"]),
                port=_opt_str(raw.get("port")),
                path=_opt_str(raw.get("path")),
            )
        except KeyError as e:
            raise ValidationError(f"URL is missing {e}", location) from None
    if isinstance(raw, str):
        m = URL_PATTERN.match(raw)
        if m:
            return URL(m["protocol"], m["host"], m["port"], m["path"])
    raise ValidationError(f"Cannot parse URL {raw!r} (expected 'proto://host[:port][/path]')", location)


def _opt_str(v: Any) -> Optional[str]:
    return None if v is None else str(v)


def _names(data: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    raw = data.get(key, [])
    if not isinstance(raw, list) or not all(isinstance(x, (str, int)) for x in raw):
        raise ValidationError(f"'{key}' must be a list of atom names", f"atoms.{key}")
    return tuple(str(x) for x in raw)


def _parse_pools(data: Mapping[str, Any]) -> AtomPools:
    atoms = data.get("atoms", {}) or {}
    bounds_raw = data.get("bounds", {}) or {}
    if not isinstance(atoms, Mapping) or not isinstance(bounds_raw, Mapping):
        raise ValidationError("'atoms' and 'bounds' must be objects", "atoms")

    unknown = (set(atoms) - set(_ATOM_KEYS)) | (set(bounds_raw) - set(_ATOM_KEYS.values()))
    if unknown:
        raise ValidationError(f"Unknown atom type(s): {sorted(unknown)}", "atoms")

    known_bounds = {f.name for f in fields(AtomBounds)}
    bounds = AtomBounds(**{k: v for k, v in bounds_raw.items() if k in known_bounds})
    generated = AtomPools.from_bounds(bounds)

    named: Dict[str, Tuple[str, ...]] = {}
    for key in _ATOM_KEYS:
        if key in atoms:
            named[key] = _names(atoms, key)

    def pick(key: str) -> Tuple[str, ...]:
        if key in named:
            return named[key]
        return tuple(str(x) for x in getattr(generated, key))

    pools = AtomPools(
        protocols=pick("protocols"),
        hosts=pick("hosts"),
        ports=pick("ports"),
        paths=pick("paths"),
        resources=pick("resources"),
        cookies=pick("cookies"),
        browsers=tuple(browser(n) for n in pick("browsers")),
        scripts=tuple(script(n) for n in pick("scripts")),
        servers=tuple(server(n) for n in pick("servers")),
        documents=pick("documents"),
    )
    pools.bounds.validate()
    return pools


def _parse_facts(data: Mapping[str, Any]) -> PartialFacts:
    raw = data.get("static_facts", {}) or {}
    if not isinstance(raw, Mapping):
        raise ValidationError("'static_facts' must be an object", "static_facts")

    def listify(v: Any, loc: str) -> Tuple[str, ...]:
        if isinstance(v, str):
            return (v,)
        if isinstance(v, list):
            return tuple(str(x) for x in v)
        raise ValidationError("expected a name or a list of names", loc)

    dns = {str(h): listify(v, f"static_facts.dns.{h}") for h, v in (raw.get("dns") or {}).items()}
    resources: Dict[str, Dict[str, Optional[str]]] = {}
    for s, table in (raw.get("resources") or {}).items():
        if not isinstance(table, Mapping):
            raise ValidationError("server table must map paths to resources", f"static_facts.resources.{s}")
        resources[str(s)] = {str(p): _opt_str(r) for p, r in table.items()}
    contexts = {str(k): str(v) for k, v in (raw.get("contexts") or {}).items()}
    scopes = {
        str(c): listify(v, f"static_facts.cookie_scopes.{c}")
        for c, v in (raw.get("cookie_scopes") or {}).items()
    }
    return PartialFacts(dns=dns, resources=resources, contexts=contexts, cookie_scopes=scopes)


def _parse_seed(data: Mapping[str, Any]) -> Tuple[SeedDocument, ...]:
    raw = (data.get("seed") or {}).get("documents", []) or []
    out = []
    for i, entry in enumerate(raw):
        loc = f"seed.documents[{i}]"
        try:
            domain = entry.get("domain")
            src = parse_url(entry["src"], f"{loc}.src")
            out.append(SeedDocument(
                doc=str(entry["id"]),
                owner=browser(str(entry["browser"])),
                src=src,
                content=_opt_str(entry.get("content")),
                # a freshly loaded document's domain is its own host
                domain=frozenset(domain) if domain is not None else frozenset({src.host}),
            ))
        except KeyError as e:
            raise ValidationError(f"seed document is missing {e}", loc) from None
    return tuple(out)


def _parse_config(data: Mapping[str, Any]) -> ExplorerConfig:
    raw = dict(data.get("config", {}) or {})
    known = {f.name for f in fields(ExplorerConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ValidationError(f"Unknown config key(s): {sorted(unknown)}", "config")
    if "enforce" in raw:
        enforce = raw["enforce"]
        raw["enforce"] = (enforce,) if isinstance(enforce, str) else tuple(enforce)
    config = ExplorerConfig(**raw)
    config.validate()
    return config


def parse_scenario(data: Mapping[str, Any], name: Optional[str] = None) -> Scenario:
    if not isinstance(data, Mapping):
        raise ValidationError("scenario must be a JSON object")
    return Scenario(
        pools=_parse_pools(data),
        config=_parse_config(data),
        fixed_facts=_parse_facts(data),
        seed=_parse_seed(data),
        name=data.get("name", name),
    )


def parse_scenario_file(path: str) -> Scenario:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON: {e.msg}", f"line {e.lineno}, col {e.colno}") from e
    return parse_scenario(data, name=p.stem)
