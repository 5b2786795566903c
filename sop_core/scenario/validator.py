"""
Scenario Validator - Semantic Validation

Performs semantic validation on a loaded Scenario before any search:
- Atom declarations (duplicates, endpoint variant disjointness)
- Seed documents (known atoms, single creation per document)
- Fixed static facts (known atoms only)
- Configured predicate / enforced facts exist
"""

from typing import Dict, List, Optional, Set

from ..model.errors import ConfigurationError, Issue
from ..policies import PREDICATES


class ValidationError(ConfigurationError):
    """Semantic error in a scenario. `location` is the JSON path of the offending entry."""
    def __init__(self, message: str, location: Optional[str] = None):
        self.message = message
        self.location = location
        prefix = f"{location}: " if location else ""
        super().__init__(
            f"{prefix}{message}",
            [Issue(kind="VALIDATION", message=message, facts=[location] if location else []).to_dict()],
        )


class ScenarioValidator:
    """
    Ensures the structural integrity of a Scenario.
    Acts as the gatekeeper before the Z3 engine and the explorer run.
    """

    def __init__(self):
        self.errors: List[ValidationError] = []

    def validate(self, scenario) -> bool:
        """Main validation entry point. Raises the first error found."""
        self.errors = []
        pools = scenario.pools

        self._validate_atoms(pools)
        self._validate_seed(scenario)
        self._validate_facts(scenario)
        self._validate_config(scenario.config)

        if self.errors:
            raise self.errors[0]
        return True

    def _error(self, message: str, location: str) -> None:
        self.errors.append(ValidationError(message, location))

    def _validate_atoms(self, pools):
        groups = {
            "protocols": pools.protocols,
            "hosts": pools.hosts,
            "ports": pools.ports,
            "paths": pools.paths,
            "resources": pools.resources,
            "cookies": pools.cookies,
            "documents": pools.documents,
        }
        for name, atoms in groups.items():
            seen: Set[str] = set()
            for a in atoms:
                if a in seen:
                    self._error(f"Duplicate atom '{a}'", f"atoms.{name}")
                seen.add(a)

        endpoint_kind: Dict[str, str] = {}
        for group in ("browsers", "scripts", "servers"):
            for ep in getattr(pools, group):
                if ep.name in endpoint_kind:
                    self._error(
                        f"Endpoint '{ep.name}' declared as both {endpoint_kind[ep.name]} and {group}",
                        f"atoms.{group}",
                    )
                endpoint_kind[ep.name] = group

    def _validate_seed(self, scenario):
        pools = scenario.pools
        browsers = {b.name for b in pools.browsers}
        seeded: Set[str] = set()
        for i, sd in enumerate(scenario.seed):
            loc = f"seed.documents[{i}]"
            if sd.doc not in pools.documents:
                self._error(f"Unknown document '{sd.doc}'", f"{loc}.id")
            if sd.doc in seeded:
                self._error(f"Document '{sd.doc}' seeded twice", f"{loc}.id")
            seeded.add(sd.doc)
            if sd.owner.name not in browsers:
                self._error(f"Unknown browser '{sd.owner.name}'", f"{loc}.browser")
            if sd.src.protocol not in pools.protocols:
                self._error(f"Unknown protocol '{sd.src.protocol}'", f"{loc}.src")
            if sd.src.host not in pools.hosts:
                self._error(f"Unknown host '{sd.src.host}'", f"{loc}.src")
            if sd.src.port is not None and sd.src.port not in pools.ports:
                self._error(f"Unknown port '{sd.src.port}'", f"{loc}.src")
            if sd.src.path is not None and sd.src.path not in pools.paths:
                self._error(f"Unknown path '{sd.src.path}'", f"{loc}.src")
            if sd.content is not None and sd.content not in pools.resources:
                self._error(f"Unknown resource '{sd.content}'", f"{loc}.content")
            for h in sorted(sd.domain):
                if h not in pools.hosts:
                    self._error(f"Unknown host '{h}' in domain", f"{loc}.domain")

    def _validate_facts(self, scenario):
        pools = scenario.pools
        facts = scenario.fixed_facts
        servers = {s.name for s in pools.servers}
        scripts = {s.name for s in pools.scripts}

        for h, targets in facts.dns.items():
            if h not in pools.hosts:
                self._error(f"Unknown host '{h}'", "static_facts.dns")
            for s in targets:
                if s not in servers:
                    self._error(f"Unknown server '{s}'", f"static_facts.dns.{h}")

        for s, table in facts.resources.items():
            if s not in servers:
                self._error(f"Unknown server '{s}'", "static_facts.resources")
            for path, res in table.items():
                if path not in pools.paths:
                    self._error(f"Unknown path '{path}'", f"static_facts.resources.{s}")
                if res is not None and res not in pools.resources:
                    self._error(f"Unknown resource '{res}'", f"static_facts.resources.{s}")

        for scr, doc in facts.contexts.items():
            if scr not in scripts:
                self._error(f"Unknown script '{scr}'", "static_facts.contexts")
            if doc not in pools.documents:
                self._error(f"Unknown document '{doc}'", f"static_facts.contexts.{scr}")

        for c, hosts in facts.cookie_scopes.items():
            if c not in pools.cookies:
                self._error(f"Unknown cookie '{c}'", "static_facts.cookie_scopes")
            if not hosts:
                self._error(f"Cookie '{c}' has no scope", f"static_facts.cookie_scopes.{c}")
            for h in hosts:
                if h not in pools.hosts:
                    self._error(f"Unknown host '{h}'", f"static_facts.cookie_scopes.{c}")

    def _validate_config(self, config):
        if config.predicate is not None and config.predicate not in PREDICATES:
            self._error(
                f"Unknown predicate '{config.predicate}'. Supported: {sorted(PREDICATES)}",
                "config.predicate",
            )
        for name in config.enforce:
            if name not in PREDICATES:
                self._error(f"Unknown enforced fact '{name}'. Supported: {sorted(PREDICATES)}", "config.enforce")
            elif not PREDICATES[name].prefix_closed:
                self._error(f"Fact '{name}' is not prefix-closed and cannot be enforced", "config.enforce")
