from __future__ import annotations

from pathlib import Path
import pytest

from sop_core.engines.z3_engine import PartialFacts
from sop_core.model.relation import Relation
from sop_core.model.schema import AtomPools, SeedDocument, StaticFacts, URL, browser, script, server

BROWSER = browser("browser0")
SCRIPT = script("script0")
SERVER_A = server("serverA")
SERVER_B = server("serverB")


@pytest.fixture(scope="session")
def repo_root() -> Path:
    # tests/ -> repo root
    return Path(__file__).resolve().parents[1]


@pytest.fixture(scope="session")
def examples_dir(repo_root: Path) -> Path:
    return repo_root / "examples" / "scenarios"


@pytest.fixture(scope="session")
def two_origins_path(examples_dir: Path) -> Path:
    p = examples_dir / "two_origins.json"
    assert p.exists(), f"Missing example scenario: {p}"
    return p


@pytest.fixture(scope="session")
def cookie_scopes_path(examples_dir: Path) -> Path:
    p = examples_dir / "cookie_scopes.json"
    assert p.exists(), f"Missing example scenario: {p}"
    return p


@pytest.fixture(scope="session")
def infeasible_path(examples_dir: Path) -> Path:
    p = examples_dir / "infeasible_facts.json"
    assert p.exists(), f"Missing example scenario: {p}"
    return p


def make_pools(cookies=()) -> AtomPools:
    return AtomPools(
        protocols=("http",),
        hosts=("a.com", "b.com"),
        ports=(),
        paths=("/",),
        resources=("pageA", "pageB"),
        cookies=tuple(cookies),
        browsers=(BROWSER,),
        scripts=(SCRIPT,),
        servers=(SERVER_A, SERVER_B),
        documents=("docA", "docB"),
    )


def make_facts(cookie_scopes=()) -> StaticFacts:
    return StaticFacts(
        dns=Relation([("a.com", SERVER_A), ("b.com", SERVER_B)], arity=2),
        resources=Relation([(SERVER_A, "/", "pageA"), (SERVER_B, "/", "pageB")], arity=3),
        context=Relation([(SCRIPT, "docA")], arity=2),
        cookie_scope=Relation(cookie_scopes, arity=2),
    )


def make_fixed_facts() -> PartialFacts:
    return PartialFacts(
        dns={"a.com": ("serverA",), "b.com": ("serverB",)},
        resources={"serverA": {"/": "pageA"}, "serverB": {"/": "pageB"}},
        contexts={"script0": "docA"},
    )


def seed_doc_a() -> SeedDocument:
    return SeedDocument(
        doc="docA",
        owner=BROWSER,
        src=URL("http", "a.com", None, "/"),
        content="pageA",
        domain=frozenset({"a.com"}),
    )


@pytest.fixture
def pools() -> AtomPools:
    return make_pools()


@pytest.fixture
def facts() -> StaticFacts:
    return make_facts()


@pytest.fixture
def fixed_facts() -> PartialFacts:
    return make_fixed_facts()


@pytest.fixture
def seed():
    return (seed_doc_a(),)
