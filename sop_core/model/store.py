"""
SOP Core - Versioned Store

Persistent container for the time-varying relations of the model. Each
relation carries a trailing Time column; a Store additionally caches the
slice at its current instant so the hot path never re-restricts history.

Time-varying relations:
    documents : Browser -> Document -> Time   (grows monotonically)
    cookies   : Browser -> Cookie -> Time     (grows monotonically)
    src       : Document -> URL -> Time       (set once at creation)
    content   : Document -> Resource -> Time  (functional per instant)
    domain    : Document -> Host -> Time
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from .relation import Relation
from .schema import Endpoint, SeedDocument, Time, URL

TIME_VARYING: Tuple[str, ...] = ("documents", "cookies", "src", "content", "domain")
FUNCTIONAL: Tuple[str, ...] = ("src", "content")


@dataclass(frozen=True)
class Snapshot:
    """All time-varying relations sliced at one instant."""
    time: Time
    relations: Mapping[str, Relation]

    def __getitem__(self, name: str) -> Relation:
        return self.relations[name]

    def documents_of(self, b: Endpoint) -> FrozenSet[str]:
        return self.relations["documents"].image(b)

    def cookies_of(self, b: Endpoint) -> FrozenSet[str]:
        return self.relations["cookies"].image(b)

    def owners_of(self, doc: str) -> Tuple[Endpoint, ...]:
        owners = (b for (b, d) in self.relations["documents"] if d == doc)
        return tuple(sorted(owners, key=lambda e: e.name))

    def src_of(self, doc: str) -> Optional[URL]:
        return self.relations["src"].lone(doc)

    def content_of(self, doc: str) -> Optional[str]:
        return self.relations["content"].lone(doc)

    def domain_of(self, doc: str) -> FrozenSet[str]:
        return self.relations["domain"].image(doc)

    def is_created(self, doc: str) -> bool:
        return bool(self.relations["src"].image(doc))

    def to_dict(self) -> Dict[str, object]:
        docs = {}
        for doc in sorted(self.relations["src"].column(0)):
            docs[doc] = {
                "src": str(self.src_of(doc)),
                "content": self.content_of(doc),
                "domain": sorted(self.domain_of(doc)),
                "owners": [b.name for b in self.owners_of(doc)],
            }
        browsers: Dict[str, Dict[str, list]] = {}
        for b, d in self.relations["documents"].sorted_rows():
            browsers.setdefault(b.name, {"documents": [], "cookies": []})["documents"].append(d)
        for b, c in self.relations["cookies"].sorted_rows():
            browsers.setdefault(b.name, {"documents": [], "cookies": []})["cookies"].append(c)
        return {"time": self.time.index, "documents": docs, "browsers": browsers}


class Store:
    """
    Immutable, versioned store. `advance` returns a new Store one instant
    later; the receiver is left untouched, so sibling branches of the
    explorer can hold their own stores without copying.
    """

    __slots__ = ("_history", "_snapshot")

    def __init__(self, history: Mapping[str, Relation], snapshot: Snapshot):
        self._history = dict(history)
        self._snapshot = snapshot

    @classmethod
    def initial(cls, seed: Iterable[SeedDocument] = (), t0: Time = Time(0)) -> "Store":
        rows: Dict[str, list] = {name: [] for name in TIME_VARYING}
        for sd in seed:
            rows["documents"].append((sd.owner, sd.doc))
            rows["src"].append((sd.doc, sd.src))
            if sd.content is not None:
                rows["content"].append((sd.doc, sd.content))
            rows["domain"].extend((sd.doc, h) for h in sd.domain)
        current = {name: Relation(r, arity=2) for name, r in rows.items()}
        history = {name: rel.with_column(t0) for name, rel in current.items()}
        return cls(history, Snapshot(t0, current))

    @property
    def now(self) -> Time:
        return self._snapshot.time

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def history(self, name: str) -> Relation:
        return self._history[name]

    def at(self, name: str, t: Optional[Time] = None) -> Relation:
        if t is None or t == self.now:
            return self._snapshot[name]
        return self._history[name].restrict(t)

    def snapshot_at(self, t: Time) -> Snapshot:
        return Snapshot(t, {name: self.at(name, t) for name in TIME_VARYING})

    def advance(self, updates: Mapping[str, Relation]) -> "Store":
        """
        Move to the next instant. Relations named in `updates` take the given
        slice; every other relation is carried forward unchanged (frame).
        """
        unknown = set(updates) - set(TIME_VARYING)
        if unknown:
            raise KeyError(f"Unknown time-varying relation(s): {sorted(unknown)}")

        t_next = self.now.next()
        current: Dict[str, Relation] = {}
        history: Dict[str, Relation] = {}
        for name in TIME_VARYING:
            rel = updates.get(name, self._snapshot[name])
            current[name] = rel
            history[name] = self._history[name].union(rel.with_column(t_next))
        return Store(history, Snapshot(t_next, current))

    def functional_violations(self) -> Tuple[str, ...]:
        """Names of functional relations holding more than one value per key now."""
        return tuple(n for n in FUNCTIONAL if not self._snapshot[n].is_functional())
