"""
SOP Core - Relational Store (tuple-set engine)

Immutable finite relations of arbitrary arity with the four operators the
model is written in:

- union:     R + S
- override:  R ++ S   (last writer wins per leading key)
- join:      R . S    (relational composition)
- restrict:  R @ t    (time slice, trailing column projected away)

Every operator returns a fresh Relation. Inputs are never mutated, so a
Relation can be shared freely between sibling branches of the explorer.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from .errors import SopModelError

Row = Tuple[Any, ...]


class RelationError(SopModelError):
    """Raised on arity mismatches between relational operands."""
    pass


class Relation:
    """
    A finite set of same-arity tuples.

    Key lookups go through a lazily built index on the leading columns,
    so the explorer and checker can issue many `image` / `contains`
    queries per step without rescanning the tuple set.
    """

    __slots__ = ("_rows", "_arity", "_index", "_hash")

    def __init__(self, rows: Iterable[Iterable[Any]] = (), arity: Optional[int] = None):
        frozen = frozenset(tuple(r) for r in rows)
        if arity is None:
            arity = len(next(iter(frozen))) if frozen else 0
        for r in frozen:
            if len(r) != arity:
                raise RelationError(f"Row {r!r} does not have arity {arity}.")
        self._rows: FrozenSet[Row] = frozen
        self._arity = arity
        self._index: Optional[Dict[Row, FrozenSet[Any]]] = None
        self._hash: Optional[int] = None

    # -----------------------------
    # Construction helpers
    # -----------------------------
    @classmethod
    def empty(cls, arity: int) -> "Relation":
        return cls((), arity=arity)

    @classmethod
    def from_mapping(cls, mapping: Dict[Any, Any]) -> "Relation":
        """Binary relation from a dict; set-valued entries fan out into several rows."""
        rows: List[Row] = []
        for k, v in mapping.items():
            if isinstance(v, (set, frozenset, list, tuple)):
                rows.extend((k, x) for x in v)
            elif v is not None:
                rows.append((k, v))
        return cls(rows, arity=2)

    # -----------------------------
    # Basic protocol
    # -----------------------------
    @property
    def arity(self) -> int:
        return self._arity

    @property
    def rows(self) -> FrozenSet[Row]:
        return self._rows

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __bool__(self) -> bool:
        return bool(self._rows)

    def __contains__(self, row: object) -> bool:
        return row in self._rows

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Relation):
            return NotImplemented
        return self._rows == other._rows and (self._arity == other._arity or not self._rows)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(self._rows)
        return self._hash

    def __repr__(self) -> str:
        body = ", ".join("->".join(str(c) for c in r) for r in self.sorted_rows())
        return f"Relation({{{body}}})"

    def sorted_rows(self) -> List[Row]:
        return sorted(self._rows, key=lambda r: tuple(str(c) for c in r))

    # -----------------------------
    # Indexed queries
    # -----------------------------
    def _key_index(self) -> Dict[Row, FrozenSet[Any]]:
        if self._index is None:
            idx: Dict[Row, set] = {}
            for r in self._rows:
                idx.setdefault(r[:-1], set()).add(r[-1])
            self._index = {k: frozenset(v) for k, v in idx.items()}
        return self._index

    def keys(self) -> FrozenSet[Row]:
        """Leading keys (all columns but the last)."""
        return frozenset(self._key_index().keys())

    def image(self, *key: Any) -> FrozenSet[Any]:
        """Values (last column) stored under the given leading key."""
        return self._key_index().get(tuple(key), frozenset())

    def lone(self, *key: Any) -> Any:
        """The single value under `key`, or None. More than one value is an error."""
        vals = self.image(*key)
        if len(vals) > 1:
            raise RelationError(f"Key {key!r} maps to {len(vals)} values; expected at most one.")
        return next(iter(vals)) if vals else None

    def column(self, i: int) -> FrozenSet[Any]:
        return frozenset(r[i] for r in self._rows)

    def is_functional(self) -> bool:
        return all(len(v) <= 1 for v in self._key_index().values())

    # -----------------------------
    # Operators
    # -----------------------------
    def _check_arity(self, other: "Relation", op: str) -> None:
        if self._rows and other._rows and self._arity != other._arity:
            raise RelationError(f"{op}: arity {self._arity} vs {other._arity}.")

    def union(self, other: "Relation") -> "Relation":
        self._check_arity(other, "union")
        return Relation(self._rows | other._rows, arity=self._arity or other._arity)

    def difference(self, other: "Relation") -> "Relation":
        self._check_arity(other, "difference")
        return Relation(self._rows - other._rows, arity=self._arity)

    def override(self, other: "Relation") -> "Relation":
        self._check_arity(other, "override")
        replaced = other.keys()
        kept = (r for r in self._rows if r[:-1] not in replaced)
        return Relation(other._rows.union(kept), arity=self._arity or other._arity)

    def join(self, other: "Relation") -> "Relation":
        if self._arity + other._arity < 3:
            raise RelationError("join: resulting relation would have arity < 1.")
        by_head: Dict[Any, List[Row]] = {}
        for r in other._rows:
            by_head.setdefault(r[0], []).append(r[1:])
        out = [l[:-1] + tail for l in self._rows for tail in by_head.get(l[-1], ())]
        return Relation(out, arity=self._arity + other._arity - 2)

    def restrict(self, t: Any) -> "Relation":
        return Relation((r[:-1] for r in self._rows if r[-1] == t), arity=self._arity - 1)

    def with_column(self, value: Any) -> "Relation":
        """Append a constant trailing column (used to stamp a slice with a Time)."""
        return Relation((r + (value,) for r in self._rows), arity=self._arity + 1)

    def select(self, *key: Any) -> "Relation":
        """Rows whose leading columns equal `key`."""
        n = len(key)
        return Relation((r for r in self._rows if r[:n] == tuple(key)), arity=self._arity)

    __add__ = union
    __sub__ = difference

    def __matmul__(self, t: Any) -> "Relation":
        return self.restrict(t)


def union(r: Relation, s: Relation) -> Relation:
    return r.union(s)


def override(r: Relation, s: Relation) -> Relation:
    return r.override(s)


def join(r: Relation, s: Relation) -> Relation:
    return r.join(s)


def restrict(r: Relation, t: Any) -> Relation:
    return r.restrict(t)
