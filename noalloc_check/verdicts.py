"""
noalloc_check.verdicts
======================

Per-method analysis outcomes.

A verdict is one of

``AllocationFree``
    No reachable call path reaches an allocation (modulo the unresolved-call
    policy).
``Allocates(method_id, site, via)``
    ``witness`` is the chain of method ids from the queried method to the
    method holding ``site``, the allocating call site.
``Unknown(method_id, reason, site, via)``
    Allocation-freedom could not be established because an unresolved call
    is reachable along ``witness``.

A non-empty verdict stores only its own method and ``via``, the verdict of
the next method on the path.  Callers up a chain therefore share one linked
path instead of each holding a copy, and ``witness`` materialises the id
tuple when it is read.  Verdicts hold ids and other verdicts only, never
graph nodes, so they remain valid after the graph that produced them is
discarded.

Ordering for combination: ``Allocates`` dominates ``Unknown``, which
dominates ``AllocationFree``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import ClassVar, List, Optional, Tuple, Union

from noalloc_check.callsites import CallSite

__all__ = [
    "VerdictKind",
    "AllocationFree",
    "Allocates",
    "Unknown",
    "Verdict",
    "ALLOCATION_FREE",
]


class VerdictKind(enum.IntEnum):
    """Verdict kinds, ordered by dominance."""

    ALLOCATION_FREE = 0
    UNKNOWN = 1
    ALLOCATES = 2


@dataclass(frozen=True)
class AllocationFree:
    kind: ClassVar[VerdictKind] = VerdictKind.ALLOCATION_FREE

    @property
    def witness(self) -> Tuple[str, ...]:
        return ()

    def __str__(self) -> str:
        return "allocation-free"


class _PathVerdict:
    """Shared behaviour of verdicts that carry a witness path.

    Equality, hashing and ``repr`` go through ``witness``, which walks
    ``via`` iteratively, so deep paths never recurse.
    """

    method_id: str
    site: Optional[CallSite]
    via: Optional["_PathVerdict"]

    @property
    def witness(self) -> Tuple[str, ...]:
        ids: List[str] = []
        node: Optional[_PathVerdict] = self
        while node is not None:
            ids.append(node.method_id)
            node = node.via
        return tuple(ids)

    def _key(self) -> tuple:
        return (self.witness, self.site)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(witness={self.witness!r}, site={self.site!r})"


@dataclass(frozen=True, eq=False, repr=False)
class Allocates(_PathVerdict):
    method_id: str
    site: Optional[CallSite] = None
    via: Optional["Allocates"] = None

    kind: ClassVar[VerdictKind] = VerdictKind.ALLOCATES

    def extended(self, caller: str) -> "Allocates":
        """The same finding seen from *caller*, one call further up."""
        return Allocates(caller, self.site, self)

    def __str__(self) -> str:
        return "allocates via " + " -> ".join(self.witness)


@dataclass(frozen=True, eq=False, repr=False)
class Unknown(_PathVerdict):
    method_id: str
    reason: str
    site: Optional[CallSite] = None
    via: Optional["Unknown"] = None

    kind: ClassVar[VerdictKind] = VerdictKind.UNKNOWN

    def extended(self, caller: str) -> "Unknown":
        return Unknown(caller, self.reason, self.site, self)

    def _key(self) -> tuple:
        return (self.witness, self.reason, self.site)

    def __repr__(self) -> str:
        return (f"Unknown(witness={self.witness!r}, reason={self.reason!r}, "
                f"site={self.site!r})")

    def __str__(self) -> str:
        return f"unknown ({self.reason}) via " + " -> ".join(self.witness)


Verdict = Union[AllocationFree, Allocates, Unknown]

ALLOCATION_FREE = AllocationFree()
