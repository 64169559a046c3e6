"""
noalloc_check.callsites
=======================

Call-site classification: the leaf of the checker.

A front end emits *raw* call-site facts.  The classifier maps each of them,
without side effects and independently of analysis order, onto exactly one
of three classified call sites:

``DirectAllocation``
    The call site itself obtains fresh heap storage (``new Object()``,
    ``new int[n]``, ...).
``ResolvedCall``
    A call to another analyzable method of the same graph, by id.
``UnresolvedCall``
    A call whose target is not statically known: virtual or interface
    dispatch, external library code, reflection.

Raw facts come in two shapes:

* the typed markers :class:`AllocationMarker`, :class:`MethodRef` and
  :class:`UnresolvedMarker`, which classify one-to-one;
* :class:`TaggedCallee`, the string-tagged form read from fact files.

The classifier is total over that alphabet.  Anything else raises
:class:`~noalloc_check.errors.ClassificationError`, which is fatal: it
means the front end and the checker disagree about the input language.

Public API
----------
    SourceLocation      - optional file/line attached to a call site
    CallSiteKind        - enum of the three classifications
    DirectAllocation    - classified allocation site
    ResolvedCall        - classified call to a known method
    UnresolvedCall      - classified opaque call
    AllocationMarker, MethodRef, UnresolvedMarker, TaggedCallee
                        - raw callee facts
    CallSiteFact        - ``(caller_id, callee)`` pair from the front end
    classify            - classify one fact
    classify_all        - classify a batch of facts
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import (
    Callable,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Tuple,
    Union,
)

from noalloc_check.errors import ClassificationError

__all__ = [
    "SourceLocation",
    "CallSiteKind",
    "DirectAllocation",
    "ResolvedCall",
    "UnresolvedCall",
    "CallSite",
    "AllocationMarker",
    "MethodRef",
    "UnresolvedMarker",
    "TaggedCallee",
    "RawCallee",
    "CallSiteFact",
    "ALLOCATION_TAGS",
    "CALL_TAGS",
    "UNRESOLVED_TAGS",
    "classify",
    "classify_all",
]


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceLocation:
    """A point in a source file.  Purely diagnostic."""

    file: str = ""
    line: int = 0

    def __str__(self) -> str:
        if self.line:
            return f"{self.file}:{self.line}"
        return self.file


# ---------------------------------------------------------------------------
# Classified call sites
# ---------------------------------------------------------------------------

class CallSiteKind(enum.Enum):
    """How a call site was classified."""

    DIRECT_ALLOCATION = "direct-allocation"
    RESOLVED          = "resolved"
    UNRESOLVED        = "unresolved"


@dataclass(frozen=True)
class DirectAllocation:
    """A call site that allocates on the heap."""

    description: Optional[str] = None
    location: Optional[SourceLocation] = None

    kind: ClassVar[CallSiteKind] = CallSiteKind.DIRECT_ALLOCATION

    def describe(self) -> str:
        if self.description:
            return f"allocation of {self.description}"
        return "allocation"


@dataclass(frozen=True)
class ResolvedCall:
    """A call to another method of the same graph."""

    target: str
    location: Optional[SourceLocation] = None

    kind: ClassVar[CallSiteKind] = CallSiteKind.RESOLVED

    def describe(self) -> str:
        return f"call to {self.target}"


@dataclass(frozen=True)
class UnresolvedCall:
    """A call whose target cannot be determined statically."""

    reason: str
    location: Optional[SourceLocation] = None

    kind: ClassVar[CallSiteKind] = CallSiteKind.UNRESOLVED

    def describe(self) -> str:
        return f"unresolved call ({self.reason})"


CallSite = Union[DirectAllocation, ResolvedCall, UnresolvedCall]


# ---------------------------------------------------------------------------
# Raw facts (the front end's alphabet)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AllocationMarker:
    description: Optional[str] = None


@dataclass(frozen=True)
class MethodRef:
    target_id: str


@dataclass(frozen=True)
class UnresolvedMarker:
    reason: str = ""


@dataclass(frozen=True)
class TaggedCallee:
    """String-tagged callee, as written in fact files.

    ``tag`` selects the classification (see :data:`ALLOCATION_TAGS`,
    :data:`CALL_TAGS`, :data:`UNRESOLVED_TAGS`); ``argument`` is the
    allocated type, the call target, or the unresolved reason depending on
    the tag.
    """

    tag: str
    argument: Optional[str] = None


RawCallee = Union[AllocationMarker, MethodRef, UnresolvedMarker, TaggedCallee]


@dataclass(frozen=True)
class CallSiteFact:
    """One call site of *caller* as emitted by the front end."""

    caller: str
    callee: RawCallee
    location: Optional[SourceLocation] = None


ALLOCATION_TAGS: FrozenSet[str] = frozenset({"alloc", "new", "new-array"})
CALL_TAGS: FrozenSet[str] = frozenset({"call", "invoke"})

# Default reasons double as the set of unresolved tags
_UNRESOLVED_REASONS: Dict[str, str] = {
    "unresolved": "call target not statically known",
    "virtual":    "virtual dispatch target not statically known",
    "interface":  "interface dispatch target not statically known",
    "external":   "call into external code",
    "reflective": "reflective call",
}
UNRESOLVED_TAGS: FrozenSet[str] = frozenset(_UNRESOLVED_REASONS)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

_DISPATCH: Dict[type, Callable[[CallSiteFact], CallSite]] = {}


def _register(raw_type: type):
    """Decorator: register a classifier for one raw callee type."""
    def deco(fn):
        _DISPATCH[raw_type] = fn
        return fn
    return deco


def _require_text(fact: CallSiteFact, value: object, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ClassificationError(fact, f"{what} must be a non-empty string")
    return value


@_register(AllocationMarker)
def _classify_allocation(fact: CallSiteFact) -> CallSite:
    return DirectAllocation(fact.callee.description, fact.location)


@_register(MethodRef)
def _classify_method_ref(fact: CallSiteFact) -> CallSite:
    target = _require_text(fact, fact.callee.target_id, "call target")
    return ResolvedCall(target, fact.location)


@_register(UnresolvedMarker)
def _classify_unresolved(fact: CallSiteFact) -> CallSite:
    reason = fact.callee.reason or _UNRESOLVED_REASONS["unresolved"]
    return UnresolvedCall(reason, fact.location)


@_register(TaggedCallee)
def _classify_tagged(fact: CallSiteFact) -> CallSite:
    callee = fact.callee
    if not isinstance(callee.tag, str):
        raise ClassificationError(
            fact, f"call-site tag must be a string, got {callee.tag!r}")
    tag = callee.tag.lower()
    if tag in ALLOCATION_TAGS:
        return DirectAllocation(callee.argument, fact.location)
    if tag in CALL_TAGS:
        target = _require_text(fact, callee.argument, f"target of {tag!r}")
        return ResolvedCall(target, fact.location)
    if tag in UNRESOLVED_TAGS:
        return UnresolvedCall(callee.argument or _UNRESOLVED_REASONS[tag],
                              fact.location)
    raise ClassificationError(fact, f"unknown call-site tag {callee.tag!r}")


def classify(fact: CallSiteFact) -> CallSite:
    """Classify a single raw call-site fact.

    Raises
    ------
    ClassificationError
        If the fact lies outside the front end's alphabet.
    """
    if not isinstance(fact, CallSiteFact):
        raise ClassificationError(fact, "not a CallSiteFact")
    _require_text(fact, fact.caller, "caller id")
    handler = _DISPATCH.get(type(fact.callee))
    if handler is None:
        raise ClassificationError(
            fact, f"unsupported callee type {type(fact.callee).__name__}"
        )
    return handler(fact)


def classify_all(facts: Iterable[CallSiteFact]) -> List[Tuple[str, CallSite]]:
    """Classify every fact up front, preserving order.

    Returns ``(caller_id, call_site)`` pairs.  The first unclassifiable fact
    aborts the whole batch.
    """
    return [(fact.caller, classify(fact)) for fact in facts]
