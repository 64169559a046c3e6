"""
noalloc_check.errors
====================

Exception hierarchy for the no-allocation checker.

Every error carries a stable code string so that outer tools (the CLI,
CI wrappers) can match on it without parsing messages.

Hierarchy
---------
::

    NoAllocError
    ├── ConstructionError       fatal: the graph is malformed
    │   ├── DanglingEdge        NOALLOC-1001
    │   ├── DuplicateMethod     NOALLOC-1002
    │   ├── UnknownMethod       NOALLOC-1003
    │   ├── GraphFrozen         NOALLOC-1004
    │   └── ClassificationError NOALLOC-1100
    └── FactParseError          NOALLOC-2001

Construction errors abort the run: no partial analysis result is meaningful
over a malformed graph.  Unresolved calls are *not* errors; they are handled
by the unresolved-call policy in :mod:`noalloc_check.config`.
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "NoAllocError",
    "ConstructionError",
    "DanglingEdge",
    "DuplicateMethod",
    "UnknownMethod",
    "GraphFrozen",
    "ClassificationError",
    "FactParseError",
]


class NoAllocError(Exception):
    """Base class of all checker errors."""

    code: str = "NOALLOC-0000"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ---------------------------------------------------------------------------
# Construction-time (fatal)
# ---------------------------------------------------------------------------

class ConstructionError(NoAllocError):
    """The call graph could not be built."""

    code = "NOALLOC-1000"


class DanglingEdge(ConstructionError):
    """A resolved call names a method absent from the graph."""

    code = "NOALLOC-1001"

    def __init__(self, from_id: str, to_id: str) -> None:
        super().__init__(
            f"call from {from_id!r} targets {to_id!r}, "
            f"which is not a method of this graph"
        )
        self.from_id = from_id
        self.to_id = to_id


class DuplicateMethod(ConstructionError):
    code = "NOALLOC-1002"

    def __init__(self, method_id: str) -> None:
        super().__init__(f"method {method_id!r} is already defined")
        self.method_id = method_id


class UnknownMethod(ConstructionError, KeyError):
    """Lookup or call-site insertion for an id the graph does not hold."""

    code = "NOALLOC-1003"

    def __init__(self, method_id: str) -> None:
        super().__init__(f"no method with id {method_id!r}")
        self.method_id = method_id

    # KeyError.__str__ would repr() the message
    def __str__(self) -> str:
        return NoAllocError.__str__(self)


class GraphFrozen(ConstructionError):
    code = "NOALLOC-1004"

    def __init__(self, operation: str) -> None:
        super().__init__(f"cannot {operation}: the call graph is frozen")
        self.operation = operation


class ClassificationError(ConstructionError):
    """A raw call-site fact is outside the classifier's input alphabet."""

    code = "NOALLOC-1100"

    def __init__(self, fact: Any, detail: str) -> None:
        super().__init__(f"cannot classify call site {fact!r}: {detail}")
        self.fact = fact
        self.detail = detail


# ---------------------------------------------------------------------------
# Fact files
# ---------------------------------------------------------------------------

class FactParseError(NoAllocError):
    """A fact file is not well-formed."""

    code = "NOALLOC-2001"

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source
