# tests/conftest.py
"""
Shared fixtures and graph helpers for the noalloc_check test suite.
"""

from pathlib import Path

import pytest

from noalloc_check.callgraph import CallGraph, CallGraphBuilder
from noalloc_check.callsites import DirectAllocation, ResolvedCall, UnresolvedCall


EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"
EXAMPLE_SEXP = EXAMPLES_DIR / "no_allocation_example.sexp"
EXAMPLE_JSON = EXAMPLES_DIR / "no_allocation_example.json"


def alloc(description="java.lang.Object"):
    return DirectAllocation(description)


def call(target):
    return ResolvedCall(target)


def opaque(reason="virtual dispatch"):
    return UnresolvedCall(reason)


def make_graph(layout, contracts=()):
    """Build a frozen graph from ``{method_id: [call sites]}``.

    Methods are added in dict order; every id in *contracts* carries the
    no-allocation contract.
    """
    b = CallGraphBuilder()
    for mid in layout:
        b.add_method(mid, has_contract=mid in contracts)
    for mid, sites in layout.items():
        for site in sites:
            b.add_call_site(mid, site)
    return b.freeze()


def chain_graph(length, last_sites=()):
    """``m0 -> m1 -> ... -> m{length-1}``, the last one holding *last_sites*."""
    b = CallGraphBuilder()
    ids = [f"m{i}" for i in range(length)]
    for mid in ids:
        b.add_method(mid, has_contract=(mid == ids[0]))
    for a, c in zip(ids, ids[1:]):
        b.add_call_site(a, ResolvedCall(c))
    for site in last_sites:
        b.add_call_site(ids[-1], site)
    return b.freeze()


# ---------------------------------------------------------------------------
# Fact file sources
# ---------------------------------------------------------------------------

SIMPLE_SEXP = """
; two methods, one allocating call chain
(method "A.f" :no-allocation)
(method "A.g")
(call "A.f" (invoke "A.g") :file "A.java" :line 3)
(call "A.g" (new "java.lang.Object") :file "A.java" :line 7)
"""

SIMPLE_JSON = """
{
  "methods": [{"id": "A.f", "no_allocation": true}, "A.g"],
  "calls": [
    {"caller": "A.f", "kind": "invoke", "target": "A.g", "file": "A.java", "line": 3},
    {"caller": "A.g", "kind": "new", "type": "java.lang.Object", "file": "A.java", "line": 7}
  ]
}
"""

CLEAN_SEXP = """
(method "B.f" :no-allocation)
(method "B.g")
(call "B.f" (invoke "B.g"))
"""

OPAQUE_SEXP = """
(method "C.f" :no-allocation)
(call "C.f" (virtual "Runnable.run()"))
"""


@pytest.fixture
def diamond() -> CallGraph:
    """A -> {B, C} -> D, D allocates; only A is contracted."""
    return make_graph(
        {
            "A": [call("B"), call("C")],
            "B": [call("D")],
            "C": [call("D")],
            "D": [alloc()],
        },
        contracts={"A"},
    )


@pytest.fixture
def write_facts(tmp_path):
    """Write *text* to a fact file under tmp_path and return its path."""
    def _write(text, name="facts.sexp"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write
