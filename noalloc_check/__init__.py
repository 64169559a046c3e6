"""
noalloc_check: Interprocedural No-Allocation Contract Checker
=============================================================

Statically decides, for every method of a whole-program call graph, whether
any call path from it can reach a heap allocation, and reports methods that
carry the *no-allocation* contract but cannot be proven allocation-free.

Modules
-------
callsites
    Classification of raw call-site facts into allocation, resolved and
    unresolved call sites.
callgraph
    Two-phase (builder / frozen) call graph with SCC queries.
verdicts
    ``AllocationFree`` / ``Allocates`` / ``Unknown``.
config
    Unresolved-call policy and run options.
reachability
    Memoised, cycle-safe allocation reachability.
violations
    Contract violations derived from verdicts.
facts
    Fact files (S-expression and JSON) from the front end.
formatting
    Text, JSON and DOT rendering.
errors
    Exception hierarchy.

Quick start
-----------
>>> from noalloc_check import CallGraphBuilder, DirectAllocation, ResolvedCall, check
>>> b = CallGraphBuilder()
>>> b.add_method("A.f", has_contract=True)
>>> b.add_method("A.g")
>>> b.add_call_site("A.f", ResolvedCall("A.g"))
>>> b.add_call_site("A.g", DirectAllocation("Object"))
>>> result = check(b.freeze())
>>> [v.witness for v in result.violations]
[('A.f', 'A.g')]
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__author__ = "noalloc-check contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: module_name -> names re-exported at package level
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "NoAllocError",
        "ConstructionError",
        "DanglingEdge",
        "DuplicateMethod",
        "UnknownMethod",
        "GraphFrozen",
        "ClassificationError",
        "FactParseError",
    ],
    "callsites": [
        "SourceLocation",
        "CallSiteKind",
        "DirectAllocation",
        "ResolvedCall",
        "UnresolvedCall",
        "AllocationMarker",
        "MethodRef",
        "UnresolvedMarker",
        "TaggedCallee",
        "CallSiteFact",
        "classify",
        "classify_all",
    ],
    "callgraph": [
        "Method",
        "CallGraphBuilder",
        "CallGraph",
        "callgraph_summary",
    ],
    "verdicts": [
        "VerdictKind",
        "AllocationFree",
        "Allocates",
        "Unknown",
        "ALLOCATION_FREE",
    ],
    "config": [
        "UnresolvedCallPolicy",
        "AnalysisOptions",
    ],
    "reachability": [
        "AnalysisStats",
        "AnalysisResult",
        "ReachabilityAnalyzer",
        "analyze",
    ],
    "violations": [
        "ViolationKind",
        "Violation",
        "CheckResult",
        "report_violations",
        "check",
    ],
    "facts": [
        "MethodFact",
        "FactSet",
        "build_graph",
        "loads_sexp",
        "loads_json",
        "load_facts",
    ],
    "formatting": [
        "format_text",
        "format_json",
        "format_verdicts",
        "format_dot",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    A missing submodule or symbol is a packaging bug and propagates.
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"noalloc_check: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(
                f"noalloc_check.{module_rel_name} does not export '{name}'"
            )
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of the package's submodules."""
    return sorted(_CORE_MODULES)


__all__ += ["list_submodules", "__version__"]
