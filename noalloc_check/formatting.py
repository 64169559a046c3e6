"""
noalloc_check.formatting
========================

Rendering of check results for people and tools.  Nothing here feeds back
into the analysis.

Text output uses the classic Cppcheck one-liner, followed by the witness::

    [Example.java:18]: (error) method Example.f is annotated no-allocation but performs allocation of java.lang.Object [noAllocationViolation]
        witness: Example.f

Unverifiable methods are reported with severity ``warning`` and id
``noAllocationUnverifiable`` so consumers can tell them apart.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from noalloc_check.callgraph import CallGraph
from noalloc_check.callsites import CallSite, SourceLocation
from noalloc_check.verdicts import Allocates, Unknown, Verdict
from noalloc_check.violations import CheckResult, Violation, ViolationKind

__all__ = [
    "ERROR_IDS",
    "SEVERITIES",
    "format_violation",
    "format_text",
    "format_verdicts",
    "to_json_dict",
    "format_json",
    "format_dot",
]

ERROR_IDS = {
    ViolationKind.ALLOCATES: "noAllocationViolation",
    ViolationKind.UNVERIFIABLE: "noAllocationUnverifiable",
}
SEVERITIES = {
    ViolationKind.ALLOCATES: "error",
    ViolationKind.UNVERIFIABLE: "warning",
}


def _loc_prefix(location: Optional[SourceLocation]) -> str:
    if location is None or not location.file:
        return ""
    return f"[{location}]: "


def format_violation(v: Violation, *, show_witness: bool = True) -> str:
    line = (f"{_loc_prefix(v.location)}({SEVERITIES[v.kind]}) "
            f"{v.message()} [{ERROR_IDS[v.kind]}]")
    if show_witness and v.witness:
        line += "\n    witness: " + " -> ".join(v.witness)
    return line


def format_text(result: CheckResult, *, show_witness: bool = True) -> str:
    """All violations plus a one-line summary."""
    lines = [format_violation(v, show_witness=show_witness)
             for v in result.violations]
    n_alloc = len(result.by_kind(ViolationKind.ALLOCATES))
    n_unver = len(result.by_kind(ViolationKind.UNVERIFIABLE))
    if result.ok:
        lines.append("No no-allocation violations found.")
    else:
        lines.append(
            f"{len(result.violations)} violation(s): "
            f"{n_alloc} allocating, {n_unver} unverifiable"
        )
    return "\n".join(lines)


def format_verdicts(verdicts: Mapping[str, Verdict]) -> str:
    """One line per method: ``id: verdict``."""
    width = max((len(mid) for mid in verdicts), default=0)
    return "\n".join(f"{mid.ljust(width)}  {v}" for mid, v in verdicts.items())


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def _site_dict(site: Optional[CallSite]) -> Optional[Dict[str, Any]]:
    if site is None:
        return None
    d: Dict[str, Any] = {"kind": site.kind.value, "description": site.describe()}
    if site.location is not None:
        d["file"] = site.location.file
        d["line"] = site.location.line
    return d


def _verdict_dict(v: Verdict) -> Dict[str, Any]:
    d: Dict[str, Any] = {"verdict": v.kind.name.lower()}
    if isinstance(v, (Allocates, Unknown)):
        d["witness"] = list(v.witness)
        d["site"] = _site_dict(v.site)
    if isinstance(v, Unknown):
        d["reason"] = v.reason
    return d


def to_json_dict(result: CheckResult, *, include_verdicts: bool = False) -> Dict[str, Any]:
    violations: List[Dict[str, Any]] = []
    for v in result.violations:
        violations.append({
            "method": v.method_id,
            "kind": v.kind.value,
            "errorId": ERROR_IDS[v.kind],
            "severity": SEVERITIES[v.kind],
            "message": v.message(),
            "witness": list(v.witness),
            "reason": v.reason,
            "site": _site_dict(v.site),
        })
    out: Dict[str, Any] = {
        "policy": result.analysis.policy.value,
        "violations": violations,
        "stats": {
            "methods_analyzed": result.stats.methods_analyzed,
            "call_sites_visited": result.stats.call_sites_visited,
            "cycles_broken": result.stats.cycles_broken,
            "tentative_settled": result.stats.tentative_settled,
            "tentative_discarded": result.stats.tentative_discarded,
            "unresolved_sites_seen": result.stats.unresolved_sites_seen,
        },
    }
    if include_verdicts:
        out["verdicts"] = {mid: _verdict_dict(v) for mid, v in result.verdicts.items()}
    return out


def format_json(result: CheckResult, *, include_verdicts: bool = False,
                indent: Optional[int] = 2) -> str:
    return json.dumps(to_json_dict(result, include_verdicts=include_verdicts),
                      indent=indent)


# ---------------------------------------------------------------------------
# DOT
# ---------------------------------------------------------------------------

def format_dot(graph: CallGraph, result: Optional[CheckResult] = None) -> str:
    """DOT for *graph*, with violation witnesses highlighted."""
    paths = [v.witness for v in result.violations] if result is not None else []
    return graph.to_dot(title="no-allocation call graph", highlight=paths)
