"""
noalloc_check.violations
========================

Turns analyzer verdicts into contract violations.

A violation is produced for every method that carries the no-allocation
contract and whose verdict is not ``AllocationFree``:

``ViolationKind.ALLOCATES``
    An allocation is reachable; ``witness`` shows how.
``ViolationKind.UNVERIFIABLE``
    An unresolved call is reachable (conservative policy); ``reason`` says
    what could not be resolved.

Reporting is a pure function of the graph and the verdict map.  Nothing is
recomputed here, and violations hold ids only.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from noalloc_check.callgraph import CallGraph
from noalloc_check.callsites import CallSite, SourceLocation
from noalloc_check.config import AnalysisOptions
from noalloc_check.reachability import AnalysisResult, AnalysisStats, ReachabilityAnalyzer
from noalloc_check.verdicts import Allocates, Unknown, Verdict

__all__ = [
    "ViolationKind",
    "Violation",
    "CheckResult",
    "report_violations",
    "check",
]

logger = logging.getLogger(__name__)


class ViolationKind(enum.Enum):
    ALLOCATES = "allocates"
    UNVERIFIABLE = "unverifiable"


@dataclass(frozen=True)
class Violation:
    """A contracted method that could not be proven allocation-free."""

    method_id: str
    kind: ViolationKind
    witness: Tuple[str, ...]
    reason: Optional[str] = None
    site: Optional[CallSite] = None

    @property
    def location(self) -> Optional[SourceLocation]:
        """Source location of the terminal call site, when known."""
        return getattr(self.site, "location", None)

    def message(self) -> str:
        """One-line diagnostic text."""
        if self.kind is ViolationKind.UNVERIFIABLE:
            text = (f"method {self.method_id} is annotated no-allocation but "
                    f"cannot be verified: {self.reason}")
        else:
            last = self.witness[-1] if self.witness else self.method_id
            what = self.site.describe() if self.site is not None else "allocation"
            if len(self.witness) <= 1:
                text = (f"method {self.method_id} is annotated no-allocation "
                        f"but performs {what}")
            else:
                text = (f"method {self.method_id} is annotated no-allocation "
                        f"but reaches {what} in {last}")
        if len(self.witness) > 1:
            text += " (via " + " -> ".join(self.witness) + ")"
        return text


def report_violations(
    graph: CallGraph,
    verdicts: Mapping[str, Verdict],
    *,
    include_unverifiable: bool = True,
) -> List[Violation]:
    """Return the violations of *graph* under *verdicts*, in graph order.

    Raises
    ------
    ValueError
        If a contracted method has no verdict.
    """
    violations: List[Violation] = []
    for method in graph.contracted_methods():
        try:
            verdict = verdicts[method.id]
        except KeyError:
            raise ValueError(
                f"no verdict for contracted method {method.id!r}"
            ) from None
        if isinstance(verdict, Allocates):
            violations.append(Violation(
                method.id, ViolationKind.ALLOCATES, verdict.witness,
                site=verdict.site,
            ))
        elif isinstance(verdict, Unknown) and include_unverifiable:
            violations.append(Violation(
                method.id, ViolationKind.UNVERIFIABLE, verdict.witness,
                reason=verdict.reason, site=verdict.site,
            ))
    return violations


@dataclass(frozen=True)
class CheckResult:
    """Analyzer output together with the violations derived from it."""

    analysis: AnalysisResult
    violations: Tuple[Violation, ...]

    @property
    def verdicts(self) -> Mapping[str, Verdict]:
        return self.analysis.verdicts

    @property
    def stats(self) -> AnalysisStats:
        return self.analysis.stats

    @property
    def ok(self) -> bool:
        return not self.violations

    def by_kind(self, kind: ViolationKind) -> List[Violation]:
        return [v for v in self.violations if v.kind is kind]


def check(graph: CallGraph, options: Optional[AnalysisOptions] = None) -> CheckResult:
    """Analyze *graph* and report contract violations."""
    options = options or AnalysisOptions()
    analysis = ReachabilityAnalyzer(graph, options).analyze()
    violations = report_violations(
        graph, analysis.verdicts,
        include_unverifiable=options.report_unverifiable,
    )
    logger.info("%d violation(s) among %d contracted method(s)",
                len(violations), len(graph.contracted_methods()))
    return CheckResult(analysis, tuple(violations))
