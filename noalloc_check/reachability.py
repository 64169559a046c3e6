"""
noalloc_check.reachability
==========================

Allocation-reachability analysis over a frozen :class:`CallGraph`.

For every method the analyzer decides one :mod:`verdict <noalloc_check.verdicts>`:
``AllocationFree``, ``Allocates(witness)`` or ``Unknown(reason)``.

Algorithm
---------
Depth-first traversal from each method, memoised across the whole run, with
three colours per method id:

* *unvisited*;
* *visiting*: the method has a frame on the explicit work stack;
* *done*: its final verdict is in the memo table.

Call sites of a method are examined in declaration order:

``DirectAllocation``
    ``Allocates([M])``; the remaining sites are skipped.
``ResolvedCall(T)``
    Resolve ``T`` first.  ``Allocates(p)`` becomes ``Allocates([M] + p)``
    and short-circuits; ``Unknown`` is remembered (first one wins).
``UnresolvedCall``
    Handled by the run's :class:`~noalloc_check.config.UnresolvedCallPolicy`.

Reaching a *visiting* method closes a cycle.  The cycle contributes
``AllocationFree`` provisionally: a cycle alone never manufactures an
allocation.  Provisional values are never memoised, and neither is anything
computed from one.  A non-allocating verdict that read a provisional value
is *tentative*: it is attached to the lowest stack frame it depends on
(Tarjan's low-link).  Every tentative method reaches that frame and is
reached from it, so they share a strongly connected component and hence a
verdict kind.  When the frame becomes final its dependents are settled in
place: a tentative verdict of the final kind is kept as is, any other one is
rebuilt from a caller path to an already settled method of that kind.
``Allocates`` always names a real path and is final immediately.

Each call site is visited once per run, so work is linear in the number of
call sites, cyclic or not.

Typical usage::

    from noalloc_check.reachability import analyze
    from noalloc_check.config import UnresolvedCallPolicy

    result = analyze(cg, policy=UnresolvedCallPolicy.CONSERVATIVE)
    for method_id, verdict in result.verdicts.items():
        print(method_id, verdict)
"""

from __future__ import annotations

import dataclasses
import logging
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Deque, Dict, List, Mapping, Optional, Tuple

from noalloc_check.callgraph import CallGraph, Method
from noalloc_check.callsites import (
    CallSite,
    DirectAllocation,
    ResolvedCall,
    UnresolvedCall,
)
from noalloc_check.config import AnalysisOptions, UnresolvedCallPolicy
from noalloc_check.verdicts import (
    ALLOCATION_FREE,
    Allocates,
    Unknown,
    Verdict,
    VerdictKind,
)

__all__ = [
    "AnalysisStats",
    "AnalysisResult",
    "ReachabilityAnalyzer",
    "analyze",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class AnalysisStats:
    """Counters collected during one run."""

    methods_analyzed: int = 0
    call_sites_visited: int = 0
    cycles_broken: int = 0
    tentative_settled: int = 0
    tentative_discarded: int = 0
    unresolved_sites_seen: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    """Verdicts for every method of a graph, in graph order."""

    verdicts: Mapping[str, Verdict]
    policy: UnresolvedCallPolicy
    stats: AnalysisStats = field(default_factory=AnalysisStats)

    def verdict(self, method_id: str) -> Verdict:
        return self.verdicts[method_id]

    def _of_kind(self, kind: VerdictKind) -> List[str]:
        return [mid for mid, v in self.verdicts.items() if v.kind is kind]

    def allocating(self) -> List[str]:
        return self._of_kind(VerdictKind.ALLOCATES)

    def unknown(self) -> List[str]:
        return self._of_kind(VerdictKind.UNKNOWN)

    def allocation_free(self) -> List[str]:
        return self._of_kind(VerdictKind.ALLOCATION_FREE)


# ---------------------------------------------------------------------------
# Traversal frame
# ---------------------------------------------------------------------------

class _Frame:
    """One method on the explicit DFS stack."""

    __slots__ = ("method_id", "sites", "pos", "depth", "low",
                 "found", "unknown", "dependents")

    def __init__(self, method: Method, depth: int) -> None:
        self.method_id = method.id
        self.sites: Tuple[CallSite, ...] = method.call_sites
        self.pos = 0
        self.depth = depth
        # Lowest stack depth whose provisional value this frame has read
        self.low = depth
        self.found: Optional[Allocates] = None
        self.unknown: Optional[Unknown] = None
        # Tentative verdicts settled when this frame is final
        self.dependents: List[str] = []

    @property
    def exhausted(self) -> bool:
        return self.found is not None or self.pos >= len(self.sites)

    @property
    def tentative(self) -> bool:
        return self.found is None and self.low < self.depth

    def absorb(self, verdict: Verdict) -> None:
        """Fold a callee's verdict into this frame."""
        if isinstance(verdict, Allocates):
            self.found = verdict.extended(self.method_id)
        elif isinstance(verdict, Unknown) and self.unknown is None:
            self.unknown = verdict.extended(self.method_id)

    def verdict(self) -> Verdict:
        if self.found is not None:
            return self.found
        if self.unknown is not None:
            return self.unknown
        return ALLOCATION_FREE


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class ReachabilityAnalyzer:
    """Computes and memoises a verdict for each method of *graph*.

    Parameters
    ----------
    graph : CallGraph
        A frozen call graph.  It is only read.
    options : AnalysisOptions, optional
        Run options; defaults to the conservative policy.
    policy : UnresolvedCallPolicy, optional
        Shorthand that overrides ``options.policy``.
    """

    def __init__(
        self,
        graph: CallGraph,
        options: Optional[AnalysisOptions] = None,
        *,
        policy: Optional[UnresolvedCallPolicy] = None,
    ) -> None:
        options = options or AnalysisOptions()
        if policy is not None:
            options = dataclasses.replace(options, policy=policy)
        self.graph = graph
        self.options = options
        self.stats = AnalysisStats()
        self._done: Dict[str, Verdict] = {}
        # method id -> (verdict, low); only populated during a traversal
        self._tentative: Dict[str, Tuple[Verdict, int]] = {}

    @property
    def policy(self) -> UnresolvedCallPolicy:
        return self.options.policy

    # ----- public API -------------------------------------------------------

    def verdict_for(self, method_id: str) -> Verdict:
        """Return the final verdict of *method_id*, computing it if needed.

        Raises
        ------
        UnknownMethod
            If the graph has no such method.
        """
        verdict = self._done.get(method_id)
        if verdict is None:
            self.graph.lookup(method_id)
            verdict = self._traverse(method_id)
        return verdict

    def analyze(self) -> AnalysisResult:
        """Compute verdicts for all methods, in graph order."""
        for method in self.graph:
            self.verdict_for(method.id)
        verdicts = {m.id: self._done[m.id] for m in self.graph}
        result = AnalysisResult(
            verdicts=MappingProxyType(verdicts),
            policy=self.policy,
            stats=dataclasses.replace(self.stats),
        )
        logger.info(
            "Analyzed %d methods (%s policy): %d allocate, %d unknown, "
            "%d allocation-free",
            len(verdicts), self.policy.value,
            len(result.allocating()), len(result.unknown()),
            len(result.allocation_free()),
        )
        if (self.policy is UnresolvedCallPolicy.OPTIMISTIC
                and self.stats.unresolved_sites_seen):
            logger.warning(
                "%d unresolved call site(s) assumed allocation-free "
                "(optimistic policy); violations may be missed",
                self.stats.unresolved_sites_seen,
            )
        return result

    # ----- traversal --------------------------------------------------------

    def _traverse(self, root_id: str) -> Verdict:
        stack: List[_Frame] = [_Frame(self.graph.lookup(root_id), 0)]
        on_stack: Dict[str, int] = {root_id: 0}

        while True:
            frame = stack[-1]
            if not frame.exhausted:
                site = frame.sites[frame.pos]
                frame.pos += 1
                self.stats.call_sites_visited += 1
                callee = self._visit_site(frame, site, on_stack)
                if callee is not None:
                    depth = len(stack)
                    on_stack[callee] = depth
                    stack.append(_Frame(self.graph.lookup(callee), depth))
                continue

            stack.pop()
            del on_stack[frame.method_id]
            verdict = frame.verdict()
            if frame.tentative:
                self._defer(frame, verdict, stack[frame.low])
            else:
                self._finalize(frame, verdict)

            if not stack:
                return verdict
            parent = stack[-1]
            parent.absorb(verdict)
            if frame.tentative:
                parent.low = min(parent.low, frame.low)

    def _visit_site(
        self,
        frame: _Frame,
        site: CallSite,
        on_stack: Dict[str, int],
    ) -> Optional[str]:
        """Apply one call site to *frame*.

        Returns the id of a callee that must be traversed first, or ``None``
        if the site was settled immediately.
        """
        if isinstance(site, DirectAllocation):
            frame.found = Allocates(frame.method_id, site)
            return None
        if isinstance(site, UnresolvedCall):
            self._apply_policy(frame, site)
            return None

        target = site.target
        done = self._done.get(target)
        if done is not None:
            frame.absorb(done)
            return None
        depth = on_stack.get(target)
        if depth is not None:
            # Cycle: the target contributes nothing until it is final
            self.stats.cycles_broken += 1
            frame.low = min(frame.low, depth)
            logger.debug("Cycle %s -> %s broken provisionally",
                         frame.method_id, target)
            return None
        pending = self._tentative.get(target)
        if pending is not None:
            verdict, low = pending
            frame.absorb(verdict)
            frame.low = min(frame.low, low)
            return None
        return target

    def _apply_policy(self, frame: _Frame, site: UnresolvedCall) -> None:
        self.stats.unresolved_sites_seen += 1
        policy = self.policy
        if policy is UnresolvedCallPolicy.PESSIMISTIC:
            frame.found = Allocates(frame.method_id, site)
        elif policy is UnresolvedCallPolicy.CONSERVATIVE:
            if frame.unknown is None:
                frame.unknown = Unknown(frame.method_id, site.reason, site)
        else:
            logger.debug("Unresolved call in %s assumed allocation-free: %s",
                         frame.method_id, site.reason)

    def _finalize(self, frame: _Frame, verdict: Verdict) -> None:
        self._settle(frame.method_id, verdict)
        if frame.dependents:
            self._settle_dependents(verdict, frame.dependents)
        if isinstance(verdict, Allocates) and logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s allocates via %s", frame.method_id,
                         " -> ".join(verdict.witness))

    def _settle(self, method_id: str, verdict: Verdict) -> None:
        self._done[method_id] = verdict
        self.stats.methods_analyzed += 1

    def _settle_dependents(self, verdict: Verdict, members: List[str]) -> None:
        """Finalize the tentative verdicts a frame vouched for.

        Members share the owner's component, so each ends with the owner's
        kind.  A member whose tentative verdict is weaker takes its witness
        from the first call site leading to a settled method of that kind,
        working backwards through the members from the settled ones.
        """
        kind = verdict.kind
        pending = {mid: self._tentative.pop(mid)[0] for mid in members}
        if kind is VerdictKind.ALLOCATION_FREE:
            for mid in members:
                self._settle(mid, ALLOCATION_FREE)
            self.stats.tentative_settled += len(members)
            return

        settled: Deque[str] = deque()
        callers: Dict[str, List[str]] = {}
        for mid in members:
            tentative = pending[mid]
            if tentative.kind is kind:
                self._settle(mid, tentative)
                settled.append(mid)
                continue
            for site in self.graph.lookup(mid).call_sites:
                if not isinstance(site, ResolvedCall):
                    continue
                done = self._done.get(site.target)
                if done is not None and done.kind is kind:
                    self._settle(mid, done.extended(mid))
                    settled.append(mid)
                    break
                if site.target in pending:
                    callers.setdefault(site.target, []).append(mid)

        while settled:
            target = settled.popleft()
            for mid in callers.get(target, ()):
                if mid not in self._done:
                    self._settle(mid, self._done[target].extended(mid))
                    settled.append(mid)

        discarded = [mid for mid in members if mid not in self._done]
        self.stats.tentative_settled += len(members) - len(discarded)
        if discarded:
            # left to be recomputed on demand
            self.stats.tentative_discarded += len(discarded)
            logger.debug("Tentative verdicts discarded: %s", ", ".join(discarded))

    def _defer(self, frame: _Frame, verdict: Verdict, owner: _Frame) -> None:
        """Hand a tentative verdict (and those it vouches for) to *owner*."""
        low = frame.low
        self._tentative[frame.method_id] = (verdict, low)
        for dep in frame.dependents:
            self._tentative[dep] = (self._tentative[dep][0], low)
        owner.dependents.extend(frame.dependents)
        owner.dependents.append(frame.method_id)


def analyze(
    graph: CallGraph,
    options: Optional[AnalysisOptions] = None,
    *,
    policy: Optional[UnresolvedCallPolicy] = None,
) -> AnalysisResult:
    """Run a fresh :class:`ReachabilityAnalyzer` over *graph*."""
    return ReachabilityAnalyzer(graph, options, policy=policy).analyze()
