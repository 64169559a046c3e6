"""
noalloc_check.callgraph
=======================

The call graph the reachability analysis runs over.

- **Nodes** are :class:`Method` objects: an id, the no-allocation contract
  flag, and the ordered tuple of classified call sites.
- **Edges** are the call sites themselves.  Only
  :class:`~noalloc_check.callsites.ResolvedCall` sites point at another node;
  allocation and unresolved sites are terminal.

Construction is two-phase.  A :class:`CallGraphBuilder` accepts methods and
call sites in any order; :meth:`CallGraphBuilder.freeze` validates every
resolved target and returns an immutable :class:`CallGraph`.  A graph with a
dangling edge is never produced.

Public API
----------
    Method            - a node of the call graph
    CallGraphBuilder  - mutable construction phase
    CallGraph         - frozen, read-only graph
    callgraph_summary - human-readable multi-line summary

Typical usage::

    from noalloc_check.callgraph import CallGraphBuilder
    from noalloc_check.callsites import DirectAllocation, ResolvedCall

    b = CallGraphBuilder()
    b.add_method("A.f", has_contract=True)
    b.add_method("A.g")
    b.add_call_site("A.f", ResolvedCall("A.g"))
    b.add_call_site("A.g", DirectAllocation("java.lang.Object"))
    cg = b.freeze()
    print(cg.to_dot())
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Any,
    Deque,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from noalloc_check.callsites import (
    CallSite,
    CallSiteKind,
    DirectAllocation,
    ResolvedCall,
    UnresolvedCall,
)
from noalloc_check.errors import (
    DanglingEdge,
    DuplicateMethod,
    GraphFrozen,
    UnknownMethod,
)

__all__ = [
    "Method",
    "CallGraphBuilder",
    "CallGraph",
    "callgraph_summary",
]

logger = logging.getLogger(__name__)

_CALL_SITE_TYPES = (DirectAllocation, ResolvedCall, UnresolvedCall)


# ---------------------------------------------------------------------------
# Method
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Method:
    """A node in the call graph.

    Attributes
    ----------
    id : str
        Unique, stable identifier supplied by the front end.
    has_contract : bool
        Whether the method carries the no-allocation contract.
    call_sites : tuple of CallSite
        Outgoing call sites in declaration order.
    """

    id: str
    has_contract: bool = False
    call_sites: Tuple[CallSite, ...] = ()

    @property
    def callees(self) -> List[str]:
        """Ids of the methods called through resolved call sites."""
        return [s.target for s in self.call_sites if isinstance(s, ResolvedCall)]

    @property
    def is_leaf(self) -> bool:
        return not self.call_sites

    @property
    def is_self_recursive(self) -> bool:
        return self.id in self.callees

    def __repr__(self) -> str:
        flag = ", contract" if self.has_contract else ""
        return f"Method({self.id!r}{flag}, sites={len(self.call_sites)})"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class CallGraphBuilder:
    """Accumulates methods and call sites, then freezes them into a graph."""

    def __init__(self) -> None:
        self._contracts: Dict[str, bool] = {}
        self._sites: Dict[str, List[CallSite]] = {}
        self._frozen = False

    def add_method(self, method_id: str, has_contract: bool = False) -> None:
        """Declare a method.  Ids must be unique."""
        self._check_open("add a method")
        if method_id in self._contracts:
            raise DuplicateMethod(method_id)
        self._contracts[method_id] = bool(has_contract)
        self._sites[method_id] = []

    def add_call_site(self, from_id: str, site: CallSite) -> None:
        """Append *site* to the call sites of *from_id*.

        The caller must already be declared.  The target of a resolved call
        need not be: it is checked by :meth:`freeze`.
        """
        self._check_open("add a call site")
        if not isinstance(site, _CALL_SITE_TYPES):
            raise TypeError(
                f"expected a classified call site, got {type(site).__name__}"
            )
        sites = self._sites.get(from_id)
        if sites is None:
            raise UnknownMethod(from_id)
        sites.append(site)

    def __contains__(self, method_id: object) -> bool:
        return method_id in self._contracts

    def freeze(self) -> "CallGraph":
        """Validate and return the immutable graph.

        Raises
        ------
        DanglingEdge
            For the first resolved call (in method insertion order, then
            call-site order) whose target was never declared.
        """
        self._check_open("freeze")
        for method_id, sites in self._sites.items():
            for site in sites:
                if isinstance(site, ResolvedCall) and site.target not in self._contracts:
                    raise DanglingEdge(method_id, site.target)
        self._frozen = True
        methods = {
            mid: Method(mid, self._contracts[mid], tuple(self._sites[mid]))
            for mid in self._contracts
        }
        graph = CallGraph(methods)
        logger.debug("Froze call graph: %r", graph)
        return graph

    def _check_open(self, operation: str) -> None:
        if self._frozen:
            raise GraphFrozen(operation)


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Frozen whole-program call graph.

    Instances are produced by :meth:`CallGraphBuilder.freeze`.  Iteration
    order everywhere is method insertion order, which is what makes witness
    tie-breaks deterministic.
    """

    def __init__(self, methods: Mapping[str, Method]) -> None:
        self._methods: Mapping[str, Method] = MappingProxyType(dict(methods))
        self._callers: Optional[Dict[str, Tuple[str, ...]]] = None

    # ----- core reads -------------------------------------------------------

    def methods(self) -> Tuple[Method, ...]:
        """All methods, in insertion order."""
        return tuple(self._methods.values())

    def method_ids(self) -> Tuple[str, ...]:
        return tuple(self._methods)

    def lookup(self, method_id: str) -> Method:
        try:
            return self._methods[method_id]
        except KeyError:
            raise UnknownMethod(method_id) from None

    def call_sites_of(self, method_id: str) -> Tuple[CallSite, ...]:
        return self.lookup(method_id).call_sites

    def contracted_methods(self) -> List[Method]:
        return [m for m in self._methods.values() if m.has_contract]

    def __contains__(self, method_id: object) -> bool:
        return method_id in self._methods

    def __len__(self) -> int:
        return len(self._methods)

    def __iter__(self) -> Iterator[Method]:
        return iter(self._methods.values())

    # ----- reverse edges ----------------------------------------------------

    def callers_of(self, method_id: str) -> Tuple[str, ...]:
        """Distinct methods with a resolved call to *method_id*."""
        self.lookup(method_id)
        if self._callers is None:
            index: Dict[str, List[str]] = {mid: [] for mid in self._methods}
            for m in self._methods.values():
                for callee in dict.fromkeys(m.callees):
                    index[callee].append(m.id)
            self._callers = {k: tuple(v) for k, v in index.items()}
        return self._callers[method_id]

    # ----- whole-graph queries ----------------------------------------------

    def transitive_callees(self, method_id: str) -> Set[str]:
        """Ids of all methods reachable from *method_id* through calls.

        *method_id* itself is included only when it lies on a cycle.
        """
        visited: Set[str] = set()
        worklist: Deque[str] = deque(self.lookup(method_id).callees)
        while worklist:
            mid = worklist.popleft()
            if mid in visited:
                continue
            visited.add(mid)
            worklist.extend(self._methods[mid].callees)
        return visited

    def strongly_connected_components(self) -> List[List[str]]:
        """Compute SCCs with an iterative Tarjan's algorithm.

        Returns SCCs in reverse topological order (callees before callers).
        """
        index: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        on_stack: Set[str] = set()
        stack: List[str] = []
        result: List[List[str]] = []
        counter = 0

        for start in self._methods:
            if start in index:
                continue
            index[start] = lowlink[start] = counter
            counter += 1
            stack.append(start)
            on_stack.add(start)
            work: List[Tuple[str, Iterator[str]]] = [
                (start, iter(self._methods[start].callees))
            ]
            while work:
                v, successors = work[-1]
                descended = False
                for w in successors:
                    if w not in index:
                        index[w] = lowlink[w] = counter
                        counter += 1
                        stack.append(w)
                        on_stack.add(w)
                        work.append((w, iter(self._methods[w].callees)))
                        descended = True
                        break
                    if w in on_stack:
                        lowlink[v] = min(lowlink[v], index[w])
                if descended:
                    continue
                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[v])
                if lowlink[v] == index[v]:
                    scc: List[str] = []
                    while True:
                        w = stack.pop()
                        on_stack.discard(w)
                        scc.append(w)
                        if w == v:
                            break
                    result.append(scc)
        return result

    def recursive_methods(self) -> List[Set[str]]:
        """Sets of mutually recursive methods.

        Singleton sets are direct self-recursion.
        """
        result: List[Set[str]] = []
        for scc in self.strongly_connected_components():
            if len(scc) > 1 or self._methods[scc[0]].is_self_recursive:
                result.append(set(scc))
        return result

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        counts = {kind: 0 for kind in CallSiteKind}
        n_sites = 0
        for m in self._methods.values():
            for site in m.call_sites:
                counts[site.kind] += 1
                n_sites += 1
        sccs = self.strongly_connected_components()
        return {
            "methods": len(self._methods),
            "contracted_methods": len(self.contracted_methods()),
            "call_sites": n_sites,
            "direct_allocations": counts[CallSiteKind.DIRECT_ALLOCATION],
            "resolved_calls": counts[CallSiteKind.RESOLVED],
            "unresolved_calls": counts[CallSiteKind.UNRESOLVED],
            "sccs": len(sccs),
            "recursive_sccs": sum(1 for scc in sccs if len(scc) > 1),
            "self_recursive_methods": sum(
                1 for m in self._methods.values() if m.is_self_recursive
            ),
            "root_methods": sum(
                1 for mid in self._methods if not self.callers_of(mid)
            ),
            "leaf_methods": sum(1 for m in self._methods.values() if m.is_leaf),
        }

    # ----- serialisation ----------------------------------------------------

    def to_dot(
        self,
        title: Optional[str] = None,
        highlight: Iterable[Sequence[str]] = (),
    ) -> str:
        """Return a Graphviz DOT representation.

        Each sequence in *highlight* is a witness path; its call edges are
        drawn in bold red.
        """
        hot: Set[Tuple[str, str]] = set()
        hot_ends: Set[str] = set()
        for path in highlight:
            path = list(path)
            hot.update(zip(path, path[1:]))
            if path:
                hot_ends.add(path[-1])

        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{_dot_escape(title)}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        for m in self._methods.values():
            fill = "#ffe0b3" if m.has_contract else "#ddeeff"
            extra = ", penwidth=2" if m.has_contract else ""
            lines.append(
                f'  "{_dot_escape(m.id)}" '
                f'[style=filled, fillcolor="{fill}"{extra}];'
            )

        sink_attrs = {
            CallSiteKind.DIRECT_ALLOCATION:
                'label="alloc", style=filled, fillcolor="#ffcccc", shape=octagon',
            CallSiteKind.UNRESOLVED:
                'label="?", style=filled, fillcolor="#eeeeee", shape=diamond',
        }
        for m in self._methods.values():
            src = _dot_escape(m.id)
            for i, site in enumerate(m.call_sites):
                if isinstance(site, ResolvedCall):
                    attrs = ""
                    if (m.id, site.target) in hot:
                        attrs = " [color=red, penwidth=2]"
                    lines.append(f'  "{src}" -> "{_dot_escape(site.target)}"{attrs};')
                    continue
                sink = f"{src}#{i}"
                lines.append(f'  "{sink}" [{sink_attrs[site.kind]}];')
                attrs = "style=dotted"
                if isinstance(site, UnresolvedCall):
                    attrs += f', label="{_dot_escape(site.reason)}"'
                elif m.id in hot_ends:
                    attrs = "color=red, penwidth=2"
                lines.append(f'  "{src}" -> "{sink}" [{attrs}];')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        n_sites = sum(len(m.call_sites) for m in self._methods.values())
        return f"CallGraph(methods={len(self._methods)}, call_sites={n_sites})"


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        "Call Graph Summary",
        f"  Methods:              {stats['methods']}",
        f"  Contracted methods:   {stats['contracted_methods']}",
        f"  Call sites:           {stats['call_sites']}",
        f"  Direct allocations:   {stats['direct_allocations']}",
        f"  Resolved calls:       {stats['resolved_calls']}",
        f"  Unresolved calls:     {stats['unresolved_calls']}",
        f"  SCCs:                 {stats['sccs']}",
        f"  Recursive SCCs:       {stats['recursive_sccs']}",
        f"  Self-recursive:       {stats['self_recursive_methods']}",
        f"  Root methods:         {stats['root_methods']}",
        f"  Leaf methods:         {stats['leaf_methods']}",
        "",
        "Methods:",
    ]
    for m in cg:
        flag = " [no-allocation]" if m.has_contract else ""
        lines.append(
            f"  {m.id}{flag}: "
            f"calls [{', '.join(m.callees)}], "
            f"called by [{', '.join(cg.callers_of(m.id))}]"
        )
    return "\n".join(lines)
