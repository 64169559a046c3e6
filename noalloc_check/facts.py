"""
noalloc_check.facts
===================

The boundary with the external front end.

A front end (a compiler plugin, a bytecode scanner, ...) resolves the
no-allocation marker and the call sites of every method and hands them over
as *facts*.  This module defines the fact containers, reads them from fact
files, and builds the frozen call graph from them.

S-expression fact files
-----------------------
Parsed with ``sexpdata``.  One form per fact::

    ;; methods, in the order the graph should iterate them
    (method "Example.directlyAllocatingMethod" :no-allocation)
    (method "Example.allocates")

    ;; call sites, in declaration order per caller
    (call "Example.directlyAllocatingMethod" (new "java.lang.Object")
          :file "Example.java" :line 18)
    (call "Example.indirectlyAllocatingMethod" (invoke "Example.allocates"))
    (call "Example.dispatch" (virtual "Runnable.run()"))

The callee form is ``(TAG [ARGUMENT])`` with a tag from the classifier's
alphabet (:mod:`noalloc_check.callsites`).

JSON fact files
---------------
::

    {"methods": [{"id": "A.f", "no_allocation": true}, {"id": "A.g"}],
     "calls":   [{"caller": "A.f", "kind": "invoke", "target": "A.g",
                  "file": "A.java", "line": 3}]}

``target``, ``reason`` or ``type`` supply the tag argument.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import sexpdata
from sexpdata import Symbol

from noalloc_check.callgraph import CallGraph, CallGraphBuilder
from noalloc_check.callsites import (
    CallSiteFact,
    SourceLocation,
    TaggedCallee,
    classify_all,
)
from noalloc_check.errors import FactParseError

__all__ = [
    "MethodFact",
    "FactSet",
    "build_graph",
    "loads_sexp",
    "loads_json",
    "load_facts",
]

logger = logging.getLogger(__name__)

JSON_SUFFIXES = frozenset({".json"})
SEXP_SUFFIXES = frozenset({".sexp", ".facts", ".sx"})

# Keys that may carry the argument of a JSON call fact, by priority
_JSON_ARGUMENT_KEYS = ("target", "reason", "type")


@dataclass(frozen=True)
class MethodFact:
    """``(method_id, has_contract)`` as resolved by the front end."""

    method_id: str
    has_contract: bool = False


@dataclass
class FactSet:
    """All facts of one analysis run."""

    methods: List[MethodFact] = field(default_factory=list)
    calls: List[CallSiteFact] = field(default_factory=list)
    source: Optional[str] = None

    def build(self) -> CallGraph:
        return build_graph(self.methods, self.calls)


def build_graph(
    methods: Iterable[MethodFact],
    calls: Iterable[CallSiteFact],
) -> CallGraph:
    """Classify every call fact, then build and freeze the call graph.

    All facts are classified before the graph is touched, so a
    :class:`~noalloc_check.errors.ClassificationError` aborts the run before
    any construction happens.

    Raises
    ------
    ConstructionError
        Any classification or graph construction error.
    """
    classified = classify_all(calls)
    builder = CallGraphBuilder()
    for m in methods:
        builder.add_method(m.method_id, m.has_contract)
    for caller, site in classified:
        builder.add_call_site(caller, site)
    return builder.freeze()


# ═══════════════════════════════════════════════════════════════════════
#  S-expression facts
# ═══════════════════════════════════════════════════════════════════════

Sexp = Any


def _is_symbol(s: Sexp, name: Optional[str] = None) -> bool:
    return isinstance(s, Symbol) and (name is None or str(s) == name)


def _as_text(s: Sexp, what: str, source: Optional[str]) -> str:
    """Accept a string literal or a bare symbol."""
    if isinstance(s, str) and s:
        return str(s)
    raise FactParseError(f"expected {what}, got {s!r}", source)


def _keyword_args(items: List[Sexp], form: str, source: Optional[str]) -> Dict[str, Sexp]:
    """Parse trailing ``:key value`` / ``:flag`` items."""
    result: Dict[str, Sexp] = {}
    i = 0
    while i < len(items):
        key = items[i]
        if not (_is_symbol(key) and str(key).startswith(":")):
            raise FactParseError(f"unexpected item {key!r} in ({form} ...)", source)
        name = str(key)[1:]
        nxt = items[i + 1] if i + 1 < len(items) else None
        if nxt is None or (_is_symbol(nxt) and str(nxt).startswith(":")):
            result[name] = True
            i += 1
        else:
            result[name] = nxt
            i += 2
    return result


def _location(file: Any, line: Any, source: Optional[str]) -> Optional[SourceLocation]:
    if file is None and line is None:
        return None
    if file is not None and not isinstance(file, str):
        raise FactParseError(f"file must be a string, got {file!r}", source)
    if line is not None and (isinstance(line, bool) or not isinstance(line, int)):
        raise FactParseError(f"line must be an integer, got {line!r}", source)
    return SourceLocation(str(file or ""), line or 0)


def _parse_method_form(form: List[Sexp], facts: FactSet) -> None:
    if len(form) < 2:
        raise FactParseError("(method ...) needs an id", facts.source)
    method_id = _as_text(form[1], "method id", facts.source)
    opts = _keyword_args(form[2:], "method", facts.source)
    unknown = set(opts) - {"no-allocation", "contract"}
    if unknown:
        raise FactParseError(
            f"unknown option(s) {sorted(unknown)} for method {method_id!r}",
            facts.source,
        )
    contract = opts.get("no-allocation", opts.get("contract", False))
    if _is_symbol(contract):
        contract = str(contract) not in ("nil", "false", "#f")
    facts.methods.append(MethodFact(method_id, bool(contract)))


def _parse_call_form(form: List[Sexp], facts: FactSet) -> None:
    if len(form) < 3:
        raise FactParseError("(call CALLER (TAG ...)) needs a caller and a callee",
                             facts.source)
    caller = _as_text(form[1], "caller id", facts.source)
    callee_form = form[2]
    if not isinstance(callee_form, list) or not callee_form or not _is_symbol(callee_form[0]):
        raise FactParseError(f"malformed callee {callee_form!r} in call from {caller!r}",
                             facts.source)
    if len(callee_form) > 2:
        raise FactParseError(f"callee form {callee_form!r} takes at most one argument",
                             facts.source)
    tag = str(callee_form[0])
    argument = None
    if len(callee_form) == 2:
        argument = _as_text(callee_form[1], f"argument of ({tag} ...)", facts.source)
    opts = _keyword_args(form[3:], "call", facts.source)
    location = _location(opts.get("file"), opts.get("line"), facts.source)
    facts.calls.append(CallSiteFact(caller, TaggedCallee(tag, argument), location))


_FORM_DISPATCH = {
    "method": _parse_method_form,
    "call": _parse_call_form,
}


def loads_sexp(text: str, source: Optional[str] = None) -> FactSet:
    """Parse S-expression facts from *text*.

    Raises
    ------
    FactParseError
        On S-expression syntax errors and unrecognised forms.
    """
    try:
        # Wrap so that any number of top-level forms is one expression
        forms = sexpdata.loads("(\n" + text + "\n)", nil=None, true=None, false=None)
    except Exception as e:
        raise FactParseError(f"S-expression syntax error: {e}", source) from e

    facts = FactSet(source=source)
    for form in forms:
        if not isinstance(form, list) or not form or not _is_symbol(form[0]):
            raise FactParseError(f"expected (method ...) or (call ...), got {form!r}",
                                 source)
        handler = _FORM_DISPATCH.get(str(form[0]))
        if handler is None:
            raise FactParseError(f"unknown form ({form[0]} ...)", source)
        handler(form, facts)
    return facts


# ═══════════════════════════════════════════════════════════════════════
#  JSON facts
# ═══════════════════════════════════════════════════════════════════════

def _json_method(entry: Any, source: Optional[str]) -> MethodFact:
    if isinstance(entry, str):
        return MethodFact(entry)
    if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
        raise FactParseError(f"method entry needs a string 'id': {entry!r}", source)
    contract = entry.get("no_allocation", entry.get("contract", False))
    if not isinstance(contract, bool):
        raise FactParseError(f"'no_allocation' must be a boolean: {entry!r}", source)
    return MethodFact(entry["id"], contract)


def _json_call(entry: Any, source: Optional[str]) -> CallSiteFact:
    if not isinstance(entry, dict):
        raise FactParseError(f"call entry must be an object: {entry!r}", source)
    caller, kind = entry.get("caller"), entry.get("kind")
    if not isinstance(caller, str) or not isinstance(kind, str):
        raise FactParseError(f"call entry needs string 'caller' and 'kind': {entry!r}",
                             source)
    argument = None
    for key in _JSON_ARGUMENT_KEYS:
        if entry.get(key) is not None:
            argument = entry[key]
            break
    if argument is not None and not isinstance(argument, str):
        raise FactParseError(f"call argument must be a string: {entry!r}", source)
    location = _location(entry.get("file"), entry.get("line"), source)
    return CallSiteFact(caller, TaggedCallee(kind, argument), location)


def loads_json(text: str, source: Optional[str] = None) -> FactSet:
    """Parse JSON facts from *text*."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FactParseError(f"invalid JSON: {e}", source) from e
    if not isinstance(data, dict):
        raise FactParseError("expected a JSON object with 'methods' and 'calls'", source)
    methods, calls = data.get("methods", []), data.get("calls", [])
    if not isinstance(methods, list) or not isinstance(calls, list):
        raise FactParseError("'methods' and 'calls' must be arrays", source)
    return FactSet(
        methods=[_json_method(e, source) for e in methods],
        calls=[_json_call(e, source) for e in calls],
        source=source,
    )


# ═══════════════════════════════════════════════════════════════════════
#  Files
# ═══════════════════════════════════════════════════════════════════════

def load_facts(path: Union[str, Path]) -> FactSet:
    """Read a fact file, choosing the format from its suffix.

    Files with an unrecognised suffix are read as JSON when their first
    non-blank character is ``{``, otherwise as S-expressions.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise FactParseError(f"not a UTF-8 text file: {e}", str(p)) from e

    suffix = p.suffix.lower()
    if suffix in JSON_SUFFIXES or (suffix not in SEXP_SUFFIXES
                                   and text.lstrip().startswith("{")):
        facts = loads_json(text, source=str(p))
    else:
        facts = loads_sexp(text, source=str(p))
    logger.debug("Loaded %d method(s) and %d call site(s) from %s",
                 len(facts.methods), len(facts.calls), p)
    return facts
