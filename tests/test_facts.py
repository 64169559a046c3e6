# tests/test_facts.py
"""
Tests for fact containers and the S-expression / JSON fact file readers.
"""

import pytest

from noalloc_check.callsites import (
    CallSiteFact,
    DirectAllocation,
    MethodRef,
    ResolvedCall,
    SourceLocation,
    TaggedCallee,
    UnresolvedCall,
)
from noalloc_check.errors import (
    ClassificationError,
    DanglingEdge,
    DuplicateMethod,
    FactParseError,
)
from noalloc_check.facts import (
    FactSet,
    MethodFact,
    build_graph,
    load_facts,
    loads_json,
    loads_sexp,
)
from tests.conftest import (
    EXAMPLE_JSON,
    EXAMPLE_SEXP,
    OPAQUE_SEXP,
    SIMPLE_JSON,
    SIMPLE_SEXP,
)


class TestBuildGraph:

    def test_build(self):
        cg = build_graph(
            [MethodFact("A", True), MethodFact("B")],
            [CallSiteFact("A", MethodRef("B"))],
        )
        assert cg.lookup("A").has_contract
        assert cg.call_sites_of("A") == (ResolvedCall("B"),)

    def test_dangling(self):
        with pytest.raises(DanglingEdge):
            build_graph([MethodFact("A")], [CallSiteFact("A", MethodRef("B"))])

    def test_duplicate(self):
        with pytest.raises(DuplicateMethod):
            build_graph([MethodFact("A"), MethodFact("A")], [])

    def test_classification_happens_first(self):
        # the bad fact is reported even though a duplicate method comes first
        with pytest.raises(ClassificationError):
            build_graph(
                [MethodFact("A"), MethodFact("A")],
                [CallSiteFact("A", TaggedCallee("bogus"))],
            )

    def test_factset_build(self):
        facts = FactSet([MethodFact("A")], [])
        assert len(facts.build()) == 1


class TestLoadsSexp:

    def test_simple(self):
        facts = loads_sexp(SIMPLE_SEXP)
        assert facts.methods == [MethodFact("A.f", True), MethodFact("A.g", False)]
        assert facts.calls[0] == CallSiteFact(
            "A.f", TaggedCallee("invoke", "A.g"), SourceLocation("A.java", 3)
        )
        assert facts.calls[1].callee == TaggedCallee("new", "java.lang.Object")

    def test_builds_graph(self):
        cg = loads_sexp(SIMPLE_SEXP).build()
        assert cg.call_sites_of("A.g") == (
            DirectAllocation("java.lang.Object", SourceLocation("A.java", 7)),
        )

    def test_unresolved(self):
        cg = loads_sexp(OPAQUE_SEXP).build()
        assert cg.call_sites_of("C.f") == (UnresolvedCall("Runnable.run()"),)

    def test_bare_symbols_accepted(self):
        facts = loads_sexp("(method A.f :no-allocation) (call A.f (alloc))")
        assert facts.methods == [MethodFact("A.f", True)]
        assert facts.calls[0].callee == TaggedCallee("alloc", None)

    def test_contract_keyword(self):
        facts = loads_sexp('(method "A" :contract nil) (method "B" :contract t)')
        assert facts.methods == [MethodFact("A", False), MethodFact("B", True)]

    def test_empty(self):
        facts = loads_sexp("; nothing here\n")
        assert facts.methods == [] and facts.calls == []

    def test_source_recorded(self):
        assert loads_sexp("", source="x.sexp").source == "x.sexp"

    @pytest.mark.parametrize("text, fragment", [
        ('(method "A"', "syntax error"),
        ('(frobnicate "A")', "unknown form"),
        ('"A"', "expected (method ...)"),
        ("(method)", "needs an id"),
        ('(method "A" :bogus)', "unknown option"),
        ('(method "A" stray)', "unexpected item"),
        ('(call "A")', "needs a caller and a callee"),
        ('(call "A" invoke)', "malformed callee"),
        ('(call "A" (invoke "B" "C"))', "at most one argument"),
        ('(call "A" (invoke 3))', "expected argument"),
        ('(call "A" (new) :line "x")', "line must be an integer"),
        ('(call "A" (new) :file 3)', "file must be a string"),
    ])
    def test_malformed(self, text, fragment):
        with pytest.raises(FactParseError, match=fragment.replace("(", r"\(")
                           .replace(")", r"\)").replace(".", r"\.")):
            loads_sexp(text)

    def test_error_names_source(self):
        with pytest.raises(FactParseError) as exc_info:
            loads_sexp("(frobnicate)", source="bad.sexp")
        assert exc_info.value.source == "bad.sexp"
        assert "bad.sexp: " in str(exc_info.value)
        assert exc_info.value.code == "NOALLOC-2001"


class TestLoadsJson:

    def test_simple(self):
        facts = loads_json(SIMPLE_JSON)
        assert facts.methods == [MethodFact("A.f", True), MethodFact("A.g")]
        assert facts.calls[1] == CallSiteFact(
            "A.g", TaggedCallee("new", "java.lang.Object"), SourceLocation("A.java", 7)
        )

    def test_same_graph_as_sexp(self):
        a = loads_json(SIMPLE_JSON).build()
        b = loads_sexp(SIMPLE_SEXP).build()
        assert a.methods() == b.methods()

    def test_contract_alias(self):
        facts = loads_json('{"methods": [{"id": "A", "contract": true}]}')
        assert facts.methods == [MethodFact("A", True)]

    def test_reason_key(self):
        facts = loads_json(
            '{"methods": ["A"], '
            '"calls": [{"caller": "A", "kind": "external", "reason": "libc"}]}'
        )
        assert facts.calls[0].callee == TaggedCallee("external", "libc")

    @pytest.mark.parametrize("text, fragment", [
        ("{", "invalid JSON"),
        ("[]", "expected a JSON object"),
        ('{"methods": {}}', "must be arrays"),
        ('{"methods": [3]}', "needs a string 'id'"),
        ('{"methods": [{"id": "A", "no_allocation": "yes"}]}', "must be a boolean"),
        ('{"calls": [3]}', "must be an object"),
        ('{"calls": [{"caller": "A"}]}', "string 'caller' and 'kind'"),
        ('{"calls": [{"caller": "A", "kind": "invoke", "target": 1}]}',
         "must be a string"),
        ('{"calls": [{"caller": "A", "kind": "new", "line": true}]}',
         "must be an integer"),
    ])
    def test_malformed(self, text, fragment):
        with pytest.raises(FactParseError) as exc_info:
            loads_json(text)
        assert fragment in str(exc_info.value)


class TestLoadFacts:

    def test_sexp_file(self, write_facts):
        path = write_facts(SIMPLE_SEXP, "facts.sexp")
        facts = load_facts(path)
        assert facts.source == str(path)
        assert len(facts.methods) == 2

    def test_json_file(self, write_facts):
        path = write_facts(SIMPLE_JSON, "facts.json")
        assert len(load_facts(path).calls) == 2

    def test_sniffs_json(self, write_facts):
        path = write_facts(SIMPLE_JSON, "facts.txt")
        assert len(load_facts(str(path)).methods) == 2

    def test_sniffs_sexp(self, write_facts):
        path = write_facts(SIMPLE_SEXP, "facts.txt")
        assert len(load_facts(path).methods) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            load_facts(tmp_path / "nope.sexp")

    def test_not_utf8(self, tmp_path):
        path = tmp_path / "bin.sexp"
        path.write_bytes(b"\xff\xfe\x00")
        with pytest.raises(FactParseError, match="UTF-8"):
            load_facts(path)

    def test_parse_error_names_file(self, write_facts):
        path = write_facts("(method", "broken.sexp")
        with pytest.raises(FactParseError, match="broken.sexp"):
            load_facts(path)

    def test_shipped_examples_agree(self):
        a = load_facts(EXAMPLE_SEXP).build()
        b = load_facts(EXAMPLE_JSON).build()
        assert a.methods() == b.methods()
        assert len(a) == 6
