# tests/test_formatting.py
"""
Tests for text, JSON and DOT rendering of check results.
"""

import json

from noalloc_check.callsites import DirectAllocation, SourceLocation, UnresolvedCall
from noalloc_check.formatting import (
    format_dot,
    format_json,
    format_text,
    format_verdicts,
    format_violation,
    to_json_dict,
)
from noalloc_check.reachability import analyze
from noalloc_check.violations import Violation, ViolationKind, check
from tests.conftest import call, make_graph


def _located_graph():
    loc = SourceLocation("A.java", 7)
    return make_graph(
        {
            "A.f": [call("A.g")],
            "A.g": [DirectAllocation("java.lang.Object", loc)],
            "A.h": [UnresolvedCall("I.run()", SourceLocation("A.java", 12))],
        },
        contracts={"A.f", "A.h"},
    )


class TestFormatViolation:

    def test_cppcheck_style_line(self):
        v = Violation("A.f", ViolationKind.ALLOCATES, ("A.f",),
                      site=DirectAllocation("X", SourceLocation("A.java", 3)))
        assert format_violation(v) == (
            "[A.java:3]: (error) method A.f is annotated no-allocation but "
            "performs allocation of X [noAllocationViolation]\n"
            "    witness: A.f"
        )

    def test_without_location_or_witness(self):
        v = Violation("A.f", ViolationKind.UNVERIFIABLE, ("A.f",), reason="r")
        text = format_violation(v, show_witness=False)
        assert text.startswith("(warning) ")
        assert text.endswith("[noAllocationUnverifiable]")
        assert "witness" not in text


class TestFormatText:

    def test_violations_and_summary(self):
        text = format_text(check(_located_graph()))
        lines = text.splitlines()
        assert lines[0].startswith("[A.java:7]: (error) method A.f")
        assert lines[1] == "    witness: A.f -> A.g"
        assert lines[2].startswith("[A.java:12]: (warning) method A.h")
        assert lines[-1] == "2 violation(s): 1 allocating, 1 unverifiable"

    def test_clean(self):
        text = format_text(check(make_graph({"A": []}, contracts={"A"})))
        assert text == "No no-allocation violations found."


class TestFormatVerdicts:

    def test_one_line_per_method(self):
        result = analyze(_located_graph())
        lines = format_verdicts(result.verdicts).splitlines()
        assert len(lines) == 3
        assert lines[0].split() == ["A.f", "allocates", "via", "A.f", "->", "A.g"]
        assert lines[2].startswith("A.h  unknown (I.run())")

    def test_empty(self):
        assert format_verdicts({}) == ""


class TestJson:

    def test_structure(self):
        data = to_json_dict(check(_located_graph()))
        assert data["policy"] == "conservative"
        assert [v["method"] for v in data["violations"]] == ["A.f", "A.h"]
        first = data["violations"][0]
        assert first["kind"] == "allocates"
        assert first["errorId"] == "noAllocationViolation"
        assert first["witness"] == ["A.f", "A.g"]
        assert first["site"] == {
            "kind": "direct-allocation",
            "description": "allocation of java.lang.Object",
            "file": "A.java",
            "line": 7,
        }
        assert data["violations"][1]["reason"] == "I.run()"
        assert "verdicts" not in data

    def test_with_verdicts_round_trips_through_json(self):
        data = json.loads(format_json(check(_located_graph()), include_verdicts=True))
        assert data["verdicts"]["A.g"]["verdict"] == "allocates"
        assert data["verdicts"]["A.h"]["verdict"] == "unknown"
        assert data["verdicts"]["A.h"]["reason"] == "I.run()"
        assert data["stats"]["methods_analyzed"] == 3


class TestDot:

    def test_highlights_witness(self):
        graph = _located_graph()
        dot = format_dot(graph, check(graph))
        assert '"A.f" -> "A.g" [color=red, penwidth=2];' in dot
        assert 'label="no-allocation call graph";' in dot

    def test_without_result(self):
        dot = format_dot(_located_graph())
        assert "color=red" not in dot
