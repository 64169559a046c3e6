# tests/test_end_to_end.py
"""
End-to-end run over the shipped NoAllocationExample facts.
"""

import pytest

import noalloc_check
from noalloc_check import (
    Allocates,
    ViolationKind,
    check,
    load_facts,
)
from noalloc_check.__main__ import EXIT_VIOLATIONS, main
from noalloc_check.verdicts import ALLOCATION_FREE
from tests.conftest import EXAMPLE_JSON, EXAMPLE_SEXP

CLS = "NoAllocationExample"


@pytest.fixture(params=[EXAMPLE_SEXP, EXAMPLE_JSON], ids=["sexp", "json"])
def example_result(request):
    return check(load_facts(request.param).build())


class TestNoAllocationExample:

    def test_flagged_methods(self, example_result):
        flagged = [v.method_id for v in example_result.violations]
        assert flagged == [
            f"{CLS}.directlyAllocatingMethod()",
            f"{CLS}.indirectlyAllocatingMethod()",
        ]
        assert all(v.kind is ViolationKind.ALLOCATES
                   for v in example_result.violations)

    def test_witnesses(self, example_result):
        direct, indirect = example_result.violations
        assert direct.witness == (f"{CLS}.directlyAllocatingMethod()",)
        assert indirect.witness == (
            f"{CLS}.indirectlyAllocatingMethod()",
            f"{CLS}.allocates()",
        )
        assert str(direct.location) == "NoAllocationExample.java:18"
        assert str(indirect.location) == "NoAllocationExample.java:22"

    def test_verdicts(self, example_result):
        verdicts = example_result.verdicts
        assert verdicts[f"{CLS}.notAllocatingMethod()"] == ALLOCATION_FREE
        assert verdicts[f"{CLS}.doesNotAllocate()"] == ALLOCATION_FREE
        # allocating without the contract is fine
        assert isinstance(verdicts[f"{CLS}.allocatingIsFine()"], Allocates)

    def test_cli(self, capsys, monkeypatch):
        monkeypatch.delenv("NOALLOC_UNRESOLVED_POLICY", raising=False)
        assert main(["check", str(EXAMPLE_SEXP)]) == EXIT_VIOLATIONS
        out = capsys.readouterr().out
        assert out.count("[noAllocationViolation]") == 2
        assert out.rstrip().endswith("2 violation(s): 2 allocating, 0 unverifiable")


class TestPackage:

    def test_reexports(self):
        for name in ("CallGraphBuilder", "ReachabilityAnalyzer", "check",
                     "UnresolvedCallPolicy", "FactParseError"):
            assert name in noalloc_check.__all__
            assert hasattr(noalloc_check, name)

    def test_list_submodules(self):
        assert "reachability" in noalloc_check.list_submodules()
