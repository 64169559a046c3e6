# tests/test_config.py
"""
Tests for analysis options and the unresolved-call policy.
"""

import pytest

from noalloc_check.config import (
    POLICY_ENV_VAR,
    REPORT_UNVERIFIABLE_ENV_VAR,
    AnalysisOptions,
    UnresolvedCallPolicy,
)


class TestUnresolvedCallPolicy:

    @pytest.mark.parametrize("name, expected", [
        ("optimistic", UnresolvedCallPolicy.OPTIMISTIC),
        ("Conservative", UnresolvedCallPolicy.CONSERVATIVE),
        ("  PESSIMISTIC ", UnresolvedCallPolicy.PESSIMISTIC),
    ])
    def test_from_string(self, name, expected):
        assert UnresolvedCallPolicy.from_string(name) is expected

    def test_from_string_unknown(self):
        with pytest.raises(ValueError, match="expected one of"):
            UnresolvedCallPolicy.from_string("paranoid")


class TestAnalysisOptions:

    def test_defaults(self):
        opts = AnalysisOptions()
        assert opts.policy is UnresolvedCallPolicy.CONSERVATIVE
        assert opts.report_unverifiable is True

    def test_frozen(self):
        with pytest.raises(AttributeError):
            AnalysisOptions().policy = UnresolvedCallPolicy.OPTIMISTIC

    def test_from_empty_env(self):
        assert AnalysisOptions.from_env({}) == AnalysisOptions()

    def test_policy_from_env(self):
        opts = AnalysisOptions.from_env({POLICY_ENV_VAR: "pessimistic"})
        assert opts.policy is UnresolvedCallPolicy.PESSIMISTIC

    @pytest.mark.parametrize("raw, expected", [
        ("0", False), ("false", False), ("No", False), ("off", False),
        ("1", True), ("yes", True),
    ])
    def test_report_unverifiable_from_env(self, raw, expected):
        opts = AnalysisOptions.from_env({REPORT_UNVERIFIABLE_ENV_VAR: raw})
        assert opts.report_unverifiable is expected

    def test_invalid_env_policy(self):
        with pytest.raises(ValueError):
            AnalysisOptions.from_env({POLICY_ENV_VAR: "sometimes"})

    def test_overrides_beat_env(self):
        opts = AnalysisOptions.from_env(
            {POLICY_ENV_VAR: "pessimistic"},
            policy=UnresolvedCallPolicy.OPTIMISTIC,
            report_unverifiable=None,
        )
        assert opts.policy is UnresolvedCallPolicy.OPTIMISTIC
        assert opts.report_unverifiable is True

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv(POLICY_ENV_VAR, "optimistic")
        assert AnalysisOptions.from_env().policy is UnresolvedCallPolicy.OPTIMISTIC
