"""
noalloc_check.config
====================

Run-wide analysis options.

The only analysis knob is the *unresolved-call policy*, applied uniformly to
every unresolved call site of a run:

``OPTIMISTIC``
    Treat the call as allocation-free.  May miss real violations.
``CONSERVATIVE`` (default)
    Treat the call as ``Unknown``.  Never hides a violation; contracted
    methods that reach it are reported as *unverifiable*.
``PESSIMISTIC``
    Treat the call as an allocation.  Never misses a violation; may flag
    safe code that calls opaque library code.

Environment
-----------
``NOALLOC_UNRESOLVED_POLICY``
    Default policy name for :meth:`AnalysisOptions.from_env`.
``NOALLOC_REPORT_UNVERIFIABLE``
    ``0``/``false``/``no`` to omit unverifiable violations.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Mapping, Optional

__all__ = [
    "UnresolvedCallPolicy",
    "AnalysisOptions",
    "POLICY_ENV_VAR",
    "REPORT_UNVERIFIABLE_ENV_VAR",
]

POLICY_ENV_VAR = "NOALLOC_UNRESOLVED_POLICY"
REPORT_UNVERIFIABLE_ENV_VAR = "NOALLOC_REPORT_UNVERIFIABLE"

_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


class UnresolvedCallPolicy(enum.Enum):
    """How unresolved call sites are treated."""

    OPTIMISTIC   = "optimistic"
    CONSERVATIVE = "conservative"
    PESSIMISTIC  = "pessimistic"

    @classmethod
    def from_string(cls, s: str) -> "UnresolvedCallPolicy":
        """Parse a policy from its name (case-insensitive)."""
        s_low = s.strip().lower()
        for member in cls:
            if member.value == s_low:
                return member
        choices = ", ".join(m.value for m in cls)
        raise ValueError(f"unknown unresolved-call policy {s!r} (expected one of {choices})")


@dataclass(frozen=True)
class AnalysisOptions:
    """Options for one analysis run.

    Attributes
    ----------
    policy : UnresolvedCallPolicy
        Treatment of unresolved calls.
    report_unverifiable : bool
        Whether contracted methods with an ``Unknown`` verdict are reported
        as violations.
    """

    policy: UnresolvedCallPolicy = UnresolvedCallPolicy.CONSERVATIVE
    report_unverifiable: bool = True

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "AnalysisOptions":
        """Build options from environment variables.

        Keyword *overrides* whose value is not ``None`` take precedence over
        the environment.
        """
        env = os.environ if environ is None else environ
        policy = cls.policy
        raw = env.get(POLICY_ENV_VAR)
        if raw:
            policy = UnresolvedCallPolicy.from_string(raw)
        report_unverifiable = cls.report_unverifiable
        raw = env.get(REPORT_UNVERIFIABLE_ENV_VAR)
        if raw:
            report_unverifiable = raw.strip().lower() not in _FALSE_STRINGS

        values = {"policy": policy, "report_unverifiable": report_unverifiable}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
