#!/usr/bin/env python3
"""
noalloc_check/__main__.py
=========================

Command-line entry point.

Usage
-----
    noalloc-check [-v|-q] <command> [options] <facts-file>
    python -m noalloc_check [-v|-q] <command> [options] <facts-file>

Commands
--------
    check       Analyze and report no-allocation contract violations
    verdicts    Print the verdict of every method
    graph       Print call-graph statistics, or DOT with ``--dot``

Exit status
-----------
    0   no violations
    1   at least one violation (``check`` only)
    2   malformed input: unreadable file, bad facts, dangling edge,
        unclassifiable call site
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from noalloc_check import __version__
from noalloc_check.callgraph import CallGraph, callgraph_summary
from noalloc_check.config import AnalysisOptions, UnresolvedCallPolicy
from noalloc_check.errors import NoAllocError
from noalloc_check.facts import load_facts
from noalloc_check.formatting import (
    format_dot,
    format_json,
    format_text,
    format_verdicts,
)
from noalloc_check.violations import check

logger = logging.getLogger("noalloc_check")

EXIT_OK = 0
EXIT_VIOLATIONS = 1
EXIT_BAD_INPUT = 2


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _configure_logging(verbosity: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_graph(path: str) -> Optional[CallGraph]:
    """Load and build the graph, reporting failures on stderr."""
    try:
        return load_facts(path).build()
    except OSError as e:
        sys.stderr.write(f"error: cannot read {path}: {e.strerror or e}\n")
    except NoAllocError as e:
        sys.stderr.write(f"error: {e}\n")
    return None


def _options(args: argparse.Namespace) -> AnalysisOptions:
    policy = (UnresolvedCallPolicy.from_string(args.policy)
              if getattr(args, "policy", None) else None)
    report = False if getattr(args, "no_unverifiable", False) else None
    return AnalysisOptions.from_env(policy=policy, report_unverifiable=report)


def _write(text: str, output: Optional[str]) -> bool:
    """Write the report, reporting an unwritable *output* on stderr."""
    if output in (None, "-"):
        sys.stdout.write(text + "\n")
        return True
    try:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
    except OSError as e:
        sys.stderr.write(f"error: cannot write {output}: {e.strerror or e}\n")
        return False
    logger.info("Wrote %s", output)
    return True


# ═══════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════

def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    graph = _load_graph(args.facts)
    if graph is None:
        return EXIT_BAD_INPUT

    result = check(graph, _options(args))
    if args.format == "json":
        text = format_json(result, include_verdicts=args.verdicts)
    else:
        text = format_text(result, show_witness=not args.no_witness)
    if not _write(text, args.output):
        return EXIT_BAD_INPUT
    return EXIT_OK if result.ok else EXIT_VIOLATIONS


def cmd_verdicts(args: argparse.Namespace) -> int:
    """Handle the 'verdicts' command."""
    graph = _load_graph(args.facts)
    if graph is None:
        return EXIT_BAD_INPUT
    result = check(graph, _options(args))
    if not _write(format_verdicts(result.verdicts), args.output):
        return EXIT_BAD_INPUT
    return EXIT_OK


def cmd_graph(args: argparse.Namespace) -> int:
    """Handle the 'graph' command."""
    graph = _load_graph(args.facts)
    if graph is None:
        return EXIT_BAD_INPUT
    if args.dot:
        result = check(graph, _options(args)) if args.highlight else None
        text = format_dot(graph, result)
    else:
        text = callgraph_summary(graph)
    if not _write(text, args.output):
        return EXIT_BAD_INPUT
    return EXIT_OK


# ═══════════════════════════════════════════════════════════════════════════
# ARGUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════

def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("facts", help="fact file (.sexp/.facts or .json)")
    p.add_argument("-o", "--output", metavar="FILE",
                   help="write to FILE instead of stdout")
    p.add_argument(
        "--policy",
        choices=[m.value for m in UnresolvedCallPolicy],
        help="treatment of unresolved calls "
             "(default: $NOALLOC_UNRESOLVED_POLICY or conservative)",
    )
    p.add_argument("--no-unverifiable", action="store_true",
                   help="do not report methods whose verdict is unknown")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="noalloc-check",
        description="Check no-allocation contracts over a call graph.",
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="more logging (repeatable)")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="only log errors")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    p_check = subparsers.add_parser("check", help="report contract violations")
    _add_common(p_check)
    p_check.add_argument("--format", choices=("text", "json"), default="text")
    p_check.add_argument("--verdicts", action="store_true",
                         help="include every method's verdict (json only)")
    p_check.add_argument("--no-witness", action="store_true",
                         help="omit witness paths from text output")
    p_check.set_defaults(func=cmd_check)

    p_verdicts = subparsers.add_parser("verdicts", help="print every verdict")
    _add_common(p_verdicts)
    p_verdicts.set_defaults(func=cmd_verdicts)

    p_graph = subparsers.add_parser("graph", help="print the call graph")
    _add_common(p_graph)
    p_graph.add_argument("--dot", action="store_true", help="emit Graphviz DOT")
    p_graph.add_argument("--highlight", action="store_true",
                         help="with --dot, highlight violation witnesses")
    p_graph.set_defaults(func=cmd_graph)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point.

    Returns
    -------
    int
        Exit status (see module docstring).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    _configure_logging(args.verbose, args.quiet)
    try:
        return args.func(args)
    except ValueError as e:
        # Invalid NOALLOC_* environment values
        sys.stderr.write(f"error: {e}\n")
        return EXIT_BAD_INPUT
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        return 130
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
