#!/usr/bin/env python3
# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Run all CI checks locally: format, lint, type check, tests, build and a generation smoke test."""

import pathlib
import subprocess
import sys
import time

from yachalk import chalk

# ###############
# Public Interface
# ###############

STEPS: list[tuple[str, list[str]]] = [
    ("Format check", ["uv", "run", "ruff", "format", "--check", "src/", "tests/"]),
    ("Lint", ["uv", "run", "ruff", "check", "src/", "tests/"]),
    ("Type check", ["uv", "run", "ty", "check", "src/"]),
    ("Tests", ["uv", "run", "pytest", "--cov=cddlgen", "--cov-report=term-missing"]),
    ("Build", ["uv", "build"]),
    ("Generate", ["uv", "run", "cddlgen", "check", "tests/data/example.cddl"]),
]


def main(argv: list[str] | None = None) -> int:
    """Run the CI steps named in ``argv`` (all when empty) and report results."""
    selected = set(argv if argv is not None else sys.argv[1:])
    unknown = selected - {name.lower() for name, _ in STEPS}
    if unknown:
        print(chalk.red(f"Unknown step(s): {', '.join(sorted(unknown))}"))
        return 2

    results: list[tuple[str, bool, float]] = []
    for name, cmd in STEPS:
        if selected and name.lower() not in selected:
            continue
        sep = chalk.blue("=" * 60)
        print(f"\n{sep}")
        print(chalk.blue(name))
        print(sep)
        start = time.monotonic()
        proc = subprocess.run(cmd, cwd=_repo_root())
        elapsed = time.monotonic() - start
        results.append((name, proc.returncode == 0, elapsed))

    sep = "=" * 60
    print(f"\n{chalk.blue(sep)}")
    print(chalk.blue("  Summary"))
    print(chalk.blue(sep))
    failed = [name for name, passed, _ in results if not passed]
    for name, passed, elapsed in results:
        colour = chalk.green if passed else chalk.red
        print(colour(f"  {'PASS' if passed else 'FAIL'}  {name} ({elapsed:.1f}s)"))

    print()
    return 1 if failed else 0


# ################
# Implementation
# ################


def _repo_root() -> str:
    return str(pathlib.Path(__file__).parent.parent)


if __name__ == "__main__":
    sys.exit(main())
