#!/usr/bin/env python3
"""
Developer checks for the transcription engine.

By default ruff, isort and black fix what they can. ``--check`` only
reports, and ``--tests`` also runs the unit test suite afterwards.
"""

import argparse
import subprocess
import sys
from pathlib import Path

TARGETS = ["transcription_engine", "tests", "main.py", "lint.py"]


def run_step(command: list[str], description: str) -> bool:
    """Run one tool and report whether it exited cleanly."""
    print(f"\n{'=' * 80}")
    print(f"{description}: {' '.join(command)}")
    print(f"{'=' * 80}\n")

    result = subprocess.run(command, cwd=Path(__file__).parent)
    passed = result.returncode == 0
    print(f"\n{'✅' if passed else '❌'} {description}\n")
    return passed


def build_steps(check_only: bool, with_tests: bool) -> list[tuple[list[str], str]]:
    if check_only:
        steps = [
            (["ruff", "check", *TARGETS], "Ruff lint"),
            (["isort", "--check-only", *TARGETS], "isort check"),
            (["black", "--check", *TARGETS], "Black check"),
        ]
    else:
        steps = [
            (["ruff", "check", "--fix", *TARGETS], "Ruff auto-fix"),
            (["isort", *TARGETS], "isort"),
            (["black", *TARGETS], "Black"),
        ]

    if with_tests:
        steps.append(([sys.executable, "-m", "pytest", "-m", "unit", "-q"], "Unit tests"))
    return steps


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--check", action="store_true", help="report only, modify nothing")
    parser.add_argument("--tests", action="store_true", help="run the unit tests as well")
    args = parser.parse_args()

    steps = build_steps(args.check, args.tests)
    results = [run_step(command, description) for command, description in steps]

    print(f"\n{'=' * 80}\nSUMMARY\n{'=' * 80}")
    for (_, description), passed in zip(steps, results):
        print(f"{'PASSED' if passed else 'FAILED'}: {description}")

    if all(results):
        return 0

    if args.check:
        print("\nSome checks failed. Run 'python lint.py' without --check to auto-fix.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
