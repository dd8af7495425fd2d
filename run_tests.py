#!/usr/bin/env python3
"""
RELAY Chat - Single-Command Test Runner
=======================================
Run:  python run_tests.py
      python run_tests.py --quick      (unit tests only, skip REST/WebSocket)
      python run_tests.py --verbose    (verbose output)
"""

import os
import subprocess
import sys

ROOT_DIR = os.path.dirname(os.path.abspath(__file__))


def main():
    args = sys.argv[1:]
    quick = "--quick" in args
    verbose = "--verbose" in args or "-v" in args

    cmd = [sys.executable, "-m", "pytest"]

    test_files = [
        "tests/test_channels.py",
        "tests/test_store.py",
        "tests/test_presence.py",
        "tests/test_session.py",
        "tests/test_router.py",
        "tests/test_scheduler_jobs.py",
    ]
    if not quick:
        test_files.append("tests/test_api.py")

    cmd.extend(test_files)
    cmd.append("-v" if verbose else "-q")
    cmd.append("--tb=short")

    print(f"[RELAY] Running: {' '.join(cmd)}")
    print(f"[RELAY] {'Quick mode (unit only)' if quick else 'Full suite (unit + API)'}")
    print()

    result = subprocess.run(cmd, cwd=ROOT_DIR)
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
