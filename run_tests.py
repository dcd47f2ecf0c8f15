#!/usr/bin/env python3
"""
Test runner for the Outreach Sequence API.

    python run_tests.py                  # everything
    python run_tests.py --suite unit     # engine, models, utils
    python run_tests.py --suite api      # HTTP endpoints and webhooks
    python run_tests.py -k reply --coverage
"""

import sys
import subprocess
import argparse
import os

# Suite name -> pytest marker expression
SUITES = {
    'all': None,
    'unit': 'unit',
    'api': 'integration',
}


def build_command(args):
    cmd = [sys.executable, '-m', 'pytest']

    if args.verbose:
        cmd.append('-v')
    if SUITES[args.suite]:
        cmd.extend(['-m', SUITES[args.suite]])
    if args.keyword:
        cmd.extend(['-k', args.keyword])
    if args.coverage:
        cmd.extend([
            '--cov=src',
            '--cov-report=html',
            '--cov-report=term-missing',
            f'--cov-fail-under={args.min_coverage}'
        ])
    return cmd


def main():
    parser = argparse.ArgumentParser(description='Run tests for the Outreach Sequence API')
    parser.add_argument('--suite', choices=sorted(SUITES), default='all', help='Which tests to run')
    parser.add_argument('-k', dest='keyword', help='Only run tests matching this pytest expression')
    parser.add_argument('--coverage', action='store_true', help='Collect coverage for src/')
    parser.add_argument('--min-coverage', type=int, default=80, help='Fail below this coverage percentage')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    args = parser.parse_args()

    # The suite always runs against the testing config and in-memory SQLite
    os.environ['FLASK_ENV'] = 'testing'
    os.environ['DATABASE_URL'] = 'sqlite:///:memory:'

    cmd = build_command(args)
    print(f"Running {args.suite} tests: {' '.join(cmd)}")

    returncode = subprocess.call(cmd)
    if returncode != 0:
        print(f"\nTests failed with exit code {returncode}")
        sys.exit(returncode)

    print("\nAll tests passed!")
    if args.coverage:
        print("Coverage report generated in htmlcov/index.html")


if __name__ == '__main__':
    main()
