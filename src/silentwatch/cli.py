"""
Command-line interface for SilentWatch.

Subcommands:
    scan      Observe a running application and emit a verdict
    validate  Check an expectation file without launching a browser

Exit codes for ``scan``: 0 SUCCESS, 1 FINDINGS, 2 INCOMPLETE,
3 usage or configuration error.
"""

import argparse
import dataclasses
import logging
import os
import sys
from typing import Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .artifacts import write_scan_artifacts
from .config import get_budget_config, get_retry_config, get_truth_config, load_config
from .errors import ConfigError, ExpectationError
from .expectations import load_expectations
from .logging_config import configure_logging
from .models import Strength
from .observe.retry import RetryPolicy
from .observe.scan import ScanContext, ScanCoordinator

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FINDINGS = 1
EXIT_INCOMPLETE = 2
EXIT_USAGE = 3

EXIT_CODES = {
    "SUCCESS": EXIT_SUCCESS,
    "FINDINGS": EXIT_FINDINGS,
    "INCOMPLETE": EXIT_INCOMPLETE,
}

VIEWPORT = {"width": 1280, "height": 800}


def cmd_scan(args: argparse.Namespace) -> int:
    """Run one scan against ``args.url``."""
    try:
        config = load_config(args.config)
        budget = get_budget_config(config)
        if args.max_interactions is not None:
            budget = dataclasses.replace(budget, max_total_interactions=args.max_interactions)
        threshold = get_truth_config(config)["coverage_threshold"]
        if args.threshold is not None:
            if not 0.0 <= args.threshold <= 1.0:
                raise ConfigError(f"--threshold must be within [0, 1], got {args.threshold}")
            threshold = args.threshold
        retry_config = get_retry_config(config)
        expectations = load_expectations(args.expectations) if args.expectations else []
    except (ConfigError, ExpectationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    proven = sum(1 for e in expectations if e.strength == Strength.PROVEN)
    print(f"Scanning {args.url} with {len(expectations)} expectation(s) ({proven} proven)")

    context = ScanContext(
        budget=budget,
        base_url=args.url,
        retry=RetryPolicy(max_retries=retry_config["max_retries"]),
        screenshots_dir=os.path.join(args.out, "screenshots"),
        coverage_threshold=threshold,
    )

    try:
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=True)
            try:
                browser_context = browser.new_context(viewport=VIEWPORT)
                page = browser_context.new_page()
                result = ScanCoordinator(context, expectations).run(page)
            finally:
                browser.close()
    except PlaywrightError as e:
        logger.error(f"Browser failed to start: {e}")
        print(f"Error: browser failed to start: {e}", file=sys.stderr)
        return EXIT_INCOMPLETE

    paths = write_scan_artifacts(result, args.out, args.url, expectations_path=args.expectations)

    truth = result.truth
    coverage = truth["coverage_summary"]
    print(f"\nVerdict: {truth['truth_state']} (confidence {truth['confidence']}, {truth['reason']})")
    print(f"  {truth['what_this_means']}")
    print(f"  Coverage: {coverage['attempted']}/{coverage['expectations_total']} "
          f"({coverage['coverage_ratio']:.0%}, threshold {coverage['threshold']:.0%})")
    print(f"  Interactions executed: {result.coverage['interactions_executed']}")
    print(f"  Findings: {len(result.findings)}")

    if args.verbose:
        for finding in result.findings:
            print(f"    [{finding.level} {finding.score}] {finding.type}: "
                  f"{finding.expectation_id} ({finding.reason})")
        for warning in result.warnings:
            print(f"    warning {warning['code']}: {warning['message']}")

    print(f"  Next: {truth['recommended_action']}")
    print(f"\nArtifacts: {paths['summary']}")

    return EXIT_CODES[truth["truth_state"]]


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate an expectation file."""
    try:
        expectations = load_expectations(args.file)
    except ExpectationError as e:
        print(f"Validation failed: {e}", file=sys.stderr)
        return EXIT_USAGE

    proven = [e for e in expectations if e.strength == Strength.PROVEN]
    print(f"Expectations valid: {args.file}")
    print(f"  Total: {len(expectations)}")
    print(f"  Proven: {len(proven)}")
    print(f"  Observed: {len(expectations) - len(proven)}")

    if args.verbose:
        for e in expectations:
            print(f"  {e.id}: {e.type.value} -> {e.target} [{e.source or 'no source'}]")

    return EXIT_SUCCESS


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="silentwatch",
        description="SilentWatch - detect interactions that silently fail"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Scan a running application")
    scan_parser.add_argument("url", help="Start URL")
    scan_parser.add_argument("--expectations", "-e", help="Expectation file (JSON)")
    scan_parser.add_argument("--config", "-c", help="Config file (default: config/silentwatch.yaml)")
    scan_parser.add_argument("--out", "-o", default="silentwatch-out", help="Artifact directory")
    scan_parser.add_argument("--max-interactions", type=int, help="Override budget.max_total_interactions")
    scan_parser.add_argument("--threshold", type=float, help="Override truth.coverage_threshold")
    scan_parser.add_argument("-v", "--verbose", action="store_true", dest="verbose", default=argparse.SUPPRESS,
                             help="Verbose output")
    scan_parser.set_defaults(func=cmd_scan)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate an expectation file")
    validate_parser.add_argument("file", help="Expectation file (JSON)")
    validate_parser.set_defaults(func=cmd_validate)

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_SUCCESS

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    configure_logging(logging.DEBUG if args.verbose else logging.INFO,
                      artifact_dir=getattr(args, "out", None))
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
