#!/usr/bin/env python3
"""CLI entry point for tf-driver.

Supports per-root invocations and tree-wide tasks:
- Per-root: ./run.sh dev data plan
- Tree: ./run.sh validate-all

Tree commands:
- validate-all: Init (no backend) and validate every root
- fmt: Format the whole tree (--check for CI)
- docs: Regenerate module READMEs with terraform-docs
- clean: Remove .terraform directories and plan files
- roots: List root configurations
- preflight: Check tooling, config and roots
- comment: Post a run report to the current pull request
"""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

from actions import CleanAction, DocsAction, FormatTreeAction, ValidateAllAction
from actions.terraform import ACTIONS
from config import ENVIRONMENTS, LAYERS, ConfigError, get_tree_root, list_roots
from reporting import GitHubError, RunReport, post_pr_comment, pr_number_from_event
from validation import format_preflight_results, run_preflight_checks, validate_readiness
from wrapper import EXIT_USAGE, UsageError, build_action, parse_invocation, run_invocation

# Tree-wide commands
TREE_COMMANDS = {
    "validate-all": "Init (no backend) and validate every root",
    "fmt": "Format all Terraform files (--check to only report)",
    "docs": "Regenerate module READMEs with terraform-docs",
    "clean": "Remove .terraform directories and saved plans",
    "roots": "List root configurations",
    "preflight": "Check tooling, configuration and roots",
    "comment": "Post a run report to the current pull request",
}

# Actions that prompt before running
CONFIRM_ACTIONS = ('destroy',)

# Options that only mean something to one action
ACTION_OPTIONS = {
    'reconfigure': ('--reconfigure', 'init'),
    'check': ('--check', 'format'),
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version():
    """Get version from git tags (do not use hardcoded VERSION constant)."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def print_usage():
    """Print top-level usage."""
    print(f"tf-driver {get_version()}")
    print()
    print("Usage: ./run.sh <environment> <layer> <action> [options]")
    print("       ./run.sh <command> [options]")
    print()
    print(f"Environments: {', '.join(ENVIRONMENTS)}")
    print(f"Layers:       {', '.join(LAYERS)}  (apply in this order)")
    print(f"Actions:      {', '.join(ACTIONS)}")
    print()
    print("Commands:")
    for command, desc in TREE_COMMANDS.items():
        print(f"  {command:<14} {desc}")
    print()
    print("Examples:")
    print("  ./run.sh dev data plan")
    print("  ./run.sh prod app apply --auto-approve")
    print("  ./run.sh stage platform drift-check")
    print("  ./run.sh validate-all")


def _invocation_parser() -> argparse.ArgumentParser:
    """Build argument parser for <environment> <layer> <action>."""
    parser = argparse.ArgumentParser(
        prog='run.sh',
        description='Run terraform against one environment/layer root',
    )
    parser.add_argument('environment', help=f'One of: {", ".join(ENVIRONMENTS)}')
    parser.add_argument('layer', help=f'One of: {", ".join(LAYERS)}')
    parser.add_argument('action', help=f'One of: {", ".join(ACTIONS)}')
    parser.add_argument(
        '--version',
        action='version',
        version=f'tf-driver {get_version()}'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)'
    )
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        help='Write JSON and markdown run reports to this directory'
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt for destroy'
    )
    parser.add_argument(
        '--auto-approve',
        action='store_true',
        help='Pass -auto-approve to apply/destroy'
    )
    parser.add_argument(
        '--out',
        help='Plan file: written by plan, applied by apply'
    )
    parser.add_argument(
        '--reconfigure',
        action='store_true',
        help='Pass -reconfigure (init only)'
    )
    parser.add_argument(
        '--check',
        action='store_true',
        help='Report unformatted files instead of rewriting (format only)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be executed without running terraform'
    )
    parser.add_argument(
        '--preflight',
        action='store_true',
        help='Run pre-flight checks only'
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight checks'
    )
    return parser


def _print_preflight_errors(errors: list[str]) -> None:
    print("\nPre-flight validation failed:")
    for error in errors:
        for i, line in enumerate(error.split('\n')):
            prefix = "  ✗ " if i == 0 else "    "
            print(f"{prefix}{line}")
    print("\nUse --skip-preflight to bypass these checks")
    print()


def _confirm(invocation) -> bool:
    """Ask on stderr before a destructive action; stdout may carry JSON.

    A closed stdin (e.g. CI without --yes) counts as no.
    """
    print(f"\nWARNING: '{invocation.action}' will remove infrastructure.", file=sys.stderr)
    print(f"Target: {invocation.environment}/{invocation.layer}", file=sys.stderr)
    print("\nThis action cannot be undone.", file=sys.stderr)
    sys.stderr.write("Continue? [y/N] ")
    sys.stderr.flush()
    try:
        response = input()
    except EOFError:
        sys.stderr.write("\n")
        return False
    return response.strip().lower() == 'y'


def run_main(argv: list) -> int:
    """Handle ./run.sh <environment> <layer> <action> [options]."""
    parser = _invocation_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        invocation = parse_invocation(args.environment, args.layer, args.action)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return EXIT_USAGE

    for dest, (flag, only_for) in ACTION_OPTIONS.items():
        if getattr(args, dest) and invocation.action != only_for:
            print(f"Error: {flag} only applies to '{only_for}', not '{invocation.action}'",
                  file=sys.stderr)
            return EXIT_USAGE

    capture = bool(args.json_output or args.report_dir)
    needs_prompt = (invocation.action == 'destroy'
                    or (invocation.action == 'apply' and not args.out))
    if capture and needs_prompt and not args.auto_approve:
        print(f"Error: {invocation.action} with --json-output/--report-dir requires --auto-approve",
              file=sys.stderr)
        return EXIT_USAGE

    try:
        tree_root = get_tree_root()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.preflight or (not args.skip_preflight and not args.dry_run):
        errors = validate_readiness(invocation.environment, invocation.layer, invocation.action, tree_root)
        if errors:
            _print_preflight_errors(errors)
            return 1
        if args.preflight:
            print(f"Pre-flight checks passed for {invocation.label}")
            return 0
        logger.debug("Pre-flight validation passed")

    if invocation.action in CONFIRM_ACTIONS and not args.yes and not args.dry_run:
        if not _confirm(invocation):
            print("Aborted.", file=sys.stderr)
            return 1

    action = build_action(
        invocation,
        tree_root=tree_root,
        capture=capture,
        auto_approve=args.auto_approve,
        plan_file=args.out,
        reconfigure=args.reconfigure,
        check=args.check,
    )
    report = RunReport(
        environment=invocation.environment,
        layer=invocation.layer,
        action=invocation.action,
        report_dir=args.report_dir,
    )

    try:
        rc = run_invocation(invocation, action, report=report,
                            dry_run=args.dry_run, json_output=args.json_output)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.dry_run:
        return rc
    if args.json_output:
        if report.output:
            sys.stderr.write(report.output)
        print(json.dumps(report.to_dict(), indent=2))
    elif capture and report.output:
        sys.stdout.write(report.output)
    return rc


def roots_main(argv: list) -> int:
    """List root configurations and whether they exist."""
    if argv:
        print("Usage: ./run.sh roots")
        return EXIT_USAGE
    try:
        roots = list_roots(get_tree_root())
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for env, layer, path in roots:
        marker = ' ' if path.is_dir() else '!'
        print(f"{marker} {env:<6} {layer:<9} {path}")
    return 0


def tree_main(command: str, argv: list) -> int:
    """Handle validate-all, fmt, docs and clean."""
    parser = argparse.ArgumentParser(prog=f'run.sh {command}', description=TREE_COMMANDS[command])
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    if command == 'fmt':
        parser.add_argument('--check', action='store_true', help='Report unformatted files only')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    try:
        tree_root = get_tree_root()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if command == 'validate-all':
        action = ValidateAllAction(name=command, tree_root=tree_root)
    elif command == 'fmt':
        action = FormatTreeAction(name=command, check=args.check, tree_root=tree_root)
    elif command == 'docs':
        action = DocsAction(name=command, tree_root=tree_root)
    else:
        action = CleanAction(name=command, tree_root=tree_root)

    result = action.run({})
    if result.success:
        logger.info(f"{command}: {result.message}")
    else:
        print(f"Error: {command} failed with exit code {result.exit_code}: {result.message}",
              file=sys.stderr)
    return result.exit_code


def preflight_main(argv: list) -> int:
    """Run standalone preflight checks."""
    if argv:
        print("Usage: ./run.sh preflight")
        return EXIT_USAGE
    try:
        tree_root = get_tree_root()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    success, results = run_preflight_checks(tree_root)
    print(format_preflight_results(results))
    return 0 if success else 1


def comment_main(argv: list) -> int:
    """Post a JSON run report to a pull request as markdown."""
    parser = argparse.ArgumentParser(prog='run.sh comment', description=TREE_COMMANDS['comment'])
    parser.add_argument('--report-file', type=Path, required=True,
                        help='JSON report written with --json-output')
    parser.add_argument('--pr', type=int, help='Pull request number (default: from GITHUB_EVENT_PATH)')
    args = parser.parse_args(argv)

    try:
        with open(args.report_file, encoding="utf-8") as f:
            report = RunReport.from_dict(json.load(f))
    except (OSError, json.JSONDecodeError, KeyError) as e:
        print(f"Error reading report {args.report_file}: {e}", file=sys.stderr)
        return 1

    pr_number = args.pr or pr_number_from_event()
    if not pr_number:
        print("Error: no pull request number (use --pr or run from a pull_request event)",
              file=sys.stderr)
        return 1

    try:
        post_pr_comment(report.to_markdown(), pr_number)
    except GitHubError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[list] = None) -> int:
    """CLI entry point: dispatch to tree commands or a per-root invocation."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        print_usage()
        return 0

    first_arg = argv[0]
    if first_arg in ('-h', '--help'):
        print_usage()
        return 0
    if first_arg == '--version':
        print(f"tf-driver {get_version()}")
        return 0

    if first_arg == 'roots':
        return roots_main(argv[1:])
    if first_arg == 'preflight':
        return preflight_main(argv[1:])
    if first_arg == 'comment':
        return comment_main(argv[1:])
    if first_arg in TREE_COMMANDS:
        return tree_main(first_arg, argv[1:])

    return run_main(argv)


if __name__ == '__main__':
    sys.exit(main())
