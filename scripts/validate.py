#!/usr/bin/env python3
"""XML rule check command line tool."""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

import yaml

from batch_runner import BatchError, BatchRunner, validate_file
from classifier import STRATEGIES
from matcher import RuleEvaluator
from rule_set import DEFAULT_RULES_PATH, RuleConfig, RuleConfigError, load_rules


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def load_config(args) -> Optional[RuleConfig]:
    """Load rules for a command, printing the error if they are invalid.

    Args:
        args: Command-line arguments from argparse

    Returns:
        RuleConfig, or None if the rules could not be loaded
    """
    try:
        return load_rules(
            Path(args.rules),
            strategy=getattr(args, 'strategy', None),
            extension=getattr(args, 'extension', None),
        )
    except RuleConfigError as e:
        print(f"[ERROR] Failed to load validation rules: {e}", file=sys.stderr)
        return None


def run(args) -> int:
    """Validate every document in a directory.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 if all files passed, 1 on failed files or errors
    """
    config = load_config(args)
    if config is None:
        return 1

    runner = BatchRunner(config, Path(args.report_dir))

    def request_stop(signum, frame):
        runner.stop()
        print("[WARN] Stop requested, finishing current file", file=sys.stderr)

    previous_handler = signal.signal(signal.SIGINT, request_stop)
    try:
        result = runner.start_directory(Path(args.directory))
    except BatchError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for line in result.logs:
            print(line)
        print("=" * 60)
        print(f"Passed: {result.passed_count}")
        print(f"Failed: {result.failed_count}")
        print(f"Report: {result.report_path}")

    return 0 if result.failed_count == 0 else 1


def check_file(args) -> int:
    """Validate a single document and print its report block.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 if the file passed, 1 otherwise
    """
    config = load_config(args)
    if config is None:
        return 1

    path = Path(args.file)
    if not path.is_file():
        print(f"[ERROR] File not found: {path}", file=sys.stderr)
        return 1

    report = validate_file(path, RuleEvaluator(config))
    print(report.format_block().lstrip("\n"), end="")
    print(f"Verdict: {report.verdict.value.upper()}")
    return 0 if report.is_pass else 1


def check_rules(args) -> int:
    """Load and validate a rules file."""
    config = load_config(args)
    if config is None:
        return 1

    print(f"Rules valid: {args.rules} ({len(config.rule_sets)} rule sets)")
    return 0


def show_rules(args) -> int:
    """Print the effective rules after defaults and overrides."""
    config = load_config(args)
    if config is None:
        return 1

    print(f"=== Effective Validation Rules ===")
    print(f"Rules file: {args.rules}")
    print()
    print(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False), end="")
    return 0


def main() -> int:
    """Main entry point for the validation tool."""
    parser = argparse.ArgumentParser(
        description="Validate XML documents against tag and attribute rules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run ./messages
  %(prog)s run ./messages --strategy structural --json
  %(prog)s check-file ./messages/crew.xml
  %(prog)s show-rules --rules custom-rules.yaml
        """
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        required=True,
        help='Command to run'
    )

    rules_parent = argparse.ArgumentParser(add_help=False)
    rules_parent.add_argument(
        '--rules',
        default=str(DEFAULT_RULES_PATH),
        help='Rules file (default: rules.yaml beside this tool)'
    )

    strategy_parent = argparse.ArgumentParser(add_help=False)
    strategy_parent.add_argument(
        '--strategy',
        choices=STRATEGIES,
        help='Override the static data classification strategy'
    )

    # run subcommand
    parser_run = subparsers.add_parser(
        'run',
        parents=[rules_parent, strategy_parent],
        help='Validate all documents in a directory'
    )
    parser_run.add_argument('directory', help='Directory containing documents')
    parser_run.add_argument(
        '--report-dir',
        default='.',
        help='Directory for the text report (default: current directory)'
    )
    parser_run.add_argument(
        '--extension',
        help='Override the document extension (e.g. .xml)'
    )
    parser_run.add_argument(
        '--json',
        action='store_true',
        help='Print the summary as JSON'
    )

    # check-file subcommand
    parser_check_file = subparsers.add_parser(
        'check-file',
        parents=[rules_parent, strategy_parent],
        help='Validate one document and print its report'
    )
    parser_check_file.add_argument('file', help='Document to validate')

    # check-rules subcommand
    subparsers.add_parser(
        'check-rules',
        parents=[rules_parent],
        help='Validate a rules file'
    )

    # show-rules subcommand
    subparsers.add_parser(
        'show-rules',
        parents=[rules_parent, strategy_parent],
        help='Show effective rules and exit'
    )

    args = parser.parse_args()
    configure_logging(args.verbose)

    handlers: Dict[str, callable] = {
        'run': run,
        'check-file': check_file,
        'check-rules': check_rules,
        'show-rules': show_rules,
    }

    handler = handlers.get(args.command)
    if handler is None:
        print(f"Error: Unknown command '{args.command}'", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
