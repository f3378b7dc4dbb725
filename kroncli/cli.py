"""Command line entry point: kroncli backup | check | types"""

import sys
import json
import argparse
from typing import List, Optional

from kroncli import __version__, configure_logging
from kroncli.config import get_config, load_config_file
from kroncli.backup import BackupContext, BackupOrchestrator, run_backup, supported_types
from kroncli.backup.errors import BackupError, ConfigError, RunFailedError

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser(defaults) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='kroncli', description='A database backup utility')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--config', default=defaults.CONFIG_PATH, help='Path to the TOML or JSON config file')
    parser.add_argument('--log-level', default=None, help='DEBUG, INFO, WARNING or ERROR')
    parser.add_argument('--log-dir', default=None, help='Directory for the rotating log file')

    subparsers = parser.add_subparsers(dest='command', required=True)

    backup = subparsers.add_parser('backup', help='Perform a single backup run')
    backup.add_argument('--output', help='Directory the archive is written to (overrides storage.path)')
    backup.add_argument('--parallel', action='store_true', default=None, help='Back up backends concurrently')
    backup.add_argument('--keep-staging', action='store_true', default=None, help='Keep the staging directory')
    backup.add_argument('--json', action='store_true', help='Print the run report as JSON')

    subparsers.add_parser('check', help='Validate config and test every backend connection')
    subparsers.add_parser('types', help='List supported database types')

    return parser


def print_results(results, stream=None):
    stream = stream or sys.stdout
    print(f"{'BACKEND':<10} {'STATUS':<8} {'BYTES':>12} {'SECONDS':>8}  REASON", file=stream)
    for result in results:
        print(
            f"{result.backend:<10} {result.status.value:<8} {result.bytes_written:>12} "
            f"{result.elapsed_seconds:>8.1f}  {result.reason}",
            file=stream
        )


def handle_backup(args, run_config) -> int:
    if args.output:
        run_config.output_dir = args.output
    if args.parallel is not None:
        run_config.parallel = args.parallel
    if args.keep_staging is not None:
        run_config.keep_staging = args.keep_staging

    try:
        report = run_backup(run_config)
    except RunFailedError as e:
        print_results(e.results, sys.stderr)
        print(f"\nBackup failed: {e.message}", file=sys.stderr)
        if e.cause is not None:
            print(f"  cause: {e.cause}", file=sys.stderr)
        return EXIT_RUN_FAILED

    if args.json:
        print(json.dumps(report.as_dict(), indent=2))
    else:
        print_results(report.results)
        print(f"\nArchive: {report.archive.path}")
        if report.remote_key:
            print(f"Uploaded: {report.remote_key}")

    if report.upload_error:
        print(f"Upload failed: {report.upload_error}", file=sys.stderr)
        return EXIT_RUN_FAILED
    return EXIT_OK


def handle_check(run_config) -> int:
    orchestrator = BackupOrchestrator(
        run_config.backends,
        output_dir=run_config.output_dir,
        context=BackupContext(timeout=run_config.timeout)
    )
    statuses = orchestrator.check()
    for type_id, status in statuses:
        print(f"{type_id:<10} {status.state.value:<12} {status.detail}")
    return EXIT_OK if all(status.is_connected for _, status in statuses) else EXIT_RUN_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    try:
        defaults = get_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    args = build_parser(defaults).parse_args(argv)

    if args.command == 'types':
        for type_id in supported_types():
            print(type_id)
        return EXIT_OK

    configure_logging(defaults, log_dir=args.log_dir, level=args.log_level)

    try:
        run_config = load_config_file(args.config, defaults)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == 'check':
            return handle_check(run_config)
        return handle_backup(args, run_config)
    except BackupError as e:
        # Raised before the run starts, e.g. S3 client setup
        print(f"Error: [{e.kind}] {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == '__main__':
    sys.exit(main())
