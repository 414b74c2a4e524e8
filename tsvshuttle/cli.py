# tsvshuttle/cli.py

import argparse
import importlib.metadata
import importlib.util
import logging
import shutil
import sys
from datetime import datetime
from typing import List, Optional

from . import config
from .config import ConfigManager
from .database import DRIVERS
from .job import Direction, TransferJob
from .logging_utils import cleanup_old_logs, errors_logged, setup_logging
from .runner import BatchRunner, PrecheckError, Services

logger = logging.getLogger(__name__)

REQUIRED_PACKAGES = ('PyYAML', 'cryptography', 'keyring', 'azure-identity', 'azure-storage-blob', 'pyodbc')
EXTERNAL_TOOLS = ('bcp', 'az')


def _delimiter(value: str) -> str:
    """Accept a literal ``\\t`` for TAB, the way it is usually typed in a shell."""
    return {'\\t': '\t', 'tab': '\t', 'TAB': '\t'}.get(value, value)


def _installed_version(package: str) -> Optional[str]:
    try:
        return importlib.metadata.version(package)
    except importlib.metadata.PackageNotFoundError:
        return None


def checkup():
    """Check packages, external tools and configuration."""
    print(f"{'Package':<20} {'Status':<8} {'Version'}")
    print("-" * 40)
    for package in REQUIRED_PACKAGES:
        version = _installed_version(package)
        print(f"{package:<20} {'✓' if version else '✗':<8} {version or '-'}")

    print(f"\n{'Tool':<20} {'Status':<8} {'Path'}")
    print("-" * 40)
    for tool in EXTERNAL_TOOLS:
        path = shutil.which(tool)
        print(f"{tool:<20} {'✓' if path else '✗':<8} {path or '-'}")

    if importlib.util.find_spec('pyodbc') is not None:
        import pyodbc
        odbc_drivers = pyodbc.drivers()
    else:
        odbc_drivers = []

    print("\nDB Drivers           Priority* Status   Version")
    print("-" * 56)
    for name, info in sorted(DRIVERS.items(), key=lambda item: item[1]['priority']):
        module_name = info.get('module', name)
        status = "✓" if importlib.util.find_spec(module_name) else "✗"
        version = _installed_version(module_name) or '--'
        odbc_driver_name = info.get('odbc_driver_name')
        if odbc_driver_name:
            note = f"({'✓' if odbc_driver_name in odbc_drivers else '✗'} {odbc_driver_name})"
        else:
            note = ''
        print(f"  {name:<18} {info['priority']:<9} {status:<8} {version} {note}")
    print("\n* Lower priority = preferred")

    print("\nConfig Health")
    print("-" * 40)
    for status, msg in config.diagnose_config():
        print(f"{status} {msg}")


def _add_job_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--schema', required=True, help='Database schema of the tables')
    parser.add_argument('--tables', required=True, help='Comma separated list of tables')
    parser.add_argument('--container', required=True, help='Blob storage container')
    parser.add_argument('--path', required=True, help='Blob path prefix inside the container')
    parser.add_argument('--delimiter', type=_delimiter, default=None,
                        help='Field delimiter (default: TAB)')
    parser.add_argument('--dry-run', action='store_true', help='Log what would be done without doing it')
    parser.add_argument('--config', help='Config file path')
    parser.add_argument('--work-dir', help='Directory for staged files')
    parser.add_argument('--log-dir', help='Directory for the run log')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level')
    parser.add_argument('--login-timeout', type=int, help='Seconds to wait for an Azure device code login')
    parser.add_argument('--discard-failed', action='store_true',
                        help='Remove the local files of tables that failed')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='tsvshuttle',
                                     description='Move SQL Server tables to and from Azure Blob Storage as TSV files')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # export
    export_parser = subparsers.add_parser('export', help='Export tables to blob storage')
    _add_job_arguments(export_parser)
    export_parser.add_argument('--compress', action='store_true', help='gzip files before upload')
    export_parser.add_argument('--generate-ddl', action='store_true',
                               help='Also upload a CREATE TABLE script for each table')
    export_parser.add_argument('--overwrite', action='store_true', help='Overwrite existing blobs')

    # import
    import_parser = subparsers.add_parser('import', help='Import tables from blob storage')
    _add_job_arguments(import_parser)
    import_parser.add_argument('--compressed', dest='compress', action='store_true',
                               help='Files in blob storage are gzipped')
    import_parser.add_argument('--check-data', action='store_true',
                               help='Report empty lines and the table structure before loading')

    # checkup
    subparsers.add_parser('checkup', help='Check for dependencies and configuration issues')

    # generate-key
    subparsers.add_parser('generate-key', help='Generate encryption key')

    # store-key
    key_parser = subparsers.add_parser('store-key',
                                       help='Store encryption key in system keyring (generate if not provided)')
    key_parser.add_argument('key', nargs='?', default=None,
                            help='Encryption key to store. If omitted, a new key is generated and stored.')
    key_parser.add_argument('--force', action='store_true',
                            help='Overwrite existing encryption key in system keyring')

    # encrypt-config
    encrypt_parser = subparsers.add_parser('encrypt-config', help='Encrypt passwords in config file')
    encrypt_parser.add_argument('config_file', nargs='?', help='Config file path')

    # encrypt-password
    pwd_parser = subparsers.add_parser('encrypt-password', help='Encrypt a password')
    pwd_parser.add_argument('password', nargs='?', help='Password to encrypt')

    return parser


def run_job(args: argparse.Namespace) -> int:
    """Run an export or import. Returns the process exit status."""
    started = datetime.now()
    try:
        cfg = ConfigManager(args.config)
        if args.login_timeout is not None:
            cfg.settings['login']['timeout'] = args.login_timeout
        job = TransferJob(
            direction=args.command,
            schema=args.schema,
            tables=args.tables,
            container=args.container,
            path=args.path,
            delimiter=args.delimiter or cfg.get_setting('default_delimiter'),
            compress=args.compress,
            generate_ddl=getattr(args, 'generate_ddl', False),
            overwrite=getattr(args, 'overwrite', False),
            dry_run=args.dry_run,
            check_data=getattr(args, 'check_data', False),
            work_dir=args.work_dir or cfg.get_setting('work_dir'),
            retain_on_failure=False if args.discard_failed else cfg.get_setting('retain_on_failure'),
        )
        services = Services.from_config(cfg, job.direction)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging_config = cfg.settings['logging']
    setup_logging(job.direction, started=started, log_dir=args.log_dir, level=args.log_level,
                  logging_config=logging_config)
    cleanup_old_logs(args.log_dir, dry_run=job.dry_run, logging_config=logging_config)

    try:
        outcome = BatchRunner(job, services).run()
    except PrecheckError as e:
        logger.error(f"Aborting {job.direction}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.error(f"{job.direction.capitalize()} interrupted")
        return 1

    error_log = errors_logged()
    if error_log:
        print(f"Errors were logged. See {error_log}", file=sys.stderr)
    return 0 if outcome.succeeded else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in Direction.values():
        return run_job(args)

    try:
        if args.command == 'checkup':
            checkup()
        elif args.command == 'generate-key':
            config.generate_encryption_key()
        elif args.command == 'store-key':
            config.store_key(args.key, force=args.force)
        elif args.command == 'encrypt-config':
            config.encrypt_config_file(args.config_file)
        elif args.command == 'encrypt-password':
            config.encrypt_password(args.password)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
