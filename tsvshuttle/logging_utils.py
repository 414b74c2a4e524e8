# tsvshuttle/logging_utils.py
"""
Run log for export and import jobs.

Every invocation writes one log named after its direction and start time,
``export_20240601_120000.log``. That file is the audit trail of the run:
every step outcome of every table ends up there. ERROR records are also
copied to ``export_20240601_120000_error.log``, which only appears once the
first error is logged.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from .defaults import settings
from .job import Direction

logger = logging.getLogger(__name__)

_current_run: Optional['RunLog'] = None


class ErrorLogHandler(logging.Handler):
    """Count ERROR and CRITICAL records and copy them to an error log opened on the first one."""

    def __init__(self, error_file: Optional[Path] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__(level=logging.ERROR)
        self.error_count = 0
        self.error_file = error_file
        self._file_handler: Optional[logging.FileHandler] = None
        if formatter:
            self.setFormatter(formatter)

    def emit(self, record):
        self.error_count += 1
        if self.error_file is None:
            return
        try:
            if self._file_handler is None:
                self._file_handler = logging.FileHandler(self.error_file, encoding='utf-8')
                self._file_handler.setFormatter(self.formatter)
        except OSError:
            self.error_file = None
            self.handleError(record)
            return
        self._file_handler.emit(record)

    def close(self):
        if self._file_handler is not None:
            self._file_handler.close()
            self._file_handler = None
        super().close()


@dataclass
class RunLog:
    """Where one run writes its log, keyed by direction and start time."""
    direction: str
    started: datetime
    log_dir: Path
    timestamp_format: str = '%Y%m%d_%H%M%S'
    split_errors: bool = True
    error_handler: Optional[ErrorLogHandler] = None

    @property
    def run_id(self) -> str:
        return f"{self.direction}_{self.started.strftime(self.timestamp_format)}"

    @property
    def log_file(self) -> Path:
        return self.log_dir / f"{self.run_id}.log"

    @property
    def error_file(self) -> Optional[Path]:
        return self.log_dir / f"{self.run_id}_error.log" if self.split_errors else None

    @property
    def error_count(self) -> int:
        return self.error_handler.error_count if self.error_handler else 0


def setup_logging(
    direction: str,
    started: Optional[datetime] = None,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None,
    logging_config: Optional[dict] = None
) -> RunLog:
    """
    Point the root logger at the run log for ``direction``.

    Args:
        direction: 'export' or 'import', the first part of the log name
        started: Run start time for the log name (defaults to now)
        log_dir: Directory for log files (defaults to ``logging.directory``)
        level: DEBUG, INFO, WARNING or ERROR (defaults to ``logging.level``)
        split_errors: Copy errors to ``<run>_error.log`` (defaults to ``logging.split_errors``)
        console: Also log to stdout (defaults to ``logging.console``)
        logging_config: The ``logging`` settings dict. Defaults to ``defaults.settings['logging']``

    Example
    -------
    ::

        run_log = setup_logging('export', log_dir='/var/log/tsvshuttle')
        print(run_log.log_file)    # /var/log/tsvshuttle/export_20240601_120000.log
    """
    global _current_run
    logging_config = logging_config if logging_config is not None else settings['logging']

    run_log = RunLog(
        direction=direction,
        started=started or datetime.now(),
        log_dir=Path(log_dir or logging_config.get('directory', './logs')),
        timestamp_format=logging_config.get('filename_format') or '%Y%m%d_%H%M%S',
        split_errors=split_errors if split_errors is not None else logging_config.get('split_errors', True),
    )
    level = getattr(logging, (level or logging_config.get('level', 'INFO')).upper())
    console = console if console is not None else logging_config.get('console', True)
    formatter = logging.Formatter(logging_config.get('format', '%(asctime)s [%(levelname)s] %(name)s: %(message)s'),
                                  datefmt=logging_config.get('timestamp_format', '%Y-%m-%d %H:%M:%S'))

    run_log.log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # a second run in the same process must not keep writing to the first run's files
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    run_log.error_handler = ErrorLogHandler(run_log.error_file, formatter)
    root_logger.addHandler(run_log.error_handler)

    file_handler = logging.FileHandler(run_log.log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _current_run = run_log
    logger.info(f"Run {run_log.run_id} logging to {run_log.log_file}")
    return run_log


def errors_logged() -> Optional[Path]:
    """
    Log file holding this run's errors, or None if nothing was logged at ERROR or above.

    That is the ``_error.log`` when errors are split out, else the run log itself.
    """
    if _current_run is None or _current_run.error_count == 0:
        return None
    return _current_run.error_file or _current_run.log_file


def cleanup_old_logs(
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
    dry_run: bool = False,
    logging_config: Optional[dict] = None
) -> List[Path]:
    """
    Remove export and import run logs older than ``logging.retention_days``.

    Only files named like run logs are considered. Returns the removed
    files, or the ones that would be removed when ``dry_run`` is set.
    """
    logging_config = logging_config if logging_config is not None else settings['logging']
    log_dir_path = Path(log_dir or logging_config.get('directory', './logs'))
    retention_days = retention_days or logging_config.get('retention_days', 30)

    if not log_dir_path.exists():
        logger.warning(f"Log directory does not exist: {log_dir_path}")
        return []

    cutoff = (datetime.now() - timedelta(days=retention_days)).timestamp()
    deleted = []
    for direction in Direction.values():
        for log_file in sorted(log_dir_path.glob(f"{direction}_*.log")):
            if not log_file.is_file() or log_file.stat().st_mtime >= cutoff:
                continue
            if dry_run:
                logger.info(f"Would delete: {log_file}")
            else:
                try:
                    log_file.unlink()
                except OSError as e:
                    logger.warning(f"Failed to delete {log_file}: {e}")
                    continue
            deleted.append(log_file)

    if deleted and not dry_run:
        logger.info(f"Removed {len(deleted)} run logs older than {retention_days} days")
    return deleted
