# tsvshuttle/__init__.py
"""
tsvshuttle - move SQL Server tables through Azure Blob Storage as TSV files

Export writes each table to ``<table>.tsv`` with bcp, optionally gzips it and
uploads it under a container path. Import reverses the trip: download,
optionally gunzip, and bulk-load with bcp.

Basic usage::

    from tsvshuttle import BatchRunner, ConfigManager, Services, TransferJob, setup_logging

    config = ConfigManager()
    setup_logging('export')
    job = TransferJob('export', schema='dbo', tables='fire_nation_army',
                      container='exports', path='2024/06', compress=True)
    outcome = BatchRunner(job, Services.from_config(config, 'export')).run()

Command line::

    tsvshuttle export --schema dbo --tables a,b --container exports --path 2024/06 --compress
    tsvshuttle import --schema dbo --tables a,b --container exports --path 2024/06 --compressed
"""

__version__ = '0.3.0'

from .config import ConfigManager
from .job import TransferJob, TableTask
from .results import ErrorKind, StepResult, TableOutcome, BatchOutcome, RowCountComparison
from .runner import BatchRunner, Services, PrecheckError
from .logging_utils import setup_logging, cleanup_old_logs

__all__ = [
    'ConfigManager',
    'TransferJob',
    'TableTask',
    'ErrorKind',
    'StepResult',
    'TableOutcome',
    'BatchOutcome',
    'RowCountComparison',
    'BatchRunner',
    'Services',
    'PrecheckError',
    'setup_logging',
    'cleanup_old_logs',
]
