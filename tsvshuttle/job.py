# tsvshuttle/job.py
"""
Job and per-table task definitions.

A TransferJob describes one run: which tables of which schema move between
the database and which container/path. A TableTask holds the file and blob
names derived for a single table of that job.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

from .defaults import settings
from .utils import remove_files

logger = logging.getLogger(__name__)


class Direction:
    EXPORT = 'export'
    IMPORT = 'import'

    @classmethod
    def values(cls):
        return [cls.EXPORT, cls.IMPORT]


def split_tables(tables: str) -> List[str]:
    """Split a comma separated table list. Order and duplicates are kept."""
    return [name.strip() for name in tables.split(',') if name.strip()]


@dataclass
class TransferJob:
    """
    One export or import run.

    ``compress`` means "gzip before upload" for exports and "files are
    gzipped" for imports.
    """
    direction: str
    schema: str
    tables: List[str]
    container: str
    path: str
    delimiter: str = settings['default_delimiter']
    compress: bool = False
    generate_ddl: bool = False
    overwrite: bool = False
    dry_run: bool = False
    check_data: bool = False
    work_dir: Union[str, Path] = field(default_factory=lambda: settings['work_dir'])
    retain_on_failure: bool = field(default_factory=lambda: settings['retain_on_failure'])

    def __post_init__(self):
        if isinstance(self.tables, str):
            self.tables = split_tables(self.tables)
        self.work_dir = Path(self.work_dir)
        self.validate()

    def validate(self) -> None:
        """Reject the job before any side effect if required fields are missing."""
        if self.direction not in Direction.values():
            raise ValueError(f"Invalid direction '{self.direction}'. Must be one of: {Direction.values()}")
        missing = [name for name in ('schema', 'tables', 'container', 'path') if not getattr(self, name)]
        if missing:
            raise ValueError(f"Missing required job fields: {', '.join(missing)}")
        if len(self.delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {self.delimiter!r}")
        if self.direction == Direction.IMPORT and (self.generate_ddl or self.overwrite):
            raise ValueError("generate_ddl and overwrite only apply to exports")

    def task(self, table: str) -> 'TableTask':
        return TableTask(table=table, job=self)


@dataclass
class TableTask:
    """Names derived for one table of a job."""
    table: str
    job: TransferJob

    @property
    def data_file(self) -> Path:
        """Uncompressed ``<table>.tsv`` in the work directory."""
        return self.job.work_dir / f"{self.table}.tsv"

    @property
    def compressed_file(self) -> Path:
        return self.job.work_dir / f"{self.table}.tsv.gz"

    @property
    def transfer_file(self) -> Path:
        """The file that travels to or from blob storage."""
        return self.compressed_file if self.job.compress else self.data_file

    @property
    def ddl_file(self) -> Path:
        return self.job.work_dir / f"{self.table}_ddl.sql"

    @property
    def error_file(self) -> Path:
        return self.job.work_dir / f"{self.table}_errors.txt"

    @property
    def output_file(self) -> Path:
        return self.job.work_dir / f"{self.table}_bcp_output.txt"

    @property
    def qualified_name(self) -> str:
        return f"{self.job.schema}.{self.table}"

    def blob_name(self, local_file: Path) -> str:
        return f"{self.job.path.rstrip('/')}/{Path(local_file).name}"

    def artifacts(self) -> List[Path]:
        """Every local file this task may leave behind."""
        return [self.data_file, self.compressed_file, self.ddl_file, self.error_file, self.output_file]

    def remove_artifacts(self) -> List[Path]:
        return remove_files(*self.artifacts())
