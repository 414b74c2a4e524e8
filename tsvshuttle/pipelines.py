# tsvshuttle/pipelines.py
"""
Per-table pipelines.

``ExportPipeline`` and ``ImportPipeline`` run the steps for one TableTask
in order and stop at the first failing step. They never raise for a failed
step; the outcome is returned as a TableOutcome.

Export::

    bcp queryout -> row count check -> gzip (optional) -> upload -> DDL (optional)

Import::

    download -> gunzip (optional) -> inspect file -> bcp in -> row count delta
"""

import logging
from typing import Optional

from .compression import compress_file, decompress_file
from .ddl import generate_table_ddl
from .job import TableTask, TransferJob
from .results import ErrorKind, RowCountComparison, StepResult, TableOutcome
from .utils import count_empty_lines, count_lines, file_size, remove_files

logger = logging.getLogger(__name__)

DRY_RUN = '[Dry run]'


class Step:
    """Step names reported in a failed TableOutcome."""
    EXPORT = 'export'
    COMPRESS = 'compress'
    UPLOAD = 'upload'
    DDL = 'ddl'
    DOWNLOAD = 'download'
    DECOMPRESS = 'decompress'
    INSPECT = 'inspect'
    IMPORT = 'import'


class TablePipeline:
    """Shared plumbing for the export and import pipelines."""
    direction: Optional[str] = None

    def __init__(self, job: TransferJob, services):
        self.job = job
        self.services = services

    @property
    def dry_run(self) -> bool:
        return self.job.dry_run

    def run(self, task: TableTask) -> TableOutcome:
        raise NotImplementedError

    def _failed(self, task: TableTask, step: str, result: StepResult,
                row_counts: Optional[RowCountComparison] = None) -> TableOutcome:
        logger.error(f"{result.message} [{result.kind}]")
        if result.detail:
            logger.error(result.detail)
        return TableOutcome.failed(task.table, step, result, row_counts)

    def _row_count(self, task: TableTask) -> Optional[int]:
        """Current row count of the task's table, None (with a warning) if it cannot be read."""
        result = self.services.sql.row_count(self.job.schema, task.table)
        if not result:
            logger.warning(f"Could not count rows in {task.qualified_name}: {result.message}")
            if result.detail:
                logger.warning(result.detail)
            return None
        return result.value


class ExportPipeline(TablePipeline):
    direction = 'export'

    def run(self, task: TableTask) -> TableOutcome:
        job = self.job
        logger.info(f"Exporting table: {task.qualified_name}")

        if self.dry_run:
            logger.info(f"{DRY_RUN} Would export {task.qualified_name} to {task.data_file}")
        else:
            result = self.services.bcp.export_table(job.schema, task.table, task.data_file, job.delimiter)
            if not result:
                return self._failed(task, Step.EXPORT, result)
            logger.info(f"SUCCESS: Exported {task.qualified_name} to {task.data_file}")

        row_counts = self.reconcile(task)

        if job.compress:
            if self.dry_run:
                logger.info(f"{DRY_RUN} Would compress {task.data_file} to {task.compressed_file}")
            else:
                result = compress_file(task.data_file)
                if not result:
                    return self._failed(task, Step.COMPRESS, result, row_counts)
                logger.info(f"SUCCESS: {result.message}")

        result = self.upload(task.transfer_file, task)
        if not result:
            return self._failed(task, Step.UPLOAD, result, row_counts)

        if job.generate_ddl:
            result = self.export_ddl(task)
            if not result:
                return self._failed(task, Step.DDL, result, row_counts)

        return TableOutcome.succeeded(task.table, row_counts)

    def reconcile(self, task: TableTask) -> Optional[RowCountComparison]:
        """Compare lines written against the source row count. Logs only; never fails the task."""
        if self.dry_run:
            logger.info(f"{DRY_RUN} Would compare row counts of {task.data_file} and {task.qualified_name}")
            return None

        try:
            exported = count_lines(task.data_file)
        except OSError as e:
            logger.warning(f"Could not count lines in {task.data_file}: {e}")
            return None
        source = self._row_count(task)
        if source is None:
            return None

        comparison = RowCountComparison(exported_count=exported, source_count=source)
        logger.info(f"Exported rows: {exported}, source rows: {source}")
        if comparison.matches:
            logger.info(f"Row counts match for {task.qualified_name}")
        else:
            logger.warning(f"Row count mismatch for {task.qualified_name}: "
                           f"exported {exported}, source {source}")
        return comparison

    def upload(self, local_file, task: TableTask) -> StepResult:
        """Upload one file under the job's path and remove the local copy."""
        job = self.job
        blob_name = task.blob_name(local_file)
        if self.dry_run:
            logger.info(f"{DRY_RUN} Would upload {local_file} to {job.container}/{blob_name}"
                        f"{' (overwrite)' if job.overwrite else ''}")
            return StepResult.success()

        result = self.services.storage.upload(local_file, job.container, blob_name, overwrite=job.overwrite)
        if result:
            logger.info(f"SUCCESS: Uploaded {local_file.name} to {job.container}/{blob_name}")
            remove_files(local_file)
        return result

    def export_ddl(self, task: TableTask) -> StepResult:
        job = self.job
        if self.dry_run:
            logger.info(f"{DRY_RUN} Would generate DDL for {task.qualified_name} to {task.ddl_file}")
            return self.upload(task.ddl_file, task)

        result = generate_table_ddl(self.services.sql, job.schema, task.table)
        if not result:
            return result
        try:
            task.ddl_file.write_text(result.value, encoding='utf-8')
        except OSError as e:
            return StepResult.failure(ErrorKind.TOOL, f"Could not write {task.ddl_file}", detail=str(e))
        logger.info(f"SUCCESS: Generated DDL for {task.qualified_name}")
        return self.upload(task.ddl_file, task)


class ImportPipeline(TablePipeline):
    direction = 'import'

    def run(self, task: TableTask) -> TableOutcome:
        job = self.job
        logger.info(f"Importing table: {task.qualified_name}")

        local_file = task.transfer_file
        blob_name = task.blob_name(local_file)
        if self.dry_run:
            logger.info(f"{DRY_RUN} Would download {job.container}/{blob_name} to {local_file}")
        else:
            result = self.services.storage.download(job.container, blob_name, local_file)
            if not result:
                return self._failed(task, Step.DOWNLOAD, result)
            logger.info(f"SUCCESS: Downloaded {blob_name} to {local_file}")

        if job.compress:
            if self.dry_run:
                logger.info(f"{DRY_RUN} Would decompress {task.compressed_file}")
            else:
                result = decompress_file(task.compressed_file)
                if not result:
                    return self._failed(task, Step.DECOMPRESS, result)
                logger.info(result.message)

        if self.dry_run:
            if job.check_data:
                logger.info(f"{DRY_RUN} Would check {task.data_file} for empty lines")
            logger.info(f"{DRY_RUN} Would import {task.data_file} into {task.qualified_name}")
            return TableOutcome.succeeded(task.table)

        result = self.inspect(task)
        if not result:
            return self._failed(task, Step.INSPECT, result)
        if job.check_data:
            self.check_data(task)

        before = self._row_count(task)
        if before is not None:
            logger.info(f"Row count before import: {before}")

        result = self.services.bcp.import_file(job.schema, task.table, task.data_file, job.delimiter,
                                               task.error_file, task.output_file)
        if not result:
            return self._failed(task, Step.IMPORT, result)
        if result.message:
            logger.debug(result.message)

        after = self._row_count(task)
        if before is not None and after is not None:
            logger.info(f"Row count after import: {after}")
            logger.info(f"Rows imported: {after - before}")
        logger.info(f"SUCCESS: Imported {task.data_file.name} into {task.qualified_name}")

        remove_files(task.error_file, task.output_file, task.data_file)
        return TableOutcome.succeeded(task.table)

    def inspect(self, task: TableTask) -> StepResult:
        """Log size and line count of the staged file."""
        try:
            size = file_size(task.data_file)
            lines = count_lines(task.data_file)
        except OSError as e:
            return StepResult.failure(ErrorKind.NOT_FOUND, f"Staged file {task.data_file} is not readable",
                                      detail=str(e))
        logger.info(f"File size: {size} bytes")
        logger.info(f"Number of lines: {lines}")
        return StepResult.success((size, lines))

    def check_data(self, task: TableTask) -> None:
        """Warn about empty lines and show the leading columns of the destination table."""
        empty = count_empty_lines(task.data_file)
        if empty:
            logger.warning(f"Found {empty} empty lines in {task.data_file.name}")
        else:
            logger.info(f"No empty lines in {task.data_file.name}")

        columns = self.services.sql.columns(self.job.schema, task.table)
        if not columns:
            logger.warning(f"Could not read the structure of {task.qualified_name}: {columns.message}")
            return
        logger.info(f"Table structure of {task.qualified_name} (first 5 columns):")
        for col in columns.value[:5]:
            logger.info(f"  {col['name']} {col['data_type']} "
                        f"{'NULL' if str(col['is_nullable']).upper() != 'NO' else 'NOT NULL'}")


PIPELINES = {
    ExportPipeline.direction: ExportPipeline,
    ImportPipeline.direction: ImportPipeline,
}
