# tsvshuttle/runner.py
"""
Batch runner: connectivity prechecks, then one pipeline per table.

Example
-------
::

    from tsvshuttle.config import ConfigManager
    from tsvshuttle.job import TransferJob
    from tsvshuttle.runner import BatchRunner, Services

    config = ConfigManager()
    job = TransferJob('export', schema='dbo', tables='fire_nation_army,earth_kingdom_army',
                      container='exports', path='2024/06')
    outcome = BatchRunner(job, Services.from_config(config, job.direction)).run()
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from .bulk_copy import BcpRunner
from .database import SqlClient
from .identity import AzureIdentity
from .job import TableTask, TransferJob
from .pipelines import DRY_RUN, PIPELINES
from .results import BatchOutcome, StepResult, TableOutcome
from .storage import BlobStore

logger = logging.getLogger(__name__)


class PrecheckError(RuntimeError):
    """A connectivity precheck failed; no table was touched."""

    def __init__(self, check: str, result: StepResult):
        self.check = check
        self.result = result
        super().__init__(f"{check} check failed: {result.message}")


@dataclass
class Services:
    """The external collaborators a run talks to."""
    identity: Any
    storage: Any
    bcp: Any
    sql: Any

    @classmethod
    def from_config(cls, config, direction: str) -> 'Services':
        """
        Build real collaborators from a ConfigManager.

        Raises:
            ValueError: If the connection or storage account for ``direction`` is not configured
        """
        job_settings = config.job_settings(direction)
        connection = job_settings['connection']
        identity = AzureIdentity(scope=config.get_setting('storage_scope'),
                                 az_path=config.get_setting('az_path'),
                                 login_settings=config.get_setting('login'))
        return cls(
            identity=identity,
            storage=BlobStore(job_settings['storage_account'], credential=identity.credential),
            bcp=BcpRunner(connection, bcp_path=config.get_setting('bcp_path'),
                          extra_args=config.get_setting('bcp_options')),
            sql=SqlClient(connection),
        )


class BatchRunner:
    """Run a TransferJob table by table and fold the outcomes."""

    def __init__(self, job: TransferJob, services: Services, cancel_event: Optional[threading.Event] = None):
        self.job = job
        self.services = services
        self.cancel_event = cancel_event
        self.pipeline = PIPELINES[job.direction](job, services)

    def precheck(self) -> None:
        """
        Verify identity, storage and database connectivity in that order.

        Raises:
            PrecheckError: On the first failing check
        """
        if self.job.dry_run:
            logger.info(f"{DRY_RUN} Would check Azure login")
            logger.info(f"{DRY_RUN} Would check access to the storage account")
            logger.info(f"{DRY_RUN} Would check the database connection")
            return

        logger.info("Checking Azure authentication...")
        checks = (
            ('Authentication', lambda: self.services.identity.ensure_session(self.cancel_event)),
            ('Storage account', self.services.storage.check_account),
            ('Database', self.services.sql.ping),
        )
        for name, check in checks:
            result = check()
            if not result:
                logger.error(f"{name} check failed: {result.message}")
                if result.detail:
                    logger.error(result.detail)
                raise PrecheckError(name, result)
            logger.info(f"SUCCESS: {result.message or name + ' check passed'}")

    def cleanup(self, task: TableTask, outcome: TableOutcome) -> None:
        if outcome.ok or self.job.dry_run:
            return
        if self.job.retain_on_failure:
            logger.info(f"Keeping local files of {task.table} in {self.job.work_dir} for inspection")
            return
        for path in task.remove_artifacts():
            logger.info(f"Removed {path}")

    def run(self) -> BatchOutcome:
        job = self.job
        logger.info(f"Starting {job.direction} of {len(job.tables)} tables from schema {job.schema} "
                    f"({job.container}/{job.path})")
        if job.dry_run:
            logger.info(f"{DRY_RUN} No changes will be made")

        batch = BatchOutcome()
        try:
            self.precheck()
            if not job.dry_run:
                job.work_dir.mkdir(parents=True, exist_ok=True)
            for table in job.tables:
                task = job.task(table)
                outcome = self.pipeline.run(task)
                batch.record(outcome)
                if not outcome.ok:
                    logger.error(f"Failed to {job.direction} {task.qualified_name} at {outcome.cause}")
                self.cleanup(task, outcome)
        finally:
            if not job.dry_run:
                self.services.sql.close()

        if batch.succeeded:
            logger.info(f"SUCCESS: All {batch.attempted} tables {job.direction}ed successfully")
        else:
            failed = ', '.join(o.table for o in batch.failures)
            logger.error(f"{len(batch.failures)} of {batch.attempted} tables failed to {job.direction}: {failed}")
        return batch
