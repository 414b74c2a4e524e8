# tsvshuttle/results.py
"""
Outcome types for steps, tables and whole batches.

Every call to an external collaborator (bcp, blob storage, the database,
the compressor) is turned into a StepResult right where it is made, so the
pipelines only ever branch on values and never on exceptions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class ErrorKind:
    """
    Failure categories reported by collaborator adapters.

    - CONNECTION: endpoint unreachable, network or timeout failure
    - AUTH: login or permission failure
    - NOT_FOUND: blob, file, table or account does not exist
    - CONFLICT: conditional write found an existing blob
    - DATA_REJECTED: destination rejected rows during bulk load
    - TOOL: external program failed for any other reason
    """
    CONNECTION = 'connection'
    AUTH = 'auth'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    DATA_REJECTED = 'data_rejected'
    TOOL = 'tool'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_') and attr.isupper()]


@dataclass
class StepResult:
    """Outcome of one external call."""
    ok: bool
    kind: Optional[str] = None
    message: str = ''
    detail: str = ''
    value: Any = None

    @classmethod
    def success(cls, value: Any = None, message: str = '') -> 'StepResult':
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, kind: str, message: str, detail: str = '') -> 'StepResult':
        if kind not in ErrorKind.values():
            raise ValueError(f"Invalid error kind '{kind}'. Must be one of: {ErrorKind.values()}")
        return cls(ok=False, kind=kind, message=message, detail=detail)

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class RowCountComparison:
    """Rows written to the export file vs rows in the source table. Advisory only."""
    exported_count: int
    source_count: int

    @property
    def matches(self) -> bool:
        return self.exported_count == self.source_count


@dataclass
class TableOutcome:
    """Result of one table's pipeline."""
    table: str
    ok: bool
    failed_step: Optional[str] = None
    result: Optional[StepResult] = None
    row_counts: Optional[RowCountComparison] = None

    @classmethod
    def succeeded(cls, table: str, row_counts: Optional[RowCountComparison] = None) -> 'TableOutcome':
        return cls(table=table, ok=True, row_counts=row_counts)

    @classmethod
    def failed(cls, table: str, step: str, result: StepResult,
               row_counts: Optional[RowCountComparison] = None) -> 'TableOutcome':
        return cls(table=table, ok=False, failed_step=step, result=result, row_counts=row_counts)

    @property
    def cause(self) -> str:
        if self.ok:
            return ''
        return f"{self.failed_step}: {self.result.message}" if self.result is not None else str(self.failed_step)


@dataclass
class BatchOutcome:
    """
    Aggregate of every table outcome in one run.

    ``succeeded`` starts True and is ANDed with each recorded outcome, so a
    single failure sticks for the rest of the run.
    """
    outcomes: List[TableOutcome] = field(default_factory=list)
    succeeded: bool = True

    def record(self, outcome: TableOutcome) -> 'BatchOutcome':
        self.outcomes.append(outcome)
        self.succeeded = self.succeeded and outcome.ok
        return self

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def failures(self) -> List[TableOutcome]:
        return [o for o in self.outcomes if not o.ok]
