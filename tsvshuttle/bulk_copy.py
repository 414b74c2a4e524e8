# tsvshuttle/bulk_copy.py
"""
Bulk copy between tables and delimited files with the ``bcp`` utility.

``bcp`` runs as a child process in character mode (``-c``). Its exit status
and output are turned into a StepResult; nothing here raises for a failed
transfer.
"""

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .database import qualified_name
from .defaults import settings
from .results import ErrorKind, StepResult
from .utils import read_text

logger = logging.getLogger(__name__)

# fragments of bcp / ODBC driver messages
_AUTH_MARKERS = ('Login failed',)
_CONNECTION_MARKERS = ('TCP Provider', 'Unable to complete login process', 'network-related',
                       'server was not found', 'Communication link failure')
_NOT_FOUND_MARKERS = ('Unable to open BCP host data-file', 'Invalid object name')

# bcp output may echo row data in the server collation; undecodable bytes are replaced
OUTPUT_ENCODING = 'utf-8'


def redact(command: Sequence[str]) -> List[str]:
    """Copy of a bcp command line with the password argument masked."""
    redacted = list(command)
    for i, arg in enumerate(redacted[:-1]):
        if arg == '-P':
            redacted[i + 1] = '****'
    return redacted


def classify_output(output: str, rows_rejected: bool = False) -> str:
    """Map bcp output to an ErrorKind."""
    if any(marker in output for marker in _AUTH_MARKERS):
        return ErrorKind.AUTH
    if any(marker in output for marker in _CONNECTION_MARKERS):
        return ErrorKind.CONNECTION
    if any(marker in output for marker in _NOT_FOUND_MARKERS):
        return ErrorKind.NOT_FOUND
    if rows_rejected:
        return ErrorKind.DATA_REJECTED
    return ErrorKind.TOOL


class BcpRunner:
    """
    Run bcp exports (``queryout``) and imports (``in``) against one database.

    Example
    -------
    ::

        bcp = BcpRunner({'host': 'srv', 'database': 'sales', 'user': 'u', 'password': 'p'})
        result = bcp.export_table('dbo', 'fire_nation_army', Path('fire_nation_army.tsv'), '\\t')
        if not result:
            print(result.kind, result.detail)
    """

    def __init__(self, connection_params: Dict[str, Any], bcp_path: Optional[str] = None,
                 extra_args: Optional[Sequence[str]] = None):
        self.host = connection_params['host']
        if connection_params.get('port'):
            self.host = f"{self.host},{connection_params['port']}"
        self.database = connection_params['database']
        self.user = connection_params['user']
        self._password = connection_params.get('password') or ''
        self.bcp_path = bcp_path or settings.get('bcp_path', 'bcp')
        self.extra_args = list(extra_args or settings.get('bcp_options', []))

    def _connection_args(self) -> List[str]:
        return ['-S', self.host, '-d', self.database, '-U', self.user, '-P', self._password]

    def _run(self, command: List[str]) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(redact(command))}")
        return subprocess.run(command, capture_output=True, text=True, encoding=OUTPUT_ENCODING, errors='replace')

    def export_table(self, schema: str, table: str, out_file: Path, delimiter: str) -> StepResult:
        """Write every row of ``schema.table`` to ``out_file``."""
        query = f"SELECT * FROM {qualified_name(schema, table)}"
        command = [self.bcp_path, query, 'queryout', str(out_file), '-c', '-t', delimiter] + \
            self._connection_args() + self.extra_args
        try:
            proc = self._run(command)
        except OSError as e:
            return StepResult.failure(ErrorKind.TOOL, f"Could not run {self.bcp_path}", detail=str(e))

        output = (proc.stdout or '') + (proc.stderr or '')
        if proc.returncode != 0:
            return StepResult.failure(
                classify_output(output),
                f"Failed to export {schema}.{table}. BCP exit code: {proc.returncode}",
                detail=output.strip())
        return StepResult.success(message=output.strip())

    def import_file(self, schema: str, table: str, in_file: Path, delimiter: str,
                    error_file: Path, output_file: Path) -> StepResult:
        """
        Load ``in_file`` into ``schema.table``.

        The load stops at the first rejected row (``-m 1``); rejected rows are
        written to ``error_file`` and bcp's own messages to ``output_file``.
        """
        command = [self.bcp_path, qualified_name(schema, table), 'in', str(in_file), '-c', '-t', delimiter] + \
            self._connection_args() + ['-e', str(error_file), '-m', '1', '-o', str(output_file)] + self.extra_args
        try:
            proc = self._run(command)
        except OSError as e:
            return StepResult.failure(ErrorKind.TOOL, f"Could not run {self.bcp_path}", detail=str(e))

        output = '\n'.join(part for part in (read_text(output_file), proc.stdout, proc.stderr) if part)
        if proc.returncode != 0:
            rejected = read_text(error_file).strip()
            detail = output.strip()
            if rejected:
                detail = f"{detail}\nError details from error file:\n{rejected}"
            return StepResult.failure(
                classify_output(output, rows_rejected=bool(rejected)),
                f"Failed to import {in_file} to {schema}.{table} (Exit code: {proc.returncode})",
                detail=detail)
        return StepResult.success(message=output.strip())
