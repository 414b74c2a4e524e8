# tsvshuttle/database.py
"""
Database connection wrapper and the scalar query client used by the pipelines.

Only SQL Server / Azure SQL is supported, through pyodbc or pymssql. The
query client connects lazily, so a dry run never opens a connection.
"""

import importlib
import importlib.util
import logging
from typing import Any, Dict, List, Optional, Sequence

from .results import ErrorKind, StepResult

logger = logging.getLogger(__name__)


DRIVERS = {
    'pyodbc_sqlserver': {
        'module': 'pyodbc',
        'database_type': 'sqlserver',
        'priority': 11,
        'param_map': {'host': 'SERVER', 'database': 'DATABASE', 'user': 'UID', 'password': 'PWD'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'password', 'port', 'odbc_driver_name', 'encrypt', 'trustservercertificate'},
        'connection_method': 'odbc_string',
        'odbc_driver_name': 'ODBC Driver 18 for SQL Server',
        'default_port': 1433
    },
    'pymssql': {
        'module': 'pymssql',
        'database_type': 'sqlserver',
        'priority': 12,
        'param_map': {'host': 'server'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'password', 'port', 'timeout', 'login_timeout', 'charset', 'appname'},
        'connection_method': 'kwargs',
        'default_port': 1433
    },
}

# SQLSTATE prefixes reported by ODBC drivers
_AUTH_STATES = ('28000',)
_CONNECTION_STATES = ('08001', '08S01', '08004', 'HYT00', 'HYT01')
_NOT_FOUND_STATES = ('42S02', '42S22')


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """Driver names for ``db_type``, importable ones only by default, in priority order."""
    available = []
    for driver_name, info in DRIVERS.items():
        if info['database_type'] != db_type:
            continue
        if valid_only and importlib.util.find_spec(info.get('module', driver_name)) is None:
            continue
        available.append(driver_name)
    available.sort(key=lambda d: DRIVERS[d]['priority'])
    return available


def validate_connection_params(driver_name: str, **params) -> dict:
    """
    Validate connection parameters against driver requirements.

    Returns:
        Dict of driver-specific parameters with extras removed

    Raises:
        ValueError: If required parameters are missing
    """
    if driver_name not in DRIVERS:
        raise ValueError(f"Unknown driver: {driver_name}")

    driver_info = DRIVERS[driver_name]
    if 'port' not in params and driver_info.get('default_port'):
        params['port'] = driver_info['default_port']

    if not any(required.issubset(params.keys()) for required in driver_info['required_params']):
        raise ValueError(f"Missing required parameters. Need one of: {driver_info['required_params']}")

    all_valid_params = set(driver_info.get('optional_params', set()))
    for req_set in driver_info['required_params']:
        all_valid_params.update(req_set)

    param_map = driver_info.get('param_map', {})
    return {param_map.get(key, key): value for key, value in params.items() if key in all_valid_params}


def get_odbc_connection_string(odbc_driver_name: Optional[str] = None, **kwargs) -> str:
    """Build an ODBC connection string; host and port are joined into SERVER."""
    server = kwargs.pop('SERVER', 'localhost')
    port = kwargs.pop('port', None)
    params = {'SERVER': f"{server},{port}" if port else server}
    params.update({key.upper(): value for key, value in kwargs.items()})
    params.setdefault('ENCRYPT', 'yes')
    conn_str = ";".join(f"{key}={value}" for key, value in params.items())
    if odbc_driver_name:
        return f"DRIVER={{{odbc_driver_name}}};" + conn_str
    return conn_str


def quote_identifier(identifier: str) -> str:
    """Bracket-quote a SQL Server identifier, doubling any closing brackets."""
    return '[' + identifier.replace(']', ']]') + ']'


def qualified_name(schema: str, table: str) -> str:
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"


class Database:
    """
    Thin wrapper around a DB-API connection to SQL Server.

    Example
    -------
    ::

        with Database.create(host='srv.database.windows.net', database='sales',
                             user='exporter', password='...') as db:
            cursor = db.cursor()
            cursor.execute("SELECT 1")
    """

    def __init__(self, connection, interface, database_name: Optional[str] = None):
        self._connection = connection
        self.interface = interface
        self.database_name = database_name

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying connection."""
        return getattr(self._connection, key)

    def __str__(self) -> str:
        return f'Database({self.database_name or "unknown"}:sqlserver)'

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def cursor(self):
        return self._connection.cursor()

    def close(self) -> None:
        self._connection.close()

    @classmethod
    def create(cls, driver: Optional[str] = None, **kwargs) -> 'Database':
        """
        Factory method to create a SQL Server connection.

        Args:
            driver: Preferred driver name from DRIVERS. Falls back to the first importable one.
            **kwargs: host, database, user, password and optional port
        """
        candidates = get_drivers_for_database('sqlserver')
        if driver:
            if driver not in DRIVERS:
                raise ValueError(f"Unknown driver: {driver}")
            candidates = [driver] + [d for d in candidates if d != driver]

        db_driver = None
        driver_name = None
        for name in candidates:
            try:
                db_driver = importlib.import_module(DRIVERS[name].get('module', name))
                driver_name = name
                break
            except ImportError:
                logger.warning(f"Driver '{name}' not available")

        if db_driver is None:
            raise ImportError("No database driver found for SQL Server. Install with: pip install pyodbc")

        params = validate_connection_params(driver_name, **kwargs)
        driver_conf = DRIVERS[driver_name]
        try:
            if driver_conf['connection_method'] == 'odbc_string':
                params.setdefault('odbc_driver_name', driver_conf['odbc_driver_name'])
                connection = db_driver.connect(get_odbc_connection_string(**params))
            else:
                connection = db_driver.connect(**params)
        except db_driver.Error as e:
            raise ConnectionError(f"{driver_name} could not connect to {kwargs.get('host')}: {e}") from e

        return cls(connection, db_driver, kwargs.get('database'))


def classify_db_error(error: Exception) -> str:
    """Map a driver exception to an ErrorKind."""
    state = str(error.args[0]) if error.args else ''
    message = str(error)
    if state.startswith(_AUTH_STATES) or 'Login failed' in message:
        return ErrorKind.AUTH
    if state.startswith(_NOT_FOUND_STATES) or 'Invalid object name' in message:
        return ErrorKind.NOT_FOUND
    if state.startswith(_CONNECTION_STATES) or type(error).__name__ in ('OperationalError', 'InterfaceError'):
        return ErrorKind.CONNECTION
    return ErrorKind.TOOL


class SqlClient:
    """
    Query client for connectivity checks, row counts and catalog metadata.

    Every public method returns a StepResult; driver errors never escape.
    """

    def __init__(self, connection_params: Dict[str, Any], driver: Optional[str] = None):
        params = dict(connection_params)
        params.pop('type', None)
        self.driver = driver or params.pop('driver', None)
        self._params = params
        self._db: Optional[Database] = None

    @property
    def host(self) -> str:
        return self._params.get('host', '')

    @property
    def database(self) -> str:
        return self._params.get('database', '')

    def _connect(self) -> Database:
        if self._db is None:
            self._db = Database.create(driver=self.driver, **self._params)
            logger.debug(f"Connected to {self._db}")
        return self._db

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def _fetch(self, sql: str, params: Sequence = ()) -> StepResult:
        try:
            db = self._connect()
        except (ImportError, ValueError) as e:
            return StepResult.failure(ErrorKind.TOOL, f"Cannot connect to {self.host}/{self.database}", detail=str(e))
        except ConnectionError as e:
            return StepResult.failure(classify_db_error(e.__cause__ or e),
                                      f"Cannot connect to {self.host}/{self.database}", detail=str(e))

        if getattr(db.interface, 'paramstyle', 'qmark') in ('format', 'pyformat'):
            sql = sql.replace('?', '%s')
        try:
            cursor = db.cursor()
            try:
                cursor.execute(sql, tuple(params))
                rows = cursor.fetchall()
            finally:
                cursor.close()
        except db.interface.Error as e:
            kind = classify_db_error(e)
            if kind in (ErrorKind.CONNECTION, ErrorKind.AUTH):
                self.close()
            return StepResult.failure(kind, f"Query failed on {self.host}/{self.database}", detail=str(e))
        return StepResult.success([tuple(row) for row in rows])

    def scalar(self, sql: str, params: Sequence = ()) -> StepResult:
        """Run a query and return the first column of the first row as the result value."""
        result = self._fetch(sql, params)
        if not result:
            return result
        if not result.value:
            return StepResult.failure(ErrorKind.NOT_FOUND, "Query returned no rows")
        return StepResult.success(result.value[0][0])

    def ping(self) -> StepResult:
        result = self.scalar("SELECT 1")
        if result:
            return StepResult.success(message=f"Connected to {self.host}/{self.database}")
        return result

    def row_count(self, schema: str, table: str) -> StepResult:
        result = self.scalar(f"SELECT COUNT_BIG(*) FROM {qualified_name(schema, table)}")
        if result:
            result.value = int(result.value)
        return result

    def columns(self, schema: str, table: str) -> StepResult:
        """Column metadata in ordinal order as a list of dicts."""
        sql = """
            SELECT COLUMN_NAME, DATA_TYPE, CHARACTER_MAXIMUM_LENGTH,
                   NUMERIC_PRECISION, NUMERIC_SCALE, IS_NULLABLE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ?
            ORDER BY ORDINAL_POSITION
        """
        result = self._fetch(sql, (schema, table))
        if result:
            keys = ('name', 'data_type', 'max_length', 'precision', 'scale', 'is_nullable')
            result.value = [dict(zip(keys, row)) for row in result.value]
        return result

    def primary_key(self, schema: str, table: str) -> StepResult:
        """Primary key column names ordered by key ordinal. Empty list when there is none."""
        sql = """
            SELECT kcu.COLUMN_NAME
            FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
              ON kcu.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA
             AND kcu.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
            WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
              AND tc.TABLE_SCHEMA = ? AND tc.TABLE_NAME = ?
            ORDER BY kcu.ORDINAL_POSITION
        """
        result = self._fetch(sql, (schema, table))
        if result:
            result.value = [row[0] for row in result.value]
        return result

