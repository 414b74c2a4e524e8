# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import pytest
import os
from pathlib import Path
from unittest.mock import Mock, patch

from tsvshuttle.job import TransferJob
from tsvshuttle.results import StepResult
from tsvshuttle.runner import Services

TEST_KEY = '2YvTXI9DHQPy4d6-ZC9NxcypvLMsJ94OBdmoHyjmwbM='


@pytest.fixture(autouse=True)
def setup_test_env():
    """Encryption key and the password referenced by test.yml for all tests."""
    with patch.dict(os.environ, {'TSVSHUTTLE_ENCRYPTION_KEY': TEST_KEY,
                                 'TSVSHUTTLE_TEST_PASSWORD': 'blue_fire'}):
        yield


@pytest.fixture
def test_config_file():
    """Path to test config file."""
    return Path(__file__).parent / 'test.yml'


@pytest.fixture
def services():
    """Mock collaborators that succeed by default."""
    identity = Mock()
    identity.ensure_session.return_value = StepResult.success(message="Authentication successful")

    storage = Mock()
    storage.check_account.return_value = StepResult.success(message="Storage account is accessible")
    storage.upload.return_value = StepResult.success()

    def download(container, blob_name, local_file):
        Path(local_file).write_text("1\tAang\n2\tKatara\n")
        return StepResult.success(local_file)
    storage.download.side_effect = download

    bcp = Mock()

    def export_table(schema, table, out_file, delimiter):
        Path(out_file).write_text("1\tZuko\n2\tIroh\n")
        return StepResult.success()
    bcp.export_table.side_effect = export_table
    bcp.import_file.return_value = StepResult.success(message="2 rows copied.")

    sql = Mock()
    sql.ping.return_value = StepResult.success(message="Connected")
    sql.row_count.return_value = StepResult.success(2)
    sql.columns.return_value = StepResult.success([
        {'name': 'soldier_id', 'data_type': 'int', 'max_length': None,
         'precision': 10, 'scale': 0, 'is_nullable': 'NO'},
        {'name': 'name', 'data_type': 'nvarchar', 'max_length': 100,
         'precision': None, 'scale': None, 'is_nullable': 'YES'},
    ])
    sql.primary_key.return_value = StepResult.success(['soldier_id'])

    return Services(identity=identity, storage=storage, bcp=bcp, sql=sql)


@pytest.fixture
def export_job(tmp_path):
    return TransferJob(direction='export', schema='dbo', tables='fire_nation_army,earth_kingdom_army',
                       container='exports', path='2024/06', work_dir=tmp_path)


@pytest.fixture
def import_job(tmp_path):
    return TransferJob(direction='import', schema='dbo', tables='fire_nation_army,earth_kingdom_army',
                       container='exports', path='2024/06', work_dir=tmp_path)
