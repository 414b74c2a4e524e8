# tests/test_runner.py
import logging
import pytest
from unittest.mock import patch

from tsvshuttle.job import TransferJob
from tsvshuttle.results import ErrorKind, StepResult
from tsvshuttle.runner import BatchRunner, PrecheckError, Services


def _collaborator_calls(services):
    return [call for mock in (services.identity, services.storage, services.bcp, services.sql)
            for call in mock.mock_calls]


class TestPrechecks:

    def test_order(self, export_job, services):
        BatchRunner(export_job, services).precheck()
        services.identity.ensure_session.assert_called_once()
        services.storage.check_account.assert_called_once()
        services.sql.ping.assert_called_once()

    @pytest.mark.parametrize('failing, skipped', [
        ('identity', ['storage', 'sql']),
        ('storage', ['sql']),
        ('sql', []),
    ])
    def test_failure_aborts_before_tables(self, export_job, services, failing, skipped):
        failure = StepResult.failure(ErrorKind.AUTH, 'nope')
        services.identity.ensure_session.return_value = failure if failing == 'identity' else StepResult.success()
        if failing == 'storage':
            services.storage.check_account.return_value = failure
        if failing == 'sql':
            services.sql.ping.return_value = failure

        with pytest.raises(PrecheckError) as exc_info:
            BatchRunner(export_job, services).run()

        assert exc_info.value.result is failure
        services.bcp.export_table.assert_not_called()
        if 'storage' in skipped:
            services.storage.check_account.assert_not_called()
        if 'sql' in skipped:
            services.sql.ping.assert_not_called()
        services.sql.close.assert_called_once()

    def test_failure_leaves_no_work_dir(self, tmp_path, services):
        work_dir = tmp_path / 'staging'
        job = TransferJob('export', schema='dbo', tables='fire_nation_army', container='c', path='p',
                          work_dir=work_dir)
        services.sql.ping.return_value = StepResult.failure(ErrorKind.CONNECTION, 'server unreachable')

        with pytest.raises(PrecheckError):
            BatchRunner(job, services).run()

        assert not work_dir.exists()

    def test_work_dir_created_after_prechecks(self, tmp_path, services):
        work_dir = tmp_path / 'staging'
        job = TransferJob('export', schema='dbo', tables='fire_nation_army', container='c', path='p',
                          work_dir=work_dir)

        BatchRunner(job, services).run()

        assert work_dir.is_dir()


class TestBatchRunner:

    def test_every_table_attempted_in_order(self, tmp_path, services):
        job = TransferJob('export', schema='dbo', tables='zuko,iroh,zuko', container='c', path='p',
                          work_dir=tmp_path)

        batch = BatchRunner(job, services).run()

        assert [o.table for o in batch.outcomes] == ['zuko', 'iroh', 'zuko']
        assert services.bcp.export_table.call_count == 3
        assert batch.succeeded

    def test_failure_does_not_stop_batch(self, export_job, services, caplog):
        results = iter([StepResult.failure(ErrorKind.CONNECTION, 'network down'), StepResult.success()])
        services.storage.upload.side_effect = lambda *args, **kwargs: next(results)

        batch = BatchRunner(export_job, services).run()

        assert batch.attempted == 2
        assert [o.ok for o in batch.outcomes] == [False, True]
        assert not batch.succeeded
        assert '1 of 2 tables failed to export: fire_nation_army' in caplog.text
        assert 'Failed to export dbo.fire_nation_army at upload: network down' in caplog.text

    def test_mismatch_keeps_success(self, export_job, services, caplog):
        caplog.set_level(logging.INFO)
        services.sql.row_count.return_value = StepResult.success(99)

        batch = BatchRunner(export_job, services).run()

        assert batch.succeeded
        assert 'SUCCESS: All 2 tables exported successfully' in caplog.text

    def test_dry_run_touches_nothing(self, tmp_path, services, caplog):
        caplog.set_level(logging.INFO)
        work_dir = tmp_path / 'staging'
        job = TransferJob('export', schema='dbo', tables='fire_nation_army,earth_kingdom_army', container='c',
                          path='p', compress=True, generate_ddl=True, overwrite=True, dry_run=True,
                          work_dir=work_dir)

        with patch('tsvshuttle.pipelines.compress_file') as compress:
            batch = BatchRunner(job, services).run()

        assert batch.succeeded
        assert batch.attempted == 2
        assert _collaborator_calls(services) == []
        compress.assert_not_called()
        assert not work_dir.exists()
        assert list(tmp_path.iterdir()) == []
        assert '[Dry run] Would upload' in caplog.text

    def test_dry_run_import(self, tmp_path, services):
        job = TransferJob('import', schema='dbo', tables='a,b', container='c', path='p', compress=True,
                          check_data=True, dry_run=True, work_dir=tmp_path)

        batch = BatchRunner(job, services).run()

        assert batch.succeeded
        assert _collaborator_calls(services) == []
        assert list(tmp_path.iterdir()) == []


class TestCleanup:

    def _fail_upload(self, services):
        services.storage.upload.return_value = StepResult.failure(ErrorKind.CONFLICT, 'exists')

    def test_retain_on_failure(self, export_job, services):
        self._fail_upload(services)
        BatchRunner(export_job, services).run()
        assert export_job.task('fire_nation_army').data_file.exists()

    def test_discard_failed(self, export_job, services):
        self._fail_upload(services)
        export_job.retain_on_failure = False
        BatchRunner(export_job, services).run()
        assert not export_job.task('fire_nation_army').data_file.exists()
        assert not export_job.task('earth_kingdom_army').data_file.exists()


class TestServices:

    def test_from_config(self, test_config_file):
        from tsvshuttle.config import ConfigManager
        config = ConfigManager(str(test_config_file))

        with patch('tsvshuttle.identity.AzureCliCredential') as credential:
            services = Services.from_config(config, 'export')

        assert services.storage.account_name == 'ozaiarchive'
        assert services.storage._credential is credential.return_value
        assert services.bcp.database == 'earth_kingdom'
        assert services.bcp.extra_args == ['-u']
        assert services.sql.host == 'ba-sing-se.database.windows.net'
        assert services.identity.login_settings['timeout'] == 60
