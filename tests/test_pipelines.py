# tests/test_pipelines.py
import gzip
import logging
import pytest
from pathlib import Path

from tsvshuttle.pipelines import ExportPipeline, ImportPipeline, Step
from tsvshuttle.results import ErrorKind, StepResult


class TestExportPipeline:

    def test_plain_export(self, export_job, services, tmp_path):
        task = export_job.task('fire_nation_army')

        outcome = ExportPipeline(export_job, services).run(task)

        assert outcome.ok
        assert outcome.row_counts.matches
        services.bcp.export_table.assert_called_once_with('dbo', 'fire_nation_army', task.data_file, '\t')
        services.storage.upload.assert_called_once_with(task.data_file, 'exports', '2024/06/fire_nation_army.tsv',
                                                        overwrite=False)
        assert not task.data_file.exists()

    def test_compressed_export_uploads_gz(self, export_job, services):
        export_job.compress = True
        task = export_job.task('fire_nation_army')
        uploaded = {}

        def upload(local_file, container, blob_name, overwrite=False):
            with gzip.open(local_file, 'rb') as fp:
                uploaded[blob_name] = fp.read()
            return StepResult.success()
        services.storage.upload.side_effect = upload

        outcome = ExportPipeline(export_job, services).run(task)

        assert outcome.ok
        assert uploaded == {'2024/06/fire_nation_army.tsv.gz': b"1\tZuko\n2\tIroh\n"}
        assert not task.compressed_file.exists()
        assert not task.data_file.exists()

    def test_bcp_failure_stops_task(self, export_job, services):
        services.bcp.export_table.side_effect = None
        services.bcp.export_table.return_value = StepResult.failure(ErrorKind.AUTH, 'Login failed')

        outcome = ExportPipeline(export_job, services).run(export_job.task('fire_nation_army'))

        assert not outcome.ok
        assert outcome.failed_step == Step.EXPORT
        services.storage.upload.assert_not_called()
        services.sql.row_count.assert_not_called()

    def test_row_count_mismatch_only_warns(self, export_job, services, caplog):
        services.sql.row_count.return_value = StepResult.success(3)

        outcome = ExportPipeline(export_job, services).run(export_job.task('fire_nation_army'))

        assert outcome.ok
        assert not outcome.row_counts.matches
        assert any(r.levelno == logging.WARNING and 'Row count mismatch' in r.getMessage() for r in caplog.records)

    def test_count_query_failure_only_warns(self, export_job, services):
        services.sql.row_count.return_value = StepResult.failure(ErrorKind.CONNECTION, 'down')

        outcome = ExportPipeline(export_job, services).run(export_job.task('fire_nation_army'))

        assert outcome.ok
        assert outcome.row_counts is None

    def test_upload_conflict(self, export_job, services):
        services.storage.upload.return_value = StepResult.failure(
            ErrorKind.CONFLICT, 'Failed to upload. The blob may already exist. Use --overwrite to force upload.')
        task = export_job.task('fire_nation_army')

        outcome = ExportPipeline(export_job, services).run(task)

        assert outcome.failed_step == Step.UPLOAD
        assert outcome.result.kind == ErrorKind.CONFLICT
        assert task.data_file.exists()

    def test_ddl_after_upload(self, export_job, services):
        export_job.generate_ddl = True
        task = export_job.task('fire_nation_army')
        scripts = {}

        def upload(local_file, container, blob_name, overwrite=False):
            scripts[blob_name] = Path(local_file).read_text()
            return StepResult.success()
        services.storage.upload.side_effect = upload

        outcome = ExportPipeline(export_job, services).run(task)

        assert outcome.ok
        assert list(scripts) == ['2024/06/fire_nation_army.tsv', '2024/06/fire_nation_army_ddl.sql']
        assert scripts['2024/06/fire_nation_army_ddl.sql'].startswith('CREATE TABLE [dbo].[fire_nation_army] (')
        assert not task.ddl_file.exists()

    def test_no_ddl_when_upload_fails(self, export_job, services):
        export_job.generate_ddl = True
        services.storage.upload.return_value = StepResult.failure(ErrorKind.CONNECTION, 'down')

        ExportPipeline(export_job, services).run(export_job.task('fire_nation_army'))

        services.sql.columns.assert_not_called()

    def test_ddl_failure_fails_task(self, export_job, services):
        export_job.generate_ddl = True
        services.sql.columns.return_value = StepResult.success([])

        outcome = ExportPipeline(export_job, services).run(export_job.task('fire_nation_army'))

        assert outcome.failed_step == Step.DDL
        assert outcome.result.kind == ErrorKind.NOT_FOUND


class TestImportPipeline:

    def test_plain_import(self, import_job, services, caplog):
        caplog.set_level(logging.INFO)
        services.sql.row_count.side_effect = [StepResult.success(10), StepResult.success(12)]
        task = import_job.task('fire_nation_army')

        outcome = ImportPipeline(import_job, services).run(task)

        assert outcome.ok
        services.storage.download.assert_called_once_with('exports', '2024/06/fire_nation_army.tsv', task.data_file)
        services.bcp.import_file.assert_called_once_with('dbo', 'fire_nation_army', task.data_file, '\t',
                                                         task.error_file, task.output_file)
        assert 'Rows imported: 2' in caplog.text
        assert 'Number of lines: 2' in caplog.text
        assert not task.data_file.exists()

    def test_download_failure_is_first_and_final(self, import_job, services):
        services.storage.download.side_effect = None
        services.storage.download.return_value = StepResult.failure(ErrorKind.NOT_FOUND, 'no such blob')

        outcome = ImportPipeline(import_job, services).run(import_job.task('fire_nation_army'))

        assert outcome.failed_step == Step.DOWNLOAD
        services.bcp.import_file.assert_not_called()
        services.sql.row_count.assert_not_called()

    def test_compressed_import(self, import_job, services):
        import_job.compress = True
        task = import_job.task('fire_nation_army')

        def download(container, blob_name, local_file):
            with gzip.open(local_file, 'wb') as fp:
                fp.write(b"1\tAang\n")
            return StepResult.success(local_file)
        services.storage.download.side_effect = download

        outcome = ImportPipeline(import_job, services).run(task)

        assert outcome.ok
        assert services.storage.download.call_args[0][1] == '2024/06/fire_nation_army.tsv.gz'
        assert not task.compressed_file.exists()

    def test_stale_file_recovery(self, import_job, services, caplog):
        import_job.compress = True
        task = import_job.task('fire_nation_army')
        task.data_file.write_text("1\tleft over\n")

        def download(container, blob_name, local_file):
            Path(local_file).write_bytes(b'garbage that is not gzip')
            return StepResult.success(local_file)
        services.storage.download.side_effect = download

        outcome = ImportPipeline(import_job, services).run(task)

        assert outcome.ok
        assert 'already exists' in caplog.text
        assert not task.compressed_file.exists()
        services.bcp.import_file.assert_called_once()

    def test_bad_gzip_fails_task(self, import_job, services):
        import_job.compress = True

        def download(container, blob_name, local_file):
            Path(local_file).write_bytes(b'garbage that is not gzip')
            return StepResult.success(local_file)
        services.storage.download.side_effect = download

        outcome = ImportPipeline(import_job, services).run(import_job.task('fire_nation_army'))

        assert outcome.failed_step == Step.DECOMPRESS
        services.bcp.import_file.assert_not_called()

    def test_rejected_rows(self, import_job, services):
        services.bcp.import_file.return_value = StepResult.failure(
            ErrorKind.DATA_REJECTED, 'Failed to import', detail='Error details from error file:\n3\tSokka')
        task = import_job.task('fire_nation_army')

        outcome = ImportPipeline(import_job, services).run(task)

        assert outcome.failed_step == Step.IMPORT
        assert outcome.result.kind == ErrorKind.DATA_REJECTED
        assert task.data_file.exists()

    def test_check_data(self, import_job, services, caplog):
        caplog.set_level(logging.INFO)
        import_job.check_data = True

        def download(container, blob_name, local_file):
            Path(local_file).write_text("1\tAang\n\n2\tKatara\n")
            return StepResult.success(local_file)
        services.storage.download.side_effect = download

        outcome = ImportPipeline(import_job, services).run(import_job.task('fire_nation_army'))

        assert outcome.ok
        assert 'Found 1 empty lines' in caplog.text
        assert 'soldier_id int NOT NULL' in caplog.text
        services.sql.columns.assert_called_once_with('dbo', 'fire_nation_army')
