"""
Unit tests for the restore service (cherrypicker/restore/service.py).
"""

import logging
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cherrypicker.backup.ssh import SshService
from cherrypicker.config import ConnectionConfig
from cherrypicker.errors import NotFoundError, ProcessExecutionError, ValidationError
from cherrypicker.restore.service import RestoreOptions, RestoreService, summarize_restore_output
from cherrypicker.utils.process import ProcessResult


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / 'backup_2024-01-15_12-00-00_local_db.gz'
    path.write_bytes(b'archive')
    return path


class TestBuildArgs:
    """Test mongorestore argument building."""

    def test_local_uri(self, app_config, local_connection):
        args = RestoreService(app_config).build_args(local_connection, RestoreOptions())

        assert args == ['--uri=mongodb://localhost:27017/', '--gzip']

    def test_drop(self, app_config, local_connection):
        args = RestoreService(app_config).build_args(local_connection, RestoreOptions(drop=True))

        assert '--drop' in args

    def test_namespace_mapping(self, app_config, local_connection):
        """Test archives from another database are mapped onto the target."""
        args = RestoreService(app_config).build_args(
            local_connection, RestoreOptions(source_database='proddb')
        )

        assert '--nsFrom=proddb.*' in args
        assert '--nsTo=testdb.*' in args

    def test_same_database_no_mapping(self, app_config, local_connection):
        args = RestoreService(app_config).build_args(
            local_connection, RestoreOptions(source_database='testdb')
        )

        assert not any(arg.startswith('--ns') for arg in args)

    def test_discrete_flags(self, app_config, remote_connection):
        args = RestoreService(app_config).build_args(remote_connection, RestoreOptions())

        assert args[:5] == [
            '--host=mongo.internal',
            '--port=27018',
            '--username=backup',
            '--password=s3cret',
            '--authenticationDatabase=admin'
        ]


class TestRestore:
    """Test RestoreService.restore."""

    def test_local_restore(self, app_config, local_connection, archive):
        """Test mongorestore is invoked with the archive path."""
        completed = subprocess.CompletedProcess(
            [], 0, stdout=b'', stderr=b'3 document(s) restored successfully. 0 document(s) failed to restore.\n'
        )

        with patch('cherrypicker.utils.process.subprocess.run', return_value=completed) as mock_run:
            RestoreService(app_config).restore(local_connection, str(archive), RestoreOptions(drop=True))

        cmd = mock_run.call_args[0][0]
        assert cmd[0] == 'mongorestore'
        assert f"--archive={archive}" in cmd
        assert '--drop' in cmd

    def test_non_zero_exit(self, app_config, local_connection, archive):
        """Test ProcessExecutionError when mongorestore fails."""
        completed = subprocess.CompletedProcess([], 1, stdout=b'', stderr=b'Failed: bad archive\n')

        with patch('cherrypicker.utils.process.subprocess.run', return_value=completed):
            with pytest.raises(ProcessExecutionError) as exc_info:
                RestoreService(app_config).restore(local_connection, str(archive))

        assert exc_info.value.connection == 'local_db'
        assert 'bad archive' in exc_info.value.stderr

    def test_missing_archive(self, app_config, local_connection, tmp_path):
        with pytest.raises(NotFoundError, match='not found'):
            RestoreService(app_config).restore(local_connection, str(tmp_path / 'missing.gz'))

    def test_remote_restore_streams_archive(self, app_config, remote_connection, archive):
        """Test SSH targets stream the archive into remote mongorestore."""
        ssh_service = MagicMock(spec=SshService)
        ssh_service.execute_with_input.return_value = ProcessResult(0, '', '')

        RestoreService(app_config, ssh_service=ssh_service).restore(remote_connection, str(archive))

        credentials, tool, args, source_path = ssh_service.execute_with_input.call_args[0]
        assert credentials == remote_connection.ssh
        assert tool == 'mongorestore'
        assert args[-1] == '--archive'
        assert source_path == str(archive)

    def test_remote_restore_reports_failed_documents(self, app_config, remote_connection, archive, caplog):
        """Test counts from the remote mongorestore stderr are summarized."""
        ssh_service = MagicMock(spec=SshService)
        ssh_service.execute_with_input.return_value = ProcessResult(
            0, '', '5 document(s) restored successfully. 2 document(s) failed to restore.\n'
        )

        with caplog.at_level(logging.WARNING, logger='cherrypicker.restore.service'):
            summary = RestoreService(app_config, ssh_service=ssh_service).restore(remote_connection, str(archive))

        assert summary == {'restored': 5, 'failed': 2}
        assert '2 document(s) failed to restore into remote_db' in caplog.text

    def test_local_restore_returns_summary(self, app_config, local_connection, archive):
        completed = subprocess.CompletedProcess(
            [], 0, stdout=b'', stderr=b'3 document(s) restored successfully. 0 document(s) failed to restore.\n'
        )

        with patch('cherrypicker.utils.process.subprocess.run', return_value=completed):
            summary = RestoreService(app_config).restore(local_connection, str(archive))

        assert summary == {'restored': 3, 'failed': 0}

    def test_target_without_database_or_uri(self, app_config, archive):
        target = ConnectionConfig(name='t', database='', host='h')

        with pytest.raises(ValidationError):
            RestoreService(app_config).restore(target, str(archive))


class TestSummarizeRestoreOutput:
    """Test mongorestore output parsing."""

    def test_counts(self):
        output = (
            '2024-01-15T12:00:00 3 document(s) restored successfully. 1 document(s) failed to restore.\n'
            '2024-01-15T12:00:01 2 document(s) restored successfully. 0 document(s) failed to restore.\n'
        )

        assert summarize_restore_output(output) == {'restored': 5, 'failed': 1}

    def test_no_counts(self):
        assert summarize_restore_output('done') == {'restored': 0, 'failed': 0}
