"""
Shared pytest fixtures for Mongo Cherry Picker tests.

This module provides fixtures for:
- Configuration files and AppConfig objects
- Local and SSH connection fixtures
- Mock fixtures for external tools (mongodump/mongorestore, SSH)
"""

import os
import json
import re
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cherrypicker.config import AppConfig, ConfigStore


@pytest.fixture
def backup_dir(tmp_path):
    """Directory backups are written to (not created up front)."""
    return tmp_path / 'backups'


@pytest.fixture
def config_data(backup_dir):
    """
    Raw JSON configuration with one local and one SSH connection
    and a users-only preset.
    """
    return {
        'backupDir': str(backup_dir),
        'filenameFormat': 'backup_{datetime}_{source}.gz',
        'mongodumpPath': 'mongodump',
        'mongorestorePath': 'mongorestore',
        'connections': [
            {
                'name': 'local_db',
                'uri': 'mongodb://localhost:27017/',
                'database': 'testdb'
            },
            {
                'name': 'remote_db',
                'database': 'proddb',
                'host': 'mongo.internal',
                'port': 27018,
                'username': 'backup',
                'password': 's3cret',
                'authenticationDatabase': 'admin',
                'ssh': {
                    'host': 'bastion.example.com',
                    'port': 22,
                    'username': 'deploy',
                    'password': 'sshpass'
                }
            }
        ],
        'backupPresets': [
            {
                'name': 'users_only',
                'sourceName': 'local_db',
                'selectionMode': 'include',
                'collections': ['users'],
                'createdAt': '2024-01-15T12:00:00+00:00'
            }
        ]
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    """Configuration written to disk as JSON."""
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(config_data, indent=2))
    return path


@pytest.fixture
def config_store(config_file):
    return ConfigStore(str(config_file))


@pytest.fixture
def app_config(config_data):
    return AppConfig.model_validate(config_data)


@pytest.fixture
def local_connection(app_config):
    return app_config.get_connection('local_db')


@pytest.fixture
def remote_connection(app_config):
    return app_config.get_connection('remote_db')


def _archive_target(cmd):
    for arg in cmd:
        match = re.match(r'^--archive=(.+)$', arg)
        if match:
            return match.group(1)
    return None


@pytest.fixture
def fake_mongodump():
    """
    Patch subprocess.run so mongodump "writes" its --archive target.

    Set ``fake_mongodump.returncode`` to simulate failures; every call's
    argument list is recorded in ``fake_mongodump.calls``.
    """
    state = MagicMock()
    state.returncode = 0
    state.stderr = b'writing testdb.users to archive\n'
    state.calls = []

    def run(cmd, **kwargs):
        state.calls.append(cmd)
        target = _archive_target(cmd)
        if target and 'mongodump' in os.path.basename(cmd[0]):
            with open(target, 'wb') as f:
                f.write(b'partial archive' if state.returncode else b'archive bytes')
        return subprocess.CompletedProcess(cmd, state.returncode, stdout=b'', stderr=state.stderr)

    with patch('cherrypicker.utils.process.subprocess.run', side_effect=run) as mock_run:
        state.mock = mock_run
        yield state


def make_channel_files(stdout_chunks=None, stderr_lines=None, exit_status=0):
    """Build (stdin, stdout, stderr) mocks shaped like paramiko ChannelFiles."""
    stdin = MagicMock()
    stdout = MagicMock()
    stderr = MagicMock()

    stdout.read.side_effect = list(stdout_chunks or []) + [b'']
    stdout.channel.recv_exit_status.return_value = exit_status
    stderr.readline.side_effect = list(stderr_lines or []) + ['']
    stdin.channel = stdout.channel

    return stdin, stdout, stderr


@pytest.fixture
def channel_files():
    """Factory for fake exec_command results."""
    return make_channel_files


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for remote execution testing.

    exec_command returns a successful, empty command by default; tests
    override ``mock_ssh_client.return_value.exec_command.return_value``.
    """
    with patch('cherrypicker.backup.ssh.SSHClient') as mock_ssh:
        mock_ssh.return_value.connect.return_value = None
        mock_ssh.return_value.exec_command.return_value = make_channel_files()
        yield mock_ssh
