"""
Backup strategies.

LocalBackupStrategy runs mongodump on this machine; SshBackupStrategy runs
it on the connection's SSH host and streams the archive back. Both share a
BackupCommand for argument building and failure handling, and both write
through atomic_artifact so a final-named archive only appears after the
tool exited cleanly.
"""

import logging
from typing import Optional

from cherrypicker.config import AppConfig, ConnectionConfig
from cherrypicker.errors import ValidationError
from cherrypicker.utils.atomic import atomic_artifact, temp_path_for
from cherrypicker.utils.process import format_command, run_tool
from .command import BackupCommand, SelectionScope
from .ssh import SshService, masked_remote_command


logger = logging.getLogger(__name__)

REMOTE_DUMP_TOOL = 'mongodump'


class LocalBackupStrategy:
    """Runs mongodump locally, writing the archive straight to the temp path."""

    def __init__(self, config: AppConfig, command: Optional[BackupCommand] = None):
        self.config = config
        self.command = command or BackupCommand(config)

    def create_backup(self, source: ConnectionConfig, scope: SelectionScope) -> str:
        """
        Create a backup archive for ``source``.

        Returns:
            Absolute path of the promoted archive

        Raises:
            CherryPickerError: Classified failure; no archive or temp file remains
        """
        args, _ = self.command.build_args(source, scope)
        file_path = self.command.build_backup_file_path(source)
        temp_path = temp_path_for(file_path)

        dump_args = args + [f"--archive={temp_path}"]
        command_line = format_command(self.config.mongodump_path, dump_args)
        logger.info(f"[{source.name}] Running mongodump command: {command_line}")

        try:
            with atomic_artifact(file_path):
                run_tool(self.config.mongodump_path, dump_args, timeout=self.config.command_timeout)
        except Exception as e:
            self.command.handle_backup_error(e, source, temp_path, command_line)

        logger.info(f"Created backup for {source.name}: {file_path}")
        return file_path


class SshBackupStrategy:
    """Runs mongodump on the SSH host and streams the archive into the temp path."""

    def __init__(
        self,
        config: AppConfig,
        ssh_service: Optional[SshService] = None,
        command: Optional[BackupCommand] = None
    ):
        self.config = config
        self.ssh_service = ssh_service or SshService(timeout=config.command_timeout)
        self.command = command or BackupCommand(config)

    def create_backup(self, source: ConnectionConfig, scope: SelectionScope) -> str:
        """
        Create a backup archive for ``source`` through its SSH host.

        Returns:
            Absolute path of the promoted archive

        Raises:
            ValidationError: If the connection has no SSH configuration
            CherryPickerError: Classified failure; no archive or temp file remains
        """
        if source.ssh is None:
            raise ValidationError('SSH configuration is required for SSH backup strategy', connection=source.name)

        args, query_value = self.command.build_args(source, scope)
        file_path = self.command.build_backup_file_path(source)
        temp_path = temp_path_for(file_path)

        # bare --archive makes mongodump write the archive to stdout
        dump_args = args + ['--archive']
        command_line = masked_remote_command(REMOTE_DUMP_TOOL, dump_args, query_value)

        try:
            with atomic_artifact(file_path):
                self.ssh_service.execute(source.ssh, REMOTE_DUMP_TOOL, dump_args, query_value, temp_path)
        except Exception as e:
            self.command.handle_backup_error(e, source, temp_path, command_line)

        logger.info(f"Created backup for {source.name}: {file_path}")
        return file_path


def select_strategy(config: AppConfig, source: ConnectionConfig, ssh_service: Optional[SshService] = None):
    """
    Pick the backup strategy for a connection.

    Returns:
        SshBackupStrategy if the connection has SSH settings, otherwise
        LocalBackupStrategy
    """
    command = BackupCommand(config)
    if source.is_remote:
        return SshBackupStrategy(config, ssh_service=ssh_service, command=command)
    return LocalBackupStrategy(config, command=command)
