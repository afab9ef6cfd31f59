"""
Restore service - runs mongorestore against a target connection.

Local targets run mongorestore with --archive=<path>; SSH targets stream the
archive into a remote mongorestore reading --archive from stdin. There is no
temp artifact here: a failed restore leaves the database in whatever state
mongorestore itself left it.
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

from cherrypicker.backup.ssh import SshService
from cherrypicker.config import AppConfig, ConnectionConfig
from cherrypicker.errors import CherryPickerError, NotFoundError, ValidationError
from cherrypicker.utils.process import format_command, run_tool


logger = logging.getLogger(__name__)

REMOTE_RESTORE_TOOL = 'mongorestore'

_RESTORED = re.compile(r'(\d+)\s+document\(s\)\s+restored successfully')
_FAILED = re.compile(r'(\d+)\s+document\(s\)\s+failed to restore')


@dataclass(frozen=True)
class RestoreOptions:
    """
    Attributes:
        drop: Drop each collection before restoring it
        source_database: Database name inside the archive; mapped onto the
            target database with --nsFrom/--nsTo when they differ
    """

    drop: bool = False
    source_database: Optional[str] = None


def summarize_restore_output(output: str) -> dict:
    """
    Count restored and failed documents reported by mongorestore.

    Returns:
        Dict with 'restored' and 'failed' totals
    """
    return {
        'restored': sum(int(n) for n in _RESTORED.findall(output)),
        'failed': sum(int(n) for n in _FAILED.findall(output)),
    }


class RestoreService:
    """
    Restores archives into a target connection.
    """

    def __init__(self, config: AppConfig, ssh_service: Optional[SshService] = None):
        self.config = config
        self.ssh_service = ssh_service or SshService(timeout=config.command_timeout)

    def build_args(self, target: ConnectionConfig, options: RestoreOptions) -> List[str]:
        """
        Build mongorestore arguments, without the --archive flag.

        Raises:
            ValidationError: If the target has neither URI nor database
        """
        args = []

        if target.uri and not target.is_remote:
            args.append(f"--uri={target.uri}")
        else:
            host, port = target.host, target.port
            if not host and target.uri:
                try:
                    parsed = urlsplit(target.uri)
                    host, port = parsed.hostname, parsed.port
                except ValueError:
                    logger.warning(f"[{target.name}] Could not parse MongoDB host/port from URI")
            if host:
                args.append(f"--host={host}")
            if port:
                args.append(f"--port={port}")
            if target.username:
                args.append(f"--username={target.username}")
            if target.password:
                args.append(f"--password={target.password}")
            if target.auth_database:
                args.append(f"--authenticationDatabase={target.auth_database}")

        if not target.database and not target.uri:
            raise ValidationError('Target database name is required for restore if URI is not provided',
                                  connection=target.name)

        source_db = options.source_database
        if source_db and target.database and source_db != target.database:
            args.append(f"--nsFrom={source_db}.*")
            args.append(f"--nsTo={target.database}.*")
            logger.info(f"Mapping namespaces from \"{source_db}\" to \"{target.database}\"")

        if options.drop:
            args.append('--drop')

        args.append('--gzip')
        return args

    def restore(self, target: ConnectionConfig, archive_path: str, options: Optional[RestoreOptions] = None) -> dict:
        """
        Restore ``archive_path`` into ``target``.

        Returns:
            Dict with 'restored' and 'failed' document counts

        Raises:
            NotFoundError: If the archive does not exist
            ProcessExecutionError: If mongorestore exits non-zero
            CherryPickerError: Other classified failures (SSH, filesystem)
        """
        options = options or RestoreOptions()
        archive_path = os.path.abspath(archive_path)

        if not os.path.isfile(archive_path):
            raise NotFoundError(f"Backup archive file not found: {archive_path}")

        logger.info(f"Starting restore from: {archive_path}")
        logger.info(f"Target connection: {target.name} (Database: {target.database})")
        if options.drop:
            logger.info('Option --drop enabled: existing collections in the target database will be dropped')

        args = self.build_args(target, options)

        try:
            if target.is_remote:
                # bare --archive makes mongorestore read the archive from stdin
                result = self.ssh_service.execute_with_input(
                    target.ssh, REMOTE_RESTORE_TOOL, args + ['--archive'], archive_path
                )
                logger.info('SSH restore process completed successfully')
            else:
                restore_args = args + [f"--archive={archive_path}"]
                logger.info(f"Executing mongorestore: {format_command(self.config.mongorestore_path, restore_args)}")
                result = run_tool(self.config.mongorestore_path, restore_args, timeout=self.config.command_timeout)
        except CherryPickerError as e:
            e.connection = e.connection or target.name
            logger.error(f"Error during restore: {e}")
            raise

        summary = summarize_restore_output(result.stdout + '\n' + result.stderr)
        logger.info(f"Restore summary: {summary['restored']} document(s) restored, "
                    f"{summary['failed']} failed")
        if summary['failed']:
            logger.warning(f"{summary['failed']} document(s) failed to restore into {target.name}")
        return summary
