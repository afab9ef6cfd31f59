"""
Command builder for mongodump.

Turns a ConnectionConfig and a SelectionScope into the mongodump argument
list and the destination archive path, and owns the failure policy shared
by every backup strategy.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, NoReturn, Optional, Tuple
from urllib.parse import urlsplit, parse_qs

from cherrypicker.config import AppConfig, ConnectionConfig, DEFAULT_FILENAME_FORMAT
from cherrypicker.errors import CherryPickerError, FileSystemError, ProcessExecutionError, ValidationError
from cherrypicker.utils.atomic import discard_artifact
from cherrypicker.utils.timestamps import formatted_timestamp, object_id_from_timestamp


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionScope:
    """
    Which collections a backup processes.

    mode 'all' ignores collections; 'include' and 'exclude' need at least
    one. start_time narrows a single included collection to documents
    whose _id was generated at or after that moment.
    """

    mode: str = 'all'
    collections: FrozenSet[str] = field(default_factory=frozenset)
    start_time: Optional[datetime] = None

    @classmethod
    def everything(cls) -> 'SelectionScope':
        return cls()

    @classmethod
    def including(cls, collections, start_time: Optional[datetime] = None) -> 'SelectionScope':
        return cls('include', frozenset(collections), start_time)

    @classmethod
    def excluding(cls, collections) -> 'SelectionScope':
        return cls('exclude', frozenset(collections))

    def validate(self):
        """
        Raises:
            ValidationError: If the scope is not executable
        """
        if self.mode not in ('all', 'include', 'exclude'):
            raise ValidationError(f"Invalid selection mode: {self.mode}. Must be 'all', 'include' or 'exclude'.")
        if self.mode in ('include', 'exclude') and not self.collections:
            raise ValidationError(f"Selection mode '{self.mode}' requires at least one collection")
        if self.start_time is not None and (self.mode != 'include' or len(self.collections) != 1):
            raise ValidationError('A start time requires include mode with exactly one collection')


def format_filename(template: str, date: str, time: str, datetime_str: str, source: str) -> str:
    """
    Substitute {date}, {time}, {datetime} and {source} in a filename template.

    Unknown placeholders are left untouched.
    """
    return (
        template
        .replace('{datetime}', datetime_str)
        .replace('{date}', date)
        .replace('{time}', time)
        .replace('{source}', source)
    )


class BackupCommand:
    """
    Builds mongodump invocations for one AppConfig.
    """

    def __init__(self, config: AppConfig):
        self.config = config

    @property
    def backup_dir(self) -> str:
        return os.path.abspath(os.path.expanduser(self.config.backup_dir))

    def build_args(self, source: ConnectionConfig, scope: SelectionScope) -> Tuple[List[str], Optional[str]]:
        """
        Build mongodump arguments for a connection and scope.

        Remote (SSH) connections always get discrete host/credential flags,
        because the URI usually points at the database from the remote
        host's point of view. Local connections prefer --uri.

        Args:
            source: Connection to dump
            scope: Collections to include or exclude

        Returns:
            Tuple of (argument list, query value). The query value is only
            set for remote time-filtered dumps; locally the query is part of
            the argument list.

        Raises:
            ValidationError: If the scope is invalid or the connection lacks a database
        """
        scope.validate()

        if not source.database:
            raise ValidationError('Database name is required in config', connection=source.name)

        if source.is_remote:
            args = self._remote_connection_args(source)
        else:
            args = self._local_connection_args(source)

        query_value = None

        if scope.start_time is not None:
            collection = next(iter(scope.collections))
            object_id = object_id_from_timestamp(scope.start_time)
            query_value = json.dumps({'_id': {'$gte': {'$oid': object_id}}}, separators=(',', ':'))
            args.append(f"--collection={collection}")
            if not source.is_remote:
                args.append(f"--query={query_value}")
            logger.info(
                f"[{source.name}] Time filter on \"{collection}\": _id >= {object_id} "
                f"(time >= {scope.start_time.isoformat()})"
            )
        elif scope.mode == 'include':
            for collection in sorted(scope.collections):
                args.append(f"--collection={collection}")
            logger.info(f"[{source.name}] Backup mode: including {len(scope.collections)} collection(s)")
        elif scope.mode == 'exclude':
            for collection in sorted(scope.collections):
                args.append(f"--excludeCollection={collection}")
            logger.info(f"[{source.name}] Backup mode: excluding {len(scope.collections)} collection(s)")
        else:
            logger.info(f"[{source.name}] Backup mode: all collections")

        args.append('--gzip')
        if scope.start_time is None:
            args.append('--forceTableScan')

        if query_value is not None and source.is_remote:
            return args, query_value
        return args, None

    def _local_connection_args(self, source: ConnectionConfig) -> List[str]:
        if source.uri:
            return [f"--uri={source.uri}", f"--db={source.database}"]

        args = [f"--db={source.database}"]
        if source.host:
            args.append(f"--host={source.host}")
        if source.port:
            args.append(f"--port={source.port}")
        if source.username:
            args.append(f"--username={source.username}")
        if source.password:
            args.append(f"--password={source.password}")

        auth_db = source.auth_database or source.database
        if auth_db:
            args.append(f"--authenticationDatabase={auth_db}")
        return args

    def _remote_connection_args(self, source: ConnectionConfig) -> List[str]:
        args = [f"--db={source.database}"]

        host, port = source.host, source.port
        auth_db = source.auth_database
        parsed = urlsplit(source.uri) if source.uri else None

        if not host and parsed is not None:
            try:
                host, port = parsed.hostname, parsed.port
                logger.warning(f"[{source.name}] Extracted MongoDB host/port from URI: {host}:{port or 'default'}")
            except ValueError:
                logger.warning(
                    f"[{source.name}] Could not parse MongoDB host/port from URI; "
                    "define 'host' and 'port' explicitly for SSH backups"
                )

        if host:
            args.append(f"--host={host}")
        if port:
            args.append(f"--port={port}")

        if source.username:
            args.append(f"--username={source.username}")
        if source.password:
            args.append(f"--password={source.password}")
        elif source.username:
            logger.warning(f"[{source.name}] 'password' not found in config for user {source.username}")

        if not auth_db and source.username and parsed is not None:
            auth_db = parse_qs(parsed.query).get('authSource', [None])[0]
        if auth_db:
            args.append(f"--authenticationDatabase={auth_db}")

        return args

    def ensure_backup_dir(self, connection: Optional[str] = None) -> str:
        """
        Create the backup directory if it is missing.

        Raises:
            FileSystemError: If the directory cannot be created
        """
        backup_dir = self.backup_dir
        if not os.path.isdir(backup_dir):
            try:
                os.makedirs(backup_dir, exist_ok=True)
            except OSError as e:
                raise FileSystemError(f"Failed to create backup directory {backup_dir}: {e}", connection=connection)
            logger.info(f"Created backup directory: {backup_dir}")
        return backup_dir

    def build_backup_file_path(self, source: ConnectionConfig, now: Optional[datetime] = None) -> str:
        """
        Compute the final archive path from the filename template.

        Also ensures the backup directory exists.
        """
        backup_dir = self.ensure_backup_dir(connection=source.name)
        stamp = formatted_timestamp(now or datetime.now())
        filename = format_filename(
            self.config.filename_format or DEFAULT_FILENAME_FORMAT,
            stamp['date'],
            stamp['time'],
            stamp['datetime'],
            source.name,
        )
        return os.path.join(backup_dir, filename)

    def handle_backup_error(
        self,
        error: BaseException,
        source: ConnectionConfig,
        temp_path: str,
        command_line: Optional[str] = None
    ) -> NoReturn:
        """
        Recovery contract for a failed backup attempt.

        Removes the temp artifact if present, then raises a classified error
        carrying the connection name and attempted command line.
        """
        logger.error(f"Error creating backup for {source.name}: {error}")
        if command_line:
            logger.error(f"Failed command: {command_line}")

        discard_artifact(temp_path)

        if isinstance(error, CherryPickerError):
            error.connection = error.connection or source.name
            error.command = error.command or command_line
            raise error

        if isinstance(error, OSError):
            classified = FileSystemError(f"Backup failed: {error}", connection=source.name, command=command_line)
        else:
            classified = ProcessExecutionError(f"Backup failed: {error}", connection=source.name, command=command_line)
        raise classified from error
