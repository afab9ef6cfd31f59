"""
Backup service - entry point used by the CLI.
"""

import os
import logging
from typing import List, Optional

from cherrypicker.config import AppConfig, BackupPreset, ConnectionConfig
from cherrypicker.errors import FileSystemError, NotFoundError
from cherrypicker.utils.atomic import TEMP_SUFFIX
from .command import BackupCommand, SelectionScope
from .ssh import SshService
from .strategies import select_strategy


logger = logging.getLogger(__name__)


def scope_for_preset(preset: BackupPreset) -> SelectionScope:
    """Translate a stored preset's selection into a SelectionScope."""
    if preset.selection_mode == 'include':
        return SelectionScope.including(preset.collections)
    if preset.selection_mode == 'exclude':
        return SelectionScope.excluding(preset.collections)
    return SelectionScope.everything()


class BackupService:
    """
    Creates and lists backup archives for one AppConfig.
    """

    def __init__(self, config: AppConfig, ssh_service: Optional[SshService] = None):
        self.config = config
        self.ssh_service = ssh_service

    @property
    def backup_dir(self) -> str:
        return BackupCommand(self.config).backup_dir

    def create_backup(self, source: ConnectionConfig, scope: SelectionScope) -> str:
        """
        Run one backup with the strategy matching the connection.

        Returns:
            Absolute path of the created archive
        """
        strategy = select_strategy(self.config, source, ssh_service=self.ssh_service)
        logger.debug(f"[{source.name}] Using {type(strategy).__name__}")
        return strategy.create_backup(source, scope)

    def list_backups(self) -> List[str]:
        """
        List finished archives in the backup directory, newest first.

        Hidden files and in-progress temp files are skipped.
        """
        backup_dir = self.backup_dir
        if not os.path.isdir(backup_dir):
            return []

        try:
            entries = []
            for name in os.listdir(backup_dir):
                path = os.path.join(backup_dir, name)
                if name.startswith('.') or name.endswith(TEMP_SUFFIX) or not os.path.isfile(path):
                    continue
                entries.append((os.path.getmtime(path), name))
        except OSError as e:
            raise FileSystemError(f"Error reading backup directory {backup_dir}: {e}")

        return [name for _, name in sorted(entries, reverse=True)]

    def resolve_archive(self, name: str) -> str:
        """
        Resolve an archive name or path to an existing file.

        Bare names are looked up in the backup directory.

        Raises:
            NotFoundError: If the archive does not exist
        """
        candidates = [os.path.abspath(os.path.expanduser(name))]
        if not os.path.isabs(name):
            candidates.insert(0, os.path.join(self.backup_dir, name))

        for candidate in candidates:
            if os.path.isfile(candidate):
                return candidate

        raise NotFoundError(f"Backup archive file not found: {name}")
