"""
Backup preset storage.

Presets live in the AppConfig. Mutations change the in-memory config only;
call persist() to write the whole config back, so several edits can share
one write.
"""

import logging
from typing import List, Tuple

from cherrypicker.backup.command import SelectionScope
from cherrypicker.backup.service import scope_for_preset
from cherrypicker.config import AppConfig, BackupPreset, ConfigStore, ConnectionConfig
from cherrypicker.errors import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


class PresetStore:
    """CRUD over the backup presets of one AppConfig."""

    def __init__(self, config: AppConfig, store: ConfigStore):
        self.config = config
        self.store = store

    def list(self) -> List[BackupPreset]:
        return list(self.config.backup_presets)

    def get(self, name: str) -> BackupPreset:
        """
        Raises:
            NotFoundError: If no preset has that name
        """
        for preset in self.config.backup_presets:
            if preset.name == name:
                return preset
        raise NotFoundError(f"Backup preset \"{name}\" not found in configuration")

    def add(self, preset: BackupPreset) -> BackupPreset:
        """
        Add a preset to the in-memory configuration.

        Raises:
            ValidationError: If the name is taken, the source connection is
                unknown or the selection needs collections but has none
        """
        if any(existing.name == preset.name for existing in self.config.backup_presets):
            raise ValidationError(f"Backup preset \"{preset.name}\" already exists")

        if not any(connection.name == preset.source_name for connection in self.config.connections):
            raise ValidationError(
                f"Backup preset \"{preset.name}\" references unknown connection \"{preset.source_name}\""
            )

        scope_for_preset(preset).validate()

        self.config.backup_presets.append(preset)
        logger.info(f"Added backup preset \"{preset.name}\" for {preset.source_name}")
        return preset

    def remove(self, name: str) -> bool:
        """
        Remove a preset by name. Absent names are ignored.

        Returns:
            True if a preset was removed
        """
        remaining = [preset for preset in self.config.backup_presets if preset.name != name]
        removed = len(remaining) != len(self.config.backup_presets)
        self.config.backup_presets[:] = remaining
        if removed:
            logger.info(f"Removed backup preset \"{name}\"")
        return removed

    def resolve(self, name: str) -> Tuple[ConnectionConfig, SelectionScope]:
        """
        Resolve a preset to the connection and scope it backs up.

        Raises:
            NotFoundError: If the preset or its connection no longer exists
        """
        preset = self.get(name)
        try:
            source = self.config.get_connection(preset.source_name)
        except NotFoundError:
            raise NotFoundError(
                f"Source connection \"{preset.source_name}\" not found for preset \"{preset.name}\""
            )
        return source, scope_for_preset(preset)

    def persist(self):
        """Write the whole configuration, presets included, back to disk."""
        self.store.save(self.config)
