"""
Backup module for Mongo Cherry Picker.

This module handles the core backup functionality including:
- Argument building for mongodump
- Local and SSH execution strategies
- Streaming archives from remote hosts
"""

from .command import BackupCommand, SelectionScope, format_filename
from .ssh import SshService
from .strategies import LocalBackupStrategy, SshBackupStrategy, select_strategy
from .service import BackupService, scope_for_preset

__all__ = [
    'BackupCommand',
    'SelectionScope',
    'format_filename',
    'SshService',
    'LocalBackupStrategy',
    'SshBackupStrategy',
    'select_strategy',
    'BackupService',
    'scope_for_preset'
]
