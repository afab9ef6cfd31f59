"""
Restore module for Mongo Cherry Picker.
"""

from .service import RestoreOptions, RestoreService, summarize_restore_output

__all__ = [
    'RestoreOptions',
    'RestoreService',
    'summarize_restore_output'
]
