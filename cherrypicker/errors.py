"""
Error taxonomy for Mongo Cherry Picker.

Every failure that leaves the backup/restore core is one of these classes,
so callers only ever need to catch CherryPickerError.
"""

from typing import Optional


class CherryPickerError(Exception):
    """
    Base class for all classified errors.

    Carries optional context for operator diagnosis: the connection the
    operation ran against and the (masked) command line that was attempted.
    """

    def __init__(self, message: str, connection: Optional[str] = None, command: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.connection = connection
        self.command = command

    def __str__(self):
        text = self.message
        if self.connection and not text.startswith(f"[{self.connection}]"):
            text = f"[{self.connection}] {text}"
        if self.command:
            text = f"{text}\nFailed command: {self.command}"
        return text


class ValidationError(CherryPickerError):
    """Raised for bad scopes, duplicate presets or missing credentials."""
    pass


class NotFoundError(CherryPickerError):
    """Raised when a preset, connection or archive name does not resolve."""
    pass


class SshConnectionError(CherryPickerError):
    """Raised when the SSH channel cannot be opened or authenticated."""
    pass


class FileSystemError(CherryPickerError):
    """Raised when a directory, temp file or rename operation fails."""
    pass


class ProcessExecutionError(CherryPickerError):
    """Raised when mongodump/mongorestore exits non-zero or times out."""

    def __init__(
        self,
        message: str,
        connection: Optional[str] = None,
        command: Optional[str] = None,
        stderr: str = '',
        returncode: Optional[int] = None
    ):
        super().__init__(message, connection=connection, command=command)
        self.stderr = stderr
        self.returncode = returncode
