"""
Configuration loading and persistence.

The JSON config file holds connections, presets, paths and the filename
template. It is parsed into pydantic models once per run; the only write
point is ConfigStore.save().
"""

import os
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from cherrypicker.utils.atomic import atomic_artifact
from cherrypicker.errors import FileSystemError, NotFoundError, ValidationError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.environ.get('CHERRYPICKER_CONFIG') or 'config.json'
DEFAULT_FILENAME_FORMAT = 'backup_{datetime}_{source}.gz'

SelectionMode = Literal['all', 'include', 'exclude']


class _Model(BaseModel):
    """Base model: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


class SshCredentials(_Model):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 22
    username: str
    password: Optional[str] = None
    private_key: Optional[str] = None
    passphrase: Optional[str] = None


class ConnectionConfig(_Model):
    """One reachable MongoDB endpoint, optionally behind SSH."""

    model_config = ConfigDict(frozen=True)

    name: str
    database: str
    uri: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    authentication_database: Optional[str] = None
    auth_source: Optional[str] = None
    ssh: Optional[SshCredentials] = None

    @property
    def is_remote(self) -> bool:
        return self.ssh is not None

    @property
    def auth_database(self) -> Optional[str]:
        return self.authentication_database or self.auth_source


class BackupPreset(_Model):
    model_config = ConfigDict(frozen=True)

    name: str
    source_name: str
    selection_mode: SelectionMode = 'all'
    collections: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AppConfig(_Model):
    backup_dir: str = './backups'
    filename_format: str = DEFAULT_FILENAME_FORMAT
    mongodump_path: str = 'mongodump'
    mongorestore_path: str = 'mongorestore'
    command_timeout: Optional[PositiveFloat] = None
    connections: List[ConnectionConfig] = Field(default_factory=list)
    backup_presets: List[BackupPreset] = Field(default_factory=list)

    @field_validator('backup_presets', mode='before')
    @classmethod
    def _null_presets(cls, value):
        return value or []

    @model_validator(mode='after')
    def _unique_connection_names(self):
        seen = set()
        for connection in self.connections:
            if connection.name in seen:
                raise ValueError(f"Duplicate connection name: {connection.name}")
            seen.add(connection.name)
        return self

    def get_connection(self, name: str) -> ConnectionConfig:
        """
        Find a connection by name.

        Raises:
            NotFoundError: If no connection has that name
        """
        for connection in self.connections:
            if connection.name == name:
                return connection
        raise NotFoundError(f"Connection \"{name}\" not found in configuration")


class ConfigStore:
    """
    Loads and persists AppConfig as JSON.

    Persisting is a compare-and-swap: if the file changed on disk since it
    was loaded, save() refuses to overwrite it.
    """

    def __init__(self, path: str = DEFAULT_CONFIG_PATH):
        self.path = os.path.abspath(path)
        self._fingerprint = None

    def _current_fingerprint(self) -> Optional[Tuple[int, int]]:
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def load(self) -> AppConfig:
        """
        Read and validate the configuration file.

        Returns:
            Validated AppConfig

        Raises:
            NotFoundError: If the file does not exist
            ValidationError: If the file is not valid JSON or fails the schema
        """
        logger.debug(f"Loading configuration from: {self.path}")

        if not os.path.exists(self.path):
            raise NotFoundError(f"Configuration file not found at {self.path}")

        fingerprint = self._current_fingerprint()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Configuration file {self.path} is not valid JSON: {e}")
        except OSError as e:
            raise FileSystemError(f"Failed to read configuration file {self.path}: {e}")

        try:
            config = AppConfig.model_validate(data)
        except PydanticValidationError as e:
            problems = []
            for err in e.errors():
                location = '.'.join(str(part) for part in err['loc']) or '.'
                problems.append(f"  {location}: {err['msg']}")
            raise ValidationError("Invalid configuration file structure:\n" + '\n'.join(problems))

        self._fingerprint = fingerprint
        logger.debug('Configuration loaded and validated successfully')
        return config

    def save(self, config: AppConfig):
        """
        Write the whole configuration back to disk atomically.

        Raises:
            FileSystemError: If the file changed since load() or cannot be written
        """
        if self._fingerprint is not None and self._current_fingerprint() != self._fingerprint:
            raise FileSystemError(
                f"Configuration file {self.path} was modified by another process since it was loaded; "
                "reload and retry"
            )

        payload = config.model_dump(mode='json', by_alias=True, exclude_none=True)

        try:
            with atomic_artifact(self.path) as temp_path:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(payload, f, indent=2)
                    f.write('\n')
        except OSError as e:
            raise FileSystemError(f"Failed to write configuration file {self.path}: {e}")

        self._fingerprint = self._current_fingerprint()
        logger.info(f"Configuration saved to {self.path}")
