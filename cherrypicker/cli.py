"""
Command line interface.

    cherry-picker backup --config=config.json --source=prod --scope=all
    cherry-picker backup --config=config.json --preset=users_only
    cherry-picker restore --config=config.json --file=backup.gz --target=staging
"""

import functools
import logging

import click

from cherrypicker import __version__, configure_logging
from cherrypicker.backup import BackupService, SelectionScope
from cherrypicker.config import DEFAULT_CONFIG_PATH, BackupPreset, ConfigStore
from cherrypicker.errors import CherryPickerError, ValidationError
from cherrypicker.presets import PresetStore
from cherrypicker.restore import RestoreOptions, RestoreService
from cherrypicker.utils.timestamps import parse_since_time


logger = logging.getLogger(__name__)


def _split_collections(value):
    if not value:
        return []
    return [name.strip() for name in value.split(',') if name.strip()]


def config_option(f):
    return click.option(
        '--config', 'config_path',
        default=DEFAULT_CONFIG_PATH,
        show_default=True,
        envvar='CHERRYPICKER_CONFIG',
        help='Path to the JSON configuration file.'
    )(f)


def handle_errors(f):
    """Report classified errors as a single message and a non-zero exit."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except CherryPickerError as e:
            raise click.ClickException(str(e))
    return wrapper


@click.group()
@click.version_option(__version__, prog_name='cherry-picker')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging.')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also write logs to this file.')
def cli(verbose, log_file):
    """Selective MongoDB backups from local or SSH-remote hosts."""
    configure_logging(verbose=verbose, log_file=log_file)


@cli.command()
@config_option
@click.option('--source', help='Connection name to back up.')
@click.option('--scope', type=click.Choice(['all', 'include', 'exclude']), default='all', show_default=True)
@click.option('--collections', help='Comma separated collection names for include/exclude scopes.')
@click.option('--since-time', help='Only documents created since (ISO 8601 or 1d, 3h, 2w, 1M).')
@click.option('--preset', help='Run a stored backup preset instead of --source/--scope.')
@handle_errors
def backup(config_path, source, scope, collections, since_time, preset):
    """Create one backup archive."""
    store = ConfigStore(config_path)
    config = store.load()

    if preset:
        if source:
            raise ValidationError('Use either --preset or --source, not both')
        connection, selection = PresetStore(config, store).resolve(preset)
        logger.info(f"Using backup preset: {preset}")
    elif source:
        connection = config.get_connection(source)
        names = _split_collections(collections)
        start_time = parse_since_time(since_time) if since_time else None
        if scope == 'include':
            selection = SelectionScope.including(names, start_time)
        elif scope == 'exclude':
            selection = SelectionScope.excluding(names)
        else:
            selection = SelectionScope('all', frozenset(names), start_time)
    else:
        raise ValidationError('--source or --preset is required for backup')

    archive = BackupService(config).create_backup(connection, selection)
    click.echo(archive)


@cli.command()
@config_option
@click.option('--file', 'backup_file', required=True, help='Archive name (in backupDir) or path.')
@click.option('--target', required=True, help='Connection name to restore into.')
@click.option('--drop', is_flag=True, help='Drop collections before restoring them.')
@click.option('--source-db', help='Database name inside the archive, mapped onto the target database.')
@handle_errors
def restore(config_path, backup_file, target, drop, source_db):
    """Restore an archive into a target connection."""
    config = ConfigStore(config_path).load()
    connection = config.get_connection(target)
    archive = BackupService(config).resolve_archive(backup_file)

    RestoreService(config).restore(connection, archive, RestoreOptions(drop=drop, source_database=source_db))
    click.echo(f"Restored {archive} into {connection.name}")


@cli.command('list-backups')
@config_option
@handle_errors
def list_backups(config_path):
    """List finished archives, newest first."""
    config = ConfigStore(config_path).load()
    for name in BackupService(config).list_backups():
        click.echo(name)


@cli.group()
def presets():
    """Manage stored backup presets."""


@presets.command('list')
@config_option
@handle_errors
def list_presets(config_path):
    """Show stored presets."""
    config = ConfigStore(config_path).load()
    for preset in config.backup_presets:
        collections = ', '.join(preset.collections) or '-'
        click.echo(f"{preset.name}\t{preset.source_name}\t{preset.selection_mode}\t{collections}")


@presets.command('add')
@config_option
@click.option('--name', required=True)
@click.option('--source', required=True, help='Connection the preset backs up.')
@click.option('--scope', type=click.Choice(['all', 'include', 'exclude']), default='all', show_default=True)
@click.option('--collections', help='Comma separated collection names.')
@click.option('--description')
@handle_errors
def add_preset(config_path, name, source, scope, collections, description):
    """Store a new backup preset."""
    store = ConfigStore(config_path)
    preset_store = PresetStore(store.load(), store)
    preset_store.add(BackupPreset(
        name=name,
        source_name=source,
        selection_mode=scope,
        collections=_split_collections(collections),
        description=description,
    ))
    preset_store.persist()
    click.echo(f"Backup preset \"{name}\" created")


@presets.command('remove')
@config_option
@click.argument('name')
@handle_errors
def remove_preset(config_path, name):
    """Delete a backup preset."""
    store = ConfigStore(config_path)
    preset_store = PresetStore(store.load(), store)
    if preset_store.remove(name):
        preset_store.persist()
        click.echo(f"Backup preset \"{name}\" removed")
    else:
        click.echo(f"Backup preset \"{name}\" does not exist")


def main():
    cli(prog_name='cherry-picker')


if __name__ == '__main__':
    main()
