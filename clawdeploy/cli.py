"""
Command-line interface for clawdeploy.

Every command builds an explicit BackupSettings from the selected config
class and hands it to the components.
"""

import logging
import signal
import sys

import click

from clawdeploy import configure_logging, __version__
from clawdeploy.config import BackupSettings, config
from clawdeploy.backup import manifest
from clawdeploy.backup.encryption import AgeCodec, EncryptionError
from clawdeploy.backup.executor import BackupExecutor, BackupError
from clawdeploy.backup.restore import RestoreExecutor, RestoreError, auto_restore
from clawdeploy.backup.retention import RetentionSweeper
from clawdeploy.backup.storage import create_storage, StorageError
from clawdeploy.secrets import (
    create_secret_store,
    store_api_keys,
    provision_encryption_keys,
    validate_secrets,
    migrate_secrets,
    materialize_secrets,
    SecretNotFound,
    SecretBackendError,
)
from clawdeploy.secrets.provisioning import ANTHROPIC_API_KEY, OPENAI_API_KEY, MISTRAL_API_KEY


logger = logging.getLogger(__name__)


def _fail(error):
    click.echo(f"ERROR: {error}", err=True)
    sys.exit(1)


def _print_warnings(warnings):
    for warning in warnings:
        click.echo(f"[WARN] {warning}", err=True)


def _settings(ctx, **overrides) -> BackupSettings:
    return BackupSettings.from_config(ctx.obj['config_class'], **dict(ctx.obj['overrides'], **overrides))


@click.group()
@click.version_option(__version__, prog_name='clawdeploy')
@click.option('--config', 'config_name', type=click.Choice(sorted(config)), default='default',
              envvar='CLAWDEPLOY_CONFIG', show_default=True, help='Configuration profile.')
@click.option('--secrets-provider', type=click.Choice(['gcp', 'aws', 'local']), default=None,
              help='Secret store backend (overrides SECRETS_PROVIDER).')
@click.option('--storage-provider', type=click.Choice(['gcs', 's3', 'local']), default=None,
              help='Backup storage backend (overrides STORAGE_PROVIDER).')
@click.option('--debug', is_flag=True, default=False, help='Enable debug logging.')
@click.pass_context
def cli(ctx, config_name, secrets_provider, storage_provider, debug):
    """Backup, restore and secret management for an OpenClaw deployment."""
    ctx.ensure_object(dict)
    ctx.obj['config_class'] = config[config_name]
    ctx.obj['overrides'] = {
        'secrets_provider': secrets_provider,
        'storage_provider': storage_provider,
        'debug': debug or None,
    }
    settings = _settings(ctx)
    configure_logging(debug=settings.debug, log_file=settings.log_file)


@cli.command()
@click.option('--bucket', default=None, help='Bucket to upload to (overrides BACKUP_BUCKET).')
@click.pass_context
def backup(ctx, bucket):
    """Back up the running deployment."""
    settings = _settings(ctx, bucket=bucket)
    try:
        secrets = create_secret_store(settings)
    except (SecretBackendError, ValueError) as e:
        # The executor records the unencrypted-backup warning
        logger.warning(f"Secret store unavailable: {e}")
        secrets = None

    try:
        executor = BackupExecutor(settings, create_storage(settings), secrets, AgeCodec())
        result = executor.execute()
    except (BackupError, StorageError, SecretBackendError, ValueError) as e:
        _fail(e)

    _print_warnings(result.warnings)
    state = 'encrypted' if result.encrypted else 'NOT encrypted'
    click.echo(f"Backup complete: {result.location} ({state})")


@cli.command()
@click.argument('bucket')
@click.argument('backup_name', required=False)
@click.pass_context
def restore(ctx, bucket, backup_name):
    """Restore BUCKET's latest backup, or BACKUP_NAME."""
    settings = _settings(ctx, bucket=bucket)
    try:
        executor = RestoreExecutor(settings, create_storage(settings), create_secret_store(settings), AgeCodec())
        result = executor.execute(backup_name)
    except (RestoreError, StorageError, SecretBackendError, ValueError) as e:
        _fail(e)

    _print_warnings(result.warnings)
    click.echo(f"Restore complete: {result.source_name} -> {settings.data_path}")


@cli.command('auto-restore')
@click.option('--bucket', default=None, help='Bucket to restore from (overrides BACKUP_BUCKET).')
@click.pass_context
def auto_restore_command(ctx, bucket):
    """Restore the latest backup if no configuration exists yet."""
    settings = _settings(ctx, bucket=bucket)
    try:
        result = auto_restore(settings, create_storage(settings), create_secret_store(settings), AgeCodec())
    except (RestoreError, StorageError, SecretBackendError, ValueError) as e:
        _fail(e)

    if result is None:
        click.echo("Nothing restored")
    else:
        _print_warnings(result.warnings)
        click.echo(f"Restore complete: {result.source_name} -> {settings.data_path}")


@cli.command('list-backups')
@click.option('--bucket', default=None, help='Bucket to list (overrides BACKUP_BUCKET).')
@click.pass_context
def list_backups(ctx, bucket):
    """List backups, newest first."""
    settings = _settings(ctx, bucket=bucket)
    try:
        names = create_storage(settings).list_names()
    except (StorageError, ValueError) as e:
        _fail(e)

    for name in sort_newest_first(names, settings.secrets_prefix):
        click.echo(name)


@cli.command()
@click.option('--days', type=int, default=None, help='Retention window (overrides BACKUP_RETENTION_DAYS).')
@click.option('--bucket', default=None, help='Bucket to sweep (overrides BACKUP_BUCKET).')
@click.pass_context
def sweep(ctx, days, bucket):
    """Delete backups older than the retention window."""
    settings = _settings(ctx, bucket=bucket, retention_days=days)
    try:
        sweeper = RetentionSweeper(create_storage(settings), settings.secrets_prefix)
        result = sweeper.run(settings.retention_days)
    except (StorageError, ValueError) as e:
        _fail(e)

    for name in result.skipped:
        click.echo(f"Skipped (unparseable): {name}")
    _print_warnings(sweeper.run_log.warnings)
    click.echo(f"Deleted {len(result.deleted)} backups, retained {len(result.retained)}")


@cli.command()
@click.option('--hours', type=int, default=None, help='Backup interval (overrides BACKUP_HOURS).')
@click.option('--initial-delay', type=int, default=300, show_default=True,
              help='Seconds until the first backup (0 disables it).')
@click.pass_context
def schedule(ctx, hours, initial_delay):
    """Run periodic backups until interrupted."""
    from clawdeploy.scheduler import init_scheduler, start_scheduler, stop_scheduler

    settings = _settings(ctx, backup_hours=hours)
    try:
        init_scheduler(settings, initial_delay=initial_delay)
    except ValueError as e:
        _fail(e)

    click.echo(f"Backing up every {settings.backup_hours}h")
    try:
        start_scheduler()
    finally:
        stop_scheduler()


@cli.group()
def secrets():
    """Manage deployment secrets."""
    pass


@secrets.command('put-keys')
@click.option('--anthropic-key', envvar='ANTHROPIC_API_KEY', prompt=True, hide_input=True)
@click.option('--openai-key', envvar='OPENAI_API_KEY', prompt=True, hide_input=True)
@click.option('--mistral-key', envvar='MISTRAL_API_KEY', default='', help='Optional.')
@click.pass_context
def secrets_put_keys(ctx, anthropic_key, openai_key, mistral_key):
    """Store API keys and a fresh gateway token."""
    settings = _settings(ctx)
    keys = {ANTHROPIC_API_KEY: anthropic_key, OPENAI_API_KEY: openai_key, MISTRAL_API_KEY: mistral_key}
    try:
        stored = store_api_keys(create_secret_store(settings), keys)
    except (SecretNotFound, SecretBackendError, ValueError) as e:
        _fail(e)

    click.echo(f"Stored {len(stored)} secrets")


@secrets.command('validate')
@click.pass_context
def secrets_validate(ctx):
    """Check that required secrets exist."""
    settings = _settings(ctx)
    try:
        warnings = validate_secrets(create_secret_store(settings))
    except (SecretNotFound, SecretBackendError, ValueError) as e:
        _fail(e)

    _print_warnings(warnings)
    click.echo("Secrets OK")


@secrets.command('keygen')
@click.pass_context
def secrets_keygen(ctx):
    """Generate and store the backup encryption key pair."""
    settings = _settings(ctx)
    try:
        provisioned = provision_encryption_keys(create_secret_store(settings), AgeCodec())
    except (EncryptionError, SecretBackendError, ValueError) as e:
        _fail(e)

    if provisioned:
        click.echo("Encryption keys provisioned")
    else:
        click.echo("[WARN] Encryption keys not provisioned (age-keygen not installed)", err=True)


@secrets.command('migrate')
@click.option('--to', 'target', type=click.Choice(['gcp', 'aws', 'local']), required=True,
              help='Destination secret backend.')
@click.option('--name', 'names', multiple=True, help='Secret to copy (default: all).')
@click.pass_context
def secrets_migrate(ctx, target, names):
    """Copy secrets to another backend and verify them."""
    settings = _settings(ctx)
    try:
        source = create_secret_store(settings)
        dest = create_secret_store(settings, provider=target)
        copied = migrate_secrets(source, dest, names or None)
    except (SecretNotFound, SecretBackendError, ValueError) as e:
        _fail(e)

    click.echo(f"Migrated {len(copied)} secrets to {target}")


@secrets.command('load')
@click.option('--secrets-dir', default=None, help='Memory-backed directory (overrides SECRETS_DIR).')
@click.pass_context
def secrets_load(ctx, secrets_dir):
    """Write the container .env from the secret store."""
    settings = _settings(ctx, secrets_dir=secrets_dir)
    try:
        env_path = materialize_secrets(create_secret_store(settings), settings)
    except (SecretBackendError, OSError, ValueError) as e:
        _fail(e)

    click.echo(f"Secrets loaded into {env_path}")


def sort_newest_first(names, prefix: str):
    """
    Order archive names for display.

    Latest aliases come first, then timestamped archives newest first,
    then anything else alphabetically.
    """
    pattern = manifest.archive_pattern(prefix)
    aliases = [n for n in names if n in (manifest.latest_name(prefix), manifest.latest_name(prefix, True))]
    stamped = [n for n in names if pattern.match(n)]
    others = sorted(n for n in names if n not in aliases and n not in stamped)

    def sort_key(name):
        match = pattern.match(name)
        return match.group('date') + match.group('time'), name

    return sorted(aliases) + sorted(stamped, key=sort_key, reverse=True) + others


def _handle_termination(signum, frame):
    # Unwind through finally blocks so temporary files are removed
    raise SystemExit(128 + signum)


def main():
    signal.signal(signal.SIGTERM, _handle_termination)
    if hasattr(signal, 'SIGHUP'):
        signal.signal(signal.SIGHUP, _handle_termination)
    cli(obj={})


if __name__ == '__main__':
    main()
