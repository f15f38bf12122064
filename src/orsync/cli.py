"""Command-line access to the shared operating-room schedule document."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click

from .sync.config import SyncConfig
from .sync.config_utils import ConfigurationManager, get_config_for_environment
from .sync.document_store import JsonFileDocumentStore
from .sync.lock_manager import FileLockManager
from .sync.logging_config import setup_sync_logging
from .sync.models import generate_client_id
from .sync.session import SyncSession, build_sync_session


logger = logging.getLogger(__name__)


def _load_config(env_file: Optional[str], sync_dir: Optional[str], log_level: Optional[str]) -> SyncConfig:
    try:
        config = SyncConfig.from_file(env_file) if env_file else get_config_for_environment()
        overrides = {}
        if sync_dir:
            overrides["sync_dir"] = sync_dir
        if log_level:
            overrides["log_level"] = log_level.upper()
        return config.with_overrides(**overrides) if overrides else config
    except (ValueError, FileNotFoundError) as e:
        raise click.ClickException(str(e))


def _session(ctx: click.Context) -> SyncSession:
    return build_sync_session(ctx.obj["config"], client_id=ctx.obj["client_id"])


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@click.group()
@click.option('--sync-dir', envvar='ORSYNC_SYNC_DIR', type=click.Path(file_okay=False), help='Shared directory holding the schedule document')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='.env file with ORSYNC_* settings')
@click.option('--client-id', envvar='ORSYNC_CLIENT_ID', help='Client identity (generated if omitted)')
@click.option('--log-level', envvar='ORSYNC_LOG_LEVEL', help='Logging level')
@click.option('--log-file', envvar='ORSYNC_LOG_FILE', help='Log file path')
@click.pass_context
def main(ctx, sync_dir, env_file, client_id, log_level, log_file):
    """
    Share an operating-room staff schedule between workstations through a common directory.
    """
    config = _load_config(env_file, sync_dir, log_level)
    setup_sync_logging(config.log_level, log_file)
    
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["client_id"] = client_id or generate_client_id()


@main.command()
@click.pass_context
def init(ctx):
    """Create the shared schedule document if it does not exist yet."""
    result = asyncio.run(_session(ctx).coordinator.initialize())
    if not result.success:
        raise click.ClickException(f"Initialization failed: {result.error}")
    
    if result.created:
        click.echo(f"Created {ctx.obj['config'].document_path}")
    else:
        click.echo(f"{ctx.obj['config'].document_path} already exists")


@main.command()
@click.pass_context
def status(ctx):
    """Show document version, last writer and lock state."""
    config: SyncConfig = ctx.obj["config"]
    
    environment = ConfigurationManager(config).validate_environment()
    for warning in environment["warnings"]:
        click.echo(f"Warning: {warning}")
    if not environment["valid"]:
        raise click.ClickException("; ".join(environment["errors"]))
    
    async def collect():
        store = JsonFileDocumentStore(config.document_path)
        lock_manager = FileLockManager(config.lock_path, stale_timeout_ms=config.lock_stale_timeout_ms)
        document = await store.read() if await store.exists() else None
        return document, await lock_manager.check_lock()
    
    try:
        document, lock = asyncio.run(collect())
    except Exception as e:
        raise click.ClickException(f"Failed to read status: {e}")
    
    if document is None:
        click.echo(f"No sync document at {config.document_path}")
    else:
        click.echo(f"Document:      {config.document_path}")
        click.echo(f"Version:       {document.version}")
        click.echo(f"Last modified: {document.last_modified.isoformat()}")
        click.echo(f"Modified by:   {document.modified_by}")
        click.echo(f"Weeks:         {len(document.weeks)}")
        click.echo(f"Hash:          {document.fingerprint}")
    
    if lock is None:
        click.echo("Lock:          free")
    else:
        stale = " (stale)" if lock.is_stale else ""
        click.echo(f"Lock:          held by {lock.owner_id} for {lock.age_seconds:.1f}s{stale}")


@main.command()
@click.pass_context
def load(ctx):
    """Print the shared schedule as JSON."""
    result = asyncio.run(_session(ctx).sync_now())
    if not result.success:
        raise click.ClickException(f"Load failed: {result.error}")
    _echo_json(result.payload)


@main.command()
@click.argument('payload_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--expect-hash', help='Hash the schedule was based on; refuse to save if the document moved on')
@click.option('--force', is_flag=True, help='Overwrite whatever the document currently holds')
@click.pass_context
def save(ctx, payload_file, expect_hash, force):
    """Replace the shared schedule with the weeks in PAYLOAD_FILE.
    
    Requires --expect-hash with the hash the weeks were based on, or --force
    to overwrite the current document unconditionally.
    """
    if bool(expect_hash) == force:
        raise click.UsageError("Pass exactly one of --expect-hash or --force")
    
    try:
        payload = json.loads(Path(payload_file).read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Cannot read {payload_file}: {e}")
    
    if not isinstance(payload, list):
        raise click.ClickException(f"{payload_file} must contain a JSON list of weeks")
    
    session = _session(ctx)
    
    async def run():
        if expect_hash:
            session.coordinator.acknowledge(expect_hash)
        else:
            loaded = await session.sync_now()
            if not loaded.success:
                return None, loaded.error
        return await session.save(payload), None
    
    result, load_error = asyncio.run(run())
    if result is None:
        raise click.ClickException(f"Load failed: {load_error}")
    
    if result.success:
        click.echo(f"Saved version {result.version}")
    elif result.conflict is not None:
        conflict = result.conflict
        raise click.ClickException(
            f"Conflict: version {conflict.remote_version} was written by {conflict.modified_by} "
            f"at {conflict.last_modified.isoformat()}"
        )
    else:
        raise click.ClickException(f"Save failed: {result.error}")


@main.command()
@click.option('--since', 'since_hash', required=True, help='Hash of the last known document')
@click.pass_context
def check(ctx, since_hash):
    """Report whether the document changed since the given hash."""
    session = _session(ctx)
    session.coordinator.acknowledge(since_hash)
    result = asyncio.run(session.check_for_changes())
    if result.error is not None:
        raise click.ClickException(f"Check failed: {result.error}")
    _echo_json(result.to_dict())


@main.command()
@click.option('--force', is_flag=True, help='Remove the lock even if it is not stale')
@click.pass_context
def unlock(ctx, force):
    """Remove an abandoned lock file."""
    config: SyncConfig = ctx.obj["config"]
    lock_manager = FileLockManager(config.lock_path, stale_timeout_ms=config.lock_stale_timeout_ms)
    
    lock = asyncio.run(lock_manager.check_lock())
    if lock is None:
        click.echo("Lock is free")
        return
    
    if not lock.is_stale and not force:
        raise click.ClickException(
            f"Lock held by {lock.owner_id} is only {lock.age_seconds:.1f}s old; use --force to remove it"
        )
    
    asyncio.run(lock_manager.force_release())
    click.echo(f"Removed lock held by {lock.owner_id}")


@main.command()
@click.option('--duration', type=float, help='Stop after this many seconds')
@click.pass_context
def watch(ctx, duration):
    """Print the shared schedule size, then every remote change."""
    session = _session(ctx)
    
    loads = []
    
    def on_change(weeks):
        label = "Remote change" if loads else "Loaded"
        loads.append(len(weeks))
        click.echo(f"{label}: {len(weeks)} week(s)")
    
    async def run():
        session.subscribe(on_change)
        result = await session.start()
        if not result.success:
            raise click.ClickException(f"Initialization failed: {result.error}")
        
        click.echo(f"Watching {ctx.obj['config'].document_path} as {session.client_id}")
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await session.stop()
    
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("Stopped")


if __name__ == '__main__':
    main()
