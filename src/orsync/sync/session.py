"""Client-side synchronization session consumed by the presentation layer."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Set, Union
import logging

from .config import SyncConfig
from .coordinator import SyncCoordinator
from .document_store import JsonFileDocumentStore
from .interfaces import ChangeWatcher, Unsubscribe
from .lock_manager import FileLockManager
from .models import (
    ClientSyncState, ConnectionStatus, SyncConflict, SyncStatus,
    InitResult, SaveResult, LoadResult, ChangeCheckResult,
    generate_client_id, utc_now
)
from .watcher import PollingChangeWatcher, NullChangeWatcher


logger = logging.getLogger(__name__)


RemoteChangeListener = Callable[[List[Any]], Union[None, Awaitable[None]]]


class SyncSession:
    """Owns one client's sync state and drives the coordinator for the UI.
    
    Remote changes arrive through two paths, the change watcher (push) and a
    periodic poll (pull). Both end up in check_for_changes(), so listeners
    see the same behaviour whichever path fires first.
    """
    
    def __init__(self, coordinator: SyncCoordinator, watcher: Optional[ChangeWatcher] = None,
                 poll_interval_seconds: float = 5.0, autosave_debounce_seconds: float = 2.0):
        """Initialize the session.
        
        Args:
            coordinator: Coordinator for this client's document access
            watcher: Change watcher for push notifications (None disables them)
            poll_interval_seconds: Interval of the periodic change check
            autosave_debounce_seconds: Quiet period before a scheduled save runs
        """
        self._coordinator = coordinator
        self._watcher = watcher or NullChangeWatcher()
        self._poll_interval = poll_interval_seconds
        self._autosave_debounce = autosave_debounce_seconds
        self._listeners: List[RemoteChangeListener] = []
        self._watcher_unsubscribe: Optional[Unsubscribe] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._autosave_task: Optional[asyncio.Task] = None
        self._saving_tasks: Set[asyncio.Task] = set()
    
    @property
    def coordinator(self) -> SyncCoordinator:
        return self._coordinator
    
    @property
    def state(self) -> ClientSyncState:
        return self._coordinator.state
    
    @property
    def client_id(self) -> str:
        return self.state.client_id
    
    @property
    def pending_conflict(self) -> Optional[SyncConflict]:
        return self.state.conflict
    
    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            client_id=self.client_id,
            connection_status=self.state.connection_status,
            has_conflict=self.state.conflict is not None,
            last_sync=self.state.last_sync
        )
    
    def subscribe(self, listener: RemoteChangeListener) -> Unsubscribe:
        """Register a listener receiving the payload of each remote change."""
        self._listeners.append(listener)
        
        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        
        return unsubscribe
    
    async def start(self) -> InitResult:
        """Initialize the shared document, start change detection and hand the
        current schedule to the listeners.
        
        Returns:
            The initialization result; change detection only starts on success
        """
        result = await self._coordinator.initialize()
        if not result.success:
            self.state.connection_status = ConnectionStatus.DISCONNECTED
            logger.error(f"Failed to initialize sync: {result.error}")
            return result
        
        self.state.connection_status = ConnectionStatus.CONNECTED
        
        self._watcher_unsubscribe = self._watcher.subscribe(self._on_file_changed)
        await self._watcher.start()
        
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._periodic_check())
        
        # Listeners receive the current schedule before any remote change
        loaded = await self.sync_now()
        if loaded.success:
            await self._notify_listeners(loaded.payload)
        logger.info(f"Sync session started for client {self.client_id}")
        return result
    
    async def stop(self) -> None:
        """Stop change detection and cancel any pending auto-save."""
        if self._autosave_task in self._saving_tasks:
            await self.flush()

        for task in (self._poll_task, self._autosave_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._autosave_task = None
        
        if self._watcher_unsubscribe:
            self._watcher_unsubscribe()
            self._watcher_unsubscribe = None
        await self._watcher.stop()
        
        logger.info(f"Sync session stopped for client {self.client_id}")
    
    async def save(self, payload: List[Any]) -> SaveResult:
        """Save a payload and record the outcome in the session state."""
        result = await self._coordinator.save(payload)
        
        if result.success:
            self.state.conflict = None
            self.state.last_sync = utc_now()
            self.state.connection_status = ConnectionStatus.CONNECTED
        elif result.conflict is not None:
            self.state.conflict = result.conflict
            self._cancel_pending_autosave()
            logger.info("Conflict detected during save, waiting for resolution")
        else:
            logger.error(f"Failed to save to shared document: {result.error}")
        
        return result
    
    async def sync_now(self) -> LoadResult:
        """Load the shared document regardless of the current status."""
        result = await self._coordinator.load()
        
        if result.success:
            self.state.last_sync = utc_now()
            self.state.connection_status = ConnectionStatus.CONNECTED
        else:
            self.state.connection_status = ConnectionStatus.DISCONNECTED
        
        return result
    
    async def check_for_changes(self) -> ChangeCheckResult:
        """Check for remote changes and hand them to the listeners."""
        result = await self._coordinator.check_for_changes()
        
        if result.error is not None:
            self.state.connection_status = ConnectionStatus.DISCONNECTED
            return result
        
        self.state.connection_status = ConnectionStatus.CONNECTED
        if result.has_changes:
            self.state.last_sync = utc_now()
            await self._notify_listeners(result.payload)
        
        return result
    
    async def resolve_conflict(self, prefer_local: bool) -> SaveResult:
        """Resolve the pending conflict by saving one side of it.
        
        The remote state shown in the conflict is acknowledged as known, so
        the save succeeds unless yet another client wrote in the meantime;
        in that case a new conflict is reported rather than retried.
        
        Args:
            prefer_local: Keep this client's payload instead of the remote one
        """
        conflict = self.state.conflict
        if conflict is None:
            return SaveResult(success=False, error="No pending conflict to resolve")
        
        chosen = conflict.local if prefer_local else conflict.remote
        self._coordinator.acknowledge(conflict.remote_fingerprint)
        self.state.conflict = None
        
        logger.info(f"Resolving conflict with {'local' if prefer_local else 'remote'} payload")
        return await self.save(chosen)
    
    def schedule_save(self, payload: List[Any]) -> bool:
        """Save after the debounce period unless another save is scheduled first.
        
        Returns:
            False if auto-save is blocked by a pending conflict
        """
        if self.state.conflict is not None:
            logger.debug("Auto-save skipped while a conflict is pending")
            return False
        
        # A save already past its debounce runs to completion; the coordinator
        # queues the next one behind it
        self._cancel_pending_autosave()
        
        self._autosave_task = asyncio.create_task(self._debounced_save(payload))
        return True
    
    async def flush(self) -> Optional[SaveResult]:
        """Wait for a scheduled auto-save to finish and return its result."""
        task = self._autosave_task
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            return None
    
    def _cancel_pending_autosave(self) -> None:
        task = self._autosave_task
        if task and not task.done() and task not in self._saving_tasks:
            task.cancel()
    
    async def _debounced_save(self, payload: List[Any]) -> Optional[SaveResult]:
        await asyncio.sleep(self._autosave_debounce)
        if self.state.conflict is not None:
            logger.info("Auto-save dropped, a conflict was detected during the debounce period")
            return None
        task = asyncio.current_task()
        self._saving_tasks.add(task)
        try:
            return await self.save(payload)
        finally:
            self._saving_tasks.discard(task)
    
    async def _on_file_changed(self) -> None:
        logger.debug("Shared document changed on disk, checking for updates")
        await self.check_for_changes()
    
    async def _periodic_check(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._poll_interval)
                await self.check_for_changes()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error during periodic change check: {e}")
    
    async def _notify_listeners(self, payload: List[Any]) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Remote change listener error: {e}")


def build_sync_session(config: SyncConfig, client_id: Optional[str] = None) -> SyncSession:
    """Wire up a session and its components from configuration.
    
    Args:
        config: Validated sync configuration
        client_id: Fixed client identity (a fresh one is generated if None)
    """
    state = ClientSyncState(client_id=client_id or generate_client_id())
    
    lock_manager = FileLockManager(
        config.lock_path,
        default_max_wait_ms=config.lock_max_wait_ms,
        poll_interval_ms=config.lock_poll_interval_ms,
        stale_timeout_ms=config.lock_stale_timeout_ms
    )
    coordinator = SyncCoordinator(
        JsonFileDocumentStore(config.document_path),
        lock_manager,
        state,
        lock_max_wait_ms=config.lock_max_wait_ms,
        max_attempts=config.save_max_attempts,
        backoff_ms=config.save_backoff_ms
    )
    
    if config.watch_enabled:
        watcher: ChangeWatcher = PollingChangeWatcher(config.document_path, config.watch_interval_seconds)
    else:
        watcher = NullChangeWatcher()
    
    return SyncSession(
        coordinator,
        watcher,
        poll_interval_seconds=config.poll_interval_seconds,
        autosave_debounce_seconds=config.autosave_debounce_seconds
    )
