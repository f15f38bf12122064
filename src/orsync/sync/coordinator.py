"""Coordinator for saving, loading and polling the shared schedule document."""

import asyncio
from typing import Any, List, Optional
import logging

from .interfaces import DocumentStore, LockManager
from .models import (
    ClientSyncState, SyncDocument, SyncConflict,
    InitResult, SaveResult, LoadResult, ChangeCheckResult
)
from .exceptions import LockAcquisitionError
from .logging_config import log_sync_event, log_conflict_event, PerformanceTimer


logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Mediates every access of one client to the shared document.
    
    Writes happen under the lock file and are rejected with a conflict when
    the document changed since this client last saw it. Reads need no lock
    because the store replaces the document atomically.
    
    All operations of one coordinator are serialized by an in-process lock so
    that overlapping calls from the same process queue up instead of
    interleaving their reads and writes.
    """
    
    def __init__(self, store: DocumentStore, lock_manager: LockManager,
                 state: ClientSyncState, lock_max_wait_ms: int = 5000,
                 max_attempts: int = 3, backoff_ms: int = 100):
        """Initialize the coordinator.
        
        Args:
            store: Storage of the shared document
            lock_manager: Lock guarding document writes
            state: This client's sync state (client id and last known fingerprint)
            lock_max_wait_ms: Wait window for the lock before it is reclaimed
            max_attempts: Attempts per save before a failure is reported
            backoff_ms: Linear backoff unit between save attempts
        """
        self._store = store
        self._lock_manager = lock_manager
        self._state = state
        self._lock_max_wait_ms = lock_max_wait_ms
        self._max_attempts = max_attempts
        self._backoff_ms = backoff_ms
        self._operation_lock = asyncio.Lock()
    
    @property
    def state(self) -> ClientSyncState:
        return self._state
    
    @property
    def client_id(self) -> str:
        return self._state.client_id
    
    async def initialize(self) -> InitResult:
        """Create the shared document unless it already exists.
        
        Safe to call from every client at startup: only one caller creates
        the document, everybody else observes it and does nothing.
        """
        async with self._operation_lock:
            try:
                if await self._store.exists():
                    logger.debug(f"Sync document already exists, client {self.client_id} joins it")
                    return InitResult(success=True, client_id=self.client_id)
                
                initial = SyncDocument.build(version=1, modified_by=self.client_id, weeks=[])
                created = await self._store.create_if_absent(initial)
                
                if created:
                    self._state.last_known_fingerprint = initial.fingerprint
                    log_sync_event(logger, "init", self.client_id,
                                   "Created initial sync document",
                                   version=initial.version, fingerprint=initial.fingerprint)
                
                return InitResult(success=True, client_id=self.client_id, created=created)
                
            except Exception as e:
                logger.error(f"Failed to initialize sync document: {e}")
                return InitResult(success=False, error=str(e))
    
    async def save(self, payload: List[Any]) -> SaveResult:
        """Save a payload unless another client changed the document.
        
        The whole attempt (lock, read, conflict check, write, release) is
        retried with linear backoff when it raises. A conflict is a result,
        not an error, and is never retried.
        
        Args:
            payload: Full schedule to store
            
        Returns:
            SaveResult with success, a conflict, or the last error
        """
        async with self._operation_lock:
            last_error: Optional[Exception] = None
            
            for attempt in range(1, self._max_attempts + 1):
                try:
                    with PerformanceTimer(logger, "save", client_id=self.client_id, attempt=attempt):
                        result = await self._save_once(payload)
                    result.attempts = attempt
                    return result
                    
                except Exception as e:
                    last_error = e
                    logger.warning(f"Save attempt {attempt}/{self._max_attempts} failed: {e}",
                                   extra={'client_id': self.client_id, 'attempt': attempt})
                    
                    if attempt < self._max_attempts:
                        await asyncio.sleep(self._backoff_ms * attempt / 1000)
            
            logger.error(f"Failed to save after {self._max_attempts} attempts: {last_error}")
            return SaveResult(
                success=False,
                error=str(last_error) if last_error else "Maximum retries exceeded",
                attempts=self._max_attempts
            )
    
    async def _save_once(self, payload: List[Any]) -> SaveResult:
        acquired = await self._lock_manager.acquire(self.client_id, self._lock_max_wait_ms)
        if not acquired:
            lock = await self._lock_manager.check_lock()
            raise LockAcquisitionError(
                str(self._lock_manager.lock_path),
                self.client_id,
                held_by=lock.owner_id if lock else None
            )
        
        try:
            current = await self._store.read()
            
            if (current.fingerprint != self._state.last_known_fingerprint
                    and current.modified_by != self.client_id):
                log_conflict_event(logger, self.client_id, current.modified_by, current.version,
                                   fingerprint=current.fingerprint)
                return SaveResult(
                    success=False,
                    conflict=SyncConflict(
                        local=payload,
                        remote=current.weeks,
                        last_modified=current.last_modified,
                        modified_by=current.modified_by,
                        remote_version=current.version,
                        remote_fingerprint=current.fingerprint
                    ),
                    version=current.version
                )
            
            updated = current.next_revision(self.client_id, payload)
            await self._store.write(updated)
            self._state.last_known_fingerprint = updated.fingerprint
            
            log_sync_event(logger, "save", self.client_id,
                           f"Saved schedule as version {updated.version}",
                           version=updated.version, fingerprint=updated.fingerprint)
            return SaveResult(success=True, version=updated.version)
            
        finally:
            # Release errors must not retry a write that already happened
            try:
                await self._lock_manager.release(self.client_id)
            except Exception as e:
                logger.error(f"Failed to release lock {self._lock_manager.lock_path}: {e}")
    
    async def load(self) -> LoadResult:
        """Read the shared document and adopt it as this client's known state."""
        async with self._operation_lock:
            try:
                document = await self._store.read()
            except Exception as e:
                logger.error(f"Failed to load sync document: {e}")
                return LoadResult(success=False, error=str(e))
            
            self._state.last_known_fingerprint = document.fingerprint
            log_sync_event(logger, "load", self.client_id,
                           f"Loaded schedule version {document.version}",
                           version=document.version, fingerprint=document.fingerprint)
            return LoadResult(success=True, payload=document.weeks, version=document.version)
    
    async def check_for_changes(self) -> ChangeCheckResult:
        """Report whether another client has written the document.
        
        Cheap enough for periodic polling and used for watcher notifications
        as well. The document is never modified. Once a change is reported
        its fingerprint becomes the known one, so the next call reports no
        change until somebody writes again.
        """
        async with self._operation_lock:
            try:
                document = await self._store.read()
            except Exception as e:
                logger.error(f"Error checking for changes: {e}")
                return ChangeCheckResult(has_changes=False, error=str(e))
            
            if (document.fingerprint != self._state.last_known_fingerprint
                    and document.modified_by != self.client_id):
                self._state.last_known_fingerprint = document.fingerprint
                log_sync_event(logger, "remote_change", self.client_id,
                               f"Remote change detected: version {document.version} by {document.modified_by}",
                               version=document.version, fingerprint=document.fingerprint)
                return ChangeCheckResult(has_changes=True, payload=document.weeks)
            
            return ChangeCheckResult(has_changes=False)
    
    def acknowledge(self, fingerprint: str) -> None:
        """Accept a fingerprint as known without reading the document.
        
        Used when the user resolves a conflict: the remote state they were
        shown becomes the base of their next save.
        """
        self._state.last_known_fingerprint = fingerprint
