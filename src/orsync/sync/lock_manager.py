"""Advisory lock file guarding writes to the shared sync document."""

import asyncio
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
import logging

from .interfaces import LockManager
from .models import LockInfo
from .logging_config import log_lock_event


logger = logging.getLogger(__name__)


class FileLockManager(LockManager):
    """Lock manager backed by a marker file on the shared filesystem.
    
    The marker is created with an exclusive create so two clients cannot both
    create it on a filesystem that honours ``O_EXCL``. Its content is the
    owner's client id. A marker older than the staleness timeout, or one that
    outlives a waiter's whole wait window, is presumed abandoned and removed.
    """
    
    def __init__(self, lock_path: Union[str, Path], default_max_wait_ms: int = 5000,
                 poll_interval_ms: int = 50, stale_timeout_ms: Optional[int] = None):
        """Initialize the lock manager.
        
        Args:
            lock_path: Location of the lock marker file
            default_max_wait_ms: How long acquire() waits before reclaiming the lock
            poll_interval_ms: Interval between checks for the marker
            stale_timeout_ms: Marker age after which it is reclaimed at once
                (defaults to default_max_wait_ms)
        """
        self._lock_path = Path(lock_path)
        self._default_max_wait_ms = default_max_wait_ms
        self._poll_interval = poll_interval_ms / 1000
        self._stale_timeout_ms = stale_timeout_ms if stale_timeout_ms is not None else default_max_wait_ms
    
    @property
    def lock_path(self) -> Path:
        return self._lock_path
    
    async def acquire(self, owner_id: str, max_wait_ms: Optional[int] = None) -> bool:
        """Acquire the lock, waiting for another writer to finish.
        
        Args:
            owner_id: Client id written into the marker
            max_wait_ms: Wait window before the marker is forcibly removed
            
        Returns:
            True once the marker belongs to owner_id, False only if another
            client grabbed the lock in the instant after a forced removal
        """
        if max_wait_ms is None:
            max_wait_ms = self._default_max_wait_ms
        
        deadline = time.monotonic() + max_wait_ms / 1000
        
        while True:
            if await asyncio.to_thread(self._try_create, owner_id):
                log_lock_event(logger, owner_id, "acquired", f"Lock acquired: {self._lock_path}")
                return True
            
            existing = await self.check_lock()
            if existing is not None and existing.is_stale:
                log_lock_event(
                    logger, owner_id, "reclaimed",
                    f"Removing stale lock held by {existing.owner_id} "
                    f"({existing.age_seconds:.1f}s old)",
                    held_by=existing.owner_id
                )
                await asyncio.to_thread(self._remove)
                continue
            
            if time.monotonic() >= deadline:
                break
            
            await asyncio.sleep(self._poll_interval)
        
        existing = await self.check_lock()
        held_by = existing.owner_id if existing else None
        log_lock_event(
            logger, owner_id, "reclaimed",
            f"Lock held by {held_by} for the whole {max_wait_ms}ms wait window, forcing removal",
            held_by=held_by
        )
        await asyncio.to_thread(self._remove)
        
        if await asyncio.to_thread(self._try_create, owner_id):
            log_lock_event(logger, owner_id, "acquired", f"Lock acquired after reclaim: {self._lock_path}")
            return True
        
        log_lock_event(logger, owner_id, "race_lost",
                       f"Another client took the lock right after it was reclaimed: {self._lock_path}")
        return False
    
    async def release(self, owner_id: str) -> bool:
        """Release the lock held by owner_id.
        
        Returns:
            True if a marker owned by owner_id was removed. A missing marker
            or one owned by another client is left alone and yields False.
        """
        existing = await self.check_lock()
        
        if existing is None:
            log_lock_event(logger, owner_id, "release_noop", f"No lock to release at {self._lock_path}")
            return False
        
        if existing.owner_id != owner_id:
            log_lock_event(
                logger, owner_id, "foreign_release",
                f"Not releasing lock owned by {existing.owner_id}",
                held_by=existing.owner_id
            )
            return False
        
        await asyncio.to_thread(self._remove)
        log_lock_event(logger, owner_id, "released", f"Lock released: {self._lock_path}")
        return True
    
    async def check_lock(self) -> Optional[LockInfo]:
        """Check if the lock marker exists.
        
        Returns:
            LockInfo if locked, None if not locked
        """
        return await asyncio.to_thread(self._read_lock_info)
    
    async def force_release(self) -> bool:
        """Remove the marker regardless of owner. Returns True if one existed."""
        existing = await self.check_lock()
        await asyncio.to_thread(self._remove)
        if existing is not None:
            logger.warning(f"Lock held by {existing.owner_id} forcibly released")
        return existing is not None
    
    def _try_create(self, owner_id: str) -> bool:
        try:
            fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(owner_id)
        return True
    
    def _remove(self) -> None:
        try:
            self._lock_path.unlink()
        except FileNotFoundError:
            pass
    
    def _read_lock_info(self) -> Optional[LockInfo]:
        try:
            stat = self._lock_path.stat()
            owner_id = self._lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        
        age_seconds = max(time.time() - stat.st_mtime, 0.0)
        return LockInfo(
            owner_id=owner_id,
            acquired_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            age_seconds=age_seconds,
            is_stale=age_seconds * 1000 >= self._stale_timeout_ms
        )
