"""Push notification of external changes to the shared sync document."""

import asyncio
import inspect
from pathlib import Path
from typing import List, Optional, Tuple, Union
import logging

from .interfaces import ChangeWatcher, ChangeCallback, Unsubscribe


logger = logging.getLogger(__name__)


FileSignature = Optional[Tuple[int, int]]


class PollingChangeWatcher(ChangeWatcher):
    """Watches the document by polling its modification time and size.
    
    Notifications are best effort. Subscribers must re-check the document
    themselves; a missed or spurious notification only changes how quickly a
    change is picked up, never whether it is.
    
    Usage:
        watcher = PollingChangeWatcher(path)
        unsubscribe = watcher.subscribe(on_change)
        await watcher.start()
        # ... later ...
        unsubscribe()
        await watcher.stop()
    """
    
    def __init__(self, path: Union[str, Path], interval_seconds: float = 0.5):
        self._path = Path(path)
        self._interval = interval_seconds
        self._callbacks: List[ChangeCallback] = []
        self._watch_task: Optional[asyncio.Task] = None
        self._last_signature: FileSignature = None
    
    @property
    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()
    
    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """Register a callback invoked whenever the document changes."""
        self._callbacks.append(callback)
        
        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
        
        return unsubscribe
    
    async def start(self) -> None:
        """Start watching. The document does not need to exist yet."""
        if self.is_running:
            logger.warning(f"Watcher for {self._path} already running")
            return
        
        self._last_signature = await asyncio.to_thread(self._signature)
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(f"Started watching {self._path}")
    
    async def stop(self) -> None:
        """Stop watching."""
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
            logger.info(f"Stopped watching {self._path}")
    
    async def _watch_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self.poll()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Watch loop error for {self._path}: {e}")
    
    async def poll(self) -> bool:
        """Compare the document with the last observation and notify on change.
        
        Returns:
            True if a change was observed
        """
        signature = await asyncio.to_thread(self._signature)
        if signature == self._last_signature:
            return False
        
        self._last_signature = signature
        if signature is None:
            # Deleted; nothing to report until it reappears
            return False
        
        logger.debug(f"Change observed on {self._path}")
        await self._notify()
        return True
    
    async def _notify(self) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Change callback error: {e}")
    
    def _signature(self) -> FileSignature:
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_mtime_ns, stat.st_size)


class NullChangeWatcher(ChangeWatcher):
    """Watcher that never notifies; change detection relies on polling alone."""
    
    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        return lambda: None
    
    async def start(self) -> None:
        logger.info("File watching disabled, relying on periodic polling")
    
    async def stop(self) -> None:
        pass
