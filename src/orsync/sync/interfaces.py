"""Base interfaces for synchronization components."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from .models import SyncDocument, LockInfo


ChangeCallback = Callable[[], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class LockManager(ABC):
    """Interface for the advisory lock guarding document writes."""
    
    @property
    @abstractmethod
    def lock_path(self) -> Path:
        """Location of the lock marker."""
        pass
    
    @abstractmethod
    async def acquire(self, owner_id: str, max_wait_ms: Optional[int] = None) -> bool:
        """Acquire the lock for an owner, reclaiming it if it is abandoned."""
        pass
    
    @abstractmethod
    async def release(self, owner_id: str) -> bool:
        """Release the lock held by an owner. Never raises for a missing lock."""
        pass
    
    @abstractmethod
    async def check_lock(self) -> Optional[LockInfo]:
        """Check whether the lock is currently held."""
        pass


class DocumentStore(ABC):
    """Interface for durable storage of the shared sync document."""
    
    @abstractmethod
    async def exists(self) -> bool:
        """Check whether the document exists."""
        pass
    
    @abstractmethod
    async def read(self) -> SyncDocument:
        """Read and parse the document."""
        pass
    
    @abstractmethod
    async def write(self, document: SyncDocument) -> None:
        """Atomically replace the document."""
        pass
    
    @abstractmethod
    async def create_if_absent(self, document: SyncDocument) -> bool:
        """Create the document unless one exists. Returns True if created."""
        pass


class ChangeWatcher(ABC):
    """Interface for push notification of external document changes."""
    
    @abstractmethod
    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """Register a change callback and return a function removing it."""
        pass
    
    @abstractmethod
    async def start(self) -> None:
        """Start observing the document."""
        pass
    
    @abstractmethod
    async def stop(self) -> None:
        """Stop observing the document."""
        pass
