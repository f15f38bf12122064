"""Data models for schedule file synchronization."""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .fingerprint import fingerprint


class ConnectionStatus(Enum):
    """Whether the client can currently reach the shared document."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class SyncStatusLevel(Enum):
    """Status levels shown by the sync indicator."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CONFLICT = "conflict"


def generate_client_id() -> str:
    """Generate a process-unique client identity."""
    return f"client-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncDocument(BaseModel):
    """The durable shared schedule document.
    
    Serialized with the camelCase keys used on disk; ``weeks`` is the opaque
    schedule payload and ``hash`` its fingerprint.
    """
    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(ge=1)
    last_modified: datetime = Field(alias="lastModified")
    modified_by: str = Field(alias="modifiedBy")
    weeks: List[Any] = Field(default_factory=list)
    fingerprint: str = Field(alias="hash")

    @classmethod
    def build(cls, version: int, modified_by: str, weeks: List[Any],
              last_modified: Optional[datetime] = None) -> "SyncDocument":
        """Create a document whose fingerprint matches its payload."""
        return cls(
            version=version,
            last_modified=last_modified or utc_now(),
            modified_by=modified_by,
            weeks=weeks,
            fingerprint=fingerprint(weeks),
        )

    def next_revision(self, modified_by: str, weeks: List[Any]) -> "SyncDocument":
        """Build the document that replaces this one on a successful save."""
        return SyncDocument.build(self.version + 1, modified_by, weeks)

    def has_consistent_fingerprint(self) -> bool:
        return self.fingerprint == fingerprint(self.weeks)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


@dataclass
class LockInfo:
    """Snapshot of the lock marker on disk."""
    owner_id: str
    acquired_at: datetime
    age_seconds: float
    is_stale: bool


@dataclass
class SyncConflict:
    """Divergence between a client's unsaved payload and the shared document."""
    local: List[Any]
    remote: List[Any]
    last_modified: datetime
    modified_by: str
    remote_version: int
    remote_fingerprint: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local": self.local,
            "remote": self.remote,
            "lastModified": self.last_modified.isoformat(),
            "modifiedBy": self.modified_by,
            "version": self.remote_version,
        }


@dataclass
class ClientSyncState:
    """Per-process synchronization state; never persisted."""
    client_id: str
    last_known_fingerprint: str = ""
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    conflict: Optional[SyncConflict] = None
    last_sync: Optional[datetime] = None


@dataclass
class SyncStatus:
    """Status snapshot consumed by the presentation layer."""
    client_id: str
    connection_status: ConnectionStatus
    has_conflict: bool
    last_sync: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.connection_status == ConnectionStatus.CONNECTED

    @property
    def level(self) -> SyncStatusLevel:
        if not self.is_connected:
            return SyncStatusLevel.DISCONNECTED
        if self.has_conflict:
            return SyncStatusLevel.CONFLICT
        return SyncStatusLevel.CONNECTED

    def describe(self, now: Optional[datetime] = None) -> str:
        """Human readable status text, e.g. ``Synced 12s ago``."""
        level = self.level
        if level == SyncStatusLevel.DISCONNECTED:
            return "Not connected"
        if level == SyncStatusLevel.CONFLICT:
            return "Conflict"
        if self.last_sync is None:
            return "Waiting for sync..."
        
        seconds = int(((now or utc_now()) - self.last_sync).total_seconds())
        minutes = seconds // 60
        if seconds < 60:
            return f"Synced {max(seconds, 0)}s ago"
        if minutes < 60:
            return f"Synced {minutes}m ago"
        return f"Synced {minutes // 60}h ago"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "isConnected": self.is_connected,
            "hasConflicts": self.has_conflict,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "level": self.level.value,
        }


# Typed results returned across the sync boundary

@dataclass
class InitResult:
    success: bool
    client_id: Optional[str] = None
    created: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "clientId": self.client_id}
        return {"success": False, "error": self.error}


@dataclass
class SaveResult:
    success: bool
    conflict: Optional[SyncConflict] = None
    error: Optional[str] = None
    version: Optional[int] = None
    attempts: int = 0

    @property
    def is_conflict(self) -> bool:
        return self.conflict is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True}
        if self.conflict is not None:
            return {"success": False, "conflict": self.conflict.to_dict()}
        return {"success": False, "error": self.error}


@dataclass
class LoadResult:
    success: bool
    payload: Optional[List[Any]] = None
    error: Optional[str] = None
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "payload": self.payload}
        return {"success": False, "error": self.error}


@dataclass
class ChangeCheckResult:
    has_changes: bool
    payload: Optional[List[Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"hasChanges": self.has_changes}
        if self.has_changes:
            result["payload"] = self.payload
        return result
