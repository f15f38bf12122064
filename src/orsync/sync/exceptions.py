"""Custom exceptions for schedule file synchronization."""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncError(Exception):
    """Base exception for synchronization errors."""
    
    def __init__(self, message: str, error_code: str = "sync_error", 
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now()
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class LockAcquisitionError(SyncError):
    """Raised when the lock file cannot be acquired within the wait window."""
    
    def __init__(self, lock_path: str, owner_id: str, held_by: Optional[str] = None):
        if held_by:
            message = f"Lock {lock_path} is held by {held_by}"
        else:
            message = f"Cannot acquire lock {lock_path}"
        
        details = {
            "lock_path": lock_path,
            "requesting_client": owner_id,
            "held_by": held_by,
        }
        super().__init__(message, "lock_acquisition_failed", details)


class DocumentNotFoundError(SyncError):
    """Raised when the shared sync document does not exist."""
    
    def __init__(self, document_path: str):
        message = f"Sync document not found: {document_path}"
        super().__init__(message, "document_not_found", {"document_path": document_path})


class DocumentParseError(SyncError):
    """Raised when the shared sync document is corrupted or malformed."""
    
    def __init__(self, document_path: str, reason: str):
        message = f"Sync document {document_path} could not be parsed: {reason}"
        details = {
            "document_path": document_path,
            "reason": reason
        }
        super().__init__(message, "document_parse_error", details)


class DocumentWriteError(SyncError):
    """Raised when the shared sync document cannot be written."""
    
    def __init__(self, document_path: str, reason: str):
        message = f"Failed to write sync document {document_path}: {reason}"
        details = {
            "document_path": document_path,
            "reason": reason
        }
        super().__init__(message, "document_write_error", details)
