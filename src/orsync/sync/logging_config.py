"""Logging configuration for synchronization events."""

import logging
import sys
import time
from datetime import datetime
from typing import Optional


SYNC_LOG_FIELDS = ('client_id', 'event_type', 'version', 'fingerprint', 'owner_id', 'attempt')


class SyncEventFormatter(logging.Formatter):
    """Custom formatter for synchronization events."""
    
    def format(self, record: logging.LogRecord) -> str:
        """Format log record with sync-specific information."""
        # Add timestamp if not present
        if not hasattr(record, 'timestamp'):
            record.timestamp = datetime.now().isoformat()
        
        sync_fields = []
        for field in SYNC_LOG_FIELDS:
            if getattr(record, field, None) is not None:
                sync_fields.append(f"{field}={getattr(record, field)}")
        
        base_msg = super().format(record)
        
        if sync_fields:
            return f"{base_msg} [{', '.join(sync_fields)}]"
        
        return base_msg


def setup_sync_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Set up logging for synchronization components.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file to log to in addition to stderr
        
    Returns:
        Configured logger for sync operations
    """
    logger = logging.getLogger("orsync")
    
    # Avoid duplicate handlers
    if logger.handlers:
        return logger
    
    level = getattr(logging, log_level.upper())
    logger.setLevel(level)
    
    formatter = SyncEventFormatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    
    return logger


def log_sync_event(logger: logging.Logger, event_type: str, client_id: str,
                   message: str, **kwargs) -> None:
    """Log a synchronization event with structured data.
    
    Args:
        logger: Logger instance
        event_type: Type of sync event (save, load, init, remote_change)
        client_id: ID of the client that triggered the event
        message: Human-readable message
        **kwargs: Additional fields to include in log
    """
    extra = {
        'event_type': event_type,
        'client_id': client_id,
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    
    logger.info(message, extra=extra)


def log_lock_event(logger: logging.Logger, owner_id: str, event: str,
                   message: str, **kwargs) -> None:
    """Log a lock file event.
    
    Routine acquisition and release are debug noise; reclamation of an
    abandoned lock and lost races are worth a warning.
    """
    extra = {
        'owner_id': owner_id,
        'event_type': f"lock_{event}",
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    
    if event in ['reclaimed', 'race_lost', 'foreign_release']:
        logger.warning(message, extra=extra)
    else:
        logger.debug(message, extra=extra)


def log_conflict_event(logger: logging.Logger, client_id: str, remote_client_id: str,
                       remote_version: int, **kwargs) -> None:
    """Log a detected conflict between this client and a remote writer.
    
    Args:
        logger: Logger instance
        client_id: ID of the client whose save was rejected
        remote_client_id: ID of the client that wrote the current document
        remote_version: Version of the current document
        **kwargs: Additional fields to include in log
    """
    extra = {
        'client_id': client_id,
        'event_type': 'conflict_detected',
        'version': remote_version,
        'remote_client_id': remote_client_id,
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    
    message = (f"Conflict detected: document version {remote_version} was written by "
               f"{remote_client_id} since {client_id} last synced")
    logger.warning(message, extra=extra)


def log_performance_metrics(logger: logging.Logger, operation: str,
                            latency_ms: float, **kwargs) -> None:
    """Log performance metrics for sync operations.
    
    Args:
        logger: Logger instance
        operation: Name of the operation being measured
        latency_ms: Operation latency in milliseconds
        **kwargs: Additional performance metrics
    """
    extra = {
        'event_type': 'performance_metrics',
        'operation': operation,
        'latency_ms': round(latency_ms, 2),
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    
    # Shared network drives can be slow; flag it
    if latency_ms > 1000:
        logger.warning(f"Slow operation detected: {operation} took {latency_ms:.2f}ms", extra=extra)
    elif latency_ms > 500:
        logger.info(f"Performance: {operation} took {latency_ms:.2f}ms", extra=extra)
    else:
        logger.debug(f"Performance: {operation} took {latency_ms:.2f}ms", extra=extra)


class PerformanceTimer:
    """Context manager for measuring operation performance."""
    
    def __init__(self, logger: logging.Logger, operation: str, **kwargs):
        self.logger = logger
        self.operation = operation
        self.kwargs = kwargs
        self.start_time = None
        
    def __enter__(self):
        self.start_time = time.time()
        return self
        
    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            latency_ms = (time.time() - self.start_time) * 1000
            
            if exc_type:
                self.kwargs['error'] = str(exc_val)
                self.kwargs['error_type'] = exc_type.__name__
                
            log_performance_metrics(
                self.logger, self.operation, latency_ms, **self.kwargs
            )
