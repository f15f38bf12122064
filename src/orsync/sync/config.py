"""Configuration for the schedule synchronization system."""

import os
from dataclasses import dataclass, asdict
from typing import Dict, Any
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class SyncConfig:
    """Configuration settings for the synchronization system."""
    
    # Shared location
    sync_dir: str = "."
    document_filename: str = "schedule-sync.json"
    lock_filename: str = "schedule-sync.lock"
    
    # Lock settings
    lock_max_wait_ms: int = 5000
    lock_poll_interval_ms: int = 50
    lock_stale_timeout_ms: int = 5000
    
    # Save retry settings
    save_max_attempts: int = 3
    save_backoff_ms: int = 100
    
    # Change detection settings
    poll_interval_seconds: float = 5.0
    watch_enabled: bool = True
    watch_interval_seconds: float = 0.5
    autosave_debounce_seconds: float = 2.0
    
    # Logging settings
    log_level: str = "INFO"
    
    @property
    def document_path(self) -> Path:
        return Path(self.sync_dir) / self.document_filename
    
    @property
    def lock_path(self) -> Path:
        return Path(self.sync_dir) / self.lock_filename
    
    def validate(self) -> None:
        """Validate configuration parameters."""
        errors = []
        
        if not self.document_filename:
            errors.append("Document filename must not be empty")
        
        if not self.lock_filename:
            errors.append("Lock filename must not be empty")
        
        if self.document_filename == self.lock_filename:
            errors.append(f"Document and lock filename must differ, both are {self.document_filename}")
        
        # Validate lock timings
        if self.lock_max_wait_ms <= 0:
            errors.append(f"Lock max wait must be positive, got {self.lock_max_wait_ms}")
        
        if self.lock_poll_interval_ms <= 0:
            errors.append(f"Lock poll interval must be positive, got {self.lock_poll_interval_ms}")
        
        if self.lock_stale_timeout_ms <= 0:
            errors.append(f"Lock stale timeout must be positive, got {self.lock_stale_timeout_ms}")
        
        # Validate retry settings
        if self.save_max_attempts < 1:
            errors.append(f"Save attempts must be at least 1, got {self.save_max_attempts}")
        
        if self.save_backoff_ms < 0:
            errors.append(f"Save backoff must be non-negative, got {self.save_backoff_ms}")
        
        # Validate change detection
        if self.poll_interval_seconds <= 0:
            errors.append(f"Poll interval must be positive, got {self.poll_interval_seconds}")
        
        if self.watch_interval_seconds <= 0:
            errors.append(f"Watch interval must be positive, got {self.watch_interval_seconds}")
        
        if self.autosave_debounce_seconds < 0:
            errors.append(f"Autosave debounce must be non-negative, got {self.autosave_debounce_seconds}")
        
        # Validate log level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Log level must be one of {valid_log_levels}, got {self.log_level}")
        
        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)
    
    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Create configuration from environment variables with validation."""
        try:
            config = cls(
                sync_dir=os.getenv("ORSYNC_SYNC_DIR", "."),
                document_filename=os.getenv("ORSYNC_DOCUMENT_FILENAME", "schedule-sync.json"),
                lock_filename=os.getenv("ORSYNC_LOCK_FILENAME", "schedule-sync.lock"),
                
                lock_max_wait_ms=int(os.getenv("ORSYNC_LOCK_MAX_WAIT_MS", "5000")),
                lock_poll_interval_ms=int(os.getenv("ORSYNC_LOCK_POLL_INTERVAL_MS", "50")),
                lock_stale_timeout_ms=int(os.getenv("ORSYNC_LOCK_STALE_TIMEOUT_MS", "5000")),
                
                save_max_attempts=int(os.getenv("ORSYNC_SAVE_MAX_ATTEMPTS", "3")),
                save_backoff_ms=int(os.getenv("ORSYNC_SAVE_BACKOFF_MS", "100")),
                
                poll_interval_seconds=float(os.getenv("ORSYNC_POLL_INTERVAL", "5.0")),
                watch_enabled=_env_bool("ORSYNC_WATCH_ENABLED", "true"),
                watch_interval_seconds=float(os.getenv("ORSYNC_WATCH_INTERVAL", "0.5")),
                autosave_debounce_seconds=float(os.getenv("ORSYNC_AUTOSAVE_DEBOUNCE", "2.0")),
                
                log_level=os.getenv("ORSYNC_LOG_LEVEL", "INFO"),
            )
            
            config.validate()
            return config
            
        except ValueError as e:
            if "could not convert" in str(e) or "invalid literal" in str(e):
                raise ValueError(f"Invalid environment variable format: {e}")
            raise
    
    @classmethod
    def from_file(cls, config_path: str) -> "SyncConfig":
        """Load configuration from a .env file."""
        from dotenv import load_dotenv
        
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        
        load_dotenv(config_file, override=True)
        
        return cls.from_env()
    
    def with_overrides(self, **overrides: Any) -> "SyncConfig":
        """Return a validated copy with some settings replaced."""
        config_dict = self.to_dict()
        config_dict.update(overrides)
        
        new_config = SyncConfig(**config_dict)
        new_config.validate()
        
        return new_config
