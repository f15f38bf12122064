"""Configuration utilities for the synchronization system."""

import os
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .config import SyncConfig


logger = logging.getLogger(__name__)


TESTING_OVERRIDES: Dict[str, Any] = {
    "log_level": "DEBUG",
    "lock_max_wait_ms": 500,
    "lock_poll_interval_ms": 10,
    "lock_stale_timeout_ms": 500,
    "save_backoff_ms": 10,
    "poll_interval_seconds": 0.2,
    "watch_interval_seconds": 0.05,
    "autosave_debounce_seconds": 0.1,
}

PRODUCTION_OVERRIDES: Dict[str, Any] = {
    "log_level": "WARNING",
}


class ConfigurationManager:
    """Manages configuration loading and validation for the sync system."""
    
    def __init__(self, config: Optional[SyncConfig] = None):
        self._config = config
    
    def load_config(self, config_path: Optional[str] = None, 
                   environment: str = "development") -> SyncConfig:
        """
        Load configuration from a .env file or the environment and apply
        environment-specific overrides.
        
        Args:
            config_path: Optional path to configuration file
            environment: Environment type ('development', 'production', 'testing')
        
        Returns:
            Validated SyncConfig instance
        """
        try:
            if config_path:
                self._config = SyncConfig.from_file(config_path)
                logger.info(f"Configuration loaded from file: {config_path}")
            else:
                self._config = SyncConfig.from_env()
                logger.info("Configuration loaded from environment variables")
            
            if environment == "production":
                self._config = self._config.with_overrides(**PRODUCTION_OVERRIDES)
                logger.info("Applied production configuration overrides")
            elif environment == "testing":
                self._config = self._config.with_overrides(**TESTING_OVERRIDES)
                logger.info("Applied testing configuration overrides")
            
            self._log_config_summary()
            
            return self._config
            
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise
    
    def get_config(self) -> SyncConfig:
        """Get the current configuration."""
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")
        return self._config
    
    def validate_environment(self) -> Dict[str, Any]:
        """
        Check that the shared sync directory is usable.
        
        Returns:
            Dictionary with validation results and recommendations
        """
        results = {
            "valid": True,
            "warnings": [],
            "errors": [],
            "recommendations": []
        }
        
        if self._config is None:
            results["errors"].append("No configuration loaded")
            results["valid"] = False
            return results
        
        sync_dir = Path(self._config.sync_dir)
        if not sync_dir.is_dir():
            results["errors"].append(f"Sync directory does not exist: {sync_dir}")
            results["valid"] = False
        elif not os.access(sync_dir, os.W_OK):
            results["errors"].append(f"Sync directory is not writable: {sync_dir}")
            results["valid"] = False
        
        if self._config.lock_stale_timeout_ms < self._config.lock_max_wait_ms:
            results["warnings"].append(
                "Lock stale timeout is shorter than the lock wait; slow writers may lose their lock"
            )
        
        if not self._config.watch_enabled:
            results["recommendations"].append(
                f"File watching is disabled; remote changes appear only every "
                f"{self._config.poll_interval_seconds}s"
            )
        
        if self._config.log_level == "DEBUG":
            results["recommendations"].append(
                "Consider using WARNING or INFO log level for production"
            )
        
        return results
    
    def _log_config_summary(self):
        """Log a summary of the current configuration."""
        if self._config is None:
            return
        
        logger.info("Sync system configuration summary:")
        logger.info(f"  Document: {self._config.document_path}")
        logger.info(f"  Lock: {self._config.lock_path} (wait {self._config.lock_max_wait_ms}ms)")
        logger.info(f"  Poll interval: {self._config.poll_interval_seconds}s")
        logger.info(f"  File watching: {self._config.watch_enabled}")
        logger.info(f"  Log level: {self._config.log_level}")


def get_config_for_environment(environment: Optional[str] = None,
                               search_dir: Optional[str] = None) -> SyncConfig:
    """
    Convenience function to get configuration for a specific environment.
    
    Args:
        environment: Environment name ('development', 'production', 'testing')
                    If None, determined from ENVIRONMENT env var or defaults to 'development'
        search_dir: Directory searched for .env files (defaults to the working directory)
    
    Returns:
        Configured SyncConfig instance
    """
    if environment is None:
        environment = os.getenv("ENVIRONMENT", "development")
    
    manager = ConfigurationManager()
    base_dir = Path(search_dir) if search_dir else Path(".")
    
    # Try to load from environment-specific config file first
    config_files = [
        f".env.{environment}",
        ".env.local",
        ".env"
    ]
    
    for config_file in config_files:
        candidate = base_dir / config_file
        if candidate.exists():
            return manager.load_config(str(candidate), environment)
    
    return manager.load_config(environment=environment)
