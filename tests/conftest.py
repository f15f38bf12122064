"""
Pytest configuration and fixtures for the test suite.
"""
import pytest
from hypothesis import settings

from orsync.sync.config import SyncConfig
from orsync.sync.config_utils import TESTING_OVERRIDES
from orsync.sync.coordinator import SyncCoordinator
from orsync.sync.document_store import JsonFileDocumentStore
from orsync.sync.lock_manager import FileLockManager
from orsync.sync.models import ClientSyncState

# Configure Hypothesis settings for all tests
# Disable deadline; the sync tests touch the filesystem
settings.register_profile("default", deadline=None)
settings.load_profile("default")


SAMPLE_WEEKS = [
    {
        "weekStart": "2024-03-04",
        "days": [
            {
                "date": "2024-03-04",
                "rooms": [{"roomId": "OR-1", "staff": ["Anna", "Erik"]}],
                "corridor": {"coordinator": "Maria"},
            }
        ],
    }
]


@pytest.fixture
def sync_config(tmp_path):
    """Sync configuration with short timings rooted in a temporary directory."""
    return SyncConfig(sync_dir=str(tmp_path)).with_overrides(**TESTING_OVERRIDES)


@pytest.fixture
def make_coordinator(sync_config):
    """Factory for coordinators of independent clients sharing one directory."""
    def factory(client_id: str, **kwargs) -> SyncCoordinator:
        lock_manager = FileLockManager(
            sync_config.lock_path,
            default_max_wait_ms=sync_config.lock_max_wait_ms,
            poll_interval_ms=sync_config.lock_poll_interval_ms,
            stale_timeout_ms=sync_config.lock_stale_timeout_ms,
        )
        options = {
            "lock_max_wait_ms": sync_config.lock_max_wait_ms,
            "max_attempts": sync_config.save_max_attempts,
            "backoff_ms": sync_config.save_backoff_ms,
        }
        options.update(kwargs)
        return SyncCoordinator(
            JsonFileDocumentStore(sync_config.document_path),
            lock_manager,
            ClientSyncState(client_id=client_id),
            **options
        )
    
    return factory


SYNC_ENV_KEYS = [
    "ORSYNC_SYNC_DIR", "ORSYNC_DOCUMENT_FILENAME", "ORSYNC_LOCK_FILENAME",
    "ORSYNC_LOCK_MAX_WAIT_MS", "ORSYNC_LOCK_POLL_INTERVAL_MS", "ORSYNC_LOCK_STALE_TIMEOUT_MS",
    "ORSYNC_SAVE_MAX_ATTEMPTS", "ORSYNC_SAVE_BACKOFF_MS", "ORSYNC_POLL_INTERVAL",
    "ORSYNC_WATCH_ENABLED", "ORSYNC_WATCH_INTERVAL", "ORSYNC_AUTOSAVE_DEBOUNCE",
    "ORSYNC_LOG_LEVEL", "ORSYNC_LOG_FILE", "ORSYNC_CLIENT_ID", "ENVIRONMENT",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove sync settings from the environment and restore them afterwards.
    
    Setting before deleting makes monkeypatch undo values that load_dotenv
    writes into os.environ during a test.
    """
    for key in SYNC_ENV_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    return monkeypatch
