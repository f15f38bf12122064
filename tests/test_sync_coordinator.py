"""Tests for the sync coordinator: saving, loading, conflicts and retries."""

import asyncio
import os
import tempfile
import time
from pathlib import Path

from hypothesis import given, settings, strategies as st

from orsync.sync.coordinator import SyncCoordinator
from orsync.sync.document_store import JsonFileDocumentStore
from orsync.sync.exceptions import DocumentWriteError
from orsync.sync.fingerprint import fingerprint
from orsync.sync.lock_manager import FileLockManager
from orsync.sync.models import ClientSyncState

from conftest import SAMPLE_WEEKS


PAYLOAD_X = [{"weekStart": "2024-03-04", "rooms": {"OR-1": ["Anna"]}}]
PAYLOAD_Y = [{"weekStart": "2024-03-04", "rooms": {"OR-1": ["Erik"]}}]


class TestInitialize:
    """Creation of the shared document at startup."""

    def test_creates_version_one(self, make_coordinator, sync_config):
        async def run_test():
            coordinator = make_coordinator("client-a")
            
            result = await coordinator.initialize()
            
            assert result.success and result.created
            assert result.client_id == "client-a"
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.version == 1
            assert document.weeks == []
            assert document.modified_by == "client-a"
            assert document.fingerprint == fingerprint([])
            assert coordinator.state.last_known_fingerprint == fingerprint([])
        
        asyncio.run(run_test())

    def test_is_idempotent(self, make_coordinator, sync_config):
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            await coordinator.save(SAMPLE_WEEKS)
            
            again = await make_coordinator("client-b").initialize()
            
            assert again.success and not again.created
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.version == 2
            assert document.weeks == SAMPLE_WEEKS
        
        asyncio.run(run_test())

    def test_concurrent_initialization_creates_one_document(self, make_coordinator, sync_config):
        async def run_test():
            coordinators = [make_coordinator(f"client-{i}") for i in range(10)]
            
            results = await asyncio.gather(*(c.initialize() for c in coordinators))
            
            assert all(r.success for r in results)
            assert sum(r.created for r in results) == 1
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.version == 1
            creator = coordinators[[r.created for r in results].index(True)]
            assert document.modified_by == creator.client_id
        
        asyncio.run(run_test())

    def test_unwritable_location_reports_failure(self, tmp_path):
        async def run_test():
            coordinator = SyncCoordinator(
                JsonFileDocumentStore(tmp_path / "missing" / "schedule-sync.json"),
                FileLockManager(tmp_path / "missing" / "schedule-sync.lock"),
                ClientSyncState(client_id="client-a")
            )
            
            result = await coordinator.initialize()
            
            assert result.success is False
            assert result.error
            assert result.to_dict() == {"success": False, "error": result.error}
        
        asyncio.run(run_test())


class TestSave:
    """Saving with conflict detection."""

    def test_save_increments_version(self, make_coordinator, sync_config):
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            
            first = await coordinator.save(PAYLOAD_X)
            second = await coordinator.save(PAYLOAD_Y)
            
            assert first.success and first.version == 2
            assert second.success and second.version == 3
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.weeks == PAYLOAD_Y
            assert document.has_consistent_fingerprint()
            assert coordinator.state.last_known_fingerprint == fingerprint(PAYLOAD_Y)
            assert not sync_config.lock_path.exists()
        
        asyncio.run(run_test())

    def test_stale_client_gets_conflict(self, make_coordinator, sync_config):
        """A initializes, B loads, A saves X, B saves Y: B sees a conflict."""
        async def run_test():
            client_a = make_coordinator("client-a")
            client_b = make_coordinator("client-b")
            
            await client_a.initialize()
            loaded = await client_b.load()
            assert loaded.success and loaded.payload == []
            
            saved = await client_a.save(PAYLOAD_X)
            assert saved.success and saved.version == 2
            
            result = await client_b.save(PAYLOAD_Y)
            
            assert result.success is False
            assert result.conflict is not None
            assert result.conflict.remote == PAYLOAD_X
            assert result.conflict.local == PAYLOAD_Y
            assert result.conflict.modified_by == "client-a"
            assert result.conflict.remote_version == 2
            assert result.conflict.remote_fingerprint == fingerprint(PAYLOAD_X)
            
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.version == 2
            assert document.weeks == PAYLOAD_X
            assert not sync_config.lock_path.exists(), "Lock must be released after a conflict"
        
        asyncio.run(run_test())

    def test_concurrent_saves_from_same_base(self, make_coordinator, sync_config):
        """Two clients saving from the same fingerprint: one wins, one conflicts."""
        async def run_test():
            client_a = make_coordinator("client-a")
            client_b = make_coordinator("client-b")
            await client_a.initialize()
            await client_a.load()
            await client_b.load()
            
            results = await asyncio.gather(client_a.save(PAYLOAD_X), client_b.save(PAYLOAD_Y))
            
            successes = [r for r in results if r.success]
            conflicts = [r for r in results if r.conflict is not None]
            assert len(successes) == 1
            assert len(conflicts) == 1
            assert successes[0].version == 2
            
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.version == 2
            assert conflicts[0].conflict.remote == document.weeks
        
        asyncio.run(run_test())

    @given(st.integers(min_value=2, max_value=5))
    @settings(max_examples=5)
    def test_many_clients_from_same_base(self, client_count):
        """However many clients race from one base, exactly one write lands."""
        async def run_test(sync_dir):
            def make(client_id):
                return SyncCoordinator(
                    JsonFileDocumentStore(sync_dir / "schedule-sync.json"),
                    FileLockManager(sync_dir / "schedule-sync.lock", poll_interval_ms=5),
                    ClientSyncState(client_id=client_id),
                    backoff_ms=5
                )
            
            clients = [make(f"client-{i}") for i in range(client_count)]
            await clients[0].initialize()
            for client in clients:
                await client.load()
            
            results = await asyncio.gather(*(c.save([{"by": c.client_id}]) for c in clients))
            
            assert sum(r.success for r in results) == 1
            assert sum(r.conflict is not None for r in results) == client_count - 1
            assert (await JsonFileDocumentStore(sync_dir / "schedule-sync.json").read()).version == 2
        
        with tempfile.TemporaryDirectory() as tmpdir:
            asyncio.run(run_test(Path(tmpdir)))

    def test_own_write_is_not_a_conflict(self, make_coordinator):
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            
            await coordinator.save(PAYLOAD_X)
            coordinator.state.last_known_fingerprint = "forgotten"
            result = await coordinator.save(PAYLOAD_Y)
            
            assert result.success
        
        asyncio.run(run_test())

    def test_save_completes_despite_stale_lock(self, make_coordinator, sync_config):
        """A lock left by a crashed writer never blocks saving for long."""
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            
            sync_config.lock_path.write_text("crashed-client", encoding="utf-8")
            past = time.time() - 3600
            os.utime(sync_config.lock_path, (past, past))
            
            started = time.monotonic()
            result = await coordinator.save(PAYLOAD_X)
            elapsed = time.monotonic() - started
            
            assert result.success
            assert elapsed < sync_config.lock_stale_timeout_ms / 1000 + 1.0
            assert not sync_config.lock_path.exists()
        
        asyncio.run(run_test())

    def test_save_completes_despite_abandoned_fresh_lock(self, make_coordinator, sync_config):
        """A fresh marker that is never released is reclaimed after the wait window."""
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            sync_config.lock_path.write_text("hung-client", encoding="utf-8")
            
            started = time.monotonic()
            result = await coordinator.save(PAYLOAD_X)
            elapsed = time.monotonic() - started
            
            assert result.success
            assert elapsed < sync_config.lock_max_wait_ms / 1000 + 1.0
        
        asyncio.run(run_test())

    def test_retries_transient_write_failure(self, make_coordinator, sync_config):
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            
            store = coordinator._store
            real_write = store.write
            calls = []
            
            async def flaky_write(document):
                calls.append(document.version)
                if len(calls) == 1:
                    raise DocumentWriteError(str(sync_config.document_path), "network share busy")
                await real_write(document)
            
            store.write = flaky_write
            
            result = await coordinator.save(PAYLOAD_X)
            
            assert result.success
            assert result.attempts == 2
            assert calls == [2, 2]
            assert not sync_config.lock_path.exists()
        
        asyncio.run(run_test())

    def test_gives_up_after_max_attempts(self, make_coordinator, sync_config):
        async def run_test():
            coordinator = make_coordinator("client-a", max_attempts=3, backoff_ms=20)
            await coordinator.initialize()
            
            async def failing_write(document):
                raise DocumentWriteError(str(sync_config.document_path), "permission denied")
            
            coordinator._store.write = failing_write
            
            started = time.monotonic()
            result = await coordinator.save(PAYLOAD_X)
            elapsed = time.monotonic() - started
            
            assert result.success is False
            assert result.conflict is None
            assert "permission denied" in result.error
            assert result.attempts == 3
            # Linear backoff: 20ms + 40ms between the three attempts
            assert elapsed >= 0.06
            assert not sync_config.lock_path.exists(), "Lock must be released after failures"
        
        asyncio.run(run_test())

    def test_release_failure_does_not_repeat_write(self, make_coordinator):
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            
            lock_manager = coordinator._lock_manager
            real_release = lock_manager.release
            
            async def failing_release(owner_id):
                await real_release(owner_id)
                raise OSError("share went away")
            
            lock_manager.release = failing_release
            
            result = await coordinator.save(PAYLOAD_X)
            
            assert result.success
            assert result.version == 2
            assert result.attempts == 1
            document = await coordinator._store.read()
            assert document.version == 2
            assert document.weeks == PAYLOAD_X
        
        asyncio.run(run_test())

    def test_save_without_document_fails(self, make_coordinator):
        async def run_test():
            result = await make_coordinator("client-a", backoff_ms=1).save(PAYLOAD_X)
            
            assert result.success is False
            assert "not found" in result.error
        
        asyncio.run(run_test())

    def test_overlapping_saves_in_one_process_are_serialized(self, make_coordinator, sync_config):
        async def run_test():
            coordinator = make_coordinator("client-a")
            await coordinator.initialize()
            
            results = await asyncio.gather(*(coordinator.save([i]) for i in range(5)))
            
            assert all(r.success for r in results)
            assert sorted(r.version for r in results) == [2, 3, 4, 5, 6]
            document = await JsonFileDocumentStore(sync_config.document_path).read()
            assert document.version == 6
        
        asyncio.run(run_test())


class TestLoadAndCheck:
    """Loading and polling for remote changes."""

    def test_load_updates_known_fingerprint(self, make_coordinator):
        async def run_test():
            writer = make_coordinator("client-a")
            reader = make_coordinator("client-b")
            await writer.initialize()
            await writer.save(SAMPLE_WEEKS)
            
            result = await reader.load()
            
            assert result.success
            assert result.payload == SAMPLE_WEEKS
            assert result.version == 2
            assert reader.state.last_known_fingerprint == fingerprint(SAMPLE_WEEKS)
        
        asyncio.run(run_test())

    def test_load_corrupted_document(self, make_coordinator, sync_config):
        async def run_test():
            sync_config.document_path.write_text("{truncated", encoding="utf-8")
            reader = make_coordinator("client-b")
            
            result = await reader.load()
            
            assert result.success is False
            assert result.error
            assert reader.state.last_known_fingerprint == ""
        
        asyncio.run(run_test())

    def test_check_reports_remote_change_once(self, make_coordinator, sync_config):
        async def run_test():
            writer = make_coordinator("client-a")
            reader = make_coordinator("client-b")
            await writer.initialize()
            await reader.load()
            
            assert (await reader.check_for_changes()).has_changes is False
            
            await writer.save(PAYLOAD_X)
            before = sync_config.document_path.read_text(encoding="utf-8")
            
            first = await reader.check_for_changes()
            assert first.has_changes is True
            assert first.payload == PAYLOAD_X
            
            for _ in range(3):
                assert (await reader.check_for_changes()).has_changes is False
            
            assert sync_config.document_path.read_text(encoding="utf-8") == before
        
        asyncio.run(run_test())

    def test_own_save_is_not_reported(self, make_coordinator):
        async def run_test():
            client_a = make_coordinator("client-a")
            await client_a.initialize()
            
            assert (await client_a.save(PAYLOAD_X)).success
            result = await client_a.check_for_changes()
            
            assert result.has_changes is False
            assert result.to_dict() == {"hasChanges": False}
        
        asyncio.run(run_test())

    def test_check_picks_up_change_then_save_succeeds(self, make_coordinator):
        """After seeing a remote change, saving on top of it is not a conflict."""
        async def run_test():
            client_a = make_coordinator("client-a")
            client_b = make_coordinator("client-b")
            await client_a.initialize()
            await client_b.load()
            await client_a.save(PAYLOAD_X)
            
            assert (await client_b.check_for_changes()).has_changes
            result = await client_b.save(PAYLOAD_Y)
            
            assert result.success and result.version == 3
        
        asyncio.run(run_test())

    def test_check_with_missing_document(self, make_coordinator):
        async def run_test():
            result = await make_coordinator("client-a").check_for_changes()
            
            assert result.has_changes is False
            assert result.error
        
        asyncio.run(run_test())
