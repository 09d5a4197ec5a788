"""Tests for the discovery store and pairing persister."""

import json

import pytest

from discovery.models import PairingEvent
from discovery.pairing import PairingPersister, restore_pairing
from discovery.store import DiscoveryStore, StoreUnavailableError


@pytest.fixture
def blocked_store_path(tmp_path):
    # The parent "directory" is a regular file, so the store cannot be opened
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    return blocker / "discovery.json"


class TestDiscoveryStore:
    def test_save_overwrites_previous_endpoint(self, store_path):
        with DiscoveryStore.open(store_path) as store:
            store.save_discovery("10.0.0.1")
            store.save_discovery("10.0.0.2")

        data = json.loads(store_path.read_text())
        assert data["endpoint"] == "10.0.0.2"

        with DiscoveryStore.open(store_path) as store:
            assert store.load_discovery().endpoint == "10.0.0.2"

    def test_load_from_empty_store(self, store_path):
        with DiscoveryStore.open(store_path) as store:
            assert store.load_discovery() is None

    def test_corrupt_record_loads_as_none(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")
        with DiscoveryStore.open(store_path) as store:
            assert store.load_discovery() is None

    def test_open_failure(self, blocked_store_path):
        with pytest.raises(StoreUnavailableError):
            DiscoveryStore.open(blocked_store_path)

    def test_closed_store_rejects_writes(self, store_path):
        store = DiscoveryStore.open(store_path)
        store.close()
        assert store.closed
        with pytest.raises(StoreUnavailableError):
            store.save_discovery("10.0.0.1")


class TestPairingPersister:
    @pytest.mark.asyncio
    async def test_save_updates_store_settings_and_hooks(self, settings, store_path):
        events: list[PairingEvent] = []

        async def hook(event):
            events.append(event)

        persister = PairingPersister(settings, store_path=store_path)
        persister.on_paired(hook)

        assert await persister.save("10.10.10.1")

        assert settings.host == "10.10.10.1"
        with DiscoveryStore.open(store_path) as store:
            assert store.load_discovery().endpoint == "10.10.10.1"
        assert events == [PairingEvent(endpoint="10.10.10.1", previous="", changed=True)]

    @pytest.mark.asyncio
    async def test_store_failure_leaves_host_unchanged(self, settings, blocked_store_path):
        settings.host = "10.0.0.9"
        called = []

        async def hook(event):
            called.append(event)

        persister = PairingPersister(settings, store_path=blocked_store_path)
        persister.on_paired(hook)

        assert not await persister.save("10.10.10.1")
        assert settings.host == "10.0.0.9"
        assert called == []

    @pytest.mark.asyncio
    async def test_last_write_wins(self, settings, store_path):
        persister = PairingPersister(settings, store_path=store_path)
        await persister.save("10.0.0.1")
        await persister.save("10.0.0.2")

        assert settings.host == "10.0.0.2"
        with DiscoveryStore.open(store_path) as store:
            assert store.load_discovery().endpoint == "10.0.0.2"

    @pytest.mark.asyncio
    async def test_repeat_pairing_is_not_a_change(self, settings, store_path):
        events = []

        async def hook(event):
            events.append(event)

        persister = PairingPersister(settings, store_path=store_path)
        persister.on_paired(hook)
        await persister.save("10.10.10.1")
        await persister.save("10.10.10.1")

        assert [e.changed for e in events] == [True, False]
        assert events[1].previous == "10.10.10.1"

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_pairing(self, settings, store_path):
        seen = []

        async def broken(event):
            raise RuntimeError("metrics client exploded")

        async def working(event):
            seen.append(event.endpoint)

        persister = PairingPersister(settings, store_path=store_path)
        persister.on_paired(broken)
        persister.on_paired(working)

        assert await persister.save("10.0.0.7")
        assert settings.host == "10.0.0.7"
        assert seen == ["10.0.0.7"]


class TestRestorePairing:
    @pytest.mark.asyncio
    async def test_restores_stored_endpoint(self, settings, store_path):
        with DiscoveryStore.open(store_path) as store:
            store.save_discovery("10.0.0.3")

        assert await restore_pairing(settings, store_path)
        assert settings.host == "10.0.0.3"

    @pytest.mark.asyncio
    async def test_configured_host_takes_precedence(self, settings, store_path):
        with DiscoveryStore.open(store_path) as store:
            store.save_discovery("10.0.0.3")
        settings.host = "mgmt.example.com"

        assert not await restore_pairing(settings, store_path)
        assert settings.host == "mgmt.example.com"

    @pytest.mark.asyncio
    async def test_nothing_stored(self, settings, store_path):
        assert not await restore_pairing(settings, store_path)
        assert settings.host == ""


class TestStoreWriteFailure:
    @pytest.mark.asyncio
    async def test_write_failure_leaves_host_unchanged(self, settings, store_path, monkeypatch):
        def disk_full(self, endpoint):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(DiscoveryStore, "save_discovery", disk_full)
        settings.host = "10.0.0.9"
        called = []

        async def hook(event):
            called.append(event)

        persister = PairingPersister(settings, store_path=store_path)
        persister.on_paired(hook)

        assert not await persister.save("10.10.10.1")
        assert settings.host == "10.0.0.9"
        assert called == []
        assert not settings.lock.locked()


class TestReadOnlyStore:
    def test_missing_file_is_not_created(self, store_path):
        with DiscoveryStore.open(store_path, readonly=True) as store:
            assert store.load_discovery() is None
        assert not store_path.exists()
        assert not store_path.parent.exists()

    def test_reads_existing_record(self, store_path):
        with DiscoveryStore.open(store_path) as store:
            store.save_discovery("10.0.0.4")

        with DiscoveryStore.open(store_path, readonly=True) as store:
            assert store.load_discovery().endpoint == "10.0.0.4"
            with pytest.raises(StoreUnavailableError):
                store.save_discovery("10.0.0.5")

    @pytest.mark.asyncio
    async def test_restore_does_not_create_store(self, settings, store_path):
        assert not await restore_pairing(settings, store_path)
        assert not store_path.exists()
