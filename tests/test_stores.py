"""Tests for the key-value store backends."""
from datetime import timedelta

import orjson
import pytest

from formvault.vault.errors import (
    FormVaultError,
    StorageReadFailure,
    StorageWriteFailure,
)
from formvault.vault.manager import StorageManager
from formvault.vault.stores import CookieStore, FileStore, MemoryStore


class TestMemoryStore:
    """Tests for the dict-backed MemoryStore."""

    async def test_set_get_delete(self):
        """Test basic set, get, exists and delete."""
        store = MemoryStore()
        await store.set("a", "1")
        assert await store.get("a") == "1"
        assert await store.exists("a")
        await store.delete("a")
        assert await store.get("a") is None

    async def test_delete_missing_is_noop(self):
        """Test that deleting an absent key does nothing."""
        await MemoryStore().delete("missing")

    async def test_quota_exceeded_keeps_previous(self):
        """Test that a write over quota fails and keeps the old value."""
        store = MemoryStore(quota=10)
        await store.set("a", "12345")
        with pytest.raises(StorageWriteFailure):
            await store.set("a", "x" * 11)
        assert await store.get("a") == "12345"

    async def test_quota_counts_replaced_value_once(self):
        """Test that replacing a value does not count it twice against the quota."""
        store = MemoryStore(quota=10)
        await store.set("a", "x" * 10)
        await store.set("a", "y" * 10)
        assert await store.keys() == ["a"]


class TestFileStore:
    """Tests for the on-disk FileStore."""

    async def test_persists_across_instances(self, tmp_path):
        """Test that values written by one instance are read by another."""
        path = tmp_path / "vault" / "store.json"
        await FileStore(path).set("userFormData", "value")
        assert await FileStore(path).get("userFormData") == "value"
        assert orjson.loads(path.read_bytes()) == {"userFormData": "value"}

    async def test_delete(self, tmp_path):
        """Test that delete removes only the given key."""
        store = FileStore(tmp_path / "store.json")
        await store.set("a", "1")
        await store.set("b", "2")
        await store.delete("a")
        assert await store.keys() == ["b"]

    async def test_missing_file_reads_empty(self, tmp_path):
        """Test that a missing document reads as an empty store."""
        store = FileStore(tmp_path / "absent.json")
        assert await store.get("a") is None
        assert await store.keys() == []

    async def test_quota(self, tmp_path):
        """Test that a write over quota raises StorageWriteFailure."""
        store = FileStore(tmp_path / "store.json", quota=4)
        await store.set("a", "1234")
        with pytest.raises(StorageWriteFailure):
            await store.set("b", "5")
        assert await store.keys() == ["a"]

    async def test_no_temp_files_left(self, tmp_path):
        """Test that the atomic replace leaves no temporary files behind."""
        store = FileStore(tmp_path / "store.json")
        await store.set("a", "1")
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    async def test_corrupt_document_read(self, tmp_path):
        """Test that reading a truncated document raises StorageReadFailure."""
        path = tmp_path / "store.json"
        path.write_text("{truncated")
        store = FileStore(path)
        with pytest.raises(StorageReadFailure):
            await store.get("a")
        with pytest.raises(StorageReadFailure):
            await store.keys()

    async def test_corrupt_document_write(self, tmp_path):
        """Test that writes over a truncated document fail without touching it."""
        path = tmp_path / "store.json"
        path.write_text("{truncated")
        store = FileStore(path)
        with pytest.raises(StorageWriteFailure):
            await store.set("a", "1")
        with pytest.raises(StorageWriteFailure):
            await store.delete("a")
        assert path.read_text() == "{truncated"

    async def test_non_object_document(self, tmp_path):
        """Test that a JSON array document raises StorageReadFailure."""
        path = tmp_path / "store.json"
        path.write_text('["a", "b"]')
        with pytest.raises(StorageReadFailure):
            await FileStore(path).get("a")

    async def test_manager_on_corrupt_document(self, tmp_path):
        """Test that manager operations over a corrupt store raise typed errors."""
        path = tmp_path / "store.json"
        path.write_text("{truncated")
        manager = StorageManager(FileStore(path))
        with pytest.raises(FormVaultError):
            await manager.save(b"data", "apple123")
        with pytest.raises(FormVaultError):
            await manager.load("apple123")
        with pytest.raises(FormVaultError):
            await manager.has_stored_data()
        assert manager.is_unlocked is False


class TestCookieStore:
    """Tests for the legacy CookieStore."""

    async def test_set_get(self, clock):
        """Test that a set cookie can be read back."""
        jar = CookieStore(clock=clock)
        await jar.set("hasStoredData", "true")
        assert await jar.get("hasStoredData") == "true"

    async def test_parse_header(self):
        """Test parsing values from a Cookie header."""
        jar = CookieStore("userFormData=QUJD+/x=; hasStoredData=true")
        assert await jar.get("userFormData") == "QUJD+/x="
        assert await jar.get("hasStoredData") == "true"

    async def test_header_round_trip(self):
        """Test that to_header output parses back to the same values."""
        jar = CookieStore()
        await jar.set("userFormData", "QUJD+/x==")
        again = CookieStore(jar.to_header())
        assert await again.get("userFormData") == "QUJD+/x=="

    async def test_capacity(self):
        """Test that a value over the cookie size limit is rejected."""
        jar = CookieStore(max_size=64)
        with pytest.raises(StorageWriteFailure):
            await jar.set("userFormData", "x" * 64)

    async def test_expiry(self, clock):
        """Test that expired cookies read as absent."""
        jar = CookieStore(clock=clock)
        await jar.set("a", "1", expires=clock.now + timedelta(days=1))
        assert await jar.keys() == ["a"]
        clock.advance(days=2)
        assert await jar.get("a") is None
        assert await jar.keys() == []

    async def test_delete(self):
        """Test that delete is idempotent."""
        jar = CookieStore("a=1")
        await jar.delete("a")
        await jar.delete("a")
        assert await jar.get("a") is None
