"""Tests for the key-value persistence substrates and audit storage."""

import json
import pytest
from decimal import Decimal

from budgee.audit import AuditLogger
from budgee.models.audit import AuditEventBuilder
from budgee.services.storage import (
    CorruptDataError,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    StorageError,
)


class TestInMemoryKeyValueStore:
    """Tests for the in-memory substrate."""

    def test_set_and_get(self):
        """Test values round-trip."""
        store = InMemoryKeyValueStore()
        store.set("k", {"a": [1, 2, 3]})
        assert store.get("k") == {"a": [1, 2, 3]}

    def test_missing_key_is_none(self):
        """Test absent keys read as None."""
        assert InMemoryKeyValueStore().get("nope") is None

    def test_returned_values_are_copies(self):
        """Test mutating a read value does not change stored state."""
        store = InMemoryKeyValueStore()
        store.set("k", [1])
        store.get("k").append(2)
        assert store.get("k") == [1]

    def test_non_serializable_value_rejected(self):
        """Test values that cannot be stored raise StorageError."""
        with pytest.raises(StorageError):
            InMemoryKeyValueStore().set("k", {"amount": Decimal("1")})

    def test_corrupt_value_raises(self, storage):
        """Test unreadable stored text raises CorruptDataError."""
        storage.put_raw("k", "{not json")
        with pytest.raises(CorruptDataError):
            storage.get("k")

    def test_corrupt_data_is_a_storage_error(self):
        """Test callers catching StorageError also catch corruption."""
        assert issubclass(CorruptDataError, StorageError)

    def test_delete_reports_presence(self):
        """Test delete returns whether something was removed."""
        store = InMemoryKeyValueStore({"k": 1})
        assert store.delete("k") is True
        assert store.delete("k") is False

    def test_keys_by_prefix(self):
        """Test keys() filters by prefix."""
        store = InMemoryKeyValueStore({"budgee_accounts_u1": [], "budgee_accounts_u2": [], "other": 1})
        assert store.keys("budgee_accounts_") == ["budgee_accounts_u1", "budgee_accounts_u2"]


class TestJsonFileKeyValueStore:
    """Tests for the file-per-key substrate."""

    def test_set_and_get(self, tmp_path):
        """Test values round-trip through disk."""
        store = JsonFileKeyValueStore(tmp_path)
        store.set("budgee_accounts_u1", [{"id": "acc_1"}])
        assert store.get("budgee_accounts_u1") == [{"id": "acc_1"}]

    def test_values_persist_across_instances(self, tmp_path):
        """Test a new store over the same directory sees earlier writes."""
        JsonFileKeyValueStore(tmp_path).set("flag", True)
        assert JsonFileKeyValueStore(tmp_path).get("flag") is True

    def test_creates_data_directory(self, tmp_path):
        """Test the data directory is created on demand."""
        target = tmp_path / "nested" / "data"
        JsonFileKeyValueStore(target)
        assert target.is_dir()

    def test_keys_are_quoted_into_file_names(self, tmp_path):
        """Test unsafe key characters cannot escape the data directory."""
        store = JsonFileKeyValueStore(tmp_path)
        store.set("budgee_accounts_../../evil", 1)
        assert store.keys() == ["budgee_accounts_../../evil"]
        assert all(path.parent == tmp_path for path in tmp_path.iterdir())

    def test_no_temp_files_left_behind(self, tmp_path):
        """Test atomic writes clean up their temporary files."""
        store = JsonFileKeyValueStore(tmp_path)
        store.set("a", 1)
        store.set("a", 2)
        assert [p.name for p in tmp_path.iterdir()] == ["a.json"]
        assert json.loads((tmp_path / "a.json").read_text()) == 2

    def test_corrupt_file_raises(self, tmp_path):
        """Test a damaged file raises CorruptDataError."""
        (tmp_path / "k.json").write_text("{broken", encoding="utf-8")
        with pytest.raises(CorruptDataError):
            JsonFileKeyValueStore(tmp_path).get("k")

    def test_undecodable_file_raises(self, tmp_path):
        """Test a file that is not UTF-8 text raises CorruptDataError."""
        (tmp_path / "k.json").write_bytes(b"\xff\xfe[garbage")
        with pytest.raises(CorruptDataError):
            JsonFileKeyValueStore(tmp_path).get("k")

    def test_delete(self, tmp_path):
        """Test delete removes the file and reports presence."""
        store = JsonFileKeyValueStore(tmp_path)
        store.set("k", 1)
        assert store.delete("k") is True
        assert store.delete("k") is False
        assert store.get("k") is None

    def test_non_serializable_value_rejected(self, tmp_path):
        """Test non-JSON values raise StorageError without writing."""
        store = JsonFileKeyValueStore(tmp_path)
        with pytest.raises(StorageError):
            store.set("k", object())
        assert store.keys() == []


class TestAuditStorage:
    """Tests for audit persistence and the audit logger."""

    def test_events_are_newest_first(self):
        """Test events are returned most recent first."""
        audit = KeyValueAuditStorage(InMemoryKeyValueStore())
        audit.append_event(AuditEventBuilder.account_deactivated("u1", "acc_1"))
        audit.append_event(AuditEventBuilder.account_deactivated("u1", "acc_2"))
        events = audit.get_events_for_user("u1")
        assert [e.entity_id for e in events] == ["acc_2", "acc_1"]

    def test_per_user_cap(self):
        """Test the oldest events fall off past the cap."""
        audit = KeyValueAuditStorage(InMemoryKeyValueStore(), max_events_per_user=2)
        for n in range(3):
            audit.append_event(AuditEventBuilder.account_deactivated("u1", f"acc_{n}"))
        assert [e.entity_id for e in audit.get_events_for_user("u1")] == ["acc_2", "acc_1"]

    def test_system_events_have_their_own_log(self):
        """Test events without a user go to the system log."""
        audit = KeyValueAuditStorage(InMemoryKeyValueStore())
        audit.append_event(AuditEventBuilder.system_error("x", "boom"))
        assert len(audit.get_events_for_user("_system")) == 1

    def test_logger_survives_storage_failure(self, storage):
        """Test the audit logger never raises when persistence fails."""
        storage.put_raw("budgee_audit_u1", "{broken")
        logger = AuditLogger(KeyValueAuditStorage(storage))
        assert logger.log(AuditEventBuilder.account_deactivated("u1", "acc_1")) is False

    def test_logger_without_storage(self):
        """Test local-only logging reports success."""
        assert AuditLogger().log(AuditEventBuilder.account_deactivated("u1", "acc_1")) is True
