"""
Unit tests for storage layer.

Tests schema creation, atomic writes, and record serialization.
"""

from datetime import datetime

import pytest

from shopping_ai.core.prompts import TaskKind
from shopping_ai.storage.db import get_connection
from shopping_ai.storage.models import InteractionRecord
from shopping_ai.storage.repository import KeyValueStore, initialize_schema


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self, db_path):
        """Verify table is created correctly."""
        initialize_schema(db_path)

        conn = get_connection(db_path)
        try:
            cursor = conn.execute("""
                SELECT name FROM sqlite_master
                WHERE type='table' AND name='kv_store'
            """)
            assert cursor.fetchall() == [("kv_store",)]

            cursor = conn.execute("PRAGMA table_info(kv_store)")
            assert [col[1] for col in cursor.fetchall()] == ["key", "value"]
        finally:
            conn.close()

    def test_schema_creation_is_idempotent(self, db_path):
        initialize_schema(db_path)
        initialize_schema(db_path)

    def test_parent_directory_created(self, tmp_path):
        db_path = str(tmp_path / "nested" / "dir" / "test.db")
        KeyValueStore(db_path).set("k", 1)
        assert (tmp_path / "nested" / "dir" / "test.db").exists()


class TestKeyValueStore:
    """Test reads and writes."""

    def test_round_trip_values(self, db_path):
        store = KeyValueStore(db_path)
        store.set("scalar", 1.5)
        store.set("struct", {"a": [1, 2], "b": None})
        store.set("list", ["x", "y"])

        assert store.get("scalar") == 1.5
        assert store.get("struct") == {"a": [1, 2], "b": None}
        assert store.get("list") == ["x", "y"]

    def test_missing_key_default(self, db_path):
        store = KeyValueStore(db_path)
        assert store.get("missing") is None
        assert store.get("missing", []) == []

    def test_overwrite(self, db_path):
        store = KeyValueStore(db_path)
        store.set("k", 1)
        store.set("k", 2)
        assert store.get("k") == 2

    def test_get_many(self, db_path):
        store = KeyValueStore(db_path)
        store.write_many({"a": 1, "b": 2})
        assert store.get_many(["a", "b", "c"]) == {"a": 1, "b": 2}
        assert store.get_many([]) == {}

    def test_write_and_delete_together(self, db_path):
        store = KeyValueStore(db_path)
        store.set("old", True)
        store.write_many({"new": True}, delete=["old"])

        assert store.get("old") is None
        assert store.get("new") is True

    def test_delete(self, db_path):
        store = KeyValueStore(db_path)
        store.write_many({"a": 1, "b": 2})
        store.delete("a", "b")
        assert store.get_many(["a", "b"]) == {}

    def test_unserializable_value_writes_nothing(self, db_path):
        """A failing group write leaves every key untouched."""
        store = KeyValueStore(db_path)
        store.set("a", 1)

        with pytest.raises(TypeError):
            store.write_many({"a": 2, "b": object()})

        assert store.get("a") == 1
        assert store.get("b") is None


class TestUpdate:
    """Test read-modify-write in one transaction."""

    def test_transform_sees_current_values(self, db_path):
        store = KeyValueStore(db_path)
        store.set("count", 1)
        other = KeyValueStore(db_path)
        other.set("count", 5)

        written = store.update(["count", "absent"], lambda current: {"count": current["count"] + 1})

        assert written == {"count": 6}
        assert store.get("count") == 6

    def test_absent_keys_omitted(self, db_path):
        seen = []
        KeyValueStore(db_path).update(["missing"], lambda current: seen.append(current) or {})
        assert seen == [{}]

    def test_failing_transform_rolls_back(self, db_path):
        store = KeyValueStore(db_path)
        store.set("a", 1)

        def transform(current):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update(["a"], transform)
        assert store.get("a") == 1

    def test_unserializable_result_writes_nothing(self, db_path):
        store = KeyValueStore(db_path)
        store.set("a", 1)

        with pytest.raises(TypeError):
            store.update(["a"], lambda current: {"a": 2, "b": object()})

        assert store.get("a") == 1
        assert store.get("b") is None


class TestInteractionRecord:
    """Test record validation and serialization."""

    def _record(self, **overrides):
        values = dict(
            timestamp=datetime(2024, 5, 1, 9, 30),
            task_kind=TaskKind.ADDITIVE_ANALYSIS,
            prompt_text="Analyze",
            response_text="{}",
            cost=0.0004,
            input_tokens=50,
            output_tokens=10,
            provider_name="Google",
            model_id="gemini-2.5-flash",
            subject_name="Crackers",
        )
        values.update(overrides)
        return InteractionRecord(**values)

    def test_total_tokens(self):
        assert self._record().total_tokens == 60

    def test_unique_ids(self):
        assert self._record().id != self._record().id

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError, match="cost cannot be negative"):
            self._record(cost=-0.1)

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError, match="token counts cannot be negative"):
            self._record(output_tokens=-1)

    def test_stored_form(self):
        data = self._record().to_dict()
        assert data["type"] == "additiveAnalysis"
        assert data["itemName"] == "Crackers"
        assert data["aiService"] == "Google"
        assert data["timestamp"] == "2024-05-01T09:30:00"

    def test_from_dict_restores_record(self):
        record = self._record()
        assert InteractionRecord.from_dict(record.to_dict()) == record

    def test_from_dict_unknown_task(self):
        data = self._record().to_dict()
        data["type"] = "mystery"
        with pytest.raises(ValueError):
            InteractionRecord.from_dict(data)
