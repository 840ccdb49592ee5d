"""
Unit tests for storage layer.

Tests schema creation and key/value persistence.
"""

import os
import tempfile

from ai_call_governor.storage.db import get_connection
from ai_call_governor.storage.repository import StorageRepository, initialize_schema


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify table is created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name='kv_store'
                """)
                tables = cursor.fetchall()
                assert len(tables) == 1

                cursor = conn.execute("PRAGMA table_info(kv_store)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == ['key', 'value', 'updated_at']
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        """Verify initializing twice keeps existing data."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            repo = StorageRepository(db_path)
            repo.set_item("k", "v")

            initialize_schema(db_path)

            assert repo.get_item("k") == "v"

    def test_parent_directory_created(self):
        """Verify nested database paths are created on demand."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "nested", "dir", "test.db")
            StorageRepository(db_path).set_item("k", "v")
            assert os.path.exists(db_path)


class TestStorageRepository:
    """Test get/set/remove operations."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.repo = StorageRepository(os.path.join(self.temp_dir, "test.db"))

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_key_returns_none(self):
        """Verify unknown keys read as None."""
        assert self.repo.get_item("personaAuditLog") is None

    def test_set_and_get(self):
        """Verify a stored value reads back unchanged."""
        self.repo.set_item("personaAuditLog", '[{"id": "audit-1"}]')
        assert self.repo.get_item("personaAuditLog") == '[{"id": "audit-1"}]'

    def test_last_write_wins(self):
        """Verify setting an existing key replaces its value."""
        self.repo.set_item("key", "first")
        self.repo.set_item("key", "second")

        assert self.repo.get_item("key") == "second"

        conn = get_connection(self.repo.db_path)
        try:
            count = conn.execute("SELECT COUNT(*) FROM kv_store").fetchone()[0]
        finally:
            conn.close()
        assert count == 1

    def test_keys_are_independent(self):
        """Verify values under different keys do not interfere."""
        self.repo.set_item("a", "1")
        self.repo.set_item("b", "2")
        self.repo.remove_item("a")

        assert self.repo.get_item("a") is None
        assert self.repo.get_item("b") == "2"

    def test_remove_missing_key_is_noop(self):
        """Verify removing an unknown key does not raise."""
        self.repo.remove_item("never-set")
        assert self.repo.get_item("never-set") is None

    def test_values_shared_between_instances(self):
        """Verify a second repository on the same file sees the data."""
        self.repo.set_item("key", "value")
        other = StorageRepository(self.repo.db_path)
        assert other.get_item("key") == "value"
