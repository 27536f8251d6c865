"""
Unit tests for storage layer.

Tests schema creation and settings persistence.
"""

import os
import tempfile

from cache_rate_monitor.storage.db import get_connection
from cache_rate_monitor.storage.models import CompletedSample, MinuteBucket, TokenTotals
from cache_rate_monitor.storage.repository import SettingsRepository, initialize_schema


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify table is created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("PRAGMA table_info(monitor_setting)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == ["key", "value"]
            finally:
                conn.close()

    def test_connection_creates_parent_directory(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "nested", "dir", "test.db")
            get_connection(db_path).close()

            assert os.path.exists(db_path)


class TestSettingsRepository:
    """Test key/value settings."""

    def test_missing_database_reads_none(self):
        """Reading before anything was written returns None."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = SettingsRepository(os.path.join(temp_dir, "test.db"))

            assert repo.get("cache_rate_monitor.enabled") is None

    def test_round_trip(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = SettingsRepository(os.path.join(temp_dir, "test.db"))
            repo.set("cache_rate_monitor.enabled", "true")

            assert repo.get("cache_rate_monitor.enabled") == "true"
            assert repo.get("other") is None

    def test_overwrite(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            SettingsRepository(db_path).set("k", "true")
            SettingsRepository(db_path).set("k", "false")

            assert SettingsRepository(db_path).get("k") == "false"


class TestTokenTotals:
    """Test the token total arithmetic used by the ring buffer."""

    def test_add_sample_and_ratios(self):
        totals = TokenTotals()
        totals.add_sample(CompletedSample(
            effective_input_tokens=400,
            cache_creation_tokens=100,
            cache_read_tokens=500,
            provider_id=1,
            cli_key="claude",
            model="claude-3-opus",
            minute_index=0,
        ))

        assert totals == TokenTotals(denom_tokens=1000, read_tokens=500, create_tokens=100, sample_count=1)
        assert totals.hit_rate == 0.5
        assert totals.create_share == 0.1
        assert totals.create_read_ratio == 0.2

    def test_empty_ratios_are_zero(self):
        totals = TokenTotals()

        assert totals.hit_rate == 0.0
        assert totals.create_share == 0.0
        assert totals.create_read_ratio == 0.0

    def test_subtract_and_mismatch(self):
        totals = TokenTotals(10, 5, 2, 1)
        totals.subtract(TokenTotals(10, 5, 2, 1))

        assert totals == TokenTotals()
        assert TokenTotals(1, 2, 3, 4).mismatched_fields(TokenTotals(1, 0, 3, 0)) == [
            "read_tokens",
            "sample_count",
        ]

    def test_bucket_reset_retags(self):
        bucket = MinuteBucket(denom_tokens=5, sample_count=1, tagged_minute=3)
        bucket.reset(63)

        assert bucket.tagged_minute == 63
        assert bucket.denom_tokens == 0
        assert bucket.sample_count == 0
