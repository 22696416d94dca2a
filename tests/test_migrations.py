"""Tests for database migrations."""

from spendflow.db.migrations import (
    MIGRATIONS,
    SCHEMA_VERSION,
    get_migration_sql,
)


class TestMigrations:
    """Tests for migration functions."""

    def test_schema_version_matches_migrations(self):
        """Test that SCHEMA_VERSION matches the number of migrations."""
        assert len(MIGRATIONS) == SCHEMA_VERSION

    def test_get_migration_sql_from_zero(self):
        """Test getting all migrations from version 0."""
        migrations = get_migration_sql(0, SCHEMA_VERSION)
        assert migrations == [MIGRATIONS[v] for v in range(1, SCHEMA_VERSION + 1)]

    def test_get_migration_sql_partial(self):
        """Test getting a subset of migrations."""
        migrations = get_migration_sql(1, SCHEMA_VERSION)
        assert len(migrations) == SCHEMA_VERSION - 1

    def test_get_migration_sql_same_version(self):
        """Test getting migrations when already at target version."""
        assert get_migration_sql(SCHEMA_VERSION, SCHEMA_VERSION) == []

    def test_get_migration_sql_beyond_target(self):
        """Test getting migrations when current is beyond target."""
        assert get_migration_sql(SCHEMA_VERSION + 1, SCHEMA_VERSION) == []

    def test_migration_v1_creates_ledger_tables(self):
        """Test that migration v1 creates the ledger tables."""
        v1_sql = MIGRATIONS[1]
        for table in ("schema_version", "items", "accounts", "transactions", "category_overrides"):
            assert f"CREATE TABLE IF NOT EXISTS {table}" in v1_sql

    def test_external_ids_are_unique(self):
        """Test that provider identifiers carry uniqueness constraints."""
        v1_sql = MIGRATIONS[1]
        assert v1_sql.count("external_id TEXT NOT NULL UNIQUE") == 3
        assert "transaction_id INTEGER NOT NULL UNIQUE" in v1_sql

    def test_migration_v2_creates_rules(self):
        """Test that migration v2 adds the rules table."""
        assert "CREATE TABLE IF NOT EXISTS rules" in MIGRATIONS[2]
        assert "UPDATE schema_version SET version = 2" in MIGRATIONS[2]

    def test_migrations_dict_keys_are_sequential(self):
        """Test that migration versions are sequential starting from 1."""
        assert sorted(MIGRATIONS.keys()) == list(range(1, SCHEMA_VERSION + 1))

    def test_get_migration_sql_with_missing_version(self, monkeypatch):
        """Test get_migration_sql handles missing versions gracefully."""
        monkeypatch.setattr("spendflow.db.migrations.MIGRATIONS", {1: "SQL1", 3: "SQL3"})
        assert get_migration_sql(0, 3) == ["SQL1", "SQL3"]
