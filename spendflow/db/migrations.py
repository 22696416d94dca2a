"""Database schema migrations."""

SCHEMA_VERSION = 2

MIGRATIONS = {
    1: """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id TEXT NOT NULL UNIQUE,
            access_token TEXT NOT NULL,
            cursor TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id TEXT NOT NULL UNIQUE,
            item_id INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            official_name TEXT,
            type TEXT NOT NULL,
            subtype TEXT,
            mask TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_accounts_item
            ON accounts(item_id);

        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id TEXT NOT NULL UNIQUE,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            authorized_date TEXT,
            amount TEXT NOT NULL,
            iso_currency_code TEXT,
            name TEXT NOT NULL,
            merchant_name TEXT,
            original_description TEXT,
            pending INTEGER NOT NULL DEFAULT 0,
            pending_transaction_id TEXT,
            category_primary TEXT,
            category_detailed TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_transactions_date
            ON transactions(date);
        CREATE INDEX IF NOT EXISTS idx_transactions_account
            ON transactions(account_id);

        CREATE TABLE IF NOT EXISTS category_overrides (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_id INTEGER NOT NULL UNIQUE
                REFERENCES transactions(id) ON DELETE CASCADE,
            category TEXT NOT NULL CHECK (length(category) > 0),
            updated_at TEXT NOT NULL
        );

        INSERT INTO schema_version (version) VALUES (1);
    """,
    2: """
        CREATE TABLE IF NOT EXISTS rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            match_type TEXT NOT NULL CHECK (match_type IN ('contains', 'regex')),
            pattern TEXT NOT NULL CHECK (length(pattern) > 0),
            category TEXT NOT NULL CHECK (length(category) > 0),
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_rules_match_type
            ON rules(match_type);

        UPDATE schema_version SET version = 2;
    """,
}


def get_migration_sql(from_version: int, to_version: int) -> list[str]:
    """Get list of migration SQL statements to run."""
    statements = []
    for version in range(from_version + 1, to_version + 1):
        if version in MIGRATIONS:
            statements.append(MIGRATIONS[version])
    return statements
