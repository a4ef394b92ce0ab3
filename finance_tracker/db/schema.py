"""SQLite schema definitions for the local dataset cache."""

SCHEMA_SQL = """
-- One row per dataset; value is the JSON text of the whole dataset
CREATE TABLE IF NOT EXISTS datasets (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Small device-scoped settings (local user id, etc.)
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""
