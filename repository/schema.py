# repository/schema.py
# Version 1.0.0 dated 20261017
# Centralized database schema definition for the embedding store
#
# Single source of truth for table creation and schema versioning.

"""
Centralized database schema definition for the embedding store.

Schema Version: 1.0.0
- photo_embeddings: one row per photo (vector BLOB + staleness timestamps)
- schema_version tracking table
"""

SCHEMA_VERSION = "1.0.0"

SCHEMA_SQL = """
-- ============================================================================
-- SCHEMA VERSION TRACKING
-- ============================================================================
CREATE TABLE IF NOT EXISTS schema_version (
    version TEXT PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    description TEXT
);

INSERT OR IGNORE INTO schema_version (version, description)
VALUES ('1.0.0', 'Photo embeddings with content hash and staleness timestamps');

-- ============================================================================
-- PHOTO EMBEDDINGS
-- ============================================================================

-- dim > 0: float32 BLOB, dim < 0: float16 BLOB of length -dim
-- Timestamps are ISO-8601 UTC strings
CREATE TABLE IF NOT EXISTS photo_embeddings (
    photo_id TEXT PRIMARY KEY,
    embedding BLOB NOT NULL,
    dim INTEGER NOT NULL,
    norm REAL NOT NULL,
    content_hash TEXT,
    computed_at TEXT NOT NULL,
    source_modified_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_photo_embeddings_computed_at
    ON photo_embeddings(computed_at);
"""


def get_schema_sql() -> str:
    """Return the complete schema script."""
    return SCHEMA_SQL


def get_schema_version() -> str:
    """Return the schema version this code expects."""
    return SCHEMA_VERSION


def get_expected_tables() -> list:
    return ['schema_version', 'photo_embeddings']


def get_expected_indexes() -> list:
    return ['idx_photo_embeddings_computed_at']
