from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

SCHEMA = """
CREATE TABLE IF NOT EXISTS configurations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    version TEXT NOT NULL DEFAULT '1.0',
    framework TEXT,
    category TEXT NOT NULL DEFAULT 'general',
    schema_data TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    is_template INTEGER NOT NULL DEFAULT 0,
    tags TEXT NOT NULL DEFAULT '[]',
    target_audience TEXT NOT NULL DEFAULT '[]',
    difficulty_level TEXT,
    estimated_minutes INTEGER,
    locale TEXT NOT NULL DEFAULT 'en',
    custom_metadata TEXT NOT NULL DEFAULT '{}',
    created_by TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS configuration_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    configuration_id TEXT NOT NULL,
    user_id TEXT,
    used_at TEXT DEFAULT CURRENT_TIMESTAMP,
    usage_context TEXT NOT NULL,
    usage_metadata TEXT NOT NULL DEFAULT '{}',
    FOREIGN KEY (configuration_id) REFERENCES configurations(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS form_submissions (
    id TEXT PRIMARY KEY,
    configuration_id TEXT NOT NULL,
    user_id TEXT,
    form_data TEXT NOT NULL,
    validation_results TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'completed',
    submitted_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (configuration_id) REFERENCES configurations(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS customer_access (
    customer_id TEXT PRIMARY KEY,
    api_key TEXT NOT NULL
);
"""


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | Path) -> None:
    conn = connect(db_path)
    with conn:
        conn.executescript(SCHEMA)
        migrate_configuration_indexes(conn)
        seed_default_access(conn)


def migrate_configuration_indexes(conn: sqlite3.Connection) -> None:
    for column in ("status", "category", "framework", "is_template", "updated_at"):
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_configurations_{column} ON configurations({column})")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_configuration_usage_configuration_id ON configuration_usage(configuration_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_form_submissions_configuration_id ON form_submissions(configuration_id)"
    )


def seed_default_access(conn: sqlite3.Connection) -> None:
    customer = conn.execute(
        "SELECT customer_id FROM customer_access WHERE customer_id = ?", ("demo-customer",)
    ).fetchone()
    if customer is None:
        conn.execute(
            "INSERT INTO customer_access(customer_id, api_key) VALUES (?, ?)",
            ("demo-customer", "demo-key"),
        )


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)
