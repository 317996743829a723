import sqlite3
from pathlib import Path


def get_conn(db_path: str):
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str):
    conn = get_conn(db_path)
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
          key TEXT PRIMARY KEY,
          value TEXT,
          updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS blobs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          sha256 TEXT UNIQUE NOT NULL,
          filetype TEXT DEFAULT 'stl.zip',
          size INTEGER DEFAULT 0,
          added TEXT
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS resources (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          flags INTEGER DEFAULT 0,
          created TEXT,
          last_modified TEXT NOT NULL,
          unique_global_id TEXT NOT NULL
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS model_groups (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          created TEXT,
          resource_id INTEGER REFERENCES resources(id) ON DELETE SET NULL,
          last_modified TEXT NOT NULL,
          unique_global_id TEXT NOT NULL
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS models (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          blob_id INTEGER NOT NULL REFERENCES blobs(id),
          link TEXT,
          description TEXT,
          added TEXT,
          group_id INTEGER REFERENCES model_groups(id) ON DELETE SET NULL,
          flags INTEGER DEFAULT 0,
          last_modified TEXT NOT NULL,
          unique_global_id TEXT NOT NULL
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS labels (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          color INTEGER DEFAULT 0,
          last_modified TEXT NOT NULL,
          unique_global_id TEXT NOT NULL
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS models_labels (
          model_id INTEGER NOT NULL REFERENCES models(id) ON DELETE CASCADE,
          label_id INTEGER NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
          PRIMARY KEY (model_id, label_id)
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS label_children (
          parent_id INTEGER NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
          child_id INTEGER NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
          PRIMARY KEY (parent_id, child_id)
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS label_keywords (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          label_id INTEGER NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
          keyword TEXT NOT NULL
        )
        """
    )

    cur.execute("CREATE INDEX IF NOT EXISTS idx_models_global_id ON models(unique_global_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_models_group ON models(group_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_groups_resource ON model_groups(resource_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_label_keywords_label ON label_keywords(label_id)")

    conn.commit()
    conn.close()


def get_setting(db_path: str, key: str) -> str | None:
    conn = get_conn(db_path)
    row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    conn.close()
    return row["value"] if row else None


def set_setting(db_path: str, key: str, value: str) -> None:
    conn = get_conn(db_path)
    conn.execute(
        """
        INSERT INTO settings(key, value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=CURRENT_TIMESTAMP
        """,
        (key, value),
    )
    conn.commit()
    conn.close()
