"""Per-build metadata store backed by SQLite.

Every fact is committed as soon as it is recorded so a build that dies
half-way still leaves its partial diagnostics behind. At the end of the
build (successful or not) the facts are exported once as a JSON document
to a sink file that analytics tooling picks up.
"""

from __future__ import annotations

import json
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .utils import atomic_write_json

DB_FILENAME = "metadata.db"
SINK_FILENAME = "nodejs.json"
METADATA_VERSION = 1
KEEP_BUILDS = 10

_KIND_STR = "str"
_KIND_INT = "int"
_KIND_FLOAT = "float"
_KIND_BOOL = "bool"


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = FULL;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS build_run (
            build_id TEXT PRIMARY KEY,
            started_at TEXT NOT NULL,
            step TEXT NOT NULL,
            finished_at TEXT,
            version INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS build_fact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            build_id TEXT NOT NULL REFERENCES build_run(build_id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            kind TEXT NOT NULL,
            recorded_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_build_fact_order
            ON build_fact(build_id, position);
        """
    )


def _encode(value: object) -> tuple[str, str]:
    if isinstance(value, bool):
        return ("true" if value else "false"), _KIND_BOOL
    if isinstance(value, int):
        return str(value), _KIND_INT
    if isinstance(value, float):
        return repr(value), _KIND_FLOAT
    if isinstance(value, str):
        return value, _KIND_STR
    raise TypeError(f"Unsupported metadata value type: {type(value).__name__}")


def _decode(value: str, kind: str) -> object:
    if kind == _KIND_BOOL:
        return value == "true"
    if kind == _KIND_INT:
        return int(value)
    if kind == _KIND_FLOAT:
        return float(value)
    return value


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetadataStore:
    """Append-only fact log plus the build-step cursor for one build."""

    def __init__(
        self,
        db_path: Path,
        build_id: str,
        *,
        initial_step: str = "init",
        keep_builds: int = KEEP_BUILDS,
    ) -> None:
        self.db_path = db_path
        self.build_id = build_id
        self.started_at = _utc_now()
        self.flush_count = 0
        self._position = 0
        self._step = initial_step
        self._conn = _connect(db_path)
        _ensure_schema(self._conn)
        with self._conn:
            self._conn.execute(
                "DELETE FROM build_run WHERE build_id = ?",
                (build_id,),
            )
            self._conn.execute(
                """
                INSERT INTO build_run (build_id, started_at, step, version)
                VALUES (?, ?, ?, ?)
                """,
                (build_id, self.started_at, initial_step, METADATA_VERSION),
            )
            # Keep the newest builds only; their facts go with them via ON DELETE CASCADE.
            self._conn.execute(
                """
                DELETE FROM build_run WHERE rowid NOT IN (
                    SELECT rowid FROM build_run ORDER BY rowid DESC LIMIT ?
                )
                """,
                (max(keep_builds, 1),),
            )

    @property
    def step(self) -> str:
        return self._step

    def set_step(self, name: str) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE build_run SET step = ? WHERE build_id = ?",
                (name, self.build_id),
            )
        self._step = name

    def record(self, key: str, value: object) -> None:
        encoded, kind = _encode(value)
        self._position += 1
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO build_fact (build_id, position, key, value, kind, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (self.build_id, self._position, key, encoded, kind, _utc_now()),
            )

    def record_duration(self, key: str, start_time: float) -> float:
        """Record seconds elapsed since *start_time* (a `time.monotonic()` value)."""

        elapsed = round(max(time.monotonic() - start_time, 0.0), 3)
        self.record(key, elapsed)
        return elapsed

    def facts(self) -> dict[str, object]:
        rows = self._conn.execute(
            """
            SELECT key, value, kind
            FROM build_fact
            WHERE build_id = ?
            ORDER BY position ASC
            """,
            (self.build_id,),
        ).fetchall()
        result: dict[str, object] = {}
        for row in rows:
            result[row["key"]] = _decode(row["value"], row["kind"])
        return result

    def history(self, key: str) -> list[object]:
        rows = self._conn.execute(
            """
            SELECT value, kind
            FROM build_fact
            WHERE build_id = ? AND key = ?
            ORDER BY position ASC
            """,
            (self.build_id, key),
        ).fetchall()
        return [_decode(row["value"], row["kind"]) for row in rows]

    def stored_step(self) -> str | None:
        row = self._conn.execute(
            "SELECT step FROM build_run WHERE build_id = ?",
            (self.build_id,),
        ).fetchone()
        return None if row is None else str(row["step"])

    def flush(self, sink_path: Path) -> bool:
        """Export the build's facts to *sink_path* once; later calls are no-ops."""

        if self.flush_count:
            return False
        finished_at = _utc_now()
        with self._conn:
            self._conn.execute(
                "UPDATE build_run SET finished_at = ? WHERE build_id = ?",
                (finished_at, self.build_id),
            )
        document: dict[str, Any] = {
            "build_id": self.build_id,
            "started_at": self.started_at,
            "finished_at": finished_at,
        }
        document.update(self.facts())
        document["build-step"] = self._step
        atomic_write_json(sink_path, document)
        self.flush_count += 1
        return True

    def close(self) -> None:
        self._conn.close()


def load_flushed(sink_path: Path) -> Mapping[str, object] | None:
    """Return the last exported metadata document, or None if unavailable."""

    if not sink_path.exists():
        return None
    try:
        data = json.loads(sink_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None

