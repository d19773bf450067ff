# src/cvchat/adapters/skills_sqlite.py
import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

from cvchat.core.errors import StoreError
from cvchat.core.ports import SkillRecord

logger = logging.getLogger("cvchat.store")

SKILL_COLUMNS = (
    "id", "stable_id", "name", "experience", "experience_years", "proficiency_percent",
    "level", "category", "summary", "recency", "action", "effect", "outcome",
    "related_project", "employer",
)


class SqliteSkillStore:
    """Skill records plus index bookkeeping in one SQLite file (or ':memory:')."""

    def __init__(self, db_path: str = "store/skills.db", timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._shared: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        if db_path == ":memory:":
            # one connection, otherwise each call would see a fresh empty db
            self._shared = sqlite3.connect(":memory:", timeout=timeout, check_same_thread=False)
            self._shared.row_factory = sqlite3.Row
        else:
            d = os.path.dirname(db_path)
            if d:
                os.makedirs(d, exist_ok=True)
        self.init_db()

    @contextmanager
    def get_db(self) -> Generator[sqlite3.Connection, None, None]:
        if self._shared is not None:
            with self._lock:
                try:
                    yield self._shared
                    self._shared.commit()
                except sqlite3.Error as e:
                    self._shared.rollback()
                    raise StoreError(f"sqlite: {e}") from e
                except Exception:
                    self._shared.rollback()
                    raise
            return
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StoreError(f"sqlite connect: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"sqlite: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self):
        with self.get_db() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS skills (
                    id INTEGER PRIMARY KEY,
                    stable_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    experience TEXT,
                    experience_years INTEGER DEFAULT 0,
                    proficiency_percent INTEGER,
                    level TEXT,
                    category TEXT,
                    summary TEXT,
                    recency TEXT,
                    action TEXT,
                    effect TEXT,
                    outcome TEXT,
                    related_project TEXT,
                    employer TEXT
                )
            ''')
            conn.execute('''
                CREATE TABLE IF NOT EXISTS index_metadata (
                    version INTEGER PRIMARY KEY,
                    item_type TEXT NOT NULL DEFAULT 'skills',
                    status TEXT NOT NULL,
                    indexed_at TEXT NOT NULL,
                    total_items INTEGER DEFAULT 0
                )
            ''')

    # ---- skills ----
    def _row(self, row: sqlite3.Row) -> SkillRecord:
        return SkillRecord(**{c: row[c] for c in SKILL_COLUMNS})

    def get_skill(self, skill_id: int) -> Optional[SkillRecord]:
        with self.get_db() as conn:
            row = conn.execute(
                f"SELECT {', '.join(SKILL_COLUMNS)} FROM skills WHERE id = ?", (int(skill_id),)
            ).fetchone()
        return self._row(row) if row else None

    def list_skills(self, limit: int, offset: int = 0) -> List[SkillRecord]:
        with self.get_db() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(SKILL_COLUMNS)} FROM skills ORDER BY id LIMIT ? OFFSET ?",
                (int(limit), int(offset)),
            ).fetchall()
        return [self._row(r) for r in rows]

    def list_skill_ids(self, limit: int) -> List[int]:
        with self.get_db() as conn:
            rows = conn.execute("SELECT id FROM skills ORDER BY id LIMIT ?", (int(limit),)).fetchall()
        return [int(r[0]) for r in rows]

    def count_skills(self) -> int:
        with self.get_db() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM skills").fetchone()[0])

    def ping(self) -> bool:
        with self.get_db() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    def seed(self, records: Iterable[Dict[str, Any]]) -> int:
        """Insert or replace skill rows; `id` is assigned when missing."""
        n = 0
        with self.get_db() as conn:
            for rec in records:
                if not rec.get("name") or not rec.get("stable_id"):
                    raise StoreError(f"skill record needs name and stable_id: {rec!r}")
                cols = [c for c in SKILL_COLUMNS if c in rec]
                conn.execute(
                    f"INSERT OR REPLACE INTO skills ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                    [rec[c] for c in cols],
                )
                n += 1
        logger.info("[store] seeded %d skills into %s", n, self.db_path)
        return n

    def seed_file(self, path: str) -> int:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return self.seed(data["skills"] if isinstance(data, dict) else data)

    # ---- index metadata ----
    def next_index_version(self) -> int:
        with self.get_db() as conn:
            v = conn.execute("SELECT MAX(version) FROM index_metadata").fetchone()[0]
        return int(v or 0) + 1

    def begin_index(self, version: int, item_type: str = "skills") -> None:
        with self.get_db() as conn:
            # one in-progress run per item type; earlier interrupted runs are closed out
            conn.execute(
                "UPDATE index_metadata SET status = 'abandoned' WHERE item_type = ? AND status = 'in_progress'",
                (item_type,),
            )
            conn.execute(
                "INSERT INTO index_metadata (version, item_type, status, indexed_at, total_items) VALUES (?, ?, 'in_progress', ?, 0)",
                (int(version), item_type, datetime.now(timezone.utc).isoformat()),
            )

    def complete_index(self, version: int, total: int) -> None:
        with self.get_db() as conn:
            conn.execute(
                "UPDATE index_metadata SET status = 'completed', total_items = ?, indexed_at = ? WHERE version = ?",
                (int(total), datetime.now(timezone.utc).isoformat(), int(version)),
            )

    def last_index(self) -> Optional[Dict[str, Any]]:
        with self.get_db() as conn:
            row = conn.execute(
                "SELECT version, item_type, status, indexed_at, total_items FROM index_metadata "
                "WHERE status = 'completed' ORDER BY version DESC LIMIT 1"
            ).fetchone()
        return dict(row) if row else None
