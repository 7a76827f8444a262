from __future__ import annotations

import copy
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sat_practice.errors import NotFoundError, PersistenceError
from sat_practice.models import (
    PracticeTest,
    PracticeTestConfig,
    PracticeTestProgress,
    Question,
)
from sat_practice.parsing import validate_question

_log = logging.getLogger("sat_practice.db")

# Each collection stores whole JSON documents; user_id/created_at are
# duplicated into columns for filtering and ordering.
SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS practice_tests (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS practice_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tests_user ON practice_tests (user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON practice_sessions (user_id, created_at);
"""

COLLECTIONS = ("users", "practice_tests", "practice_sessions")
SECTIONS = ("reading", "writing", "math")
MAX_PROGRESS = 100

Listener = Callable[[dict | None], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Question list encoding ────────────────────────────────────────────────
#
# Canonical: a plain list of question objects.
# Legacy:    one {"0": "<json string>"} wrapper per generation request, the
#            string holding that request's list of questions.


def _is_legacy_item(item) -> bool:
    return isinstance(item, (list, str)) or (
        isinstance(item, dict) and "0" in item and "question" not in item
    )


def is_legacy_encoding(raw) -> bool:
    return isinstance(raw, list) and any(_is_legacy_item(i) for i in raw)


def _unwrap(item, depth: int = 0) -> list:
    if item is None or depth > 10:
        return []
    if isinstance(item, list):
        return [q for i in item for q in _unwrap(i, depth + 1)]
    if isinstance(item, str):
        try:
            return _unwrap(json.loads(item), depth + 1)
        except json.JSONDecodeError:
            _log.warning("Skipping stored question: not JSON: %.80r", item)
            return []
    if isinstance(item, dict) and "0" in item and "question" not in item:
        return _unwrap(item["0"], depth + 1)
    return [item]


def decode_questions(raw) -> list[Question]:
    """Read a stored question list in either encoding."""
    questions: list[Question] = []
    for item in _unwrap(raw or []):
        reason = validate_question(item)
        if reason:
            _log.warning("Skipping stored question: %s", reason)
            continue
        questions.append(Question.from_dict(item))
    return questions


def encode_questions(questions: list[Question]) -> list[dict]:
    return [q.to_dict() for q in questions]


def _set_path(doc: dict, path: str, value) -> None:
    """Assign *value* at a dotted *path*, creating intermediate objects."""
    parts = path.split(".")
    node = doc
    for p in parts[:-1]:
        if not isinstance(node.get(p), dict):
            node[p] = {}
        node = node[p]
    node[parts[-1]] = value


def _get_path(doc: dict, path: str, default=None):
    node = doc
    for p in path.split("."):
        if not isinstance(node, dict) or p not in node:
            return default
        node = node[p]
    return node


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._listeners: dict[tuple[str, str], list[Listener]] = {}
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except sqlite3.Error as e:
            _log.warning("%s failed: %s", action, e)
            raise PersistenceError(f"{action} failed: {e}") from e

    # ── Documents ─────────────────────────────────────────────────────────

    def get_document(self, collection: str, doc_id: str) -> dict | None:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        with self._guard(f"read {collection}/{doc_id}"):
            row = self.conn.execute(
                f"SELECT data FROM {collection} WHERE id = ?", (doc_id,)
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def _write_document(
        self, collection: str, doc_id: str, doc: dict, user_id: str, created_at: str,
    ) -> None:
        with self._guard(f"write {collection}/{doc_id}"):
            self.conn.execute(
                f"INSERT OR REPLACE INTO {collection} (id, user_id, created_at, data) "
                "VALUES (?, ?, ?, ?)",
                (doc_id, user_id, created_at, json.dumps(doc)),
            )
            self.conn.commit()
        self._notify(collection, doc_id, doc)

    def add_document(self, collection: str, doc: dict, user_id: str) -> str:
        doc_id = uuid.uuid4().hex
        created_at = doc.setdefault("createdAt", _now())
        self._write_document(collection, doc_id, doc, user_id, created_at)
        return doc_id

    def update_document(self, collection: str, doc_id: str, fields: dict) -> dict:
        """Merge dotted-path *fields* into an existing document."""
        with self._guard(f"read {collection}/{doc_id}"):
            row = self.conn.execute(
                f"SELECT user_id, created_at, data FROM {collection} WHERE id = ?",
                (doc_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        doc = json.loads(row["data"])
        for path, value in fields.items():
            _set_path(doc, path, value)
        self._write_document(collection, doc_id, doc, row["user_id"], row["created_at"])
        return doc

    def _query(self, collection: str, user_id: str, newest_first: bool, limit: int | None) -> list[tuple[str, dict]]:
        order = "DESC" if newest_first else "ASC"
        sql = f"SELECT id, data FROM {collection} WHERE user_id = ? ORDER BY created_at {order}"
        params: tuple = (user_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        with self._guard(f"query {collection}"):
            rows = self.conn.execute(sql, params).fetchall()
        return [(r["id"], json.loads(r["data"])) for r in rows]

    # ── Live updates ──────────────────────────────────────────────────────

    def subscribe(self, collection: str, doc_id: str, callback: Listener) -> Callable[[], None]:
        """Call *callback* with the new document after every write to it.

        Returns the unsubscribe function.
        """
        key = (collection, doc_id)
        self._listeners.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._listeners.pop(key, None)

        return unsubscribe

    def _notify(self, collection: str, doc_id: str, doc: dict | None) -> None:
        for cb in list(self._listeners.get((collection, doc_id), [])):
            try:
                cb(copy.deepcopy(doc))
            except Exception as e:
                _log.warning("Listener on %s/%s failed: %s", collection, doc_id, e)

    # ── Tests ─────────────────────────────────────────────────────────────

    def create_test(self, user_id: str, config: PracticeTestConfig) -> str:
        doc = {
            "userId": user_id,
            "createdAt": _now(),
            "status": "generating",
            "config": config.to_dict(),
            "questions": [],
            "progress": PracticeTestProgress().to_dict(),
        }
        test_id = self.add_document("practice_tests", doc, user_id)
        _log.info("Test %s created for %s (%s)", test_id, user_id, config.title)
        return test_id

    def populate_test(self, test_id: str, questions: list[Question]) -> None:
        self.update_document("practice_tests", test_id, {
            "status": "ready",
            "questions": encode_questions(questions),
        })
        _log.info("Test %s ready with %d questions", test_id, len(questions))

    def mark_test_in_progress(self, test_id: str) -> None:
        self.update_document("practice_tests", test_id, {"status": "in-progress"})

    def mark_test_failed(self, test_id: str) -> None:
        """Generation gave up; the test will never get questions."""
        self.update_document("practice_tests", test_id, {"status": "failed"})
        _log.info("Test %s marked failed", test_id)

    def mark_test_completed(self, test_id: str, current_question: int, correct_answers: int) -> None:
        progress = PracticeTestProgress(current_question, correct_answers, completed=True)
        self.update_document("practice_tests", test_id, {
            "status": "completed",
            "progress": progress.to_dict(),
        })
        _log.info("Test %s completed: %d correct", test_id, correct_answers)

    @staticmethod
    def _to_test(test_id: str, doc: dict) -> PracticeTest:
        return PracticeTest(
            id=test_id,
            user_id=doc.get("userId", ""),
            created_at=doc.get("createdAt", ""),
            status=doc.get("status", "generating"),
            config=PracticeTestConfig.from_dict(doc.get("config", {})),
            questions=decode_questions(doc.get("questions")),
            progress=PracticeTestProgress.from_dict(doc.get("progress", {})),
        )

    def get_test(self, test_id: str) -> PracticeTest | None:
        doc = self.get_document("practice_tests", test_id)
        return self._to_test(test_id, doc) if doc else None

    def list_tests(self, user_id: str) -> list[PracticeTest]:
        return [self._to_test(i, d) for i, d in self._query("practice_tests", user_id, True, None)]

    def migrate_legacy_questions(self) -> int:
        """Rewrite tests stored in the legacy wrapped encoding. Returns count."""
        with self._guard("scan practice_tests"):
            rows = self.conn.execute("SELECT id, data FROM practice_tests").fetchall()
        migrated = 0
        for row in rows:
            doc = json.loads(row["data"])
            if not is_legacy_encoding(doc.get("questions")):
                continue
            questions = decode_questions(doc["questions"])
            self.update_document("practice_tests", row["id"], {
                "questions": encode_questions(questions),
            })
            migrated += 1
        if migrated:
            _log.info("Migrated %d tests to the plain question encoding", migrated)
        return migrated

    # ── Users ─────────────────────────────────────────────────────────────

    def get_user(self, user_id: str) -> dict | None:
        return self.get_document("users", user_id)

    def upsert_user(self, user_id: str, profile: dict) -> dict:
        """Create or merge a user profile (profile setup)."""
        existing = self.get_user(user_id)
        now = _now()
        doc = existing or {
            "createdAt": now,
            "progress": {s: 0 for s in SECTIONS},
            "stats": {},
        }
        for key in ("firstName", "lastName", "gradeLevel", "email"):
            if key in profile:
                doc[key] = profile[key]
        if "gradeLevel" in doc and doc["gradeLevel"] is not None:
            doc["gradeLevel"] = int(doc["gradeLevel"])
        doc["lastActive"] = now
        self._write_document("users", user_id, doc, user_id, doc["createdAt"])
        return doc

    def update_section_progress(
        self, user_id: str, section: str, correct: bool, increment: int = 2,
    ) -> int:
        """Record one scored answer; returns the section's new progress (0-100)."""
        doc = self.get_user(user_id)
        if doc is None:
            raise NotFoundError("User document not found")
        current = _get_path(doc, f"progress.{section}", 0) or 0
        new_progress = min(current + (increment if correct else 0), MAX_PROGRESS)
        total = _get_path(doc, f"stats.{section}.totalQuestions", 0) or 0
        right = _get_path(doc, f"stats.{section}.correctAnswers", 0) or 0
        self.update_document("users", user_id, {
            f"progress.{section}": new_progress,
            f"stats.{section}.totalQuestions": total + 1,
            f"stats.{section}.correctAnswers": right + (1 if correct else 0),
            "lastActive": _now(),
        })
        return new_progress

    # ── Practice sessions ─────────────────────────────────────────────────

    def append_practice_session(self, user_id: str, record: dict) -> str:
        doc = {"userId": user_id, "timestamp": _now(), **record}
        doc["createdAt"] = doc["timestamp"]
        return self.add_document("practice_sessions", doc, user_id)

    def get_practice_sessions(
        self, user_id: str, limit: int | None = None, newest_first: bool = True,
    ) -> list[dict]:
        return [
            {"id": i, **d}
            for i, d in self._query("practice_sessions", user_id, newest_first, limit)
        ]

    def get_user_stats(self, user_id: str) -> dict:
        sessions = self.get_practice_sessions(user_id)
        total = sum(s.get("total_questions", 0) for s in sessions)
        correct = sum(s.get("correct_answers", 0) for s in sessions)
        return {
            "total_questions": total,
            "correct_answers": correct,
            "accuracy": round(correct / total * 100, 1) if total else 0,
            "practice_time": sum(s.get("duration", 0) for s in sessions),
            "last_practiced": sessions[0]["timestamp"] if sessions else None,
            "session_count": len(sessions),
        }
