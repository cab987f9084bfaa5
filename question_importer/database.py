"""
SQLite Database Layer
=====================
Persistent storage for imported questions.
Questions and their ordered variants live in SQLite; images stay on disk
and are referenced from the stored markup.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .models import QuestionRecord

logger = logging.getLogger(__name__)

# Default database path: project_root/database.sqlite
_DEFAULT_DB_PATH = str(Path(__file__).parent.parent / "database.sqlite")


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("QIMPORT_DB_PATH", _DEFAULT_DB_PATH)


@contextmanager
def get_connection(db_path: str = None):
    """
    Context manager for database connections.
    Ensures proper commit/rollback and connection cleanup.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id TEXT NOT NULL,
                question_text TEXT NOT NULL,
                question_html TEXT DEFAULT '',
                order_index INTEGER NOT NULL DEFAULT 0,
                needs_review INTEGER DEFAULT 0,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT NULL
            );

            CREATE TABLE IF NOT EXISTS variants (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                question_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                kind TEXT DEFAULT 'plain',
                text TEXT NOT NULL,
                plain_text TEXT DEFAULT '',
                is_correct INTEGER DEFAULT 0,
                FOREIGN KEY(question_id) REFERENCES questions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_questions_subject
                ON questions(subject_id, order_index);
            CREATE INDEX IF NOT EXISTS idx_questions_subject_text
                ON questions(subject_id, question_text);
            CREATE INDEX IF NOT EXISTS idx_variants_question_id
                ON variants(question_id, position);
        """)

    logger.info("Database schema initialized successfully")


# ─── Lookups ──────────────────────────────────────────────────────────────────


def max_order_index(subject_id: str, db_path: str = None) -> int:
    """Highest order_index stored for a subject, or -1 if it has none."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT MAX(order_index) AS mx FROM questions WHERE subject_id = ?",
            (subject_id,),
        ).fetchone()
        return row["mx"] if row and row["mx"] is not None else -1


def find_question_id(
    subject_id: str, question_text: str, db_path: str = None
) -> Optional[int]:
    """Exact-match lookup on (subject_id, question_text)."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            """SELECT id FROM questions
               WHERE subject_id = ? AND question_text = ?
               ORDER BY id LIMIT 1""",
            (subject_id, question_text),
        ).fetchone()
        return row["id"] if row else None


def count_questions(subject_id: str = None, db_path: str = None) -> int:
    with get_connection(db_path) as conn:
        if subject_id is None:
            row = conn.execute("SELECT COUNT(*) AS cnt FROM questions").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM questions WHERE subject_id = ?",
                (subject_id,),
            ).fetchone()
        return row["cnt"] if row else 0


# ─── Question CRUD ────────────────────────────────────────────────────────────


def _insert_variants(cursor, question_id: int, record: QuestionRecord):
    for position, variant in enumerate(record.variants):
        cursor.execute(
            """INSERT INTO variants
               (question_id, position, kind, text, plain_text, is_correct)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                question_id,
                position,
                variant.kind.value,
                variant.text,
                variant.plain_text,
                1 if variant.is_correct else 0,
            ),
        )


def insert_question(record: QuestionRecord, db_path: str = None) -> int:
    """
    Insert a question with its variants in one transaction.
    Returns the new question_id.
    """
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            """INSERT INTO questions
               (subject_id, question_text, question_html, order_index, needs_review)
               VALUES (?, ?, ?, ?, ?)""",
            (
                record.subject_id,
                record.stem_text,
                record.stem_markup,
                record.order_index,
                1 if record.needs_review else 0,
            ),
        )
        question_id = cursor.lastrowid
        _insert_variants(cursor, question_id, record)
        return question_id


def update_question(
    question_id: int, record: QuestionRecord, db_path: str = None
) -> bool:
    """
    Replace text, markup, variants, order index and review flag of a
    stored question. Returns True if the row existed.
    """
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            """UPDATE questions
               SET question_text = ?, question_html = ?, order_index = ?,
                   needs_review = ?,
                   updated_at = CURRENT_TIMESTAMP
               WHERE id = ?""",
            (
                record.stem_text,
                record.stem_markup,
                record.order_index,
                1 if record.needs_review else 0,
                question_id,
            ),
        )
        if cursor.rowcount == 0:
            return False
        cursor.execute("DELETE FROM variants WHERE question_id = ?", (question_id,))
        _insert_variants(cursor, question_id, record)
        return True


def get_question(question_id: int, db_path: str = None) -> Optional[dict]:
    """Fetch a single question with its variants."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        if not row:
            return None
        question = dict(row)
        question["variants"] = _fetch_variants(conn, [question_id]).get(question_id, [])
        return question


def list_questions(subject_id: str = None, db_path: str = None) -> list[dict]:
    """List questions in display order (order_index, then creation)."""
    with get_connection(db_path) as conn:
        if subject_id is None:
            rows = conn.execute(
                "SELECT * FROM questions ORDER BY order_index, created_at, id"
            ).fetchall()
        else:
            rows = conn.execute(
                """SELECT * FROM questions WHERE subject_id = ?
                   ORDER BY order_index, created_at, id""",
                (subject_id,),
            ).fetchall()
        questions = [dict(r) for r in rows]
        variants = _fetch_variants(conn, [q["id"] for q in questions])
        for q in questions:
            q["variants"] = variants.get(q["id"], [])
        return questions


def _fetch_variants(conn, question_ids: list[int]) -> dict[int, list[dict]]:
    if not question_ids:
        return {}
    placeholders = ",".join("?" for _ in question_ids)
    rows = conn.execute(
        f"""SELECT * FROM variants WHERE question_id IN ({placeholders})
            ORDER BY question_id, position""",
        question_ids,
    ).fetchall()
    grouped: dict[int, list[dict]] = {}
    for r in rows:
        v = dict(r)
        v["is_correct"] = bool(v["is_correct"])
        grouped.setdefault(v["question_id"], []).append(v)
    return grouped


def delete_question(question_id: int, db_path: str = None) -> bool:
    """Delete a question and its variants. Returns True if row existed."""
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))
        return cursor.rowcount > 0


def delete_subject_questions(subject_id: str, db_path: str = None) -> int:
    """Delete every question of a subject. Returns the deleted count."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "DELETE FROM questions WHERE subject_id = ?", (subject_id,)
        )
        if cursor.rowcount > 0:
            logger.info(
                f"Deleted {cursor.rowcount} questions for subject {subject_id!r}"
            )
        return cursor.rowcount
