"""
CRUD Service Layer
==================
High-level operations that coordinate the filesystem, the converters,
the import engine and SQLite. This is the layer API endpoints and CLI
commands call.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Optional

from . import database as db
from . import storage
from .converters import load_document
from .engine import ImportConfig, ImportEngine
from .errors import PersistenceError
from .markup import plain_text
from .models import (
    DocumentFormat,
    ImportMode,
    ImportPlan,
    ImportResult,
    InstructionAction,
    InstructionFailure,
    PersistenceOutcome,
    QuestionRecord,
    RawDocumentBody,
    VariantKind,
)
from .record_builder import MIN_VARIANTS, PLACEHOLDER_VARIANT_TEXT

logger = logging.getLogger(__name__)


# ─── Question Store ───────────────────────────────────────────────────────────


class SQLiteQuestionStore:
    """
    QuestionStore backed by the SQLite layer.

    Every instruction runs in its own transaction, so one rejected
    question is rolled back alone while the rest of the batch proceeds.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or db.get_db_path()

    def max_order_index(self, subject_id: str) -> int:
        return db.max_order_index(subject_id, db_path=self.db_path)

    def find_question_id(self, subject_id: str, stem_text: str) -> Optional[int]:
        return db.find_question_id(subject_id, stem_text, db_path=self.db_path)

    def execute_plan(self, plan: ImportPlan) -> PersistenceOutcome:
        return execute_plan(plan, db_path=self.db_path)


def execute_plan(plan: ImportPlan, db_path: str = None) -> PersistenceOutcome:
    """Apply every create/update instruction, collecting failures."""
    outcome = PersistenceOutcome()
    # plan position -> stored question id
    stored: dict[int, int] = {}

    for position, instruction in enumerate(plan.instructions):
        record = instruction.record
        target_id = instruction.existing_id
        if target_id is None and instruction.supersedes is not None:
            # None when the earlier occurrence failed; stored as new instead
            target_id = stored.get(instruction.supersedes)
        try:
            if instruction.action == InstructionAction.UPDATE and target_id is not None:
                found = db.update_question(target_id, record, db_path=db_path)
                if not found:
                    raise PersistenceError(
                        record.order_index,
                        f"question id={target_id} no longer exists",
                    )
                outcome.updated += 1
                outcome.question_ids.append(target_id)
                stored[position] = target_id
            else:
                question_id = db.insert_question(record, db_path=db_path)
                outcome.created += 1
                outcome.question_ids.append(question_id)
                stored[position] = question_id
        except (sqlite3.Error, PersistenceError) as e:
            logger.error(
                f"Failed to {instruction.action.value} question "
                f"#{record.order_index}: {e}"
            )
            outcome.failures.append(InstructionFailure(
                order_index=record.order_index,
                action=instruction.action,
                stem_text=record.stem_text[:200],
                error=str(e),
            ))

    logger.info(
        f"Plan executed: {outcome.created} created, {outcome.updated} updated, "
        f"{len(outcome.failures)} failed"
    )
    return outcome


# ─── Import Flows ─────────────────────────────────────────────────────────────


def import_body(
    document: RawDocumentBody,
    subject_id: str,
    mode: Optional[ImportMode] = None,
    config: Optional[ImportConfig] = None,
    db_path: str = None,
) -> ImportResult:
    """Run an already converted body through the engine into SQLite."""
    engine = ImportEngine(config or ImportConfig.from_env())
    store = SQLiteQuestionStore(db_path)
    return engine.run(document, subject_id, store, mode=mode)


def import_document(
    path: str,
    subject_id: str,
    mode: Optional[ImportMode] = None,
    fmt: Optional[DocumentFormat] = None,
    config: Optional[ImportConfig] = None,
    db_path: str = None,
    uploads_dir: Optional[Path] = None,
) -> ImportResult:
    """
    Full file→convert→extract→persist pipeline.

    Steps:
        1. Convert the file (images written under uploads/images/{subject})
        2. Extract questions and build a create/update plan
        3. Execute the plan against SQLite

    Raises:
        FileNotFoundError: If the document doesn't exist.
        ValueError: If the format is unsupported or subject_id is empty.
    """
    path = os.path.abspath(path)
    if not subject_id:
        raise ValueError("subject_id is required")

    logger.info(f"[import_document] {Path(path).name} → subject {subject_id!r}")

    writer = storage.ImageWriter(subject_id, uploads_dir=uploads_dir)
    document = load_document(path, fmt=fmt, image_sink=writer)

    return import_body(
        document, subject_id, mode=mode, config=config, db_path=db_path
    )


# ─── Manual Editing ───────────────────────────────────────────────────────────


def _record_from_payload(payload: dict, defaults: dict) -> QuestionRecord:
    """
    Validate an editor payload as a QuestionRecord.

    Raises:
        ValueError: Invalid fields, empty question text, fewer than two
            variants, not exactly one correct variant, or a placeholder
            variant left in place.
    """
    data = dict(defaults)
    data.update({k: v for k, v in payload.items() if k in QuestionRecord.model_fields})
    data.setdefault("stem_markup", "")
    if not data.get("stem_text") and data["stem_markup"]:
        data["stem_text"] = plain_text(data["stem_markup"])

    record = QuestionRecord.model_validate(data)

    if not record.stem_text.strip():
        raise ValueError("question text is required")
    if len(record.variants) < MIN_VARIANTS:
        raise ValueError(f"a question needs at least {MIN_VARIANTS} variants")
    if sum(1 for v in record.variants if v.is_correct) != 1:
        raise ValueError("exactly one variant must be marked correct")
    for variant in record.variants:
        if variant.kind == VariantKind.PLACEHOLDER or variant.text == PLACEHOLDER_VARIANT_TEXT:
            raise ValueError("replace every placeholder variant before saving")
        if not variant.plain_text:
            variant.plain_text = plain_text(variant.text, "")
    return record


def create_question(payload: dict, db_path: str = None) -> dict:
    """
    Store a hand-written question. Without an explicit order_index it is
    appended after the subject's last question.
    """
    subject_id = payload.get("subject_id") or ""
    defaults = {
        "order_index": db.max_order_index(subject_id, db_path=db_path) + 1,
    }
    record = _record_from_payload(payload, defaults)
    record.needs_review = False

    question_id = db.insert_question(record, db_path=db_path)
    logger.info(f"Created question {question_id} for subject {subject_id!r}")
    return db.get_question(question_id, db_path=db_path)


def update_question(
    question_id: int, payload: dict, db_path: str = None
) -> Optional[dict]:
    """
    Apply an editor's changes to a stored question and clear its review
    flag. Fields missing from the payload keep their stored values; the
    subject never changes. Returns None if the question doesn't exist.
    """
    current = db.get_question(question_id, db_path=db_path)
    if current is None:
        return None

    defaults = {
        "stem_text": current["question_text"],
        "stem_markup": current["question_html"] or "",
        "order_index": current["order_index"],
        "variants": current["variants"],
    }
    if "stem_markup" in payload and "stem_text" not in payload:
        defaults.pop("stem_text")
    record = _record_from_payload(
        {**payload, "subject_id": current["subject_id"]}, defaults
    )
    record.needs_review = False

    if not db.update_question(question_id, record, db_path=db_path):
        return None
    logger.info(f"Updated question {question_id}")
    return db.get_question(question_id, db_path=db_path)


# ─── Reads / Deletes ──────────────────────────────────────────────────────────


def list_questions(subject_id: str = None, db_path: str = None) -> list[dict]:
    return db.list_questions(subject_id, db_path=db_path)


def delete_question(question_id: int, db_path: str = None) -> bool:
    return db.delete_question(question_id, db_path=db_path)


def delete_subject_questions(subject_id: str, db_path: str = None) -> int:
    return db.delete_subject_questions(subject_id, db_path=db_path)
