"""
Import Engine
=============
Main orchestrator that combines segmentation, variant parsing,
validation and record building into a complete import pipeline.

Usage:
    engine = ImportEngine(config)
    plan = engine.plan(body, subject_id="math-101")       # pure, no I/O
    result = engine.run(document, "math-101", store)      # persists

Architecture:
    RawDocumentBody → Segmenter → blocks → VariantParser → ParsedBlocks →
    ImportValidator → RecordBuilder → ImportPlan → QuestionStore → ImportResult
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

from .errors import NO_TAG_STRUCTURE, NO_VALID_QUESTIONS, StructuralError
from .markup import IMAGE_PLACEHOLDER
from .models import (
    Anomaly,
    AnomalyType,
    ExtractionStats,
    ImportMode,
    ImportPlan,
    ImportResult,
    ParsedBlock,
    PersistenceOutcome,
    RawDocumentBody,
)
from .record_builder import PLACEHOLDER_VARIANT_TEXT, RecordBuilder
from .segmenter import Segmenter
from .validator import ImportValidator
from .variant_parser import VariantParser

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ImportConfig:
    """Configuration for the import engine."""

    # Reconciliation policy
    import_mode: ImportMode = ImportMode.MERGE

    # Extraction thresholds
    min_block_chars: int = 3
    min_review_chars: int = 4
    max_variants: int = 10

    # Rendering
    image_placeholder: str = IMAGE_PLACEHOLDER
    placeholder_variant_text: str = PLACEHOLDER_VARIANT_TEXT

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "ImportConfig":
        """Build a config from QIMPORT_* environment variables."""
        values = {
            "import_mode": ImportMode(os.environ.get("QIMPORT_MODE", "merge")),
            "log_level": os.environ.get("QIMPORT_LOG_LEVEL", "INFO"),
            "log_file": os.environ.get("QIMPORT_LOG_FILE") or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class QuestionStore(Protocol):
    """Persistence collaborator used by ImportEngine.run()."""

    def max_order_index(self, subject_id: str) -> int:
        """Highest stored order index for the subject, -1 if none."""

    def find_question_id(self, subject_id: str, stem_text: str) -> Optional[int]:
        """Id of the stored question with exactly this stem, if any."""

    def execute_plan(self, plan: ImportPlan) -> PersistenceOutcome:
        """Apply every instruction; one failure must not stop the rest."""


class ImportEngine:
    """
    Main import engine.

    Each call builds its own segmenter, parser and builder, so one engine
    can serve concurrent uploads from several threads.
    """

    def __init__(self, config: Optional[ImportConfig] = None):
        self.config = config or ImportConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the package
        pkg_logger = logging.getLogger("question_importer")
        pkg_logger.setLevel(log_level)

        # Console handler
        if not pkg_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
            pkg_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_path = Path(self.config.log_file).absolute()
            already = any(
                isinstance(h, logging.FileHandler)
                and h.baseFilename == str(log_path)
                for h in pkg_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(
                    logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
                )
                pkg_logger.addHandler(file_handler)

    # ─── Pure Stages ──────────────────────────────────────────────────────

    def extract(self, body: str) -> tuple[list[ParsedBlock], ExtractionStats]:
        """
        Segment and parse a body.

        Raises:
            StructuralError: no delimiters at all, or delimiters but no
                block survived parsing.
        """
        segmenter = Segmenter(
            min_block_chars=self.config.min_block_chars,
            image_placeholder=self.config.image_placeholder,
        )
        parser = VariantParser(
            max_variants=self.config.max_variants,
            min_review_chars=self.config.min_review_chars,
            image_placeholder=self.config.image_placeholder,
        )

        blocks = segmenter.segment(body)
        stats = segmenter.last_stats

        if not stats.has_structure:
            raise StructuralError(NO_TAG_STRUCTURE)

        parsed_blocks: list[ParsedBlock] = []
        for index, block in enumerate(blocks):
            parsed = parser.parse(block, block_index=index)
            if parsed is None:
                continue
            if index in segmenter.headerless_indices:
                parsed.headerless = True
                parsed.anomalies.append(Anomaly(
                    type=AnomalyType.HEADERLESS_BLOCK,
                    severity=15,
                    message="Block has no opening <question> tag",
                ))
            parsed_blocks.append(parsed)

        if not parsed_blocks:
            raise StructuralError(NO_VALID_QUESTIONS)

        return parsed_blocks, stats

    def plan(
        self,
        body: str,
        subject_id: str,
        start_order_index: int = 0,
        lookup=None,
        mode: Optional[ImportMode] = None,
    ) -> ImportPlan:
        """Extract and build a plan without touching storage."""
        mode = ImportMode(mode or self.config.import_mode)
        parsed_blocks, _ = self.extract(body)
        builder = RecordBuilder(self.config.placeholder_variant_text)
        return builder.build(
            parsed_blocks,
            subject_id,
            import_mode=mode,
            start_order_index=start_order_index,
            lookup=lookup,
        )

    # ─── Full Import ──────────────────────────────────────────────────────

    def run(
        self,
        document: Union[RawDocumentBody, str],
        subject_id: str,
        store: QuestionStore,
        mode: Optional[ImportMode] = None,
    ) -> ImportResult:
        """
        Extract questions from a converted document and persist them.

        Structural errors are returned as a failed ImportResult rather
        than raised, so callers always get one summary object.
        """
        if isinstance(document, str):
            document = RawDocumentBody(body=document)
        if not subject_id:
            raise ValueError("subject_id is required")

        mode = ImportMode(mode or self.config.import_mode)
        start_time = time.time()
        logger.info(
            f"Starting {mode.value} import for subject {subject_id!r} "
            f"({document.source_format.value}, {len(document.body)} chars, "
            f"{len(document.images)} images)"
        )

        # ── Step 1: Extract ───────────────────────────────────────────
        try:
            parsed_blocks, stats = self.extract(document.body)
        except StructuralError as e:
            logger.warning(f"Import rejected: {e.message}")
            return ImportResult(
                success=False,
                subject_id=subject_id,
                mode=mode,
                error_code=e.code,
                error_detail=str(e),
            )

        # ── Step 2: Continue numbering after stored questions ─────────
        start_order_index = max(store.max_order_index(subject_id), -1) + 1

        # ── Step 3: Validate ──────────────────────────────────────────
        validation = ImportValidator().validate(
            parsed_blocks, stats, start_order_index
        )

        # ── Step 4: Plan ──────────────────────────────────────────────
        builder = RecordBuilder(self.config.placeholder_variant_text)
        plan = builder.build(
            parsed_blocks,
            subject_id,
            import_mode=mode,
            start_order_index=start_order_index,
            lookup=store.find_question_id if mode == ImportMode.MERGE else None,
        )

        # ── Step 5: Persist ───────────────────────────────────────────
        outcome = store.execute_plan(plan)

        succeeded = outcome.created + outcome.updated
        error_detail = None
        if outcome.failures:
            error_detail = "; ".join(
                f"#{f.order_index} ({f.action.value}): {f.error}"
                for f in outcome.failures
            )

        result = ImportResult(
            success=succeeded > 0,
            subject_id=subject_id,
            mode=mode,
            total_parsed=len(parsed_blocks),
            created=outcome.created,
            updated=outcome.updated,
            skipped=validation.dropped_blocks,
            failed=len(outcome.failures),
            needs_review=len(validation.needs_review),
            records=plan.records,
            validation=validation,
            error_detail=error_detail,
        )

        elapsed = time.time() - start_time
        logger.info(f"Import complete in {elapsed:.2f}s: {result.message}")
        return result
