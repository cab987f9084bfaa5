"""
Data Models
===========
Pydantic models for the question import pipeline.
Everything here serializes to JSON for the upload API and the CLI.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator


# ─── Enums ────────────────────────────────────────────────────────────────────


class DocumentFormat(str, Enum):
    """Source format of an uploaded document."""
    DOCX = "docx"
    HTML = "html"
    TEXT = "text"
    PDF = "pdf"


class ImportMode(str, Enum):
    """How parsed questions are reconciled with already stored ones."""
    MERGE = "merge"
    ADDITIVE = "additive"


class VariantKind(str, Enum):
    """Shape of a variant's display text."""
    PLAIN = "plain"
    IMAGE = "image"
    MIXED = "mixed"
    PLACEHOLDER = "placeholder"


class InstructionAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class AnomalyType(str, Enum):
    """Recoverable irregularities noticed while parsing a block."""
    MISSING_VARIANTS = "missing_variants"
    SINGLE_VARIANT = "single_variant"
    EMPTY_VARIANT = "empty_variant"
    VARIANT_OVERFLOW = "variant_overflow"
    HEADERLESS_BLOCK = "headerless_block"
    IMAGE_ONLY_STEM = "image_only_stem"


# ─── Input ────────────────────────────────────────────────────────────────────


class RawDocumentBody(BaseModel):
    """
    Converted textual form of an uploaded document.
    `images` lists the stored references already embedded in `body`.
    """
    body: str
    images: list[str] = Field(default_factory=list)
    source_format: DocumentFormat = DocumentFormat.HTML
    source_name: str = ""
    warnings: list[str] = Field(default_factory=list)


# ─── Anomaly Model ────────────────────────────────────────────────────────────


class Anomaly(BaseModel):
    """A structural anomaly detected in a block."""
    type: AnomalyType
    severity: int = Field(
        ge=0, le=100,
        description="Severity score 0-100"
    )
    message: str
    context: Optional[dict] = None


# ─── Variant / Block Models ───────────────────────────────────────────────────


class Variant(BaseModel):
    """
    One answer candidate.

    `text` is what gets displayed: plain text for PLAIN and PLACEHOLDER
    variants, markup (image tags first, escaped caption after) for IMAGE
    and MIXED ones. `plain_text` is always markup-free.
    """
    kind: VariantKind = VariantKind.PLAIN
    text: str
    plain_text: str = ""
    is_correct: bool = False

    @computed_field
    @property
    def has_image(self) -> bool:
        return self.kind in (VariantKind.IMAGE, VariantKind.MIXED)


class ParsedBlock(BaseModel):
    """Stem and variants split out of a single question block."""
    block_index: int = Field(ge=0)
    stem_markup: str = ""
    stem_text: str = ""
    variants: list[Variant] = Field(default_factory=list)
    needs_review: bool = False
    headerless: bool = False
    anomalies: list[Anomaly] = Field(default_factory=list)

    @computed_field
    @property
    def anomaly_score(self) -> int:
        """Aggregate anomaly score (0-100)."""
        if not self.anomalies:
            return 0
        return min(100, sum(a.severity for a in self.anomalies))

    @computed_field
    @property
    def stem_has_image(self) -> bool:
        return "<img" in self.stem_markup.lower()


# ─── Question Record ──────────────────────────────────────────────────────────


class QuestionRecord(BaseModel):
    """The durable output of an import: one multiple-choice question."""
    subject_id: str
    stem_text: str
    stem_markup: str = ""
    variants: list[Variant] = Field(default_factory=list)
    order_index: int = Field(ge=0)
    needs_review: bool = False
    anomalies: list[Anomaly] = Field(default_factory=list)

    @field_validator("subject_id")
    @classmethod
    def _subject_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("subject_id is required")
        return value

    @computed_field
    @property
    def correct_variant(self) -> Optional[Variant]:
        for variant in self.variants:
            if variant.is_correct:
                return variant
        return None


# ─── Plan / Result Models ─────────────────────────────────────────────────────


class ImportInstruction(BaseModel):
    """
    A single create/update step for the persistence executor.

    `supersedes` is the plan position of an earlier instruction with the
    same stem whose stored row this one overwrites once it exists.
    """
    action: InstructionAction
    record: QuestionRecord
    existing_id: Optional[int] = None
    supersedes: Optional[int] = None


class ImportPlan(BaseModel):
    """Ordered list of instructions produced by the record builder."""
    subject_id: str
    mode: ImportMode
    start_order_index: int = 0
    instructions: list[ImportInstruction] = Field(default_factory=list)

    @computed_field
    @property
    def create_count(self) -> int:
        return sum(
            1 for i in self.instructions
            if i.action == InstructionAction.CREATE
        )

    @computed_field
    @property
    def update_count(self) -> int:
        return sum(
            1 for i in self.instructions
            if i.action == InstructionAction.UPDATE
        )

    @property
    def records(self) -> list[QuestionRecord]:
        return [i.record for i in self.instructions]


class InstructionFailure(BaseModel):
    """A create/update step rejected at the storage boundary."""
    order_index: int
    action: InstructionAction
    stem_text: str
    error: str


class PersistenceOutcome(BaseModel):
    """What the persistence executor reports back for a plan."""
    created: int = 0
    updated: int = 0
    question_ids: list[int] = Field(default_factory=list)
    failures: list[InstructionFailure] = Field(default_factory=list)


class ExtractionStats(BaseModel):
    """Counters gathered by the segmenter and variant parser."""
    question_delimiters: int = 0
    variant_delimiters: int = 0
    blocks_found: int = 0
    blocks_dropped: int = 0
    headerless_blocks: int = 0

    @computed_field
    @property
    def has_structure(self) -> bool:
        return self.question_delimiters > 0 or self.variant_delimiters > 0


class ValidationReport(BaseModel):
    """Post-parse validation report."""
    total_blocks_detected: int = 0
    questions_parsed: int = 0
    dropped_blocks: int = 0
    needs_review: list[int] = Field(default_factory=list)
    padded_questions: list[int] = Field(default_factory=list)
    image_variants: int = 0
    duplicate_stems: list[str] = Field(default_factory=list)
    anomaly_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_blocks_detected == 0:
            return 0.0
        clean = self.questions_parsed - len(self.needs_review)
        return round(clean / self.total_blocks_detected * 100, 2)


class ImportResult(BaseModel):
    """
    Complete outcome of one import call.
    This is the JSON structure returned by the upload endpoint.
    """
    success: bool
    subject_id: str = ""
    mode: ImportMode = ImportMode.MERGE
    total_parsed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    needs_review: int = 0
    records: list[QuestionRecord] = Field(default_factory=list)
    validation: Optional[ValidationReport] = None
    error_code: Optional[str] = None
    error_detail: Optional[str] = None

    @computed_field
    @property
    def message(self) -> str:
        if not self.success and self.error_detail and not self.total_parsed:
            return self.error_detail
        return (
            f"Processed {self.total_parsed} questions: "
            f"created {self.created}, updated {self.updated}, "
            f"skipped {self.skipped}"
        )
