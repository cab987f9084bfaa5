"""
Record Builder
==============
Assembles parsed blocks into QuestionRecords and decides, per record,
whether the persistence layer should create or update it.

The builder does no I/O: existing-question lookup is injected, and the
result is an ImportPlan that the persistence executor carries out.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .models import (
    ImportInstruction,
    ImportMode,
    ImportPlan,
    InstructionAction,
    ParsedBlock,
    QuestionRecord,
    Variant,
    VariantKind,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_VARIANT_TEXT = "<needs completion>"
MIN_VARIANTS = 2

# (subject_id, stem_text) -> existing question id, or None
ExistingQuestionLookup = Callable[[str, str], Optional[int]]


class RecordBuilder:
    """Builds an ImportPlan from parsed blocks."""

    def __init__(self, placeholder_text: str = PLACEHOLDER_VARIANT_TEXT):
        self.placeholder_text = placeholder_text

    def build(
        self,
        parsed_blocks: list[ParsedBlock],
        subject_id: str,
        import_mode: ImportMode = ImportMode.MERGE,
        start_order_index: int = 0,
        lookup: Optional[ExistingQuestionLookup] = None,
    ) -> ImportPlan:
        """
        Args:
            parsed_blocks: Output of the variant parser, in document order.
            subject_id: Owning subject, stamped on every record.
            import_mode: MERGE updates questions whose stem text matches
                exactly, and a stem repeated inside the batch overwrites
                its earlier occurrence; ADDITIVE always creates.
            start_order_index: One past the subject's current maximum.
            lookup: Existing-question lookup, required for MERGE.

        Returns:
            ImportPlan with one instruction per parsed block.
        """
        import_mode = ImportMode(import_mode)
        if start_order_index < 0:
            raise ValueError("start_order_index must be >= 0")
        if import_mode == ImportMode.MERGE and lookup is None:
            raise ValueError("merge import requires an existing-question lookup")

        plan = ImportPlan(
            subject_id=subject_id,
            mode=import_mode,
            start_order_index=start_order_index,
        )

        # stem_text -> plan position of its latest instruction
        planned: dict[str, int] = {}

        for position, parsed in enumerate(parsed_blocks):
            record = self._build_record(
                parsed, subject_id, start_order_index + position
            )

            if import_mode == ImportMode.ADDITIVE:
                plan.instructions.append(ImportInstruction(
                    action=InstructionAction.CREATE,
                    record=record,
                ))
                continue

            earlier = planned.get(record.stem_text)
            planned[record.stem_text] = position

            if earlier is not None:
                # Repeated stem: the later block overwrites the earlier one
                logger.debug(
                    f"Question #{record.order_index} repeats the stem of "
                    f"#{start_order_index + earlier}"
                )
                existing_id = plan.instructions[earlier].existing_id
                plan.instructions.append(ImportInstruction(
                    action=InstructionAction.UPDATE,
                    record=record,
                    existing_id=existing_id,
                    supersedes=earlier if existing_id is None else None,
                ))
                continue

            existing_id = lookup(subject_id, record.stem_text)
            if existing_id is not None:
                plan.instructions.append(ImportInstruction(
                    action=InstructionAction.UPDATE,
                    record=record,
                    existing_id=existing_id,
                ))
            else:
                plan.instructions.append(ImportInstruction(
                    action=InstructionAction.CREATE,
                    record=record,
                ))

        logger.info(
            f"Built plan for subject {subject_id!r} ({import_mode.value}): "
            f"{plan.create_count} create, {plan.update_count} update"
        )
        return plan

    def _build_record(
        self, parsed: ParsedBlock, subject_id: str, order_index: int
    ) -> QuestionRecord:
        variants = [v.model_copy() for v in parsed.variants]

        if len(variants) < MIN_VARIANTS:
            logger.debug(
                f"Question #{order_index}: padding {len(variants)} variant(s) "
                f"to {MIN_VARIANTS}"
            )
        while len(variants) < MIN_VARIANTS:
            variants.append(Variant(
                kind=VariantKind.PLACEHOLDER,
                text=self.placeholder_text,
                # Keep exactly one correct answer, first in order
                is_correct=not variants,
            ))

        return QuestionRecord(
            subject_id=subject_id,
            stem_text=parsed.stem_text,
            stem_markup=parsed.stem_markup,
            variants=variants,
            order_index=order_index,
            needs_review=parsed.needs_review,
            anomalies=list(parsed.anomalies),
        )
