"""
Variant Parser
==============
Splits one question block into its stem and answer variants on the
<variant> delimiter.

Authoring convention: the first variant after the stem is the correct
answer. Correctness is never inferred from content.
"""

from __future__ import annotations

import html
import logging
from typing import Optional

from .markup import (
    BREAK_TAGS,
    IMAGE_PLACEHOLDER,
    VARIANT_DELIMITER,
    collapse_whitespace,
    find_images,
    normalize_markup,
    plain_text,
)
from .models import (
    Anomaly,
    AnomalyType,
    ParsedBlock,
    Variant,
    VariantKind,
)

logger = logging.getLogger(__name__)


class VariantParser:
    """Turns a raw block into a ParsedBlock, or None when nothing is left."""

    def __init__(
        self,
        max_variants: int = 10,
        min_review_chars: int = 4,
        image_placeholder: str = IMAGE_PLACEHOLDER,
    ):
        self.max_variants = max_variants
        self.min_review_chars = min_review_chars
        self.image_placeholder = image_placeholder

    def parse(self, block: str, block_index: int = 0) -> Optional[ParsedBlock]:
        if not block or not block.strip():
            return None

        parts = VARIANT_DELIMITER.split(block)

        # ── No <variant> at all: keep for review if there is real text ──
        if len(parts) < 2:
            return self._review_only(block, block_index)

        stem_markup = normalize_markup(parts[0])
        stem_text = plain_text(stem_markup, self.image_placeholder)
        stem_images = find_images(stem_markup)

        if not stem_text and not stem_images:
            logger.info(f"Block {block_index + 1}: dropped (empty question text)")
            return None

        parsed = ParsedBlock(
            block_index=block_index,
            stem_markup=stem_markup,
            stem_text=stem_text,
        )

        if stem_images and not plain_text(stem_markup, ""):
            parsed.anomalies.append(Anomaly(
                type=AnomalyType.IMAGE_ONLY_STEM,
                severity=10,
                message="Question stem consists of images only",
            ))

        raw_variants = parts[1:]
        if len(raw_variants) > self.max_variants:
            logger.warning(
                f"Block {block_index + 1}: {len(raw_variants)} variants, "
                f"keeping the first {self.max_variants}"
            )
            parsed.anomalies.append(Anomaly(
                type=AnomalyType.VARIANT_OVERFLOW,
                severity=30,
                message=f"More than {self.max_variants} variants in block",
                context={"found": len(raw_variants)},
            ))
            raw_variants = raw_variants[:self.max_variants]

        for position, raw in enumerate(raw_variants, start=1):
            variant = self._build_variant(raw)
            if variant is None:
                parsed.anomalies.append(Anomaly(
                    type=AnomalyType.EMPTY_VARIANT,
                    severity=10,
                    message=f"Variant {position} is empty and was dropped",
                    context={"position": position},
                ))
                continue
            variant.is_correct = not parsed.variants
            parsed.variants.append(variant)

        if not parsed.variants:
            logger.info(
                f"Block {block_index + 1}: no usable variants, flagged for review"
            )
            parsed.needs_review = True
            parsed.anomalies.append(Anomaly(
                type=AnomalyType.MISSING_VARIANTS,
                severity=60,
                message="Variant tags found but every variant was empty",
            ))
        elif len(parsed.variants) == 1:
            parsed.anomalies.append(Anomaly(
                type=AnomalyType.SINGLE_VARIANT,
                severity=20,
                message="Only one variant found; a placeholder will be added",
            ))

        return parsed

    def _review_only(self, block: str, block_index: int) -> Optional[ParsedBlock]:
        stem_markup = normalize_markup(block)
        stem_text = plain_text(stem_markup, self.image_placeholder)
        if len(stem_text) < self.min_review_chars:
            logger.info(f"Block {block_index + 1}: dropped (no variants, no text)")
            return None

        logger.info(f"Block {block_index + 1}: no <variant> tags, flagged for review")
        return ParsedBlock(
            block_index=block_index,
            stem_markup=stem_markup,
            stem_text=stem_text,
            needs_review=True,
            anomalies=[Anomaly(
                type=AnomalyType.MISSING_VARIANTS,
                severity=60,
                message="No <variant> tag found in block",
            )],
        )

    def _build_variant(self, raw: str) -> Optional[Variant]:
        fragment = BREAK_TAGS.sub(" ", raw)
        images = find_images(fragment)
        text = plain_text(fragment, "")
        # Documents end variants with a period that is not part of the answer
        text = collapse_whitespace(text.rstrip().rstrip("."))

        if images:
            markup = "".join(images)
            if text:
                return Variant(
                    kind=VariantKind.MIXED,
                    text=f"{markup} {html.escape(text, quote=False)}",
                    plain_text=text,
                )
            return Variant(kind=VariantKind.IMAGE, text=markup, plain_text="")

        if not text:
            return None
        return Variant(kind=VariantKind.PLAIN, text=text, plain_text=text)
