"""
Validation Engine
=================
Post-parse validation and reporting.

After each extraction, produces a report of:
    - Blocks detected / questions parsed / blocks dropped
    - Questions flagged for review (no usable variants)
    - Questions padded with a placeholder variant
    - Variants carrying images
    - Duplicate stems inside the batch (merge imports collapse them)
    - Anomaly breakdown by type

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter

from .models import (
    AnomalyType,
    ExtractionStats,
    ParsedBlock,
    ValidationReport,
)

logger = logging.getLogger(__name__)


class ImportValidator:
    """
    Validates parsed blocks and produces a comprehensive report.
    """

    def validate(
        self,
        parsed_blocks: list[ParsedBlock],
        stats: ExtractionStats,
        start_order_index: int = 0,
    ) -> ValidationReport:
        """
        Run full validation on parsed blocks.

        Args:
            parsed_blocks: Variant parser output, in document order.
            stats: Segmenter counters for the same body.
            start_order_index: Order index the first record will get, so
                flagged questions are reported by their final index.

        Returns:
            ValidationReport with all detected issues.
        """
        report = ValidationReport()

        dropped_by_parser = stats.blocks_found - len(parsed_blocks)
        report.total_blocks_detected = stats.blocks_found + stats.blocks_dropped
        report.questions_parsed = len(parsed_blocks)
        report.dropped_blocks = stats.blocks_dropped + dropped_by_parser

        if not parsed_blocks:
            logger.warning("No questions to validate")
            return report

        stem_counts = Counter(p.stem_text for p in parsed_blocks)
        report.duplicate_stems = sorted(
            stem for stem, count in stem_counts.items() if count > 1
        )

        anomaly_counts: dict[str, int] = {}
        for position, parsed in enumerate(parsed_blocks):
            order_index = start_order_index + position

            if parsed.needs_review:
                report.needs_review.append(order_index)
            elif len(parsed.variants) < 2:
                report.padded_questions.append(order_index)

            report.image_variants += sum(1 for v in parsed.variants if v.has_image)

            for anomaly in parsed.anomalies:
                key = anomaly.type.value
                anomaly_counts[key] = anomaly_counts.get(key, 0) + 1

        report.anomaly_breakdown = anomaly_counts

        # Log summary
        logger.info("=" * 60)
        logger.info("IMPORT VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Blocks Detected: {report.total_blocks_detected}")
        logger.info(
            f"Questions Parsed: {report.questions_parsed} "
            f"({report.success_rate}% clean)"
        )
        logger.info(f"Dropped Blocks: {report.dropped_blocks}")
        logger.info(f"Needs Review: {len(report.needs_review)}")
        logger.info(f"Padded Questions: {len(report.padded_questions)}")
        logger.info(f"Image Variants: {report.image_variants}")
        if report.duplicate_stems:
            logger.warning(
                f"Duplicate Stems: {len(report.duplicate_stems)} "
                f"(merge imports will collapse these)"
            )
        if AnomalyType.VARIANT_OVERFLOW.value in anomaly_counts:
            logger.warning(
                f"Blocks over the variant cap: "
                f"{anomaly_counts[AnomalyType.VARIANT_OVERFLOW.value]}"
            )

        if report.anomaly_breakdown:
            logger.info("Anomaly Breakdown:")
            for anomaly_type, count in sorted(report.anomaly_breakdown.items()):
                logger.info(f"  • {anomaly_type}: {count}")

        logger.info("=" * 60)

        return report
