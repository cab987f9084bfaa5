"""
Segmenter
=========
Splits a converted document body into question-sized blocks on the
<question> delimiter (literal or HTML-escaped).
"""

from __future__ import annotations

import logging

from .markup import (
    IMAGE_PLACEHOLDER,
    QUESTION_DELIMITER,
    VARIANT_DELIMITER,
    visible_length,
)
from .models import ExtractionStats

logger = logging.getLogger(__name__)


class Segmenter:
    """
    Stateless apart from `last_stats`, which describes the most recent
    call and is overwritten on every `segment()`.
    """

    def __init__(
        self,
        min_block_chars: int = 3,
        image_placeholder: str = IMAGE_PLACEHOLDER,
    ):
        self.min_block_chars = min_block_chars
        self.image_placeholder = image_placeholder
        self.last_stats = ExtractionStats()
        self.headerless_indices: set[int] = set()

    def segment(self, body: str) -> list[str]:
        """
        Split `body` into blocks in document order.

        Text before the first <question> is discarded unless it already
        carries a <variant>, in which case it becomes a headerless block
        of its own (documents that forgot the opening tag).
        """
        stats = ExtractionStats()
        self.last_stats = stats
        self.headerless_indices = set()

        if not body or not body.strip():
            return []

        stats.question_delimiters = len(QUESTION_DELIMITER.findall(body))
        stats.variant_delimiters = len(VARIANT_DELIMITER.findall(body))

        parts = QUESTION_DELIMITER.split(body)
        preamble, candidates = parts[0], parts[1:]

        blocks: list[str] = []
        if VARIANT_DELIMITER.search(preamble):
            logger.warning(
                "Content before the first <question> tag contains variants; "
                "keeping it as a headerless block"
            )
            candidates.insert(0, preamble)
            headerless_first = True
        else:
            headerless_first = False
            if preamble.strip():
                logger.debug(
                    f"Discarding {len(preamble)} chars before first <question>"
                )

        for i, candidate in enumerate(candidates):
            # Variant tags are structure, not content, in either spelling
            visible = visible_length(
                VARIANT_DELIMITER.sub(" ", candidate), self.image_placeholder
            )
            if visible < self.min_block_chars:
                stats.blocks_dropped += 1
                logger.info(f"Block {i + 1}: dropped (empty or too short)")
                continue
            if i == 0 and headerless_first:
                self.headerless_indices.add(len(blocks))
                stats.headerless_blocks += 1
            blocks.append(candidate)

        stats.blocks_found = len(blocks)
        logger.info(
            f"Segmented body: {stats.question_delimiters} question tags, "
            f"{stats.blocks_found} blocks kept, {stats.blocks_dropped} dropped"
        )
        return blocks
