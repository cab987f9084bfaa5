"""
Import Errors
=============
Only a document with no usable structure aborts an import.
Everything else (dropped blocks, short variant lists, single failed
writes) is recovered locally and reported through ImportResult.
"""

from __future__ import annotations

NO_TAG_STRUCTURE = "no_tag_structure"
NO_VALID_QUESTIONS = "no_valid_questions"

FORMAT_HINT = (
    "Start every question with <question> and put <variant> before each "
    "answer; the first variant is the correct one. Example: "
    "<question>2+2=?<variant>4<variant>5<variant>22"
)


class ImportFailure(Exception):
    """Base class for errors raised by the import pipeline."""


class StructuralError(ImportFailure):
    """The body cannot be turned into any question at all."""

    def __init__(self, code: str, message: str = ""):
        self.code = code
        if not message:
            if code == NO_TAG_STRUCTURE:
                message = "No recognizable tag structure found in document"
            else:
                message = "Tags found but zero valid questions"
        self.message = message
        super().__init__(f"{message}. {FORMAT_HINT}")

    @property
    def hint(self) -> str:
        return FORMAT_HINT


class PersistenceError(ImportFailure):
    """A single create/update instruction was rejected by storage."""

    def __init__(self, order_index: int, message: str):
        self.order_index = order_index
        super().__init__(f"Question #{order_index}: {message}")
