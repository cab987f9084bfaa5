"""
Markup Helpers
==============
Tag patterns and text normalization shared by the segmenter and the
variant parser. Bodies arrive either with literal tags (<question>) or
HTML-escaped ones (&lt;question&gt;), depending on the converter.
"""

from __future__ import annotations

import html
import re

# ─── Delimiter Patterns ───────────────────────────────────────────────────────


def delimiter_pattern(word: str) -> re.Pattern:
    """Case-insensitive `<word>` in literal or escaped form, spaces allowed."""
    w = re.escape(word)
    return re.compile(
        rf"&lt;\s*{w}\s*&gt;|<\s*{w}\s*>",
        re.IGNORECASE,
    )


QUESTION_DELIMITER = delimiter_pattern("question")
VARIANT_DELIMITER = delimiter_pattern("variant")

# ─── Tag Patterns ─────────────────────────────────────────────────────────────

IMG_TAG = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
P_OPEN_TAG = re.compile(r"<p\b[^>]*>", re.IGNORECASE)
P_CLOSE_TAG = re.compile(r"</p\s*>", re.IGNORECASE)
BR_TAG = re.compile(r"<br\b[^>]*>", re.IGNORECASE)
BREAK_TAGS = re.compile(r"</?p\b[^>]*>|<br\b[^>]*>", re.IGNORECASE)
ANY_TAG = re.compile(r"<[^>]*>")
# Every tag except the canonical <p>, </p>, <br> and images
NON_KEPT_TAG = re.compile(r"<(?!(?:p|/p|br)>)(?!img\b)[^>]*>", re.IGNORECASE)
WHITESPACE = re.compile(r"\s+")
EMPTY_PARAGRAPH = re.compile(r"<p>\s*</p>")

IMAGE_PLACEHOLDER = "[image]"


def normalize_markup(fragment: str) -> str:
    """
    Canonicalize paragraph and line-break tags, drop every other tag
    except images. Image tags are kept byte-for-byte.
    """
    images: list[str] = []

    def _stash(match: re.Match) -> str:
        images.append(match.group(0))
        return f"\x00{len(images) - 1}\x00"

    out = IMG_TAG.sub(_stash, fragment)
    out = P_OPEN_TAG.sub("<p>", out)
    out = P_CLOSE_TAG.sub("</p>", out)
    out = BR_TAG.sub("<br>", out)
    out = NON_KEPT_TAG.sub("", out)
    out = EMPTY_PARAGRAPH.sub("", out)
    out = re.sub(r"\x00(\d+)\x00", lambda m: images[int(m.group(1))], out)
    return out.strip()


def find_images(fragment: str) -> list[str]:
    return IMG_TAG.findall(fragment)


def plain_text(fragment: str, image_placeholder: str = IMAGE_PLACEHOLDER) -> str:
    """Markup-free rendering: images become a placeholder token."""
    text = IMG_TAG.sub(f" {image_placeholder} " if image_placeholder else " ", fragment)
    text = BREAK_TAGS.sub(" ", text)
    text = ANY_TAG.sub("", text)
    text = html.unescape(text)
    return collapse_whitespace(text)


def collapse_whitespace(text: str) -> str:
    return WHITESPACE.sub(" ", text).strip()


def visible_length(fragment: str, image_placeholder: str = IMAGE_PLACEHOLDER) -> int:
    return len(plain_text(fragment, image_placeholder))
