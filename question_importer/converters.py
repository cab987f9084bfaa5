"""
Format Converters
=================
Thin front-ends that turn an uploaded file into a RawDocumentBody: one
HTML-ish string plus the list of images already written to storage.

    docx  → mammoth HTML, embedded images stored via the image writer
    pdf   → PyMuPDF page walk in reading order, text escaped, images inline
    html  → decoded as-is (scripts/styles removed)
    text  → decoded, HTML-escaped, newlines as <br>

No question logic lives here; the segmenter works on whatever comes out.
"""

from __future__ import annotations

import codecs
import html
import logging
import re
from pathlib import Path
from typing import Callable, Optional

import fitz  # PyMuPDF
import mammoth

from .models import DocumentFormat, RawDocumentBody

logger = logging.getLogger(__name__)

# (image bytes, extension) -> reference to embed in <img src="...">
ImageSink = Callable[[bytes, str], str]

EXTENSION_FORMATS = {
    ".docx": DocumentFormat.DOCX,
    ".pdf": DocumentFormat.PDF,
    ".html": DocumentFormat.HTML,
    ".htm": DocumentFormat.HTML,
    ".txt": DocumentFormat.TEXT,
    ".text": DocumentFormat.TEXT,
}

FALLBACK_ENCODINGS = ("utf-8", "cp1251")

_BODY = re.compile(r"<body\b[^>]*>(.*)</body\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_STYLE = re.compile(
    r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)


def detect_format(filename: str) -> DocumentFormat:
    """Pick a converter from the file extension."""
    ext = Path(filename).suffix.lower()
    if ext not in EXTENSION_FORMATS:
        supported = ", ".join(sorted(EXTENSION_FORMATS))
        raise ValueError(f"Unsupported file type {ext!r} (supported: {supported})")
    return EXTENSION_FORMATS[ext]


def decode_bytes(data: bytes) -> str:
    """Decode text honoring BOMs, then utf-8, cp1251, latin-1."""
    if data.startswith(codecs.BOM_UTF8):
        return data[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16", errors="replace")
    for encoding in FALLBACK_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1")


def _discard_image(data: bytes, extension: str) -> str:
    return ""


# ─── Per-Format Converters ────────────────────────────────────────────────────


def convert_text(data: bytes, source_name: str = "") -> RawDocumentBody:
    """
    Plain text: escape everything so literal <question>/<variant> tags
    arrive in their &lt;...&gt; form, which the segmenter recognizes.
    """
    text = decode_bytes(data).replace("\r\n", "\n").replace("\r", "\n")
    body = html.escape(text, quote=False).replace("\n", "<br>\n")
    return RawDocumentBody(
        body=body,
        source_format=DocumentFormat.TEXT,
        source_name=source_name,
    )


def convert_html(data: bytes, source_name: str = "") -> RawDocumentBody:
    markup = decode_bytes(data)
    match = _BODY.search(markup)
    if match:
        markup = match.group(1)
    markup = _SCRIPT_STYLE.sub("", markup)
    images = re.findall(r"<img\b[^>]*>", markup, re.IGNORECASE)
    return RawDocumentBody(
        body=markup,
        images=images,
        source_format=DocumentFormat.HTML,
        source_name=source_name,
    )


def convert_docx(
    path: str,
    image_sink: Optional[ImageSink] = None,
) -> RawDocumentBody:
    """
    Convert a .docx with mammoth. Every embedded image is written through
    `image_sink` before it is referenced from the body.
    """
    sink = image_sink or _discard_image
    images: list[str] = []

    def _store_image(image) -> dict:
        with image.open() as image_bytes:
            data = image_bytes.read()
        extension = (image.content_type or "image/png").partition("/")[2] or "png"
        ref = sink(data, extension)
        if not ref:
            return {}
        images.append(ref)
        return {"src": ref}

    with open(path, "rb") as f:
        result = mammoth.convert_to_html(
            f, convert_image=mammoth.images.img_element(_store_image)
        )

    warnings = [f"{m.type}: {m.message}" for m in result.messages]
    for warning in warnings:
        logger.warning(f"mammoth: {warning}")

    logger.info(
        f"Converted DOCX {Path(path).name}: {len(result.value)} chars, "
        f"{len(images)} images"
    )
    return RawDocumentBody(
        body=result.value,
        images=images,
        source_format=DocumentFormat.DOCX,
        source_name=Path(path).name,
        warnings=warnings,
    )


def convert_pdf(
    path: str,
    image_sink: Optional[ImageSink] = None,
    min_image_size: int = 50,
) -> RawDocumentBody:
    """
    Walk every page in reading order (top-to-bottom, then left-to-right).
    Text blocks become escaped paragraphs, image blocks become <img> tags.
    """
    sink = image_sink or _discard_image
    images: list[str] = []
    parts: list[str] = []

    with fitz.open(path) as doc:
        for page in doc:
            page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_IMAGES)
            blocks = sorted(
                page_dict.get("blocks", []),
                key=lambda b: (b["bbox"][1], b["bbox"][0]),
            )
            for block in blocks:
                if block["type"] == 0:
                    text = _pdf_text_block(block)
                    if text.strip():
                        parts.append(f"<p>{html.escape(text, quote=False)}</p>")
                elif block["type"] == 1:
                    if (
                        block.get("width", 0) < min_image_size
                        or block.get("height", 0) < min_image_size
                    ):
                        continue
                    ref = sink(block["image"], block.get("ext", "png"))
                    if ref:
                        images.append(ref)
                        parts.append(f'<img src="{html.escape(ref)}" />')
        page_count = doc.page_count

    logger.info(
        f"Converted PDF {Path(path).name}: {page_count} pages, "
        f"{len(images)} images"
    )
    return RawDocumentBody(
        body="\n".join(parts),
        images=images,
        source_format=DocumentFormat.PDF,
        source_name=Path(path).name,
    )


def _pdf_text_block(block: dict) -> str:
    """Combine spans in a text block into a single string."""
    lines = []
    for line in block.get("lines", []):
        lines.append("".join(span["text"] for span in line.get("spans", [])))
    return "\n".join(lines)


# ─── Entry Point ──────────────────────────────────────────────────────────────


def load_document(
    path: str,
    fmt: Optional[DocumentFormat] = None,
    image_sink: Optional[ImageSink] = None,
) -> RawDocumentBody:
    """
    Convert a stored upload into a RawDocumentBody.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the format can't be determined.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Document not found: {path}")

    fmt = DocumentFormat(fmt) if fmt else detect_format(p.name)

    if fmt == DocumentFormat.DOCX:
        return convert_docx(str(p), image_sink)
    if fmt == DocumentFormat.PDF:
        return convert_pdf(str(p), image_sink)
    if fmt == DocumentFormat.HTML:
        return convert_html(p.read_bytes(), p.name)
    return convert_text(p.read_bytes(), p.name)
