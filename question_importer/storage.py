"""
Filesystem Storage Manager
===========================
Manages persistent file storage for uploaded documents and the images
extracted from them. Image references handed to the importer are URL
paths (/uploads/images/...) that the HTTP service serves back.

Directory Layout:
    uploads/
    ├── raw/                 # Uploaded source documents (deleted after import)
    └── images/
        └── {subject_id}/    # Extracted images per subject
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root: one level up from the package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

UPLOADS_DIR = Path(os.environ.get("QIMPORT_UPLOAD_DIR", _PROJECT_ROOT / "uploads"))
URL_PREFIX = "/uploads"


def raw_dir(uploads_dir: Optional[Path] = None) -> Path:
    return Path(uploads_dir or UPLOADS_DIR) / "raw"


def images_dir(uploads_dir: Optional[Path] = None) -> Path:
    return Path(uploads_dir or UPLOADS_DIR) / "images"


def init_storage(uploads_dir: Optional[Path] = None):
    """Ensure all required directories exist."""
    raw_dir(uploads_dir).mkdir(parents=True, exist_ok=True)
    images_dir(uploads_dir).mkdir(parents=True, exist_ok=True)
    logger.info(f"Storage initialized: {uploads_dir or UPLOADS_DIR}")


# ─── Uploaded Documents ───────────────────────────────────────────────────────


def save_uploaded_file(
    file_obj, filename: str, uploads_dir: Optional[Path] = None
) -> str:
    """
    Save a Flask file upload object to raw/ under a collision-free name.
    Returns the absolute path to the saved file.
    """
    dest_dir = raw_dir(uploads_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / f"{uuid.uuid4().hex[:12]}-{_sanitize_name(filename)}"
    file_obj.save(str(dest))
    logger.info(f"Uploaded document saved: {dest}")
    return str(dest)


def delete_upload(path: str) -> bool:
    """Delete an uploaded source document."""
    p = Path(path)
    if p.exists():
        p.unlink()
        logger.info(f"Deleted upload: {p.name}")
        return True
    return False


# ─── Image Storage ────────────────────────────────────────────────────────────


class ImageWriter:
    """
    Writes extracted image bytes for one subject and returns the URL path
    the body should reference. Converters call it once per embedded image.
    """

    def __init__(self, subject_id: str, uploads_dir: Optional[Path] = None):
        self.subject_dir = _sanitize_name(subject_id).strip(".") or "unsorted"
        self.base_dir = images_dir(uploads_dir) / self.subject_dir
        self.written: list[str] = []

    def __call__(self, data: bytes, extension: str) -> str:
        return self.save(data, extension)

    def save(self, data: bytes, extension: str) -> str:
        ext = (extension or "png").lower().lstrip(".")
        if ext == "jpeg":
            ext = "jpg"
        self.base_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{uuid.uuid4().hex}.{ext}"
        with open(self.base_dir / filename, "wb") as f:
            f.write(data)
        ref = f"{URL_PREFIX}/images/{self.subject_dir}/{filename}"
        self.written.append(ref)
        logger.debug(f"Stored image {ref} ({len(data)} bytes)")
        return ref


def resolve_upload_path(
    relative_path: str, uploads_dir: Optional[Path] = None
) -> Optional[str]:
    """
    Resolve a path below uploads/ to an absolute file path.
    Accepts both 'images/x/y.png' and '/uploads/images/x/y.png'.
    """
    rel = relative_path.lstrip("/")
    if rel.startswith("uploads/"):
        rel = rel[len("uploads/"):]
    base = Path(uploads_dir or UPLOADS_DIR).absolute()
    candidate = (base / rel).resolve()
    if base.resolve() not in candidate.parents:
        return None
    return str(candidate) if candidate.is_file() else None


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _sanitize_name(name: str) -> str:
    """Sanitize a name for filesystem use."""
    return "".join(
        c if c.isalnum() or c in "-_. " else "_"
        for c in name
    ).strip().replace(" ", "_")[:100]
