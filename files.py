"""Local file store for CVs and company images, plus upload validators.

Stored paths are opaque, root-relative strings such as
``cv/3f2a..._resume.pdf``. The database only ever records these strings.
"""
from __future__ import annotations

import io
import re
import uuid
from functools import lru_cache
from pathlib import Path

import fitz
import structlog
from PIL import Image, UnidentifiedImageError

from errors import StorageFailure, ValidationError, ValidationFailure
from schemas import FileUpload
from settings import get_settings

logger = structlog.get_logger(__name__)

CV_EXTENSIONS = {"pdf"}
CV_CONTENT_TYPES = {"application/pdf"}
IMAGE_EXTENSIONS = {"jpeg", "png", "jpg", "gif"}
IMAGE_CONTENT_TYPES = {"image/jpeg", "image/png", "image/gif"}
IMAGE_FORMATS = {"JPEG", "PNG", "GIF"}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def stored_name(folder: str, filename: str) -> str:
    """Build a unique stored path under ``folder`` keeping a sanitised filename."""
    safe = _UNSAFE_CHARS.sub("", filename) or "upload"
    return f"{folder}/{uuid.uuid4().hex}_{safe}"


class FileStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def path_for(self, stored_path: str) -> Path:
        full = (self.root / stored_path).resolve()
        if full == self.root or self.root not in full.parents:
            raise ValidationError(ValidationFailure.INVALID_PATH, f"Invalid stored path: {stored_path}")
        return full

    def exists(self, stored_path: str) -> bool:
        return self.path_for(stored_path).is_file()

    def put(self, path: str, data: bytes) -> str:
        full = self.path_for(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)
        except OSError as exc:
            logger.error("File write failed", stored_path=path, exc_info=exc)
            raise StorageFailure(f"Could not store {path}") from exc
        logger.info("File stored", stored_path=path, size=len(data))
        return path

    def delete(self, stored_path: str) -> None:
        full = self.path_for(stored_path)
        try:
            full.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("File delete failed", stored_path=stored_path, exc_info=exc)
            raise StorageFailure(f"Could not delete {stored_path}") from exc
        logger.info("File deleted", stored_path=stored_path)


@lru_cache()
def _file_store_for(root: str) -> FileStore:
    return FileStore(root)


def get_file_store() -> FileStore:
    return _file_store_for(get_settings().upload_dir)


# --- Validators (run before anything is written) ---
def _check_common(upload: FileUpload, extensions: set, content_types: set, max_bytes: int) -> None:
    if upload is None or not upload.filename or not upload.data:
        raise ValidationError(ValidationFailure.MISSING_FILE, "No valid file uploaded.")
    if upload.extension not in extensions:
        raise ValidationError(
            ValidationFailure.UNSUPPORTED_TYPE,
            f"File type .{upload.extension or '?'} not allowed; expected one of {sorted(extensions)}",
        )
    if upload.content_type and upload.content_type not in content_types:
        raise ValidationError(
            ValidationFailure.UNSUPPORTED_TYPE, f"Content type {upload.content_type} not allowed"
        )
    if upload.size > max_bytes:
        raise ValidationError(
            ValidationFailure.FILE_TOO_LARGE, f"File is larger than {max_bytes // 1024} KB"
        )


def validate_cv(upload: FileUpload) -> None:
    """A CV must be a real PDF of at most ``cv_max_bytes`` with at least one page."""
    _check_common(upload, CV_EXTENSIONS, CV_CONTENT_TYPES, get_settings().cv_max_bytes)
    try:
        with fitz.open(stream=upload.data, filetype="pdf") as doc:
            page_count = doc.page_count
    except Exception as exc:  # MuPDF error classes differ between PyMuPDF releases
        raise ValidationError(ValidationFailure.CORRUPT_FILE, "The CV is not a readable PDF") from exc
    if page_count == 0:
        raise ValidationError(ValidationFailure.CORRUPT_FILE, "The CV has no pages")


def validate_image(upload: FileUpload) -> None:
    """Company images: jpeg/png/gif up to ``image_max_bytes`` that actually decode."""
    _check_common(upload, IMAGE_EXTENSIONS, IMAGE_CONTENT_TYPES, get_settings().image_max_bytes)
    try:
        with Image.open(io.BytesIO(upload.data)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ValidationError(ValidationFailure.CORRUPT_FILE, "The image could not be decoded") from exc
    if image_format not in IMAGE_FORMATS:
        raise ValidationError(ValidationFailure.UNSUPPORTED_TYPE, f"Image format {image_format} not allowed")
