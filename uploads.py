"""
Image uploads for products and the slider.
"""

import os
import random
import re
import time
from pathlib import Path
from typing import Optional

import structlog
from fastapi import UploadFile

from storage import StorageError

logger = structlog.get_logger(__name__)

URL_PREFIX = "/uploads"
ALLOWED_TYPES = re.compile(r"jpeg|jpg|png|gif|webp")
CHUNK_SIZE = 1024 * 1024


class UploadError(Exception):
    """Missing, non-image or oversized upload."""


def stored_name(original: str) -> str:
    ext = os.path.splitext(original)[1]
    return f"img-{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


def check_image(file: Optional[UploadFile]):
    if file is None or not file.filename:
        raise UploadError("No image uploaded")
    ext = os.path.splitext(file.filename)[1].lower()
    mime = (file.content_type or "").lower()
    if not (ALLOWED_TYPES.search(ext) and ALLOWED_TYPES.search(mime)):
        raise UploadError("Only image files allowed")


async def save_image(file: Optional[UploadFile], uploads_dir: Path, max_bytes: int) -> str:
    """Validate and store an uploaded image, returning its public URL path."""
    check_image(file)
    name = stored_name(file.filename)
    target = Path(uploads_dir) / name
    written = 0
    try:
        with open(target, "wb") as out:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadError("Image too large")
                out.write(chunk)
    except UploadError:
        target.unlink(missing_ok=True)
        raise
    except OSError as e:
        logger.error("image_write_failed", filename=name, error=str(e))
        target.unlink(missing_ok=True)
        raise StorageError("Could not store image") from e
    finally:
        await file.close()

    logger.info("image_uploaded", filename=name, size=written)
    return f"{URL_PREFIX}/{name}"


def discard_image(image_path: str, uploads_dir: Path):
    """Remove a stored upload whose record could not be saved."""
    target = Path(uploads_dir) / image_path.rsplit("/", 1)[-1]
    try:
        target.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("image_discard_failed", filename=target.name, error=str(e))
        return
    logger.info("image_discarded", filename=target.name)
