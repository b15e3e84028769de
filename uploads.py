"""
Upload intake.

Responsibilities:
- Validate the uploaded render (present, allowed type, under the size ceiling)
- Check that the bytes actually decode as an image
- Persist it to the upload directory under a timestamped name
- Remove it again once the request is done
"""

import logging
import os
import re
import time
from io import BytesIO
from typing import Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".webp"}
# Any image/* type whose subtype mentions one of these (image/pjpeg, image/x-png).
ALLOWED_TYPES_PATTERN = re.compile(r"jpeg|jpg|png|webp")
ALLOWED_PIL_FORMATS = {"JPEG", "PNG", "WEBP"}


class UploadedFile(BaseModel):
    filename: str
    path: str
    mime_type: str
    size: int
    original_filename: str


def _extension_of(filename: str) -> str:
    return os.path.splitext(filename)[1].lower()


def _write_unique(upload_dir: str, extension: str, data: bytes) -> str:
    """
    Write data under <epoch-ms><ext>, bumping a counter suffix if another
    request already claimed that name in the same millisecond.
    """
    os.makedirs(upload_dir, exist_ok=True)
    stamp = int(time.time() * 1000)
    attempt = 0
    while True:
        suffix = f"-{attempt}" if attempt else ""
        filename = f"{stamp}{suffix}{extension}"
        path = os.path.abspath(os.path.join(upload_dir, filename))
        try:
            with open(path, "xb") as f:
                f.write(data)
            return path
        except FileExistsError:
            attempt += 1


async def save_upload(upload: Optional[UploadFile], upload_dir: str, max_bytes: int) -> UploadedFile:
    """
    Validate an incoming image and store it on local disk.

    Raises ValidationError for a missing file, an extension or content type
    outside jpeg/jpg/png/webp, an empty or oversized body, or bytes Pillow
    cannot open as one of those formats. Nothing is written in those cases.
    """
    if upload is None or not upload.filename:
        raise ValidationError("No image file provided")

    extension = _extension_of(upload.filename)
    mime_type = (upload.content_type or "").lower()
    allowed_mime = mime_type.startswith("image/") and ALLOWED_TYPES_PATTERN.search(mime_type)
    if extension not in ALLOWED_EXTENSIONS or not allowed_mime:
        logger.warning(f"Rejected upload {upload.filename} ({mime_type or 'no content type'})")
        raise ValidationError("Only image files are allowed!")

    data = await upload.read(max_bytes + 1)
    if not data:
        raise ValidationError("Uploaded file is empty")
    if len(data) > max_bytes:
        logger.warning(f"Rejected upload {upload.filename}: larger than {max_bytes} bytes")
        raise ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")

    try:
        with Image.open(BytesIO(data)) as img:
            image_format = img.format
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Failed to process uploaded image: {e}")
    if image_format not in ALLOWED_PIL_FORMATS:
        raise ValidationError(f"Unsupported image format: {image_format}")
    # Forward the canonical type for what was actually decoded.
    mime_type = Image.MIME.get(image_format, mime_type)

    path = await run_in_threadpool(_write_unique, upload_dir, extension, data)
    stored = UploadedFile(
        filename=os.path.basename(path),
        path=path,
        mime_type=mime_type,
        size=len(data),
        original_filename=upload.filename,
    )
    logger.info(f"Stored upload {stored.original_filename} as {stored.filename} ({stored.size} bytes)")
    return stored


def remove_upload(uploaded: Optional[UploadedFile]) -> bool:
    """
    Delete a stored upload. A file that is already gone is not an error;
    any other failure is logged and swallowed so it never masks the response.
    Returns True if a file was actually removed.
    """
    if uploaded is None:
        return False
    try:
        os.remove(uploaded.path)
        logger.debug(f"Cleaned up temp file: {uploaded.path}")
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to clean up temp file {uploaded.path}: {e}")
        return False
