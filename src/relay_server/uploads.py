"""Placement of uploaded log files under the uploads directory."""
from __future__ import annotations

import os
import re
import tempfile
import time
from pathlib import Path
from typing import Any, Optional

from .config import DEFAULT_STRINGS
from .errors import FilesystemError, InvalidInputError, UploadTooLargeError

CHUNK_SIZE = 1024 * 1024

# Room for the multipart boundary and part headers around the file itself.
UPLOAD_OVERHEAD_BYTES = 64 * 1024


def _safe_filename(name: str) -> str:
    # Drop any directory part and keep it filesystem-safe.
    base = Path(name or "").name
    s = re.sub(r"[^\w.\-]+", "_", base.strip()) or "upload.log"
    return s[:128]


def target_path(uploads_dir: Path, original_name: str) -> Path:
    """``<uploads_dir>/<epoch-ms>-<original name>``."""
    return uploads_dir / f"{int(time.time() * 1000)}-{_safe_filename(original_name)}"


def declared_too_large(content_length: Optional[str], max_bytes: int) -> bool:
    """True when a ``Content-Length`` header already rules the upload out."""
    if not content_length:
        return False
    try:
        declared = int(content_length)
    except ValueError:
        return False
    return declared > max_bytes + UPLOAD_OVERHEAD_BYTES


async def store_upload(
    upload: Any,
    uploads_dir: str | Path,
    max_bytes: int,
    *,
    empty_message: str = DEFAULT_STRINGS["error_messages"]["empty_file"],
) -> Path:
    """Copy an uploaded file to the uploads directory in chunks.

    ``upload`` is a FastAPI ``UploadFile`` (anything with ``filename`` and an
    async ``read(size)``). The data is written to a temporary file next to the
    target and moved into place once complete, so a rejected or failed upload
    never leaves a partial file behind.

    By the time this runs Starlette has already spooled the request body, so
    the ``max_bytes`` check here only guards placement. Requests that declare
    an oversized ``Content-Length`` are turned away earlier by the server (see
    :func:`declared_too_large`); chunked bodies without one are still spooled
    in full before being rejected.

    Raises UploadTooLargeError past ``max_bytes``, InvalidInputError with
    ``empty_message`` for an empty upload and FilesystemError when the file
    cannot be placed.
    """
    root = Path(uploads_dir)
    try:
        root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(root), suffix=".part")
    except OSError as e:
        raise FilesystemError(f"Failed to prepare uploads directory {root}: {e}") from e

    size = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise UploadTooLargeError(max_bytes)
                out.write(chunk)
        if size == 0:
            raise InvalidInputError(empty_message)

        dest = target_path(root, upload.filename or "")
        os.replace(tmp_name, dest)
        return dest
    except OSError as e:
        raise FilesystemError(f"Error moving uploaded file: {e}") from e
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
