"""
api/routes/v1/uploads.py -- Illustration image upload.

Routes:
  POST /api/upload  -- multipart field "file"; returns {"path": "/uploads/<name>"} (auth)

Security:
  The stored name is "<epoch ms>-<original name>" with every character
  outside [A-Za-z0-9._-] replaced by "_", so a client-supplied name can never
  escape the upload directory. Files larger than MAX_UPLOAD_BYTES are
  rejected with 413 file_too_large and the partial file is removed.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from api.models import UploadResponse
from auth.dependencies import get_current_user
from auth.models import SessionClaims

logger = logging.getLogger("partkatalog.uploads")

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_CHUNK = 64 * 1024

router = APIRouter()


def safe_upload_name(original: str, now_ms: int) -> str:
    """Build the on-disk name for an upload. Path separators become "_"."""
    return _UNSAFE_CHARS.sub("_", f"{now_ms}-{original}")


@router.post("/upload", response_model=UploadResponse)
def upload(
    request: Request,
    file: UploadFile | None = File(default=None),
    current_user: SessionClaims = Depends(get_current_user),
) -> UploadResponse:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="no_file")

    upload_dir: Path = request.app.state.upload_dir
    limit: int = request.app.state.max_upload_bytes
    name = safe_upload_name(file.filename, int(time.time() * 1000))
    dest = upload_dir / name

    written = 0
    with dest.open("wb") as out:
        while chunk := file.file.read(_CHUNK):
            written += len(chunk)
            if written > limit:
                break
            out.write(chunk)
    if written > limit:
        dest.unlink(missing_ok=True)
        logger.warning("%s upload %r rejected: over %d bytes", current_user.username, file.filename, limit)
        raise HTTPException(status_code=413, detail="file_too_large")

    logger.info("%s uploaded %s (%d bytes)", current_user.username, name, written)
    return UploadResponse(path=f"/uploads/{name}")
