import logging
import os
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, UploadFile

from roadworks.core.config import settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

# Evidence kinds and the upload types accepted for each
EVIDENCE_MIME_TYPES = {
    "photo": {"image/jpeg", "image/png", "image/webp"},
    "document": {"application/pdf", "text/plain"},
    "report": {"application/pdf", "text/plain", "text/csv"},
    "cad": {"application/dxf", "image/vnd.dxf", "application/octet-stream"},
    "other": {
        "image/jpeg", "image/png", "image/webp", "application/pdf", "text/plain", "text/csv",
        "application/octet-stream",
    },
}


@dataclass(frozen=True)
class StoredUpload:
    path: str
    file_name: str | None
    mime_type: str | None
    size_bytes: int


def check_evidence_upload(evidence_type: str, content_type: str | None) -> None:
    allowed = EVIDENCE_MIME_TYPES.get(evidence_type)
    if allowed is None:
        raise HTTPException(status_code=400, detail=f"type must be one of {sorted(EVIDENCE_MIME_TYPES)}")
    if content_type not in allowed:
        raise HTTPException(status_code=400, detail=f"{evidence_type} uploads must be one of {sorted(allowed)}")


def _extension(filename: str | None) -> str:
    base = os.path.basename(filename or "")
    _, ext = os.path.splitext(base)
    return ext.lower() if ext[1:].isalnum() else ""


def evidence_dir(work_order_id: str) -> str:
    folder = os.path.join(settings.UPLOAD_DIR, os.path.basename(work_order_id))
    os.makedirs(folder, exist_ok=True)
    return folder


def store_evidence_file(work_order_id: str, file: UploadFile) -> StoredUpload:
    """
    Copy an evidence upload into the work order's folder under UPLOAD_DIR.

    The size cap (MAX_UPLOAD_MB) is enforced while streaming, so an oversized
    upload is cut off without being read to the end. Partial files are removed.
    """
    path = os.path.join(evidence_dir(work_order_id), f"{uuid.uuid4().hex}{_extension(file.filename)}")
    limit = settings.MAX_UPLOAD_MB * 1024 * 1024
    size = 0

    try:
        with open(path, "wb") as out:
            for chunk in iter(lambda: file.file.read(CHUNK_SIZE), b""):
                size += len(chunk)
                if size > limit:
                    raise HTTPException(
                        status_code=413,
                        detail=f"Evidence file exceeds {settings.MAX_UPLOAD_MB}MB",
                    )
                out.write(chunk)
    except HTTPException:
        discard(path)
        raise
    except OSError as e:
        discard(path)
        logger.error("evidence upload failed", exc_info=True, extra={"work_order_id": work_order_id})
        raise HTTPException(status_code=500, detail=f"Could not store evidence: {e}")

    logger.info("evidence file stored", extra={"work_order_id": work_order_id, "size_bytes": size})
    return StoredUpload(path=path, file_name=file.filename, mime_type=file.content_type, size_bytes=size)


def discard(path: str) -> None:
    """Remove a stored file whose database row never committed."""
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            logger.warning("could not remove orphaned upload %s", path)
