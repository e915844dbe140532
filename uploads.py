"""
Image uploads stored on local disk.

Files live under ``UPLOAD_DIR/<kind>/`` and documents reference them by the
relative path ``uploads/<kind>/<filename>``, which is also the URL path they
are served from.
"""

import os
import re
import secrets
import time
from pathlib import Path
from typing import List, Optional

import structlog
from fastapi import HTTPException, UploadFile

logger = structlog.get_logger(__name__)

ALLOWED_TYPES = re.compile(r"jpeg|jpg|png|gif")
PRODUCT_IMAGE_LIMIT = 5 * 1024 * 1024
PRODUCT_IMAGE_COUNT = 8
POSTER_IMAGE_LIMIT = 5 * 1024 * 1024


class ImageStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def _dir(self, kind: str) -> Path:
        path = self.root / kind
        path.mkdir(parents=True, exist_ok=True)
        return path

    def full_path(self, relative: str) -> Optional[Path]:
        """Absolute path of a stored file, or None when it would fall outside the store."""
        if not relative or not relative.startswith("uploads/"):
            return None
        root = self.root.resolve()
        path = (root / relative[len("uploads/"):]).resolve()
        if path == root or not path.is_relative_to(root):
            return None
        return path

    def contains(self, relative: str) -> bool:
        return self.full_path(relative) is not None

    def save(self, upload: UploadFile, kind: str, field: str, max_bytes: int) -> str:
        name = upload.filename or ""
        ext = os.path.splitext(name)[1].lower()
        content_type = upload.content_type or ""
        if not (ALLOWED_TYPES.search(content_type) and ALLOWED_TYPES.search(ext)):
            raise HTTPException(
                status_code=400,
                detail="File upload only supports the following filetypes - jpeg|jpg|png|gif",
            )
        data = upload.file.read(max_bytes + 1)
        if len(data) > max_bytes:
            raise HTTPException(status_code=400, detail=f"File too large: {name}")

        filename = f"{field}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"
        (self._dir(kind) / filename).write_bytes(data)
        logger.info("file_stored", kind=kind, filename=filename, size=len(data))
        return f"uploads/{kind}/{filename}"

    def save_many(self, uploads: List[UploadFile], kind: str, field: str, max_bytes: int, max_count: int) -> List[str]:
        if len(uploads) > max_count:
            raise HTTPException(status_code=400, detail=f"At most {max_count} files can be uploaded")
        return [self.save(u, kind, field, max_bytes) for u in uploads]

    def delete(self, relative: Optional[str]) -> None:
        """Remove a stored file; a missing file is only logged."""
        path = self.full_path(relative)
        if path is None:
            if relative:
                logger.warning("file_delete_refused", path=relative)
            return
        try:
            path.unlink()
        except OSError as e:
            logger.warning("file_delete_failed", path=str(path), error=str(e))
