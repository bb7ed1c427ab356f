import logging
import os
import time
from typing import Optional

from fastapi import HTTPException, UploadFile

from config import PUBLIC_BASE_URL, UPLOAD_DIR

logger = logging.getLogger(__name__)

os.makedirs(UPLOAD_DIR, exist_ok=True)

# Files are served from /uploads by extension, so only image ones are stored.
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}


def save_image(upload: Optional[UploadFile]) -> Optional[str]:
    """Store an uploaded image and return its public URL, or None when no
    file was sent."""
    if upload is None or not upload.filename:
        return None
    if not (upload.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    ext = os.path.splitext(upload.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    filename = f"{int(time.time() * 1000)}{ext}"
    path = os.path.join(UPLOAD_DIR, filename)
    with open(path, "wb") as fh:
        fh.write(upload.file.read())
    logger.info("Stored upload %s as %s", upload.filename, filename)
    return f"{PUBLIC_BASE_URL}/uploads/{filename}"
