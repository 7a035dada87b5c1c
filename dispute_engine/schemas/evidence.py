"""
Evidence File Descriptors

The engine never sees file bytes. Uploads go to external storage and the
caller hands over a descriptor; the engine checks the descriptor against
the platform's file rules and keeps the URL.
"""

from typing import Optional

from pydantic import BaseModel, Field


ALLOWED_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "pdf", "docx", "mp4"})
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024
MAX_FILES_PER_SUBMISSION = 5


class EvidenceFile(BaseModel):
    """A stored evidence file, as described by the uploader."""
    filename: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    size_bytes: int = Field(..., ge=0)
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        """Lowercased extension without the dot ('' if none)."""
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[1].lower()
