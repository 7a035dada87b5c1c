"""
Payload rules shared by every action: text lengths and evidence files.

Lengths are measured on the stripped text, and the stripped text is what
gets stored.
"""

from typing import Iterable, Optional, Sequence

from ..schemas import (
    ALLOWED_EXTENSIONS,
    MAX_FILE_SIZE_BYTES,
    MAX_FILES_PER_SUBMISSION,
    EvidenceFile,
)
from .errors import ValidationError


def require_text(value: Optional[str], field: str, min_length: int, max_length: int) -> str:
    """Return the stripped text or raise ValidationError."""
    text = (value or "").strip()
    if len(text) < min_length:
        raise ValidationError(
            f"{field} must be at least {min_length} characters (got {len(text)})"
        )
    if len(text) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters (got {len(text)})"
        )
    return text


def optional_text(value: Optional[str], field: str, max_length: int) -> Optional[str]:
    """Blank becomes None; otherwise enforce the upper bound."""
    text = (value or "").strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters (got {len(text)})"
        )
    return text


def require_evidence(
    files: Optional[Iterable[EvidenceFile]],
    field: str = "evidence",
    min_count: int = 0,
    max_count: int = MAX_FILES_PER_SUBMISSION,
) -> list[str]:
    """
    Check evidence descriptors and return their URLs.

    Rules: count within [min_count, max_count], each file at most 10MB,
    extension in the allowed set.
    """
    items: Sequence[EvidenceFile] = list(files or [])

    if len(items) < min_count:
        raise ValidationError(f"{field} requires at least {min_count} file(s)")
    if len(items) > max_count:
        raise ValidationError(f"{field} accepts at most {max_count} files (got {len(items)})")

    for item in items:
        if item.extension not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"{item.filename}: extension not allowed. "
                f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        if item.size_bytes > MAX_FILE_SIZE_BYTES:
            raise ValidationError(
                f"{item.filename}: exceeds the {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB limit"
            )

    return [item.url for item in items]
