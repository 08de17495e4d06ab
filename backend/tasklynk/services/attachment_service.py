import logging
import os
from datetime import datetime
from pathlib import Path

from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.models.attachment import Attachment
from tasklynk.utils.clock import to_iso
from tasklynk.utils.filesystem import ensure_job_dirs, sanitize_filename
from tasklynk.utils.hashing import sha256_chunks

logger = logging.getLogger(__name__)


def store_attachment(job_id: str, filename: str, content: bytes) -> tuple[str, str, int]:
    """Store a file immutably. Returns (relative_path, file_hash, file_size)."""
    file_hash = sha256_chunks([content])
    safe_name = sanitize_filename(filename or "file")
    job_dir = ensure_job_dirs(job_id, settings.data_path)
    target = job_dir / "attachments" / f"{file_hash[:8]}_{safe_name}"
    # Same content under the same name on another upload gets its own file
    n = 1
    while target.exists():
        target = job_dir / "attachments" / f"{file_hash[:8]}_{n}_{safe_name}"
        n += 1
    target.write_bytes(content)
    os.chmod(target, 0o444)

    relative_path = f"jobs/{job_id}/attachments/{target.name}"
    return relative_path, file_hash, len(content)


def store_avatar(user_id: str, filename: str, content: bytes) -> str:
    suffix = Path(sanitize_filename(filename or "")).suffix.lower() or ".img"
    avatars = settings.avatars_dir
    avatars.mkdir(parents=True, exist_ok=True)
    target = avatars / f"{user_id}{suffix}"
    if target.exists():
        os.chmod(target, 0o644)
    target.write_bytes(content)
    return f"avatars/{target.name}"


def get_full_path(stored_path: str, data_path: Path | None = None) -> Path:
    return (data_path or settings.data_path) / stored_path


def purge_due(db: Session, now: datetime) -> int:
    """Delete files whose retention window has passed. Rows stay, marked deleted."""
    stamp = to_iso(now)
    due = (
        db.query(Attachment)
        .filter(Attachment.deleted_at.is_(None))
        .filter(Attachment.scheduled_deletion_at.isnot(None))
        .filter(Attachment.scheduled_deletion_at <= stamp)
        .all()
    )
    for att in due:
        path = get_full_path(att.stored_path)
        if path.exists():
            os.chmod(path, 0o644)
            path.unlink()
        att.deleted_at = stamp
    if due:
        logger.info("Purged %d attachments past retention", len(due))
    return len(due)
