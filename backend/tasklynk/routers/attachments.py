import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin
from tasklynk.models.attachment import Attachment
from tasklynk.models.job import Job
from tasklynk.models.user import User
from tasklynk.schemas.attachment import AttachmentResponse, AttachmentUpdate
from tasklynk.services import messaging, notification_service
from tasklynk.services.attachment_service import get_full_path, store_attachment
from tasklynk.utils.clock import now_iso
from tasklynk.utils.hashing import sha256_file

router = APIRouter(prefix="/jobs/{job_id}/attachments", tags=["attachments"])


def _get_job(db: Session, job_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _get_attachment(db: Session, job_id: str, attachment_id: str) -> Attachment:
    att = db.query(Attachment).filter(Attachment.id == attachment_id, Attachment.job_id == job_id).first()
    if not att or att.deleted_at:
        raise HTTPException(status_code=404, detail="Attachment not found")
    return att


@router.post("", response_model=AttachmentResponse, status_code=201)
async def upload_attachment(
    job_id: str,
    file: UploadFile = File(...),
    upload_type: str | None = Form(None),
    viewer: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)
    messaging.ensure_participant(job, viewer)
    if job.status == "cancelled":
        raise HTTPException(status_code=409, detail="Order is cancelled")
    kind = messaging.upload_type_for(job, viewer, upload_type)

    max_bytes = settings.max_upload_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    content = b"".join(chunks)
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    stored_path, file_hash, file_size = store_attachment(job_id, file.filename, content)
    att = Attachment(
        id=str(uuid.uuid4()),
        job_id=job_id,
        uploaded_by=viewer.id,
        file_name=file.filename or "file",
        stored_path=stored_path,
        file_hash=file_hash,
        file_size=file_size,
        mime_type=file.content_type,
        upload_type=kind,
        created_at=now_iso(),
    )
    db.add(att)
    if viewer.role != "admin":
        notification_service.notify_admins(
            db, "file_uploaded", "New file",
            f"{viewer.display_id} uploaded {att.file_name} to order {job.display_id}", job.id,
        )
    db.commit()
    db.refresh(att)
    return AttachmentResponse.model_validate(att)


@router.get("", response_model=list[AttachmentResponse])
async def list_attachments(job_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    atts = (
        db.query(Attachment)
        .filter(Attachment.job_id == job_id)
        .order_by(Attachment.created_at.desc(), Attachment.id)
        .all()
    )
    return [AttachmentResponse.model_validate(a) for a in messaging.visible_attachments(job, viewer, atts)]


@router.patch("/{attachment_id}", response_model=AttachmentResponse)
async def update_attachment(
    job_id: str,
    attachment_id: str,
    req: AttachmentUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    job = _get_job(db, job_id)
    att = _get_attachment(db, job_id, attachment_id)
    messaging.set_upload_type(att, req.upload_type)
    if att.upload_type == "final":
        notification_service.notify(
            db, job.client_id, "file_released", "File ready",
            f"{att.file_name} is available on order {job.display_id}", job.id,
        )
    db.commit()
    db.refresh(att)
    return AttachmentResponse.model_validate(att)


@router.get("/{attachment_id}/verify")
async def verify_attachment(job_id: str, attachment_id: str, admin: User = Depends(require_admin),
                            db: Session = Depends(get_db)):
    """Re-hash the stored file and compare against the recorded SHA-256."""
    att = _get_attachment(db, job_id, attachment_id)
    full_path = get_full_path(att.stored_path)
    if not full_path.exists():
        raise HTTPException(status_code=404, detail="File missing from storage")
    actual_hash = sha256_file(full_path)
    return {
        "verified": actual_hash == att.file_hash,
        "filename": att.file_name,
        "stored_hash": att.file_hash,
        "actual_hash": actual_hash,
    }


@router.get("/{attachment_id}/download")
async def download_attachment(job_id: str, attachment_id: str, viewer: User = Depends(get_current_user),
                              db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    att = _get_attachment(db, job_id, attachment_id)
    messaging.ensure_can_download(job, viewer, att)

    full_path = get_full_path(att.stored_path)
    if not full_path.exists():
        raise HTTPException(status_code=404, detail="File missing from storage")
    return FileResponse(
        path=str(full_path),
        filename=att.file_name,
        media_type=att.mime_type or "application/octet-stream",
    )
