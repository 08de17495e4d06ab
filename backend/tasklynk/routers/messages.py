from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin
from tasklynk.models.job import Job
from tasklynk.models.message import Message
from tasklynk.models.user import User
from tasklynk.schemas.message import MessageCreate, MessageResponse
from tasklynk.services import messaging

router = APIRouter(prefix="/jobs/{job_id}/messages", tags=["messages"])
moderation_router = APIRouter(prefix="/messages", tags=["messages"])


def _get_job(db: Session, job_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("", response_model=MessageResponse, status_code=201)
async def post_message(job_id: str, req: MessageCreate, viewer: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    msg = messaging.post_message(db, job, viewer, req.message_type, req.content)
    db.commit()
    db.refresh(msg)
    return MessageResponse.model_validate(msg)


@router.get("", response_model=list[MessageResponse])
async def list_messages(job_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    msgs = messaging.visible_messages_query(db, job, viewer).all()
    return [MessageResponse.model_validate(m) for m in msgs]


@moderation_router.get("/pending", response_model=list[MessageResponse])
async def pending_messages(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    msgs = (
        db.query(Message)
        .filter(Message.admin_approved.is_(False))
        .order_by(Message.created_at, Message.id)
        .all()
    )
    return [MessageResponse.model_validate(m) for m in msgs]


@moderation_router.patch("/{message_id}/approve", response_model=MessageResponse)
async def approve_message(message_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    msg = db.query(Message).filter(Message.id == message_id).first()
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")
    messaging.approve_message(db, msg, admin)
    db.commit()
    db.refresh(msg)
    return MessageResponse.model_validate(msg)
