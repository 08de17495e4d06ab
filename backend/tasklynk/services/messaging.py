"""
Gatekeeping for job messages and attachments.

Text messages and anything an admin sends are visible at once; links and
files from clients or freelancers wait for admin approval. Clients only
see their own uploads plus files an admin released as final, and may
download anything beyond their own uploads once payment is confirmed.
"""
import uuid

from sqlalchemy import or_
from sqlalchemy.orm import Session

from tasklynk.errors import ConflictError, PermissionDenied, ValidationFailed
from tasklynk.models.attachment import Attachment
from tasklynk.models.job import Job
from tasklynk.models.message import Message
from tasklynk.models.user import User
from tasklynk.services import notification_service
from tasklynk.utils.clock import now_iso

MESSAGE_TYPES = ("text", "link", "file")
UPLOAD_TYPES = ("initial", "revision", "final")


def is_participant(job: Job, user: User) -> bool:
    return (
        user.role == "admin"
        or job.client_id == user.id
        or job.assigned_freelancer_id == user.id
    )


def ensure_participant(job: Job, user: User):
    if not is_participant(job, user):
        raise PermissionDenied("You are not part of this order")


def post_message(db: Session, job: Job, sender: User, message_type: str, content: str) -> Message:
    ensure_participant(job, sender)
    if message_type not in MESSAGE_TYPES:
        raise ValidationFailed(f"Invalid message_type. Must be one of: {', '.join(MESSAGE_TYPES)}")
    if not content or not content.strip():
        raise ValidationFailed("Message cannot be empty")

    approved = message_type == "text" or sender.role == "admin"
    msg = Message(
        id=str(uuid.uuid4()),
        job_id=job.id,
        sender_id=sender.id,
        message_type=message_type,
        content=content.strip(),
        admin_approved=approved,
        created_at=now_iso(),
    )
    db.add(msg)

    if not approved:
        notification_service.notify_admins(
            db, "message_pending", "Message awaiting approval",
            f"A {message_type} from {sender.display_id} on order {job.display_id} needs review", job.id,
        )
    else:
        for uid in _counterparties(job, sender):
            notification_service.notify(
                db, uid, "new_message", "New message", f"New message on order {job.display_id}", job.id,
            )
    return msg


def _counterparties(job: Job, sender: User) -> list[str]:
    ids = [job.client_id]
    if job.assigned_freelancer_id:
        ids.append(job.assigned_freelancer_id)
    return [uid for uid in ids if uid != sender.id]


def visible_messages_query(db: Session, job: Job, viewer: User):
    ensure_participant(job, viewer)
    query = db.query(Message).filter(Message.job_id == job.id)
    if viewer.role != "admin":
        query = query.filter(or_(
            Message.sender_id == viewer.id,
            Message.message_type == "text",
            Message.admin_approved.is_(True),
        ))
    return query.order_by(Message.created_at, Message.id)


def approve_message(db: Session, msg: Message, admin: User):
    if msg.admin_approved:
        raise ConflictError("Message is already approved")
    msg.admin_approved = True
    job = msg.job
    sender = msg.sender
    for uid in _counterparties(job, sender):
        notification_service.notify(
            db, uid, "new_message", "New message", f"New {msg.message_type} shared on order {job.display_id}", job.id,
        )


# -- attachments --

def upload_type_for(job: Job, uploader: User, requested: str | None = None) -> str:
    if uploader.role == "admin":
        requested = requested or "final"
        if requested not in UPLOAD_TYPES:
            raise ValidationFailed(f"Invalid upload_type. Must be one of: {', '.join(UPLOAD_TYPES)}")
        return requested
    if uploader.role == "freelancer":
        return "revision"
    if requested == "revision" or job.status in ("delivered", "completed", "revision"):
        return "revision"
    return "initial"


def can_see_attachment(job: Job, viewer: User, att: Attachment) -> bool:
    if att.deleted_at:
        return False
    if viewer.role == "admin" or job.assigned_freelancer_id == viewer.id:
        return True
    if job.client_id == viewer.id:
        return att.uploaded_by == viewer.id or att.upload_type == "final"
    return False


def visible_attachments(job: Job, viewer: User, attachments: list[Attachment]) -> list[Attachment]:
    ensure_participant(job, viewer)
    return [a for a in attachments if can_see_attachment(job, viewer, a)]


def ensure_can_download(job: Job, viewer: User, att: Attachment):
    if not can_see_attachment(job, viewer, att):
        raise PermissionDenied("You cannot access this file")
    if job.client_id == viewer.id and att.uploaded_by != viewer.id and not job.payment_confirmed:
        raise PermissionDenied("Files unlock once payment is confirmed", code="PAYMENT_REQUIRED")


def set_upload_type(att: Attachment, upload_type: str):
    if upload_type not in UPLOAD_TYPES:
        raise ValidationFailed(f"Invalid upload_type. Must be one of: {', '.join(UPLOAD_TYPES)}")
    att.upload_type = upload_type
