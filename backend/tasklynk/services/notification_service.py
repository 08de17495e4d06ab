import uuid

from sqlalchemy.orm import Session

from tasklynk.models.job import Job
from tasklynk.models.notification import Notification
from tasklynk.models.user import User
from tasklynk.services import email_service
from tasklynk.utils.clock import now_iso

STATUS_MESSAGES = {
    "approved": "Order {display_id} has been approved and is open for bids.",
    "assigned": "Order {display_id} has been assigned to a writer.",
    "in_progress": "Work on order {display_id} has started.",
    "editing": "Order {display_id} has been submitted and is under review.",
    "delivered": "Order {display_id} has been delivered.",
    "revision": "A revision was requested on order {display_id}.",
    "completed": "Order {display_id} is complete.",
    "cancelled": "Order {display_id} was cancelled.",
}


def notify(db: Session, user_id: str, type: str, title: str, message: str, job_id: str | None = None,
           email: bool = False) -> Notification:
    """Add an in-app notification; with email=True the user also gets it by mail."""
    n = Notification(
        id=str(uuid.uuid4()),
        user_id=user_id,
        job_id=job_id,
        type=type,
        title=title,
        message=message,
        read=False,
        created_at=now_iso(),
    )
    db.add(n)
    if email:
        email_service.enqueue_for_user(db, user_id, title, message)
    return n


def admin_ids(db: Session) -> list[str]:
    return [row.id for row in db.query(User.id).filter(User.role == "admin").all()]


def notify_admins(db: Session, type: str, title: str, message: str, job_id: str | None = None,
                  email: bool = False):
    for uid in admin_ids(db):
        notify(db, uid, type, title, message, job_id, email=email)


def notify_job_parties(db: Session, job: Job, type: str, title: str, message: str, email: bool = False):
    """Client, assigned freelancer and every admin, each once."""
    recipients = [job.client_id]
    if job.assigned_freelancer_id:
        recipients.append(job.assigned_freelancer_id)
    recipients.extend(admin_ids(db))
    for uid in dict.fromkeys(recipients):
        notify(db, uid, type, title, message, job.id, email=email)


def notify_status_change(db: Session, job: Job, previous: str | None = None):
    template = STATUS_MESSAGES.get(job.status, "Order {display_id} changed to " + job.status + ".")
    notify_job_parties(
        db,
        job,
        type=f"job_{job.status}",
        title=f"Order {job.status.replace('_', ' ')}",
        message=template.format(display_id=job.display_id),
    )
