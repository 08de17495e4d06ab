"""
Job lifecycle state machine.

Every action checks the current status, the actor's role and any guard,
then mutates the job in the caller's session. Callers commit; the job's
version column turns a concurrent write into StaleDataError at flush time.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.errors import ConflictError, InvalidTransition, PermissionDenied, ValidationFailed
from tasklynk.models.attachment import Attachment
from tasklynk.models.bid import Bid
from tasklynk.models.job import Job
from tasklynk.models.message import Message
from tasklynk.models.user import User
from tasklynk.services import email_service, notification_service, pricing, reputation
from tasklynk.utils.clock import now_iso, parse_ts, to_iso, utcnow
from tasklynk.utils.display_ids import next_job_display_id

logger = logging.getLogger(__name__)

STATUSES = (
    "pending", "approved", "assigned", "in_progress", "editing",
    "delivered", "revision", "completed", "cancelled",
)
TERMINAL = ("completed", "cancelled")
ASSIGNED_STATES = ("assigned", "in_progress", "editing", "delivered", "revision", "completed")

# action -> (allowed source states, target state, roles allowed to act)
# "client" is the owning client, "freelancer" the assigned freelancer, "system" the scheduler.
TRANSITIONS: dict[str, tuple[tuple[str, ...], str, tuple[str, ...]]] = {
    "approve": (("pending",), "approved", ("admin",)),
    "reject": (("pending",), "cancelled", ("admin",)),
    "assign": (("approved",), "assigned", ("admin",)),
    "start": (("assigned",), "in_progress", ("freelancer",)),
    "submit": (("in_progress", "revision"), "editing", ("freelancer",)),
    "deliver": (("editing",), "delivered", ("admin",)),
    "complete": (("delivered",), "completed", ("client", "admin", "system")),
    "request_revision": (("delivered", "completed"), "revision", ("client", "admin")),
    "cancel": (("pending", "approved", "assigned", "in_progress"), "cancelled", ("admin", "client")),
}


def actor_role(job: Job, actor: User | None) -> str | None:
    if actor is None:
        return "system"
    if actor.role == "admin":
        return "admin"
    if actor.is_client and job.client_id == actor.id:
        return "client"
    if actor.role == "freelancer" and job.assigned_freelancer_id == actor.id:
        return "freelancer"
    return None


def check_version(job: Job, expected_version: int | None):
    if expected_version is not None and expected_version != job.version:
        raise ConflictError(
            f"Order was modified (version {job.version}, expected {expected_version}); reload and retry",
            code="VERSION_CONFLICT",
        )


def transition(db: Session, job: Job, action: str, actor: User | None) -> str:
    sources, target, roles = TRANSITIONS[action]
    role = actor_role(job, actor)
    if role not in roles:
        raise PermissionDenied(f"Not allowed to {action.replace('_', ' ')} this order")
    if job.status not in sources:
        logger.info("Rejected %s on %s in status %s", action, job.display_id, job.status)
        raise InvalidTransition(f"Cannot {action.replace('_', ' ')} an order that is {job.status}")
    previous = job.status
    job.status = target
    job.updated_at = now_iso()
    notification_service.notify_status_change(db, job, previous)
    return previous


def ensure_can_transact(user: User):
    if not user.approved:
        raise PermissionDenied("Your account is awaiting admin approval", code="ACCOUNT_NOT_APPROVED")
    if user.status != "active":
        raise PermissionDenied(f"Your account is {user.status}", code="ACCOUNT_INACTIVE")


def create_job(
    db: Session,
    client: User,
    title: str,
    instructions: str,
    service_type: str,
    quantity: float,
    deadline: datetime,
    amount: float | None = None,
    now: datetime | None = None,
) -> Job:
    if not client.is_client:
        raise PermissionDenied("Only clients can post orders")
    ensure_can_transact(client)
    now = now or utcnow()
    if deadline <= now:
        raise ValidationFailed("Deadline must be in the future")
    if not title.strip() or not instructions.strip():
        raise ValidationFailed("Title and instructions are required")

    quote = pricing.quote(service_type, quantity, deadline, now)
    final_amount = pricing.resolve_amount(quote.amount, amount)

    created = to_iso(now)
    job = Job(
        id=str(uuid.uuid4()),
        display_id=next_job_display_id(db, now.year),
        client_id=client.id,
        title=title.strip(),
        instructions=instructions.strip(),
        service_type=service_type,
        work_type=quote.service.work_type,
        quantity=quantity,
        unit=quote.service.unit_type,
        amount=final_amount,
        calculated_price=float(quote.amount),
        urgency_multiplier=quote.urgency_multiplier,
        deadline=to_iso(deadline),
        freelancer_deadline=to_iso(pricing.freelancer_deadline(now, deadline)),
        status="pending",
        created_at=created,
        updated_at=created,
    )
    db.add(job)
    db.flush()
    notification_service.notify_admins(
        db, "job_created", "New order", f"{client.name} posted order {job.display_id}: {job.title}", job.id,
        email=True,
    )
    logger.info("Order %s created by %s for KSh %.2f", job.display_id, client.display_id, final_amount)
    return job


def update_job(db: Session, job: Job, actor: User, title: str | None = None,
               instructions: str | None = None, amount: float | None = None):
    role = actor_role(job, actor)
    if role not in ("client", "admin"):
        raise PermissionDenied("Not allowed to edit this order")
    if job.status not in ("pending", "approved"):
        raise InvalidTransition(f"Cannot edit an order that is {job.status}")
    if title is not None:
        job.title = title.strip()
    if instructions is not None:
        job.instructions = instructions.strip()
    if amount is not None:
        if role == "admin":
            if amount <= 0:
                raise ValidationFailed("Amount must be greater than 0")
            job.amount = float(amount)
        else:
            job.amount = pricing.resolve_amount(int(job.calculated_price), amount)
        _reject_bids_over_ceiling(db, job)
    job.updated_at = now_iso()


def _reject_bids_over_ceiling(db: Session, job: Job):
    ceiling = pricing.payout_share(job.amount)
    db.query(Bid).filter(
        Bid.job_id == job.id,
        Bid.status == "pending",
        Bid.bid_amount > ceiling,
    ).update({Bid.status: "rejected"}, synchronize_session=False)


def approve_job(db: Session, job: Job, admin: User):
    transition(db, job, "approve", admin)
    job.admin_approved = True


def reject_job(db: Session, job: Job, admin: User):
    transition(db, job, "reject", admin)


def start_job(db: Session, job: Job, freelancer: User):
    transition(db, job, "start", freelancer)


def has_deliverable(db: Session, job: Job) -> bool:
    """At least one freelancer upload or shared link, approved or pending."""
    upload = db.query(Attachment.id).filter(
        Attachment.job_id == job.id,
        Attachment.uploaded_by == job.assigned_freelancer_id,
        Attachment.deleted_at.is_(None),
    ).first()
    if upload:
        return True
    link = db.query(Message.id).filter(
        Message.job_id == job.id,
        Message.sender_id == job.assigned_freelancer_id,
        Message.message_type.in_(("link", "file")),
    ).first()
    return link is not None


def submit_job(db: Session, job: Job, freelancer: User):
    if actor_role(job, freelancer) == "freelancer" and not has_deliverable(db, job):
        raise ValidationFailed(
            "Upload at least one file or share a link before submitting",
            code="NO_DELIVERABLE",
        )
    transition(db, job, "submit", freelancer)
    job.revision_requested = False


def deliver_job(db: Session, job: Job, admin: User):
    transition(db, job, "deliver", admin)
    email_service.enqueue_for_user(
        db, job.client_id, f"Order {job.display_id} delivered",
        f"Your order {job.display_id} ({job.title}) has been delivered. "
        "Sign in to review the work and complete payment.",
    )


def complete_job(db: Session, job: Job, actor: User | None, rating: int | None = None,
                 comment: str | None = None, now: datetime | None = None):
    if job.status == "delivered" and not job.payment_confirmed:
        raise InvalidTransition(
            "Payment must be confirmed before the order can be approved",
            code="PAYMENT_NOT_CONFIRMED",
        )
    if rating is not None and (rating < 1 or rating > 5):
        raise ValidationFailed("Rating must be between 1 and 5")
    if rating is not None and actor_role(job, actor) != "client":
        raise ValidationFailed("Only the client can rate an order", code="RATING_CLIENT_ONLY")
    transition(db, job, "complete", actor)
    now = now or utcnow()
    first_completion = job.completed_at is None
    job.client_approved = True
    job.auto_approve_at = None
    job.completed_at = job.completed_at or to_iso(now)

    if rating is not None and job.client_rating is None:
        rate_job(db, job, actor, rating, comment)

    if first_completion:
        reputation.record_completion(db, job.client_id)
        reputation.record_completion(db, job.assigned_freelancer_id)

    schedule_attachment_deletion(db, job, now)
    logger.info("Order %s completed by %s", job.display_id, actor.display_id if actor else "scheduler")


def schedule_attachment_deletion(db: Session, job: Job, now: datetime):
    due = to_iso(now + timedelta(days=settings.attachment_retention_days))
    db.query(Attachment).filter(
        Attachment.job_id == job.id,
        Attachment.deleted_at.is_(None),
    ).update({Attachment.scheduled_deletion_at: due}, synchronize_session=False)


def request_revision(db: Session, job: Job, actor: User, notes: str, hours: float,
                     now: datetime | None = None):
    if not notes or not notes.strip():
        raise ValidationFailed("Revision notes are required", code="REVISION_NOTES_REQUIRED")
    if hours is None or hours <= 0:
        raise ValidationFailed("Revision turnaround must be a positive number of hours")
    transition(db, job, "request_revision", actor)
    now = now or utcnow()
    job.client_approved = False
    job.revision_requested = True
    job.revision_notes = notes.strip()
    job.revision_due_at = to_iso(now + timedelta(hours=hours))
    job.auto_approve_at = None
    # Files are kept while the order is back in work
    db.query(Attachment).filter(
        Attachment.job_id == job.id,
        Attachment.deleted_at.is_(None),
    ).update({Attachment.scheduled_deletion_at: None}, synchronize_session=False)


def cancel_job(db: Session, job: Job, actor: User):
    transition(db, job, "cancel", actor)
    job.assigned_freelancer_id = None
    db.query(Bid).filter(
        Bid.job_id == job.id,
        Bid.status == "pending",
    ).update({Bid.status: "rejected"}, synchronize_session=False)


def rate_job(db: Session, job: Job, actor: User, score: int, comment: str | None = None):
    """Rating-only action; allowed on delivered or completed orders by the owning client."""
    if actor_role(job, actor) != "client":
        raise PermissionDenied("Only the client who placed the order can rate it")
    if job.status not in ("delivered", "completed"):
        raise InvalidTransition(f"Cannot rate an order that is {job.status}")
    if not job.assigned_freelancer_id:
        raise ValidationFailed("Order has no writer to rate")
    reputation.add_rating(db, job.id, job.assigned_freelancer_id, actor.id, score, comment)
    job.client_rating = score
    job.review_comment = comment
    job.updated_at = now_iso()


# (current, target) -> action, for the generic status endpoint
_STATUS_ACTIONS = {
    ("pending", "approved"): "approve",
    ("approved", "assigned"): "assign",
    ("assigned", "in_progress"): "start",
    ("in_progress", "editing"): "submit",
    ("revision", "editing"): "submit",
    ("editing", "delivered"): "deliver",
    ("delivered", "completed"): "complete",
    ("delivered", "revision"): "request_revision",
    ("completed", "revision"): "request_revision",
}


def dispatch_status(db: Session, job: Job, target: str, actor: User, **kwargs):
    """Route a requested target status to the matching action."""
    if target not in STATUSES:
        raise ValidationFailed(f"Invalid status: {target}")
    if target == "cancelled":
        if job.status == "pending" and actor.role == "admin":
            return reject_job(db, job, actor)
        return cancel_job(db, job, actor)

    action = _STATUS_ACTIONS.get((job.status, target))
    if action is None:
        raise InvalidTransition(f"Cannot move an order from {job.status} to {target}")

    if action == "approve":
        return approve_job(db, job, actor)
    if action == "assign":
        from tasklynk.services import bidding
        return bidding.assign(db, job, actor, freelancer_id=kwargs.get("freelancer_id"),
                              bid_id=kwargs.get("bid_id"))
    if action == "start":
        return start_job(db, job, actor)
    if action == "submit":
        return submit_job(db, job, actor)
    if action == "deliver":
        return deliver_job(db, job, actor)
    if action == "complete":
        return complete_job(db, job, actor, rating=kwargs.get("rating"), comment=kwargs.get("comment"))
    return request_revision(db, job, actor, kwargs.get("revision_notes") or "", kwargs.get("revision_hours"))


def is_overdue(job: Job, deadline: str | None = None, now: datetime | None = None) -> bool:
    """Past the given deadline (the client deadline by default) and not yet delivered."""
    if job.status in TERMINAL or job.status == "delivered":
        return False
    return parse_ts(deadline or job.deadline) < (now or utcnow())
