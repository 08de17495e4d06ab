import logging
import uuid
from collections.abc import Iterable

from sqlalchemy.orm import Session

from tasklynk.errors import ConflictError, InvalidTransition, NotFoundError, PermissionDenied, ValidationFailed
from tasklynk.models.bid import Bid
from tasklynk.models.job import Job
from tasklynk.models.user import User
from tasklynk.services import lifecycle, notification_service, pricing
from tasklynk.utils.clock import now_iso

logger = logging.getLogger(__name__)


def rank_key(bid: Bid) -> tuple:
    return (bid.bid_amount, bid.created_at, bid.id)


def rank_bids(bids: Iterable[Bid]) -> list[Bid]:
    """Lowest amount first; earlier bid wins a tie; id keeps the order total."""
    return sorted(bids, key=rank_key)


def place_bid(db: Session, job: Job, freelancer: User, bid_amount: float, message: str = "") -> Bid:
    if freelancer.role != "freelancer":
        raise PermissionDenied("Only freelancers can bid")
    lifecycle.ensure_can_transact(freelancer)
    if job.status != "approved":
        raise InvalidTransition(f"Order is not open for bids (status: {job.status})")

    ceiling = pricing.payout_share(job.amount)
    if bid_amount is None or bid_amount <= 0:
        raise ValidationFailed("Bid amount must be greater than 0", code="INVALID_BID_AMOUNT")
    if bid_amount > ceiling:
        raise ValidationFailed(
            f"Bid cannot exceed KSh {ceiling:.2f} for this order",
            code="BID_ABOVE_CEILING",
        )

    duplicate = db.query(Bid).filter(
        Bid.job_id == job.id,
        Bid.freelancer_id == freelancer.id,
        Bid.status == "pending",
    ).first()
    if duplicate:
        raise ConflictError("You already have a pending bid on this order", code="DUPLICATE_BID")

    bid = Bid(
        id=str(uuid.uuid4()),
        job_id=job.id,
        freelancer_id=freelancer.id,
        bid_amount=float(bid_amount),
        message=message or "",
        status="pending",
        created_at=now_iso(),
    )
    db.add(bid)
    notification_service.notify_admins(
        db, "bid_placed", "New bid",
        f"{freelancer.display_id} bid KSh {bid.bid_amount:.2f} on order {job.display_id}", job.id,
    )
    return bid


def assign(db: Session, job: Job, admin: User, freelancer_id: str | None = None, bid_id: str | None = None):
    """Assign by bid or by freelancer. The winning bid is accepted, every other pending bid rejected."""
    bid = None
    if bid_id:
        bid = db.query(Bid).filter(Bid.id == bid_id, Bid.job_id == job.id).first()
        if not bid:
            raise NotFoundError("Bid not found")
        if bid.status != "pending":
            raise ConflictError(f"Bid is already {bid.status}")
        freelancer_id = bid.freelancer_id
    elif freelancer_id:
        bid = db.query(Bid).filter(
            Bid.job_id == job.id,
            Bid.freelancer_id == freelancer_id,
            Bid.status == "pending",
        ).first()
    else:
        raise ValidationFailed("Provide a freelancer_id or bid_id")

    freelancer = db.query(User).filter(User.id == freelancer_id).first()
    if not freelancer or freelancer.role != "freelancer":
        raise NotFoundError("Freelancer not found")
    if not freelancer.approved or freelancer.status != "active":
        raise ValidationFailed("Freelancer must be approved and active")
    if bid is not None and bid.bid_amount > pricing.payout_share(job.amount):
        raise ValidationFailed("Bid exceeds the current payout ceiling", code="BID_ABOVE_CEILING")

    job.assigned_freelancer_id = freelancer.id
    lifecycle.transition(db, job, "assign", admin)

    if bid is not None:
        bid.status = "accepted"
    others = db.query(Bid).filter(Bid.job_id == job.id, Bid.status == "pending")
    if bid is not None:
        others = others.filter(Bid.id != bid.id)
    others.update({Bid.status: "rejected"}, synchronize_session=False)

    notification_service.notify(
        db, freelancer.id, "job_assigned", "Order assigned",
        f"You have been assigned order {job.display_id}: {job.title}", job.id,
        email=True,
    )
    logger.info("Order %s assigned to %s", job.display_id, freelancer.display_id)
