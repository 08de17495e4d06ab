"""
Badge, tier and rating bookkeeping.

Thresholds are lower-inclusive; the first matching floor from the top wins.
A manual badge or tier set by an admin holds until the next completion,
which recomputes both unconditionally.
"""
import logging
import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session

from tasklynk.errors import ConflictError, ValidationFailed
from tasklynk.models.rating import Rating
from tasklynk.models.user import User
from tasklynk.utils.clock import now_iso

logger = logging.getLogger(__name__)

BADGE_FLOORS = [(100, "elite"), (50, "platinum"), (25, "gold"), (10, "silver"), (0, "bronze")]
TIER_FLOORS = [(50, "platinum"), (25, "gold"), (10, "silver"), (0, "basic")]

BADGES = tuple(name for _, name in reversed(BADGE_FLOORS))
TIERS = tuple(name for _, name in reversed(TIER_FLOORS))
PRIORITIES = ("regular", "priority", "vip")


def _lookup(floors: list[tuple[int, str]], completed_jobs: int) -> str:
    for floor, name in floors:
        if completed_jobs >= floor:
            return name
    return floors[-1][1]


def badge_for(completed_jobs: int) -> str:
    return _lookup(BADGE_FLOORS, completed_jobs)


def tier_for(completed_jobs: int) -> str:
    return _lookup(TIER_FLOORS, completed_jobs)


def recompute(user: User):
    if user.role == "freelancer":
        user.freelancer_badge = badge_for(user.completed_jobs or 0)
    elif user.is_client:
        user.client_tier = tier_for(user.completed_jobs or 0)


def record_completion(db: Session, user_id: str | None):
    """Bump completed_jobs atomically, then recompute badge/tier from the stored count."""
    if not user_id:
        return
    db.query(User).filter(User.id == user_id).update(
        {User.completed_jobs: User.completed_jobs + 1},
        synchronize_session=False,
    )
    user = db.query(User).filter(User.id == user_id).first()
    db.refresh(user, ["completed_jobs"])
    recompute(user)
    user.updated_at = now_iso()


def set_badge(user: User, badge: str):
    if user.role != "freelancer":
        raise ValidationFailed("Badges apply to freelancers only")
    if badge not in BADGES:
        raise ValidationFailed(f"Invalid badge. Must be one of: {', '.join(BADGES)}")
    user.freelancer_badge = badge


def set_tier(user: User, tier: str):
    if not user.is_client:
        raise ValidationFailed("Tiers apply to clients only")
    if tier not in TIERS:
        raise ValidationFailed(f"Invalid tier. Must be one of: {', '.join(TIERS)}")
    user.client_tier = tier


def set_priority(user: User, priority: str):
    if not user.is_client:
        raise ValidationFailed("Priority applies to clients only")
    if priority not in PRIORITIES:
        raise ValidationFailed(f"Invalid priority. Must be one of: {', '.join(PRIORITIES)}")
    user.client_priority = priority


def add_rating(db: Session, job_id: str, rated_user_id: str, rated_by_user_id: str,
               score: int, comment: str | None = None) -> Rating:
    if score < 1 or score > 5:
        raise ValidationFailed("Rating must be between 1 and 5")
    existing = db.query(Rating).filter(
        Rating.job_id == job_id,
        Rating.rated_by_user_id == rated_by_user_id,
    ).first()
    if existing:
        raise ConflictError("This order has already been rated", code="ALREADY_RATED")
    rating = Rating(
        id=str(uuid.uuid4()),
        job_id=job_id,
        rated_user_id=rated_user_id,
        rated_by_user_id=rated_by_user_id,
        score=score,
        comment=comment,
        created_at=now_iso(),
    )
    db.add(rating)
    db.flush()
    avg = db.query(func.avg(Rating.score)).filter(Rating.rated_user_id == rated_user_id).scalar()
    db.query(User).filter(User.id == rated_user_id).update(
        {User.rating: round(float(avg), 2)}, synchronize_session=False,
    )
    return rating


def recalculate_all_ratings(db: Session) -> int:
    """Rebuild every user's average rating from the ratings table. Returns users updated."""
    averages = dict(
        db.query(Rating.rated_user_id, func.avg(Rating.score))
        .group_by(Rating.rated_user_id)
        .all()
    )
    updated = 0
    for user in db.query(User).all():
        avg = averages.get(user.id)
        value = round(float(avg), 2) if avg is not None else None
        if user.rating != value:
            user.rating = value
            updated += 1
    logger.info("Recalculated ratings for %d users", updated)
    return updated
