import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin
from tasklynk.models.bid import Bid
from tasklynk.models.job import Job
from tasklynk.models.payment import Payment
from tasklynk.models.payment_request import PaymentRequest
from tasklynk.models.rating import Rating
from tasklynk.models.user import User
from tasklynk.schemas.user import (
    AccountOwnerResponse,
    AdminResponse,
    BadgeUpdate,
    BlacklistRequest,
    ClientResponse,
    FreelancerResponse,
    PriorityUpdate,
    RejectRequest,
    SuspendRequest,
    TierUpdate,
    UserResponse,
    UserSummary,
    UserUpdate,
)
from tasklynk.services import notification_service, reputation
from tasklynk.services.attachment_service import store_avatar
from tasklynk.services.auth_service import auth_service, lift_suspension, suspension_end
from tasklynk.utils.clock import now_iso
from tasklynk.utils.phone import normalize_msisdn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


def user_to_response(user: User, viewer: User):
    common = dict(
        id=user.id,
        display_id=user.display_id,
        email=user.email,
        name=user.name,
        phone=user.phone,
        approved=bool(user.approved),
        status=user.status,
        balance=user.balance or 0,
        rating=user.rating,
        completed_jobs=user.completed_jobs or 0,
        suspended_until=user.suspended_until,
        profile_picture_path=user.profile_picture_path,
        created_at=user.created_at,
    )
    if user.role == "freelancer":
        return FreelancerResponse(
            role="freelancer",
            freelancer_badge=user.freelancer_badge,
            total_earned=user.total_earned or 0,
            **common,
        )
    if user.is_client:
        cls = AccountOwnerResponse if user.role == "account_owner" else ClientResponse
        return cls(
            role=user.role,
            client_tier=user.client_tier,
            total_spent=user.total_spent or 0,
            client_priority=user.client_priority if viewer.role == "admin" else None,
            **common,
        )
    return AdminResponse(role="admin", **common)


def _get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _ensure_self_or_admin(user_id: str, viewer: User):
    if viewer.id != user_id and viewer.role != "admin":
        raise HTTPException(status_code=403, detail="Not allowed")


@router.get("", response_model=list[UserResponse])
async def list_users(
    role: str | None = None,
    status: str | None = None,
    approved: bool | None = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if status:
        query = query.filter(User.status == status)
    if approved is not None:
        query = query.filter(User.approved.is_(approved))
    users = query.order_by(User.created_at.desc(), User.display_id).all()
    return [user_to_response(u, admin) for u in users]


@router.post("/calculate-ratings")
async def calculate_ratings(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    updated = reputation.recalculate_all_ratings(db)
    db.commit()
    return {"updated": updated}


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _ensure_self_or_admin(user_id, viewer)
    return user_to_response(_get_user(db, user_id), viewer)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    req: UserUpdate,
    viewer: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if viewer.id != user_id:
        raise HTTPException(status_code=403, detail="You can only edit your own profile")
    user = _get_user(db, user_id)
    if req.name is not None:
        if not req.name.strip():
            raise HTTPException(status_code=400, detail="Name cannot be empty")
        user.name = req.name.strip()
    if req.phone is not None:
        try:
            user.phone = normalize_msisdn(req.phone)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    user.updated_at = now_iso()
    db.commit()
    db.refresh(user)
    return user_to_response(user, viewer)


@router.patch("/{user_id}/approve", response_model=UserResponse)
async def approve_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    user.approved = True
    user.rejected_at = None
    user.rejection_reason = None
    user.updated_at = now_iso()
    notification_service.notify(db, user.id, "account_approved", "Account approved",
                                "Your account has been approved. Welcome to TaskLynk!", email=True)
    db.commit()
    db.refresh(user)
    logger.info("%s approved %s", admin.display_id, user.display_id)
    return user_to_response(user, admin)


@router.post("/{user_id}/reject", response_model=UserResponse)
async def reject_user(
    user_id: str,
    req: RejectRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not req.reason.strip():
        raise HTTPException(status_code=400, detail="A rejection reason is required")
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot reject your own account")
    user.approved = False
    user.rejected_at = now_iso()
    user.rejection_reason = req.reason.strip()
    user.updated_at = user.rejected_at
    notification_service.notify(db, user.id, "account_rejected", "Account rejected",
                                f"Your registration was rejected: {user.rejection_reason}",
                                email=True)
    db.commit()
    db.refresh(user)
    auth_service.revoke_user(user.id)
    return user_to_response(user, admin)


@router.patch("/{user_id}/suspend", response_model=UserResponse)
async def suspend_user(
    user_id: str,
    req: SuspendRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not req.reason.strip():
        raise HTTPException(status_code=400, detail="A suspension reason is required")
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot suspend your own account")
    if user.status == "blacklisted":
        raise HTTPException(status_code=409, detail="User is blacklisted")
    user.status = "suspended"
    user.suspended_until = suspension_end(req.duration_days)
    user.suspension_reason = req.reason.strip()
    user.updated_at = now_iso()
    notification_service.notify(db, user.id, "account_suspended", "Account suspended",
                                f"Your account is suspended until {user.suspended_until}: {user.suspension_reason}",
                                email=True)
    db.commit()
    db.refresh(user)
    auth_service.revoke_user(user.id)
    return user_to_response(user, admin)


@router.patch("/{user_id}/unsuspend", response_model=UserResponse)
async def unsuspend_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    if user.status != "suspended":
        raise HTTPException(status_code=409, detail="User is not suspended")
    lift_suspension(user)
    notification_service.notify(db, user.id, "account_unsuspended", "Suspension lifted",
                                "Your account is active again.")
    db.commit()
    db.refresh(user)
    return user_to_response(user, admin)


@router.patch("/{user_id}/blacklist", response_model=UserResponse)
async def blacklist_user(
    user_id: str,
    req: BlacklistRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not req.reason.strip():
        raise HTTPException(status_code=400, detail="A blacklist reason is required")
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot blacklist your own account")
    user.status = "blacklisted"
    user.blacklist_reason = req.reason.strip()
    user.suspended_until = None
    user.updated_at = now_iso()
    db.commit()
    db.refresh(user)
    auth_service.revoke_user(user.id)
    logger.info("%s blacklisted %s", admin.display_id, user.display_id)
    return user_to_response(user, admin)


@router.delete("/{user_id}/remove")
async def remove_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot remove your own account")
    has_jobs = db.query(Job.id).filter((Job.client_id == user.id) | (Job.assigned_freelancer_id == user.id)).first()
    has_bids = db.query(Bid.id).filter(Bid.freelancer_id == user.id).first()
    has_payments = (
        db.query(Payment.id).filter(Payment.client_id == user.id).first()
        or db.query(PaymentRequest.id).filter(PaymentRequest.client_id == user.id).first()
    )
    if has_jobs or has_bids or has_payments:
        raise HTTPException(status_code=409, detail="User has order history; suspend or blacklist instead")
    db.delete(user)
    db.commit()
    auth_service.revoke_user(user_id)
    return {"message": "User removed"}


@router.get("/{user_id}/summary", response_model=UserSummary)
async def user_summary(user_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _ensure_self_or_admin(user_id, viewer)
    user = _get_user(db, user_id)
    if user.role == "freelancer":
        owner_filter = Job.assigned_freelancer_id == user.id
    else:
        owner_filter = Job.client_id == user.id
    rows = db.query(Job.status, func.count(Job.id)).filter(owner_filter).group_by(Job.status).all()
    by_status = {status: n for status, n in rows}
    return UserSummary(
        user=user_to_response(user, viewer),
        jobs_by_status=by_status,
        total_jobs=sum(by_status.values()),
        bids_placed=db.query(func.count(Bid.id)).filter(Bid.freelancer_id == user.id).scalar(),
        ratings_received=db.query(func.count(Rating.id)).filter(Rating.rated_user_id == user.id).scalar(),
        pending_payment_requests=db.query(func.count(PaymentRequest.id)).filter(
            PaymentRequest.client_id == user.id, PaymentRequest.status == "pending",
        ).scalar(),
    )


@router.post("/{user_id}/profile-picture", response_model=UserResponse)
async def upload_profile_picture(
    user_id: str,
    file: UploadFile = File(...),
    viewer: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self_or_admin(user_id, viewer)
    user = _get_user(db, user_id)
    if file.content_type not in _IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Profile picture must be a JPEG, PNG, WebP or GIF image")
    content = await file.read(settings.max_profile_picture_bytes + 1)
    if len(content) > settings.max_profile_picture_bytes:
        raise HTTPException(status_code=413, detail="Image too large")
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    user.profile_picture_path = store_avatar(user.id, file.filename, content)
    user.updated_at = now_iso()
    db.commit()
    db.refresh(user)
    return user_to_response(user, viewer)


@router.post("/{user_id}/badge", response_model=UserResponse)
async def set_badge(user_id: str, req: BadgeUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    reputation.set_badge(user, req.badge)
    user.updated_at = now_iso()
    db.commit()
    db.refresh(user)
    return user_to_response(user, admin)


@router.post("/{user_id}/tier", response_model=UserResponse)
async def set_tier(user_id: str, req: TierUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    reputation.set_tier(user, req.tier)
    user.updated_at = now_iso()
    db.commit()
    db.refresh(user)
    return user_to_response(user, admin)


@router.post("/{user_id}/priority", response_model=UserResponse)
async def set_priority(user_id: str, req: PriorityUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    reputation.set_priority(user, req.priority)
    user.updated_at = now_iso()
    db.commit()
    db.refresh(user)
    return user_to_response(user, admin)
