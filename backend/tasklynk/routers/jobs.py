from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin, require_client
from tasklynk.models.attachment import Attachment
from tasklynk.models.bid import Bid
from tasklynk.models.job import Job
from tasklynk.models.user import User
from tasklynk.schemas.job import (
    AssignRequest,
    CompleteRequest,
    JobCreate,
    JobListResponse,
    JobResponse,
    JobUpdate,
    PlacementEntry,
    RateRequest,
    RevisionRequest,
    StatusUpdate,
    VersionedAction,
)
from tasklynk.services import bidding, lifecycle, pricing
from tasklynk.services.calendar_service import generate_deadline_ics
from tasklynk.utils.clock import parse_ts

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _job_to_response(job: Job, db: Session, viewer: User) -> JobResponse:
    bid_count = db.query(func.count(Bid.id)).filter(Bid.job_id == job.id).scalar()
    attachment_count = (
        db.query(func.count(Attachment.id))
        .filter(Attachment.job_id == job.id, Attachment.deleted_at.is_(None))
        .scalar()
    )
    is_client = viewer.is_client
    # Freelancers work against their own, earlier deadline
    deadline = job.freelancer_deadline if viewer.role == "freelancer" else job.deadline
    return JobResponse(
        id=job.id,
        display_id=job.display_id,
        client_id=job.client_id,
        assigned_freelancer_id=job.assigned_freelancer_id,
        title=job.title,
        instructions=job.instructions,
        service_type=job.service_type,
        work_type=job.work_type,
        quantity=job.quantity,
        unit=job.unit,
        amount=job.amount,
        calculated_price=job.calculated_price if viewer.role != "freelancer" else None,
        deadline=deadline,
        freelancer_deadline=job.freelancer_deadline,
        status=job.status,
        admin_approved=bool(job.admin_approved),
        client_approved=bool(job.client_approved),
        payment_confirmed=bool(job.payment_confirmed),
        revision_requested=bool(job.revision_requested),
        revision_notes=job.revision_notes,
        revision_due_at=job.revision_due_at,
        client_rating=job.client_rating,
        review_comment=job.review_comment,
        auto_approve_at=job.auto_approve_at,
        completed_at=job.completed_at,
        version=job.version,
        created_at=job.created_at,
        updated_at=job.updated_at,
        payout_ceiling=None if is_client else pricing.payout_share(job.amount),
        bid_count=bid_count,
        attachment_count=attachment_count,
        overdue=lifecycle.is_overdue(job, deadline),
    )


def _get_job(db: Session, job_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _ensure_can_view(job: Job, viewer: User):
    if viewer.role == "admin" or job.client_id == viewer.id or job.assigned_freelancer_id == viewer.id:
        return
    if viewer.role == "freelancer" and job.status == "approved":
        return
    raise HTTPException(status_code=404, detail="Job not found")


def _done(db: Session, job: Job, viewer: User) -> JobResponse:
    db.commit()
    db.refresh(job)
    return _job_to_response(job, db, viewer)


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(req: JobCreate, client: User = Depends(require_client), db: Session = Depends(get_db)):
    try:
        deadline = parse_ts(req.deadline)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid deadline")
    job = lifecycle.create_job(
        db, client,
        title=req.title,
        instructions=req.instructions,
        service_type=req.service_type,
        quantity=req.quantity,
        deadline=deadline,
        amount=req.amount,
    )
    return _done(db, job, client)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    viewer: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Job)
    if viewer.is_client:
        query = query.filter(Job.client_id == viewer.id)
    elif viewer.role == "freelancer":
        query = query.filter(Job.assigned_freelancer_id == viewer.id)
    if status:
        query = query.filter(Job.status == status)

    total = query.count()
    jobs = query.order_by(Job.updated_at.desc(), Job.id).offset((page - 1) * per_page).limit(per_page).all()
    return JobListResponse(
        jobs=[_job_to_response(j, db, viewer) for j in jobs],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/placement-list", response_model=list[PlacementEntry])
async def placement_list(viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Approved orders open for bids, VIP clients first, then oldest first."""
    if viewer.is_client:
        raise HTTPException(status_code=403, detail="Freelancer or admin access required")
    priority_rank = case(
        (User.client_priority == "vip", 0),
        (User.client_priority == "priority", 1),
        else_=2,
    )
    rows = (
        db.query(Job)
        .join(User, User.id == Job.client_id)
        .filter(Job.status == "approved")
        .order_by(priority_rank, Job.created_at, Job.id)
        .all()
    )
    bid_counts = dict(
        db.query(Bid.job_id, func.count(Bid.id))
        .filter(Bid.job_id.in_([j.id for j in rows]))
        .group_by(Bid.job_id)
        .all()
    ) if rows else {}
    return [
        PlacementEntry(
            id=j.id,
            display_id=j.display_id,
            title=j.title,
            work_type=j.work_type,
            quantity=j.quantity,
            unit=j.unit,
            freelancer_deadline=j.freelancer_deadline,
            payout_ceiling=pricing.payout_share(j.amount),
            bid_count=bid_counts.get(j.id, 0),
            created_at=j.created_at,
        )
        for j in rows
    ]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    _ensure_can_view(job, viewer)
    return _job_to_response(job, db, viewer)


@router.patch("/{job_id}", response_model=JobResponse)
async def update_job(job_id: str, req: JobUpdate, viewer: User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    _ensure_can_view(job, viewer)
    lifecycle.update_job(db, job, viewer, title=req.title, instructions=req.instructions, amount=req.amount)
    return _done(db, job, viewer)


@router.patch("/{job_id}/approve", response_model=JobResponse)
async def approve_job(job_id: str, req: VersionedAction | None = None,
                      admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version if req else None)
    lifecycle.approve_job(db, job, admin)
    return _done(db, job, admin)


@router.patch("/{job_id}/reject", response_model=JobResponse)
async def reject_job(job_id: str, req: VersionedAction | None = None,
                     admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version if req else None)
    lifecycle.reject_job(db, job, admin)
    return _done(db, job, admin)


@router.patch("/{job_id}/assign", response_model=JobResponse)
async def assign_job(job_id: str, req: AssignRequest, admin: User = Depends(require_admin),
                     db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version)
    bidding.assign(db, job, admin, freelancer_id=req.freelancer_id, bid_id=req.bid_id)
    return _done(db, job, admin)


@router.patch("/{job_id}/start", response_model=JobResponse)
async def start_job(job_id: str, req: VersionedAction | None = None,
                    viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version if req else None)
    lifecycle.start_job(db, job, viewer)
    return _done(db, job, viewer)


@router.patch("/{job_id}/submit", response_model=JobResponse)
async def submit_job(job_id: str, req: VersionedAction | None = None,
                     viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version if req else None)
    lifecycle.submit_job(db, job, viewer)
    return _done(db, job, viewer)


@router.patch("/{job_id}/deliver", response_model=JobResponse)
async def deliver_job(job_id: str, req: VersionedAction | None = None,
                      admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version if req else None)
    lifecycle.deliver_job(db, job, admin)
    return _done(db, job, admin)


@router.patch("/{job_id}/complete", response_model=JobResponse)
async def complete_job(job_id: str, req: CompleteRequest | None = None,
                       viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    req = req or CompleteRequest()
    lifecycle.check_version(job, req.version)
    lifecycle.complete_job(db, job, viewer, rating=req.rating, comment=req.comment)
    return _done(db, job, viewer)


@router.patch("/{job_id}/revision", response_model=JobResponse)
async def request_revision(job_id: str, req: RevisionRequest, viewer: User = Depends(get_current_user),
                           db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version)
    lifecycle.request_revision(db, job, viewer, req.revision_notes, req.revision_hours)
    return _done(db, job, viewer)


@router.patch("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, req: VersionedAction | None = None,
                     viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version if req else None)
    lifecycle.cancel_job(db, job, viewer)
    return _done(db, job, viewer)


@router.patch("/{job_id}/status", response_model=JobResponse)
async def update_status(job_id: str, req: StatusUpdate, viewer: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.check_version(job, req.version)
    lifecycle.dispatch_status(
        db, job, req.status, viewer,
        freelancer_id=req.freelancer_id,
        bid_id=req.bid_id,
        rating=req.rating,
        comment=req.comment,
        revision_notes=req.revision_notes,
        revision_hours=req.revision_hours,
    )
    return _done(db, job, viewer)


@router.post("/{job_id}/rate", response_model=JobResponse)
async def rate_job(job_id: str, req: RateRequest, viewer: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    lifecycle.rate_job(db, job, viewer, req.score, req.comment)
    return _done(db, job, viewer)


@router.get("/{job_id}/calendar")
async def job_calendar(job_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    _ensure_can_view(job, viewer)
    deadline = job.freelancer_deadline if viewer.role == "freelancer" else job.deadline
    ics_data = generate_deadline_ics(
        job_id=job.id,
        display_id=job.display_id,
        title=job.title,
        deadline=deadline,
        work_type=job.work_type,
        instructions=job.instructions,
    )
    return Response(
        content=ics_data,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="deadline_{job.id[:8]}.ics"'},
    )
