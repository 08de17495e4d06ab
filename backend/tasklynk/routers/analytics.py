from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin
from tasklynk.models.bid import Bid
from tasklynk.models.job import Job
from tasklynk.models.user import User
from tasklynk.services import pricing

router = APIRouter(tags=["analytics"])

_ACTIVE_STATUSES = ("assigned", "in_progress", "editing", "delivered", "revision")


def _pct(num: int, denom: int) -> float | None:
    return round(num / denom * 100, 1) if denom > 0 else None


def _by_status(db: Session, *filters) -> dict[str, int]:
    rows = db.query(Job.status, func.count(Job.id).label("n")).filter(*filters).group_by(Job.status).all()
    return {row.status: row.n for row in rows}


@router.get("/stats")
async def stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Counters for the caller's dashboard, scoped by role."""
    if user.role == "freelancer":
        by_status = _by_status(db, Job.assigned_freelancer_id == user.id)
        pending_bids = db.query(func.count(Bid.id)).filter(
            Bid.freelancer_id == user.id, Bid.status == "pending",
        ).scalar()
        open_jobs = db.query(func.count(Job.id)).filter(Job.status == "approved").scalar()
        return {
            "role": user.role,
            "by_status": by_status,
            "active_jobs": sum(by_status.get(s, 0) for s in _ACTIVE_STATUSES),
            "completed_jobs": user.completed_jobs,
            "pending_bids": pending_bids,
            "open_jobs": open_jobs,
            "balance": user.balance,
            "total_earned": user.total_earned,
            "badge": user.freelancer_badge,
            "rating": user.rating,
        }

    if user.is_client:
        by_status = _by_status(db, Job.client_id == user.id)
        awaiting_payment = db.query(func.count(Job.id)).filter(
            Job.client_id == user.id, Job.status == "delivered", Job.payment_confirmed.is_(False),
        ).scalar()
        return {
            "role": user.role,
            "by_status": by_status,
            "active_jobs": sum(by_status.get(s, 0) for s in _ACTIVE_STATUSES),
            "completed_jobs": user.completed_jobs,
            "awaiting_payment": awaiting_payment,
            "balance": user.balance,
            "total_spent": user.total_spent,
            "tier": user.client_tier,
        }

    by_status = _by_status(db)
    pending_users = db.query(func.count(User.id)).filter(
        User.approved.is_(False), User.rejected_at.is_(None),
    ).scalar()
    return {
        "role": user.role,
        "by_status": by_status,
        "total_jobs": sum(by_status.values()),
        "pending_approval": by_status.get("pending", 0),
        "awaiting_review": by_status.get("editing", 0),
        "pending_users": pending_users,
    }


@router.get("/admin/analytics")
async def admin_analytics(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    by_status = _by_status(db)
    total_jobs = sum(by_status.values())
    completed = by_status.get("completed", 0)
    cancelled = by_status.get("cancelled", 0)

    # --- Revenue: confirmed job payments ---
    revenue_row = db.execute(
        text("""
            SELECT COALESCE(SUM(j.amount), 0) AS revenue, COUNT(*) AS paid_jobs
            FROM jobs j
            WHERE j.payment_confirmed = 1
        """)
    ).fetchone()
    revenue = float(revenue_row.revenue)

    pending_payments = db.execute(
        text("SELECT COUNT(*) AS n, COALESCE(SUM(amount), 0) AS total FROM payments WHERE status = 'pending'")
    ).fetchone()
    pending_topups = db.execute(
        text("SELECT COUNT(*) AS n, COALESCE(SUM(amount), 0) AS total FROM payment_requests WHERE status = 'pending'")
    ).fetchone()

    user_rows = db.execute(
        text("SELECT role, status, COUNT(*) AS n FROM users GROUP BY role, status")
    ).fetchall()
    users: dict[str, dict[str, int]] = {}
    for r in user_rows:
        users.setdefault(r.role, {})[r.status] = r.n

    top_rows = db.execute(
        text("""
            SELECT id, display_id, name, completed_jobs, rating, freelancer_badge, total_earned
            FROM users
            WHERE role = 'freelancer'
            ORDER BY completed_jobs DESC, rating DESC, display_id
            LIMIT 10
        """)
    ).fetchall()
    top_freelancers = [
        {
            "id": r.id,
            "display_id": r.display_id,
            "name": r.name,
            "completed_jobs": r.completed_jobs,
            "rating": r.rating,
            "badge": r.freelancer_badge,
            "total_earned": r.total_earned,
        }
        for r in top_rows
    ]

    return {
        "total_jobs": total_jobs,
        "by_status": by_status,
        "completion_rate": _pct(completed, total_jobs - by_status.get("pending", 0)),
        "cancellation_rate": _pct(cancelled, total_jobs),
        "paid_jobs": revenue_row.paid_jobs,
        "revenue": revenue,
        "commission": pricing.admin_commission(revenue),
        "freelancer_payouts": pricing.payout_share(revenue),
        "pending_payments": {"count": pending_payments.n, "amount": float(pending_payments.total)},
        "pending_topups": {"count": pending_topups.n, "amount": float(pending_topups.total)},
        "users": users,
        "top_freelancers": top_freelancers,
    }
