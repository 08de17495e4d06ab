"""
Background sweeps run by APScheduler.

Each sweep reads its work from persisted state (auto_approve_at,
poll_attempts, scheduled_deletion_at, the email outbox), so a restart or a
duplicate run picks up where the last one stopped and never acts twice on the same row.
Sweeps take the clock and session factory explicitly so tests can drive them.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tasklynk.config import settings
from tasklynk.errors import MarketplaceError
from tasklynk.models.job import Job
from tasklynk.models.payment import Payment
from tasklynk.services import attachment_service, email_service, lifecycle, settlement
from tasklynk.utils.clock import to_iso, utcnow

logger = logging.getLogger(__name__)


def auto_approve_due(session_factory, now: datetime | None = None) -> list[str]:
    """Complete delivered, paid orders whose client did not act in time. Returns completed job ids."""
    now = now or utcnow()
    stamp = to_iso(now)
    done = []
    db: Session = session_factory()
    try:
        due_ids = [
            row.id for row in db.query(Job.id)
            .filter(Job.status == "delivered")
            .filter(Job.payment_confirmed.is_(True))
            .filter(Job.auto_approve_at.isnot(None))
            .filter(Job.auto_approve_at <= stamp)
            .all()
        ]
        for job_id in due_ids:
            job = db.query(Job).filter(Job.id == job_id).first()
            if job is None or job.status != "delivered":
                continue
            try:
                lifecycle.complete_job(db, job, None, now=now)
                db.commit()
                done.append(job_id)
                logger.info("Auto-approved order %s", job.display_id)
            except (StaleDataError, MarketplaceError) as exc:
                db.rollback()
                logger.info("Skipped auto-approve for %s: %s", job_id, exc)
    finally:
        db.close()
    return done


def poll_pending_payments(session_factory, gateway, now: datetime | None = None) -> dict[str, str]:
    """Query the gateway once for every unresolved push payment still within its attempt budget."""
    now = now or utcnow()
    results: dict[str, str] = {}
    db: Session = session_factory()
    try:
        pending = (
            db.query(Payment)
            .filter(Payment.status == "pending")
            .filter(Payment.payment_method == "mpesa")
            .filter(Payment.checkout_request_id.isnot(None))
            .filter(Payment.poll_attempts < settings.payment_poll_max_attempts)
            .all()
        )
        for payment in pending:
            payment.poll_attempts += 1
            try:
                answer = gateway.query(payment.checkout_request_id)
            except MarketplaceError as exc:
                logger.warning("Status query for payment %s failed: %s", payment.id, exc)
                answer = None
            try:
                if answer is not None:
                    settlement.apply_gateway_result(
                        db, payment, answer.result_code, answer.result_desc, answer.receipt_number, now,
                    )
                if payment.status == "pending" and payment.poll_attempts >= settings.payment_poll_max_attempts:
                    logger.warning(
                        "Payment %s still unresolved after %d queries; needs manual reconciliation",
                        payment.id, payment.poll_attempts,
                    )
                db.commit()
            except (StaleDataError, MarketplaceError) as exc:
                db.rollback()
                logger.info("Could not resolve payment %s: %s", payment.id, exc)
            results[payment.id] = payment.status
    finally:
        db.close()
    return results


def purge_expired_attachments(session_factory, now: datetime | None = None) -> int:
    db: Session = session_factory()
    try:
        count = attachment_service.purge_due(db, now or utcnow())
        db.commit()
        return count
    finally:
        db.close()


def send_pending_emails(session_factory, mailer) -> int:
    db: Session = session_factory()
    try:
        count = email_service.deliver_pending(db, mailer)
        db.commit()
        return count
    finally:
        db.close()


def build_scheduler(session_factory, gateway, mailer) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        auto_approve_due, "interval", seconds=5, id="auto_approve",
        args=[session_factory], max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        poll_pending_payments, "interval", seconds=settings.payment_poll_interval_seconds,
        id="poll_payments", args=[session_factory, gateway], max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        purge_expired_attachments, "interval", minutes=settings.retention_sweep_minutes,
        id="purge_attachments", args=[session_factory], max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        send_pending_emails, "interval", seconds=settings.email_sweep_seconds,
        id="send_emails", args=[session_factory, mailer], max_instances=1, coalesce=True,
    )
    return scheduler
