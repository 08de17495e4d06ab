"""
Job payment confirmation, invoices and wallet top-ups.

Balance changes are issued as single UPDATE statements so concurrent
confirmations cannot lose an increment. The partial unique index on
payments(job_id) WHERE status='confirmed' backs the one-confirmed-payment
rule at the database level.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.errors import ConflictError, InvalidTransition, ValidationFailed
from tasklynk.models.invoice import Invoice
from tasklynk.models.job import Job
from tasklynk.models.payment import Payment
from tasklynk.models.payment_request import PaymentRequest
from tasklynk.models.user import User
from tasklynk.services import notification_service, pricing
from tasklynk.utils.clock import to_iso, utcnow
from tasklynk.utils.display_ids import next_invoice_number

logger = logging.getLogger(__name__)

SUCCESS_CODE = "0"


def _credit(db: Session, user_id: str, **increments: float):
    values = {getattr(User, col): getattr(User, col) + amount for col, amount in increments.items()}
    db.query(User).filter(User.id == user_id).update(values, synchronize_session=False)


def ensure_payable(job: Job):
    if job.status != "delivered":
        raise InvalidTransition(f"Order must be delivered before payment (status: {job.status})")
    if job.payment_confirmed:
        raise ConflictError("This order has already been paid", code="ALREADY_PAID")


def record_payment(db: Session, job: Job, client: User, phone: str, method: str = "mpesa",
                   mpesa_code: str | None = None, checkout_request_id: str | None = None,
                   merchant_request_id: str | None = None, now: datetime | None = None) -> Payment:
    stamp = to_iso(now or utcnow())
    payment = Payment(
        id=str(uuid.uuid4()),
        job_id=job.id,
        client_id=client.id,
        freelancer_id=job.assigned_freelancer_id,
        amount=float(round(job.amount)),
        payment_method=method,
        status="pending",
        mpesa_code=mpesa_code,
        phone_number=phone,
        checkout_request_id=checkout_request_id,
        merchant_request_id=merchant_request_id,
        poll_attempts=0,
        confirmed_by_admin=False,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(payment)
    return payment


def issue_invoice(db: Session, job: Job, payment: Payment, now: datetime) -> Invoice:
    stamp = to_iso(now)
    invoice = Invoice(
        id=str(uuid.uuid4()),
        job_id=job.id,
        client_id=job.client_id,
        freelancer_id=job.assigned_freelancer_id,
        invoice_number=next_invoice_number(db, now.strftime("%Y%m%d")),
        amount=job.amount,
        freelancer_amount=pricing.payout_share(job.amount),
        admin_commission=pricing.admin_commission(job.amount),
        description=f"{job.work_type}: {job.title} ({job.display_id})",
        status="paid",
        is_paid=True,
        paid_at=stamp,
        created_at=stamp,
    )
    db.add(invoice)
    return invoice


def confirm_payment(db: Session, payment: Payment, by_admin: bool = False,
                    receipt_number: str | None = None, result_desc: str | None = None,
                    now: datetime | None = None) -> Invoice:
    """Flip a pending payment to confirmed and settle the order. Second confirmation per job is a conflict."""
    if payment.status != "pending":
        raise ConflictError(f"Payment is already {payment.status}", code="PAYMENT_RESOLVED")
    job = payment.job
    if job.payment_confirmed:
        raise ConflictError("This order has already been paid", code="ALREADY_PAID")

    now = now or utcnow()
    stamp = to_iso(now)
    payment.status = "confirmed"
    payment.confirmed_by_admin = by_admin
    payment.confirmed_at = stamp
    payment.updated_at = stamp
    if receipt_number:
        payment.receipt_number = receipt_number
    if result_desc:
        payment.result_desc = result_desc

    job.payment_confirmed = True
    job.auto_approve_at = to_iso(now + timedelta(seconds=settings.auto_approve_seconds))
    job.updated_at = stamp

    payout = pricing.payout_share(job.amount)
    if job.assigned_freelancer_id:
        _credit(db, job.assigned_freelancer_id, balance=payout, total_earned=payout)
    _credit(db, job.client_id, total_spent=payment.amount)

    invoice = issue_invoice(db, job, payment, now)
    notification_service.notify_job_parties(
        db, job, "payment_confirmed", "Payment confirmed",
        f"Payment of KSh {payment.amount:.2f} for order {job.display_id} has been confirmed.",
        email=True,
    )
    logger.info("Payment %s confirmed for order %s (payout %.2f)", payment.id, job.display_id, payout)
    return invoice


def fail_payment(db: Session, payment: Payment, result_desc: str | None = None, now: datetime | None = None):
    if payment.status != "pending":
        raise ConflictError(f"Payment is already {payment.status}", code="PAYMENT_RESOLVED")
    payment.status = "failed"
    payment.result_desc = result_desc
    payment.updated_at = to_iso(now or utcnow())
    job = payment.job
    notification_service.notify(
        db, payment.client_id, "payment_failed", "Payment failed",
        f"Payment for order {job.display_id} did not go through: {result_desc or 'declined'}", job.id,
    )
    logger.info("Payment %s failed: %s", payment.id, result_desc)


def apply_gateway_result(db: Session, payment: Payment, result_code: str | None,
                         result_desc: str | None = None, receipt_number: str | None = None,
                         now: datetime | None = None) -> str:
    """Resolve a push payment from a gateway answer. No code means still processing."""
    if payment.status != "pending" or result_code is None:
        return payment.status
    if str(result_code) == SUCCESS_CODE:
        if payment.job.payment_confirmed:
            fail_payment(db, payment, "Order already paid", now)
        else:
            confirm_payment(db, payment, receipt_number=receipt_number, result_desc=result_desc, now=now)
    else:
        fail_payment(db, payment, result_desc, now)
    return payment.status


# -- wallet top-ups --

def create_topup(db: Session, client: User, amount: float, payment_method: str | None = None,
                 phone_number: str | None = None, transaction_reference: str | None = None) -> PaymentRequest:
    if not client.is_client:
        raise ValidationFailed("Only clients can top up a wallet")
    if amount is None or amount <= 0:
        raise ValidationFailed("Amount must be greater than 0")
    req = PaymentRequest(
        id=str(uuid.uuid4()),
        client_id=client.id,
        amount=float(amount),
        status="pending",
        payment_method=payment_method,
        phone_number=phone_number,
        transaction_reference=transaction_reference,
        created_at=to_iso(utcnow()),
    )
    db.add(req)
    notification_service.notify_admins(
        db, "topup_requested", "Wallet top-up request",
        f"{client.display_id} requested a top-up of KSh {req.amount:.2f}",
    )
    return req


def _ensure_pending(req: PaymentRequest):
    if req.status != "pending":
        raise ConflictError(f"Request is already {req.status}", code="REQUEST_RESOLVED")


def confirm_topup(db: Session, req: PaymentRequest, admin: User):
    _ensure_pending(req)
    req.status = "confirmed"
    req.confirmed_at = to_iso(utcnow())
    req.confirmed_by = admin.id
    _credit(db, req.client_id, balance=req.amount)
    notification_service.notify(
        db, req.client_id, "topup_confirmed", "Top-up confirmed",
        f"KSh {req.amount:.2f} has been added to your balance.",
    )
    logger.info("Top-up %s confirmed by %s", req.id, admin.display_id)


def reject_topup(db: Session, req: PaymentRequest, admin: User, reason: str):
    if not reason or not reason.strip():
        raise ValidationFailed("A rejection reason is required", code="REASON_REQUIRED")
    _ensure_pending(req)
    req.status = "rejected"
    req.rejection_reason = reason.strip()
    req.confirmed_by = admin.id
    notification_service.notify(
        db, req.client_id, "topup_rejected", "Top-up rejected",
        f"Your top-up of KSh {req.amount:.2f} was rejected: {req.rejection_reason}",
    )
