import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin, require_client
from tasklynk.models.job import Job
from tasklynk.models.payment import Payment
from tasklynk.models.user import User
from tasklynk.schemas.payment import (
    ManualPaymentCreate,
    PaymentConfirm,
    PaymentResponse,
    StkPushRequest,
    StkPushResponse,
    StkQueryRequest,
    StkQueryResponse,
)
from tasklynk.services import settlement
from tasklynk.services.mpesa_service import MpesaClient, get_mpesa_client, parse_callback
from tasklynk.utils.phone import normalize_msisdn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])
mpesa_router = APIRouter(prefix="/mpesa", tags=["mpesa"])


def _owned_payable_job(db: Session, job_id: str, client: User) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job or job.client_id != client.id:
        raise HTTPException(status_code=404, detail="Job not found")
    settlement.ensure_payable(job)
    return job


def _phone(raw: str) -> str:
    try:
        return normalize_msisdn(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# Gateway calls block on HTTP; plain def handlers run in the threadpool.
@mpesa_router.post("/stkpush", response_model=StkPushResponse)
def stk_push(
    req: StkPushRequest,
    client: User = Depends(require_client),
    gateway: MpesaClient = Depends(get_mpesa_client),
    db: Session = Depends(get_db),
):
    job = _owned_payable_job(db, req.job_id, client)
    phone = _phone(req.phone)
    result = gateway.stk_push(phone, round(job.amount), f"TaskLynk {job.display_id}")
    payment = settlement.record_payment(
        db, job, client, phone,
        checkout_request_id=result.checkout_request_id,
        merchant_request_id=result.merchant_request_id,
    )
    db.commit()
    return StkPushResponse(
        payment_id=payment.id,
        checkout_request_id=result.checkout_request_id,
        merchant_request_id=result.merchant_request_id,
        message="Check your phone to complete the payment",
    )


@mpesa_router.post("/query", response_model=StkQueryResponse)
def stk_query(
    req: StkQueryRequest,
    viewer: User = Depends(get_current_user),
    gateway: MpesaClient = Depends(get_mpesa_client),
    db: Session = Depends(get_db),
):
    payment = db.query(Payment).filter(Payment.checkout_request_id == req.checkout_request_id).first()
    if not payment or (viewer.role != "admin" and payment.client_id != viewer.id):
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.status != "pending":
        return StkQueryResponse(payment_id=payment.id, status=payment.status,
                                result_code=None, result_desc=payment.result_desc)
    answer = gateway.query(payment.checkout_request_id)
    settlement.apply_gateway_result(db, payment, answer.result_code, answer.result_desc, answer.receipt_number)
    db.commit()
    return StkQueryResponse(
        payment_id=payment.id,
        status=payment.status,
        result_code=answer.result_code,
        result_desc=answer.result_desc,
    )


@mpesa_router.post("/callback")
async def stk_callback(request: Request, db: Session = Depends(get_db)):
    """Gateway callback. Always acknowledged so Daraja does not retry."""
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    checkout_id, answer = parse_callback(payload if isinstance(payload, dict) else {})
    payment = None
    if checkout_id:
        payment = db.query(Payment).filter(Payment.checkout_request_id == checkout_id).first()
    if payment is None:
        logger.warning("M-Pesa callback for unknown checkout request %s", checkout_id)
    else:
        settlement.apply_gateway_result(db, payment, answer.result_code, answer.result_desc, answer.receipt_number)
        db.commit()
    return {"ResultCode": 0, "ResultDesc": "Success"}


@router.post("", response_model=PaymentResponse, status_code=201)
async def record_manual_payment(req: ManualPaymentCreate, client: User = Depends(require_client),
                                db: Session = Depends(get_db)):
    code = req.mpesa_code.strip().upper()
    if not code:
        raise HTTPException(status_code=400, detail="M-Pesa transaction code is required")
    job = _owned_payable_job(db, req.job_id, client)
    payment = settlement.record_payment(db, job, client, _phone(req.phone), method="manual", mpesa_code=code)
    db.commit()
    db.refresh(payment)
    return PaymentResponse.model_validate(payment)


@router.get("", response_model=list[PaymentResponse])
async def list_payments(
    job_id: str | None = None,
    status: str | None = None,
    viewer: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Payment)
    if viewer.is_client:
        query = query.filter(Payment.client_id == viewer.id)
    elif viewer.role == "freelancer":
        query = query.filter(Payment.freelancer_id == viewer.id, Payment.status == "confirmed")
    if job_id:
        query = query.filter(Payment.job_id == job_id)
    if status:
        query = query.filter(Payment.status == status)
    payments = query.order_by(Payment.created_at.desc(), Payment.id).all()
    return [PaymentResponse.model_validate(p) for p in payments]


@router.patch("/{payment_id}/confirm", response_model=PaymentResponse)
async def confirm_payment(payment_id: str, req: PaymentConfirm, admin: User = Depends(require_admin),
                          db: Session = Depends(get_db)):
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if req.confirmed:
        settlement.confirm_payment(db, payment, by_admin=True)
    else:
        settlement.fail_payment(db, payment, req.reason or "Rejected by admin")
    db.commit()
    db.refresh(payment)
    return PaymentResponse.model_validate(payment)
