from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_admin, require_client
from tasklynk.models.payment_request import PaymentRequest
from tasklynk.models.user import User
from tasklynk.schemas.payment_request import PaymentRequestCreate, PaymentRequestReject, PaymentRequestResponse
from tasklynk.services import settlement
from tasklynk.utils.phone import normalize_msisdn

router = APIRouter(prefix="/payment-requests", tags=["payment-requests"])


def _get_request(db: Session, request_id: str) -> PaymentRequest:
    req = db.query(PaymentRequest).filter(PaymentRequest.id == request_id).first()
    if not req:
        raise HTTPException(status_code=404, detail="Payment request not found")
    return req


@router.post("", response_model=PaymentRequestResponse, status_code=201)
async def create_request(req: PaymentRequestCreate, client: User = Depends(require_client),
                         db: Session = Depends(get_db)):
    phone = None
    if req.phone_number:
        try:
            phone = normalize_msisdn(req.phone_number)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    pr = settlement.create_topup(db, client, req.amount, req.payment_method, phone, req.transaction_reference)
    db.commit()
    db.refresh(pr)
    return PaymentRequestResponse.model_validate(pr)


@router.get("", response_model=list[PaymentRequestResponse])
async def list_requests(status: str | None = None, viewer: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    query = db.query(PaymentRequest)
    if viewer.role != "admin":
        query = query.filter(PaymentRequest.client_id == viewer.id)
    if status:
        query = query.filter(PaymentRequest.status == status)
    rows = query.order_by(PaymentRequest.created_at.desc(), PaymentRequest.id).all()
    return [PaymentRequestResponse.model_validate(r) for r in rows]


@router.patch("/{request_id}/confirm", response_model=PaymentRequestResponse)
async def confirm_request(request_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    pr = _get_request(db, request_id)
    settlement.confirm_topup(db, pr, admin)
    db.commit()
    db.refresh(pr)
    return PaymentRequestResponse.model_validate(pr)


@router.patch("/{request_id}/reject", response_model=PaymentRequestResponse)
async def reject_request(request_id: str, req: PaymentRequestReject, admin: User = Depends(require_admin),
                         db: Session = Depends(get_db)):
    pr = _get_request(db, request_id)
    settlement.reject_topup(db, pr, admin, req.reason)
    db.commit()
    db.refresh(pr)
    return PaymentRequestResponse.model_validate(pr)
