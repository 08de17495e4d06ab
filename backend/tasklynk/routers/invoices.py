from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user
from tasklynk.models.invoice import Invoice
from tasklynk.models.job import Job
from tasklynk.models.user import User
from tasklynk.schemas.invoice import InvoiceResponse
from tasklynk.services.pdf_service import generate_invoice_pdf

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _invoice_to_response(inv: Invoice, viewer: User) -> InvoiceResponse:
    # Only admins see the commission split
    show_split = viewer.role == "admin"
    return InvoiceResponse(
        id=inv.id,
        job_id=inv.job_id,
        client_id=inv.client_id,
        freelancer_id=inv.freelancer_id,
        invoice_number=inv.invoice_number,
        amount=inv.amount,
        freelancer_amount=None if viewer.is_client else inv.freelancer_amount,
        admin_commission=inv.admin_commission if show_split else None,
        description=inv.description,
        status=inv.status,
        is_paid=bool(inv.is_paid),
        paid_at=inv.paid_at,
        created_at=inv.created_at,
    )


def _scoped(db: Session, viewer: User):
    query = db.query(Invoice)
    if viewer.is_client:
        query = query.filter(Invoice.client_id == viewer.id)
    elif viewer.role == "freelancer":
        query = query.filter(Invoice.freelancer_id == viewer.id)
    return query


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(job_id: str | None = None, viewer: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    query = _scoped(db, viewer)
    if job_id:
        query = query.filter(Invoice.job_id == job_id)
    rows = query.order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc()).all()
    return [_invoice_to_response(i, viewer) for i in rows]


@router.get("/{invoice_id}/pdf")
async def invoice_pdf(invoice_id: str, viewer: User = Depends(get_current_user), db: Session = Depends(get_db)):
    inv = _scoped(db, viewer).filter(Invoice.id == invoice_id).first()
    if not inv:
        raise HTTPException(status_code=404, detail="Invoice not found")
    job = db.query(Job).filter(Job.id == inv.job_id).first()
    client = db.query(User).filter(User.id == inv.client_id).first()

    pdf_bytes = generate_invoice_pdf(
        invoice_number=inv.invoice_number,
        issued_at=inv.created_at,
        order_id=job.display_id if job else inv.job_id,
        description=inv.description,
        client_name=client.name if client else "",
        client_display_id=client.display_id if client else "",
        amount=inv.amount,
        freelancer_amount=inv.freelancer_amount,
        admin_commission=inv.admin_commission,
        paid_at=inv.paid_at,
        show_split=viewer.role == "admin",
    )
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{inv.invoice_number}.pdf"'},
    )
