from pydantic import BaseModel


class InvoiceResponse(BaseModel):
    id: str
    job_id: str
    client_id: str
    freelancer_id: str | None
    invoice_number: str
    amount: float
    freelancer_amount: float | None = None
    admin_commission: float | None = None
    description: str
    status: str
    is_paid: bool
    paid_at: str | None
    created_at: str
