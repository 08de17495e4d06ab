from pydantic import BaseModel


class PaymentRequestCreate(BaseModel):
    amount: float
    payment_method: str | None = "mpesa"
    phone_number: str | None = None
    transaction_reference: str | None = None


class PaymentRequestReject(BaseModel):
    reason: str


class PaymentRequestResponse(BaseModel):
    id: str
    client_id: str
    amount: float
    status: str
    payment_method: str | None
    phone_number: str | None
    transaction_reference: str | None
    rejection_reason: str | None
    confirmed_at: str | None
    confirmed_by: str | None
    created_at: str

    model_config = {"from_attributes": True}
