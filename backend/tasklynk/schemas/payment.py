from pydantic import BaseModel


class StkPushRequest(BaseModel):
    job_id: str
    phone: str


class StkPushResponse(BaseModel):
    payment_id: str
    checkout_request_id: str
    merchant_request_id: str | None
    message: str


class StkQueryRequest(BaseModel):
    checkout_request_id: str


class StkQueryResponse(BaseModel):
    payment_id: str
    status: str
    result_code: str | None
    result_desc: str | None


class ManualPaymentCreate(BaseModel):
    job_id: str
    mpesa_code: str
    phone: str


class PaymentConfirm(BaseModel):
    confirmed: bool
    reason: str | None = None


class PaymentResponse(BaseModel):
    id: str
    job_id: str
    client_id: str
    freelancer_id: str | None
    amount: float
    payment_method: str
    status: str
    mpesa_code: str | None
    phone_number: str
    checkout_request_id: str | None
    receipt_number: str | None
    result_desc: str | None
    poll_attempts: int
    confirmed_by_admin: bool
    confirmed_at: str | None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
