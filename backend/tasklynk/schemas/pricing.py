from pydantic import BaseModel


class ServiceResponse(BaseModel):
    key: str
    name: str
    rate: float
    unit: str
    unit_type: str
    category: str


class QuoteRequest(BaseModel):
    service_type: str
    quantity: float
    deadline: str
    amount: float | None = None


class QuoteResponse(BaseModel):
    service_type: str
    quantity: float
    computed_amount: int
    amount: float
    payout_ceiling: float
    freelancer_deadline: str
