from pydantic import BaseModel


class BidCreate(BaseModel):
    job_id: str
    bid_amount: float
    message: str = ""


class BidResponse(BaseModel):
    id: str
    job_id: str
    freelancer_id: str
    bid_amount: float
    message: str
    status: str
    created_at: str

    model_config = {"from_attributes": True}
