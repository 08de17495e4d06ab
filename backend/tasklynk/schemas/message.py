from pydantic import BaseModel


class MessageCreate(BaseModel):
    message_type: str = "text"
    content: str


class MessageResponse(BaseModel):
    id: str
    job_id: str
    sender_id: str
    message_type: str
    content: str
    admin_approved: bool
    created_at: str

    model_config = {"from_attributes": True}
