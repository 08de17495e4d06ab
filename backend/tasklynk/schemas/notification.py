from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: str
    job_id: str | None
    type: str
    title: str
    message: str
    read: bool
    created_at: str

    model_config = {"from_attributes": True}
