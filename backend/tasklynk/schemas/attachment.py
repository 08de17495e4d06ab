from pydantic import BaseModel


class AttachmentResponse(BaseModel):
    id: str
    job_id: str
    uploaded_by: str
    file_name: str
    file_hash: str
    file_size: int
    mime_type: str | None
    upload_type: str
    scheduled_deletion_at: str | None
    created_at: str

    model_config = {"from_attributes": True}


class AttachmentUpdate(BaseModel):
    upload_type: str
