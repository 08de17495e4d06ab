from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from tasklynk.database import Base


class Attachment(Base):
    __tablename__ = "attachments"

    id = Column(Text, primary_key=True)
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False)
    uploaded_by = Column(Text, ForeignKey("users.id"), nullable=False)
    file_name = Column(Text, nullable=False)
    stored_path = Column(Text, nullable=False, unique=True)
    file_hash = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(Text)
    upload_type = Column(Text, nullable=False)
    scheduled_deletion_at = Column(Text)
    deleted_at = Column(Text)
    created_at = Column(Text, nullable=False)

    job = relationship("Job", back_populates="attachments")
