from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.orm import relationship
from tasklynk.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Text, primary_key=True)
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False)
    sender_id = Column(Text, ForeignKey("users.id"), nullable=False)
    message_type = Column(Text, nullable=False, default="text")
    content = Column(Text, nullable=False)
    admin_approved = Column(Boolean, nullable=False, default=False)
    created_at = Column(Text, nullable=False)

    job = relationship("Job", back_populates="messages")
    sender = relationship("User")
