from sqlalchemy import Column, Integer, Text
from tasklynk.database import Base


class OutboundEmail(Base):
    __tablename__ = "email_outbox"

    id = Column(Text, primary_key=True)
    recipient = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending | sent | skipped | failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(Text, nullable=False)
    sent_at = Column(Text)
