from sqlalchemy import Column, Integer, Text
from tasklynk.database import Base


class PendingRegistration(Base):
    """A sign-up waiting for its emailed verification code."""

    __tablename__ = "pending_registrations"

    email = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=False)
    role = Column(Text, nullable=False)
    password_hash = Column(Text, nullable=False)
    verification_code = Column(Text, nullable=False)
    code_expires_at = Column(Text, nullable=False)
    failed_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False)
