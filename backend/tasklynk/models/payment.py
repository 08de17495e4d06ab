from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from tasklynk.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Text, primary_key=True)
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False)
    client_id = Column(Text, ForeignKey("users.id"), nullable=False)
    freelancer_id = Column(Text, ForeignKey("users.id"))
    amount = Column(Float, nullable=False)
    payment_method = Column(Text, nullable=False, default="mpesa")
    status = Column(Text, nullable=False, default="pending")
    mpesa_code = Column(Text)
    phone_number = Column(Text, nullable=False)
    checkout_request_id = Column(Text, unique=True)
    merchant_request_id = Column(Text)
    receipt_number = Column(Text)
    result_desc = Column(Text)
    poll_attempts = Column(Integer, nullable=False, default=0)
    confirmed_by_admin = Column(Boolean, nullable=False, default=False)
    confirmed_at = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    job = relationship("Job", back_populates="payments")
