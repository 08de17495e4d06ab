from sqlalchemy import Column, Float, ForeignKey, Text
from tasklynk.database import Base


class PaymentRequest(Base):
    __tablename__ = "payment_requests"

    id = Column(Text, primary_key=True)
    client_id = Column(Text, ForeignKey("users.id"), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    payment_method = Column(Text)
    phone_number = Column(Text)
    transaction_reference = Column(Text)
    rejection_reason = Column(Text)
    confirmed_at = Column(Text)
    confirmed_by = Column(Text, ForeignKey("users.id"))
    created_at = Column(Text, nullable=False)
