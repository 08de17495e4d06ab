from sqlalchemy import Boolean, Column, Float, ForeignKey, Text
from tasklynk.database import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Text, primary_key=True)
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False)
    client_id = Column(Text, ForeignKey("users.id"), nullable=False)
    freelancer_id = Column(Text, ForeignKey("users.id"))
    invoice_number = Column(Text, nullable=False, unique=True)
    amount = Column(Float, nullable=False)
    freelancer_amount = Column(Float, nullable=False)
    admin_commission = Column(Float, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(Text)
    created_at = Column(Text, nullable=False)
