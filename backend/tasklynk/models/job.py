from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from tasklynk.database import Base


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Text, primary_key=True)
    display_id = Column(Text, nullable=False, unique=True)
    client_id = Column(Text, ForeignKey("users.id"), nullable=False)
    assigned_freelancer_id = Column(Text, ForeignKey("users.id"))
    title = Column(Text, nullable=False)
    instructions = Column(Text, nullable=False)
    service_type = Column(Text, nullable=False)
    work_type = Column(Text, nullable=False)
    quantity = Column(Float, nullable=False)
    unit = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    calculated_price = Column(Float, nullable=False)
    urgency_multiplier = Column(Float, nullable=False, default=1.0)
    deadline = Column(Text, nullable=False)
    freelancer_deadline = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    admin_approved = Column(Boolean, nullable=False, default=False)
    client_approved = Column(Boolean, nullable=False, default=False)
    payment_confirmed = Column(Boolean, nullable=False, default=False)
    revision_requested = Column(Boolean, nullable=False, default=False)
    revision_notes = Column(Text)
    revision_due_at = Column(Text)
    client_rating = Column(Integer)
    review_comment = Column(Text)
    auto_approve_at = Column(Text)
    completed_at = Column(Text)
    version = Column(Integer, nullable=False)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    client = relationship("User", foreign_keys=[client_id])
    freelancer = relationship("User", foreign_keys=[assigned_freelancer_id])
    bids = relationship("Bid", back_populates="job", order_by="Bid.created_at")
    payments = relationship("Payment", back_populates="job")
    messages = relationship("Message", back_populates="job", order_by="Message.created_at")
    attachments = relationship("Attachment", back_populates="job")

    # Concurrent writers on the same job fail with StaleDataError instead of
    # silently overwriting each other.
    __mapper_args__ = {"version_id_col": version}
