from sqlalchemy import Column, Float, ForeignKey, Text
from sqlalchemy.orm import relationship
from tasklynk.database import Base


class Bid(Base):
    __tablename__ = "bids"

    id = Column(Text, primary_key=True)
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False)
    freelancer_id = Column(Text, ForeignKey("users.id"), nullable=False)
    bid_amount = Column(Float, nullable=False)
    message = Column(Text, nullable=False, default="")
    status = Column(Text, nullable=False, default="pending")
    created_at = Column(Text, nullable=False)

    job = relationship("Job", back_populates="bids")
    freelancer = relationship("User")
