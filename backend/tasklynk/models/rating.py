from sqlalchemy import Column, ForeignKey, Integer, Text
from tasklynk.database import Base


class Rating(Base):
    __tablename__ = "ratings"

    id = Column(Text, primary_key=True)
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False)
    rated_user_id = Column(Text, ForeignKey("users.id"), nullable=False)
    rated_by_user_id = Column(Text, ForeignKey("users.id"), nullable=False)
    score = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(Text, nullable=False)
