from sqlalchemy import Boolean, Column, Float, Integer, Text
from tasklynk.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Text, primary_key=True)
    display_id = Column(Text, nullable=False, unique=True)
    email = Column(Text, nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=False)
    role = Column(Text, nullable=False)
    approved = Column(Boolean, nullable=False, default=False)
    status = Column(Text, nullable=False, default="active")
    balance = Column(Float, nullable=False, default=0)
    rating = Column(Float)
    completed_jobs = Column(Integer, nullable=False, default=0)

    # freelancer
    freelancer_badge = Column(Text)
    total_earned = Column(Float, nullable=False, default=0)

    # client / account owner
    client_tier = Column(Text)
    client_priority = Column(Text, nullable=False, default="regular")
    total_spent = Column(Float, nullable=False, default=0)

    rejected_at = Column(Text)
    rejection_reason = Column(Text)
    suspended_until = Column(Text)
    suspension_reason = Column(Text)
    blacklist_reason = Column(Text)
    profile_picture_path = Column(Text)
    last_login_at = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    @property
    def is_client(self) -> bool:
        return self.role in ("client", "account_owner")
