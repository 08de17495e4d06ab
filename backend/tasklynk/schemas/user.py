from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    phone: str
    role: Literal["client", "freelancer", "admin", "account_owner"] = "client"


class VerificationRequest(BaseModel):
    email: str


class VerifyCodeRequest(BaseModel):
    email: str
    code: str


class RegistrationPending(BaseModel):
    email: str
    expires_at: str
    message: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ThrottleResponse(BaseModel):
    error: str
    retry_after_seconds: float


class UserUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None


class RejectRequest(BaseModel):
    reason: str


class SuspendRequest(BaseModel):
    duration_days: int = Field(gt=0)
    reason: str


class BlacklistRequest(BaseModel):
    reason: str


class BadgeUpdate(BaseModel):
    badge: str


class TierUpdate(BaseModel):
    tier: str


class PriorityUpdate(BaseModel):
    priority: str


class _UserBase(BaseModel):
    id: str
    display_id: str
    email: str
    name: str
    phone: str
    approved: bool
    status: str
    balance: float
    rating: float | None
    completed_jobs: int
    suspended_until: str | None = None
    profile_picture_path: str | None = None
    created_at: str


class ClientResponse(_UserBase):
    role: Literal["client"]
    client_tier: str | None
    total_spent: float
    # Only filled in for admins
    client_priority: str | None = None


class AccountOwnerResponse(ClientResponse):
    role: Literal["account_owner"]


class FreelancerResponse(_UserBase):
    role: Literal["freelancer"]
    freelancer_badge: str | None
    total_earned: float


class AdminResponse(_UserBase):
    role: Literal["admin"]


UserResponse = Annotated[
    Union[ClientResponse, AccountOwnerResponse, FreelancerResponse, AdminResponse],
    Field(discriminator="role"),
]


class LoginResponse(BaseModel):
    token: str
    expires_in_seconds: int
    user: UserResponse


class UserSummary(BaseModel):
    user: UserResponse
    jobs_by_status: dict[str, int]
    total_jobs: int
    bids_placed: int
    ratings_received: int
    pending_payment_requests: int
