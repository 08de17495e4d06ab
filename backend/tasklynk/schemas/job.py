from pydantic import BaseModel


class JobCreate(BaseModel):
    title: str
    instructions: str
    service_type: str
    quantity: float
    deadline: str
    amount: float | None = None


class JobUpdate(BaseModel):
    title: str | None = None
    instructions: str | None = None
    amount: float | None = None


class VersionedAction(BaseModel):
    version: int | None = None


class AssignRequest(VersionedAction):
    freelancer_id: str | None = None
    bid_id: str | None = None


class StatusUpdate(VersionedAction):
    status: str
    freelancer_id: str | None = None
    bid_id: str | None = None
    rating: int | None = None
    comment: str | None = None
    revision_notes: str | None = None
    revision_hours: float | None = None


class CompleteRequest(VersionedAction):
    rating: int | None = None
    comment: str | None = None


class RevisionRequest(VersionedAction):
    revision_notes: str
    revision_hours: float


class RateRequest(BaseModel):
    score: int
    comment: str | None = None


class JobResponse(BaseModel):
    id: str
    display_id: str
    client_id: str
    assigned_freelancer_id: str | None
    title: str
    instructions: str
    service_type: str
    work_type: str
    quantity: float
    unit: str
    amount: float
    calculated_price: float | None = None
    deadline: str
    freelancer_deadline: str
    status: str
    admin_approved: bool
    client_approved: bool
    payment_confirmed: bool
    revision_requested: bool
    revision_notes: str | None
    revision_due_at: str | None
    client_rating: int | None
    review_comment: str | None
    auto_approve_at: str | None
    completed_at: str | None
    version: int
    created_at: str
    updated_at: str
    payout_ceiling: float | None = None
    bid_count: int = 0
    attachment_count: int = 0
    overdue: bool = False


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    page: int
    per_page: int


class PlacementEntry(BaseModel):
    id: str
    display_id: str
    title: str
    work_type: str
    quantity: float
    unit: str
    freelancer_deadline: str
    payout_ceiling: float
    bid_count: int
    created_at: str
