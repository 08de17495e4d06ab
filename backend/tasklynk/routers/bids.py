from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_freelancer
from tasklynk.models.bid import Bid
from tasklynk.models.job import Job
from tasklynk.models.user import User
from tasklynk.schemas.bid import BidCreate, BidResponse
from tasklynk.services import bidding

router = APIRouter(prefix="/bids", tags=["bids"])


@router.post("", response_model=BidResponse, status_code=201)
async def place_bid(req: BidCreate, freelancer: User = Depends(require_freelancer), db: Session = Depends(get_db)):
    job = db.query(Job).filter(Job.id == req.job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    bid = bidding.place_bid(db, job, freelancer, req.bid_amount, req.message)
    db.commit()
    db.refresh(bid)
    return BidResponse.model_validate(bid)


@router.get("", response_model=list[BidResponse])
async def list_bids(
    job_id: str | None = None,
    freelancer_id: str | None = None,
    status: str | None = None,
    ranked: bool = False,
    viewer: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if viewer.is_client:
        raise HTTPException(status_code=403, detail="Bids are visible to freelancers and admins only")
    query = db.query(Bid)
    if viewer.role == "freelancer":
        query = query.filter(Bid.freelancer_id == viewer.id)
    elif freelancer_id:
        query = query.filter(Bid.freelancer_id == freelancer_id)
    if job_id:
        query = query.filter(Bid.job_id == job_id)
    if status:
        query = query.filter(Bid.status == status)

    bids = query.order_by(Bid.created_at.desc(), Bid.id).all()
    if ranked:
        bids = bidding.rank_bids(bids)
    return [BidResponse.model_validate(b) for b in bids]
