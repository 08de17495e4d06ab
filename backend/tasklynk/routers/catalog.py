from fastapi import APIRouter, HTTPException

from tasklynk.schemas.pricing import QuoteRequest, QuoteResponse, ServiceResponse
from tasklynk.services import pricing
from tasklynk.utils.clock import parse_ts, to_iso, utcnow

router = APIRouter(tags=["catalog"])


@router.get("/services", response_model=list[ServiceResponse])
async def list_services():
    return [
        ServiceResponse(
            key=s.key, name=s.name, rate=s.rate, unit=s.unit, unit_type=s.unit_type, category=s.category,
        )
        for s in pricing.SERVICE_CATALOG.values()
    ]


@router.post("/pricing/quote", response_model=QuoteResponse)
async def quote(req: QuoteRequest):
    try:
        deadline = parse_ts(req.deadline)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid deadline")
    now = utcnow()
    if deadline <= now:
        raise HTTPException(status_code=400, detail="Deadline must be in the future")
    q = pricing.quote(req.service_type, req.quantity, deadline, now)
    amount = pricing.resolve_amount(q.amount, req.amount)
    return QuoteResponse(
        service_type=req.service_type,
        quantity=req.quantity,
        computed_amount=q.amount,
        amount=amount,
        payout_ceiling=pricing.payout_share(amount),
        freelancer_deadline=to_iso(pricing.freelancer_deadline(now, deadline)),
    )
