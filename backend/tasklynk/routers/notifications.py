from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user
from tasklynk.models.notification import Notification
from tasklynk.models.user import User
from tasklynk.schemas.notification import NotificationResponse

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread:
        query = query.filter(Notification.read.is_(False))
    rows = query.order_by(Notification.created_at.desc(), Notification.id).limit(limit).all()
    return [NotificationResponse.model_validate(n) for n in rows]


@router.patch("/read-all")
async def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return {"updated": updated}


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id,
    ).first()
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")
    n.read = True
    db.commit()
    db.refresh(n)
    return NotificationResponse.model_validate(n)
