from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.models.user import User
from tasklynk.services.auth_service import auth_service


async def require_token(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return authorization[7:]


async def get_current_user(token: str = Depends(require_token), db: Session = Depends(get_db)) -> User:
    user_id = auth_service.resolve(token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Session expired or invalid")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        auth_service.logout(token)
        raise HTTPException(status_code=401, detail="Session expired or invalid")
    if user.status == "blacklisted":
        raise HTTPException(status_code=403, detail="This account has been blacklisted")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def require_client(user: User = Depends(get_current_user)) -> User:
    if not user.is_client:
        raise HTTPException(status_code=403, detail="Client access required")
    return user


async def require_freelancer(user: User = Depends(get_current_user)) -> User:
    if user.role != "freelancer":
        raise HTTPException(status_code=403, detail="Freelancer access required")
    return user
