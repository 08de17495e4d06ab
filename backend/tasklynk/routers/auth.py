import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tasklynk.database import get_db
from tasklynk.dependencies import get_current_user, require_token
from tasklynk.errors import ValidationFailed
from tasklynk.models.user import User
from tasklynk.routers.users import user_to_response
from tasklynk.schemas.user import (
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegistrationPending,
    ThrottleResponse,
    UserResponse,
    VerificationRequest,
    VerifyCodeRequest,
)
from tasklynk.services import registration
from tasklynk.services.auth_service import auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=RegistrationPending, status_code=202)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
    pending = registration.start_registration(db, req.email, req.password, req.name, req.phone, req.role)
    db.commit()
    return RegistrationPending(
        email=pending.email,
        expires_at=pending.code_expires_at,
        message="Verification code sent; confirm it to finish signing up",
    )


@router.post("/send-verification", response_model=RegistrationPending)
async def send_verification(req: VerificationRequest, db: Session = Depends(get_db)):
    pending = registration.resend_code(db, req.email)
    db.commit()
    return RegistrationPending(
        email=pending.email,
        expires_at=pending.code_expires_at,
        message="Verification code sent",
    )


@router.post("/verify-code", response_model=UserResponse, status_code=201)
async def verify_code(req: VerifyCodeRequest, db: Session = Depends(get_db)):
    try:
        user = registration.verify_registration(db, req.email, req.code)
    except ValidationFailed:
        # keep the failed-attempt count
        db.commit()
        raise
    db.commit()
    db.refresh(user)
    return user_to_response(user, viewer=user)


@router.post("/login", response_model=LoginResponse | ThrottleResponse)
async def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    client_host = request.client.host if request.client else "unknown"
    email = req.email.strip().lower()
    result = auth_service.login(db, email, req.password, throttle_key=f"login:{client_host}:{email}")
    if result is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if "error" in result:
        raise HTTPException(status_code=429, detail=result)
    user = result["user"]
    return LoginResponse(
        token=result["token"],
        expires_in_seconds=result["expires_in_seconds"],
        user=user_to_response(user, viewer=user),
    )


@router.post("/logout")
async def logout(token: str = Depends(require_token)):
    auth_service.logout(token)
    return {"message": "Signed out"}


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user_to_response(user, viewer=user)
