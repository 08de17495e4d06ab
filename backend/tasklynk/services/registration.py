"""
Email-verified sign-up.

Registering stores a pending registration and mails a six-digit code. The
account is only created when the code comes back before it expires; until
then nothing exists in the users table and no display id is taken.
"""
import logging
import secrets
import uuid
from datetime import timedelta

from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.errors import ConflictError, NotFoundError, PermissionDenied, ValidationFailed
from tasklynk.models.pending_registration import PendingRegistration
from tasklynk.models.user import User
from tasklynk.services import email_service, notification_service
from tasklynk.utils.clock import now_iso, parse_ts, to_iso, utcnow
from tasklynk.utils.display_ids import next_user_display_id
from tasklynk.utils.phone import normalize_msisdn
from tasklynk.utils.security import generate_verification_code, hash_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    local, _, domain = email.partition("@")
    if not local or "." not in domain or " " in email:
        raise ValidationFailed("Enter a valid email address", code="INVALID_EMAIL_FORMAT")
    return email


def _ensure_admin_registration_open(db: Session, role: str):
    # The first admin bootstraps the platform; later admins are created by promotion only
    if role == "admin" and db.query(User.id).filter(User.role == "admin").first():
        raise PermissionDenied("Admin registration is closed", code="ADMIN_REGISTRATION_CLOSED")


def _issue_code(db: Session, pending: PendingRegistration) -> PendingRegistration:
    ttl = settings.verification_code_ttl_minutes
    pending.verification_code = generate_verification_code()
    pending.code_expires_at = to_iso(utcnow() + timedelta(minutes=ttl))
    pending.failed_attempts = 0
    email_service.enqueue(
        db, pending.email, "Verify your email - TaskLynk",
        email_service.verification_body(pending.name, pending.verification_code, ttl),
    )
    return pending


def start_registration(db: Session, email: str, password: str, name: str, phone: str,
                       role: str) -> PendingRegistration:
    """Validate a sign-up and mail its code. Registering again replaces the earlier attempt."""
    email = normalize_email(email)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", code="WEAK_PASSWORD",
        )
    if not name.strip():
        raise ValidationFailed("Name is required", code="NAME_REQUIRED")
    try:
        phone = normalize_msisdn(phone)
    except ValueError as exc:
        raise ValidationFailed(str(exc), code="INVALID_PHONE")
    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("An account with this email already exists", code="EMAIL_TAKEN")
    _ensure_admin_registration_open(db, role)

    pending = db.get(PendingRegistration, email)
    if pending is None:
        pending = PendingRegistration(email=email, created_at=now_iso())
        db.add(pending)
    pending.name = name.strip()
    pending.phone = phone
    pending.role = role
    pending.password_hash = hash_password(password)
    _issue_code(db, pending)
    logger.info("Verification code issued for %s (%s)", email, role)
    return pending


def resend_code(db: Session, email: str) -> PendingRegistration:
    email = normalize_email(email)
    pending = db.get(PendingRegistration, email)
    if pending is None:
        raise NotFoundError("No pending registration found for this email")
    return _issue_code(db, pending)


def verify_registration(db: Session, email: str, code: str) -> User:
    """Turn a pending registration into an account.

    A wrong code bumps the attempt counter on the pending row, so the caller
    should commit even when this raises INVALID_CODE.
    """
    email = normalize_email(email)
    pending = db.get(PendingRegistration, email)
    if pending is None:
        raise ValidationFailed("Invalid or expired verification code", code="INVALID_CODE")
    if pending.failed_attempts >= settings.verification_max_attempts:
        raise ValidationFailed("Too many wrong codes; request a new one", code="TOO_MANY_ATTEMPTS")
    if parse_ts(pending.code_expires_at) <= utcnow():
        raise ValidationFailed("Invalid or expired verification code", code="INVALID_CODE")
    if not secrets.compare_digest(pending.verification_code, (code or "").strip()):
        pending.failed_attempts += 1
        raise ValidationFailed("Invalid or expired verification code", code="INVALID_CODE")

    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("An account with this email already exists", code="EMAIL_TAKEN")
    _ensure_admin_registration_open(db, pending.role)

    bootstrap_admin = pending.role == "admin"
    now = now_iso()
    user = User(
        id=str(uuid.uuid4()),
        display_id=next_user_display_id(db, pending.role),
        email=pending.email,
        password_hash=pending.password_hash,
        name=pending.name,
        phone=pending.phone,
        role=pending.role,
        approved=bootstrap_admin,
        status="active",
        balance=0,
        completed_jobs=0,
        freelancer_badge="bronze" if pending.role == "freelancer" else None,
        client_tier="basic" if pending.role in ("client", "account_owner") else None,
        client_priority="regular",
        total_earned=0,
        total_spent=0,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.delete(pending)
    db.flush()
    if not bootstrap_admin:
        notification_service.notify_admins(
            db, "user_registered", "New registration",
            f"{user.name} ({user.display_id}) registered as {user.role} and awaits approval",
            email=True,
        )
    logger.info("Registered %s as %s", user.display_id, user.role)
    return user
