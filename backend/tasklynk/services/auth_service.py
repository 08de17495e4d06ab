import logging
import time
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.errors import PermissionDenied
from tasklynk.models.user import User
from tasklynk.utils.clock import now_iso, parse_ts, to_iso, utcnow
from tasklynk.utils.security import generate_token, verify_password

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self):
        self._sessions: dict[str, tuple[str, float]] = {}  # token -> (user_id, expires_at)

    def _cleanup_expired(self):
        now = time.time()
        self._sessions = {t: s for t, s in self._sessions.items() if s[1] > now}

    def login(self, db: Session, email: str, password: str, throttle_key: str = "login") -> dict | None:
        delay = self._get_throttle_delay(db, throttle_key)
        if delay > 0:
            return {"error": "too_many_attempts", "retry_after_seconds": delay}

        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if not user or not verify_password(user.password_hash, password):
            self._record_failed_attempt(db, throttle_key)
            return None

        self._reset_failed_attempts(db, throttle_key)
        check_can_sign_in(user)

        user.last_login_at = now_iso()
        db.commit()

        token = generate_token()
        ttl = settings.session_ttl_seconds
        self._sessions[token] = (user.id, time.time() + ttl)
        logger.info("User %s signed in", user.display_id)
        return {"token": token, "expires_in_seconds": ttl, "user": user}

    def logout(self, token: str):
        self._sessions.pop(token, None)

    def revoke_user(self, user_id: str):
        self._sessions = {t: s for t, s in self._sessions.items() if s[0] != user_id}

    def clear(self):
        self._sessions.clear()

    def resolve(self, token: str) -> str | None:
        self._cleanup_expired()
        entry = self._sessions.get(token)
        return entry[0] if entry else None

    def _get_throttle_delay(self, db: Session, key: str) -> float:
        row = db.execute(
            text("SELECT failed_attempts, last_failed_at FROM auth_throttle WHERE key = :key"),
            {"key": key},
        ).fetchone()
        if not row:
            return 0
        failed_attempts = int(row[0])
        last_failed_at = float(row[1])

        if failed_attempts < 5:
            return 0
        if failed_attempts < 10:
            delay = 30.0
        else:
            delay = 300.0
        remaining = delay - (time.time() - last_failed_at)
        return max(0, remaining)

    def _record_failed_attempt(self, db: Session, key: str):
        now = time.time()
        db.execute(
            text(
                """
                INSERT INTO auth_throttle (key, failed_attempts, last_failed_at)
                VALUES (:key, 1, :now)
                ON CONFLICT(key) DO UPDATE SET
                    failed_attempts = failed_attempts + 1,
                    last_failed_at = :now
                """
            ),
            {"key": key, "now": now},
        )
        db.commit()

    def _reset_failed_attempts(self, db: Session, key: str):
        db.execute(
            text("DELETE FROM auth_throttle WHERE key = :key"),
            {"key": key},
        )
        db.commit()


def check_can_sign_in(user: User):
    """Reject blacklisted, rejected or actively suspended accounts; lift expired suspensions."""
    if user.status == "blacklisted":
        raise PermissionDenied("This account has been blacklisted", code="ACCOUNT_BLACKLISTED")
    if user.rejected_at:
        raise PermissionDenied("This account registration was rejected", code="ACCOUNT_REJECTED")
    if user.status == "suspended":
        if user.suspended_until and parse_ts(user.suspended_until) <= utcnow():
            lift_suspension(user)
            logger.info("Suspension expired for %s", user.display_id)
        else:
            raise PermissionDenied(
                f"This account is suspended until {user.suspended_until or 'further notice'}",
                code="ACCOUNT_SUSPENDED",
            )


def lift_suspension(user: User):
    user.status = "active"
    user.suspended_until = None
    user.suspension_reason = None
    user.updated_at = now_iso()


def suspension_end(duration_days: int) -> str:
    return to_iso(utcnow() + timedelta(days=duration_days))


auth_service = AuthService()
