"""
Transactional email.

Messages are written to the email_outbox table in the caller's transaction
and handed to SMTP by a scheduler sweep. A rolled-back request never sends
mail, and a message whose SMTP call fails stays pending for the next sweep.
"""
import logging
import smtplib
import uuid
from email.message import EmailMessage

from sqlalchemy.orm import Session

from tasklynk.config import settings
from tasklynk.models.outbound_email import OutboundEmail
from tasklynk.models.user import User
from tasklynk.utils.clock import now_iso

logger = logging.getLogger(__name__)

MAX_SEND_ATTEMPTS = 5
SIGNATURE = "Regards,\nTaskLynk"


def enqueue(db: Session, to: str, subject: str, body: str) -> OutboundEmail:
    email = OutboundEmail(
        id=str(uuid.uuid4()),
        recipient=to,
        subject=subject,
        body=body,
        status="pending",
        attempts=0,
        created_at=now_iso(),
    )
    db.add(email)
    return email


def personal_body(name: str, message: str) -> str:
    return f"Hello {name},\n\n{message}\n\n{SIGNATURE}\n"


def enqueue_for_user(db: Session, user_id: str, subject: str, message: str) -> OutboundEmail | None:
    user = db.get(User, user_id)
    if user is None or not user.email:
        return None
    return enqueue(db, user.email, subject, personal_body(user.name, message))


def verification_body(name: str, code: str, ttl_minutes: int) -> str:
    return personal_body(
        name,
        f"Your TaskLynk verification code is {code}.\n"
        f"It expires in {ttl_minutes} minutes. If you did not sign up, ignore this email.",
    )


class SmtpMailer:
    def __init__(self, host: str, port: int, username: str, password: str, sender: str,
                 use_ssl: bool = True, timeout: int = 30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "SmtpMailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.mail_sender,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.mail_timeout_seconds,
        )

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(body)
        return msg

    def send(self, to: str, subject: str, body: str) -> bool:
        """Send one message. Returns False when no SMTP server is configured."""
        if not self.host:
            logger.info("SMTP not configured; not sending %r to %s", subject, to)
            return False
        msg = self.build_message(to, subject, body)
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.use_ssl:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Sent %r to %s", subject, to)
        return True


def deliver_pending(db: Session, mailer, limit: int = 50) -> int:
    """Hand pending outbox rows to the mailer. Returns how many were sent. Caller commits."""
    rows = (
        db.query(OutboundEmail)
        .filter(OutboundEmail.status == "pending")
        .order_by(OutboundEmail.created_at)
        .limit(limit)
        .all()
    )
    sent = 0
    for row in rows:
        row.attempts += 1
        try:
            delivered = mailer.send(row.recipient, row.subject, row.body)
        except (smtplib.SMTPException, OSError) as exc:
            row.last_error = str(exc)
            if row.attempts >= MAX_SEND_ATTEMPTS:
                row.status = "failed"
                logger.warning("Giving up on email %s to %s: %s", row.id, row.recipient, exc)
            continue
        row.status = "sent" if delivered else "skipped"
        row.sent_at = now_iso()
        sent += int(delivered)
    return sent


mailer = SmtpMailer.from_settings()
