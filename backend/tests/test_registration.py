import smtplib

import pytest

from tasklynk.config import settings
from tasklynk.models.outbound_email import OutboundEmail
from tasklynk.models.pending_registration import PendingRegistration
from tasklynk.services import email_service
from tasklynk.services.email_service import SmtpMailer
from tasklynk.services.scheduler import send_pending_emails

PASSWORD = "correct-horse-42"


def _sign_up(client, email="new@example.com", role="client", name="Akinyi"):
    return client.post("/api/auth/register", json={
        "email": email, "password": PASSWORD, "name": name, "phone": "0712345678", "role": role,
    })


def _outbox(test_db, to: str | None = None) -> list[OutboundEmail]:
    db = test_db()
    try:
        q = db.query(OutboundEmail)
        if to:
            q = q.filter(OutboundEmail.recipient == to)
        rows = q.order_by(OutboundEmail.created_at).all()
        db.expunge_all()
        return rows
    finally:
        db.close()


def _subjects(test_db, to: str) -> list[str]:
    return [row.subject for row in _outbox(test_db, to)]


class TestVerification:
    def test_register_only_mails_a_code(self, client, test_db, verification_code):
        r = _sign_up(client)
        assert r.status_code == 202
        assert r.json()["email"] == "new@example.com"

        code = verification_code("new@example.com")
        assert len(code) == 6 and code.isdigit()
        mails = _outbox(test_db, "new@example.com")
        assert len(mails) == 1
        assert code in mails[0].body

        r = client.post("/api/auth/login", json={"email": "new@example.com", "password": PASSWORD})
        assert r.status_code == 401

    def test_correct_code_creates_account(self, client, verification_code, login):
        _sign_up(client, email="Mixed@Example.com")
        r = client.post("/api/auth/verify-code", json={
            "email": "mixed@example.com", "code": verification_code("mixed@example.com"),
        })
        assert r.status_code == 201
        assert r.json()["display_id"] == "CLT#0000001"
        assert r.json()["approved"] is False
        assert login("mixed@example.com")

    def test_wrong_code(self, client, verification_code):
        _sign_up(client)
        wrong = "000000" if verification_code("new@example.com") != "000000" else "111111"
        r = client.post("/api/auth/verify-code", json={"email": "new@example.com", "code": wrong})
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_CODE"

    def test_locked_after_too_many_wrong_codes(self, client, verification_code):
        _sign_up(client)
        code = verification_code("new@example.com")
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(settings.verification_max_attempts):
            client.post("/api/auth/verify-code", json={"email": "new@example.com", "code": wrong})
        r = client.post("/api/auth/verify-code", json={"email": "new@example.com", "code": code})
        assert r.status_code == 400
        assert r.json()["code"] == "TOO_MANY_ATTEMPTS"

        assert client.post("/api/auth/send-verification", json={"email": "new@example.com"}).status_code == 200
        r = client.post("/api/auth/verify-code", json={
            "email": "new@example.com", "code": verification_code("new@example.com"),
        })
        assert r.status_code == 201

    def test_expired_code(self, client, test_db, verification_code):
        _sign_up(client)
        code = verification_code("new@example.com")
        db = test_db()
        db.get(PendingRegistration, "new@example.com").code_expires_at = "2020-01-01T00:00:00Z"
        db.commit()
        db.close()
        r = client.post("/api/auth/verify-code", json={"email": "new@example.com", "code": code})
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_CODE"

    def test_resend_mails_again(self, client, test_db):
        _sign_up(client)
        r = client.post("/api/auth/send-verification", json={"email": "new@example.com"})
        assert r.status_code == 200
        assert len(_outbox(test_db, "new@example.com")) == 2

    def test_resend_without_pending_registration(self, client):
        r = client.post("/api/auth/send-verification", json={"email": "nobody@example.com"})
        assert r.status_code == 404

    def test_signing_up_again_replaces_pending(self, client, verification_code):
        _sign_up(client, name="First Try")
        _sign_up(client, name="Second Try")
        r = client.post("/api/auth/verify-code", json={
            "email": "new@example.com", "code": verification_code("new@example.com"),
        })
        assert r.json()["name"] == "Second Try"

    def test_existing_account_cannot_sign_up_again(self, client, register):
        register("client", email="taken@example.com")
        r = _sign_up(client, email="taken@example.com")
        assert r.status_code == 409
        assert r.json()["code"] == "EMAIL_TAKEN"

    def test_unverified_sign_up_takes_no_display_id(self, client, register):
        _sign_up(client, email="never-verifies@example.com")
        assert register("client")["display_id"] == "CLT#0000001"

    def test_invalid_email(self, client):
        r = _sign_up(client, email="not-an-email")
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_EMAIL_FORMAT"


class TestTransactionalEmail:
    def test_admins_mailed_on_registration(self, client, test_db, admin, register):
        register("freelancer")
        assert "New registration" in _subjects(test_db, admin.user["email"])

    def test_approval_mailed_to_user(self, client, test_db, buyer):
        assert "Account approved" in _subjects(test_db, buyer.user["email"])

    def test_rejection_mailed_to_user(self, client, test_db, admin, register):
        user = register("client")
        client.post(f"/api/users/{user['id']}/reject", json={"reason": "Duplicate account"},
                    headers=admin.headers)
        mails = [m for m in _outbox(test_db, user["email"]) if m.subject == "Account rejected"]
        assert len(mails) == 1
        assert "Duplicate account" in mails[0].body

    def test_new_order_mailed_to_admins(self, client, test_db, admin, buyer, market):
        market.create_job(buyer)
        assert "New order" in _subjects(test_db, admin.user["email"])

    def test_assignment_mailed_to_freelancer(self, client, test_db, buyer, writer, market):
        market.in_progress_job(buyer, writer)
        assert "Order assigned" in _subjects(test_db, writer.user["email"])

    def test_delivery_and_payment_mailed_to_client(self, client, test_db, buyer, writer, market):
        job = market.paid_job(buyer, writer)
        subjects = _subjects(test_db, buyer.user["email"])
        assert f"Order {job['display_id']} delivered" in subjects
        assert "Payment confirmed" in subjects


class _BrokenMailer:
    def send(self, to, subject, body):
        raise smtplib.SMTPServerDisconnected("connection lost")


class TestOutboxDelivery:
    def test_sweep_sends_each_message_once(self, client, test_db, register, mailer):
        register("client")
        pending = len(_outbox(test_db))
        assert send_pending_emails(test_db, mailer) == pending
        assert len(mailer.sent) == pending
        assert send_pending_emails(test_db, mailer) == 0
        assert {m.status for m in _outbox(test_db)} == {"sent"}

    def test_smtp_failure_is_retried_then_abandoned(self, client, test_db, mailer):
        _sign_up(client)
        send_pending_emails(test_db, _BrokenMailer())
        row = _outbox(test_db)[0]
        assert row.status == "pending"
        assert row.attempts == 1
        assert "connection lost" in row.last_error

        for _ in range(email_service.MAX_SEND_ATTEMPTS - 1):
            send_pending_emails(test_db, _BrokenMailer())
        assert _outbox(test_db)[0].status == "failed"
        assert send_pending_emails(test_db, mailer) == 0

    def test_unconfigured_smtp_skips(self, client, test_db):
        _sign_up(client)
        mailer = SmtpMailer(host="", port=465, username="", password="", sender="TaskLynk <a@b.c>")
        assert send_pending_emails(test_db, mailer) == 0
        assert _outbox(test_db)[0].status == "skipped"


class _FakeSmtp:
    instances: list["_FakeSmtp"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.logged_in = None
        self.messages = []
        self.tls = False
        _FakeSmtp.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, msg):
        self.messages.append(msg)


class TestSmtpMailer:
    @pytest.fixture(autouse=True)
    def fake_smtp(self, monkeypatch):
        _FakeSmtp.instances = []
        monkeypatch.setattr(smtplib, "SMTP_SSL", _FakeSmtp)
        monkeypatch.setattr(smtplib, "SMTP", _FakeSmtp)

    def _mailer(self, **kwargs):
        params = dict(host="smtp.example.com", port=465, username="mailer", password="secret",
                      sender="TaskLynk <no-reply@example.com>")
        params.update(kwargs)
        return SmtpMailer(**params)

    def test_ssl_send(self):
        assert self._mailer().send("wanjiku@example.com", "Hello", "Body text") is True
        server = _FakeSmtp.instances[0]
        assert server.logged_in == ("mailer", "secret")
        msg = server.messages[0]
        assert msg["To"] == "wanjiku@example.com"
        assert msg["From"] == "TaskLynk <no-reply@example.com>"
        assert msg["Subject"] == "Hello"
        assert "Body text" in msg.get_content()
        assert server.tls is False

    def test_starttls_when_not_ssl(self):
        self._mailer(port=587, use_ssl=False).send("a@example.com", "Hi", "x")
        assert _FakeSmtp.instances[0].tls is True

    def test_no_login_without_username(self):
        self._mailer(username="").send("a@example.com", "Hi", "x")
        assert _FakeSmtp.instances[0].logged_in is None
