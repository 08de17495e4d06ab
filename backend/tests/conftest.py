import asyncio
import itertools
from datetime import timedelta
from typing import NamedTuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from tasklynk.config import settings
from tasklynk.database import get_db, init_db
from tasklynk.main import app
from tasklynk.models.pending_registration import PendingRegistration
from tasklynk.services.auth_service import auth_service
from tasklynk.services.mpesa_service import PushResult, QueryResult, get_mpesa_client
from tasklynk.utils.clock import to_iso, utcnow

PASSWORD = "correct-horse-42"


def _event_loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class FakeGateway:
    """Stands in for the Daraja client; answers are set per checkout request."""

    def __init__(self):
        self.pushes: list[tuple[str, int, str]] = []
        self.answers: dict[str, QueryResult] = {}
        self.queries: list[str] = []
        # set if a gateway call ever ran on the server's event loop thread
        self.blocked_loop = False

    def stk_push(self, phone: str, amount: int, description: str) -> PushResult:
        self.blocked_loop = self.blocked_loop or _event_loop_running()
        self.pushes.append((phone, amount, description))
        n = len(self.pushes)
        return PushResult(
            checkout_request_id=f"ws_CO_TEST_{n:04d}",
            merchant_request_id=f"MR-{n:04d}",
            response_code="0",
            response_description="Success. Request accepted for processing",
        )

    def query(self, checkout_request_id: str) -> QueryResult:
        self.blocked_loop = self.blocked_loop or _event_loop_running()
        self.queries.append(checkout_request_id)
        return self.answers.get(
            checkout_request_id,
            QueryResult(result_code=None, result_desc="The transaction is being processed"),
        )


class FakeMailer:
    """Collects outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> bool:
        self.sent.append((to, subject, body))
        return True


class Account(NamedTuple):
    user: dict
    headers: dict

    @property
    def id(self) -> str:
        return self.user["id"]


@pytest.fixture
def tmp_data(tmp_path):
    data_path = tmp_path / "TaskLynk"
    data_path.mkdir()
    return data_path


@pytest.fixture
def test_db(tmp_data):
    db_path = tmp_data / "db.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    init_db(db_path)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestSession
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def gateway(test_db):
    fake = FakeGateway()
    app.dependency_overrides[get_mpesa_client] = lambda: fake
    return fake


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def verification_code(test_db):
    """Current code of a pending registration, as mailed to the user."""

    def _code(email: str) -> str:
        db = test_db()
        try:
            return db.get(PendingRegistration, email.strip().lower()).verification_code
        finally:
            db.close()

    return _code


@pytest.fixture
def fresh_auth_service():
    auth_service.clear()
    yield auth_service
    auth_service.clear()


@pytest.fixture
def client(tmp_data, test_db, gateway, fresh_auth_service):
    original_data_path = settings.data_path
    original_scheduler = settings.scheduler_enabled
    settings.data_path = tmp_data
    settings.scheduler_enabled = False
    c = TestClient(app)
    yield c
    settings.data_path = original_data_path
    settings.scheduler_enabled = original_scheduler


@pytest.fixture
def register(client, verification_code):
    counter = itertools.count(1)

    def _register(role: str = "client", email: str | None = None, name: str | None = None,
                  phone: str = "0712345678"):
        n = next(counter)
        r = client.post("/api/auth/register", json={
            "email": email or f"{role}{n}@example.com",
            "password": PASSWORD,
            "name": name or f"{role.title()} {n}",
            "phone": phone,
            "role": role,
        })
        assert r.status_code == 202, r.text
        r = client.post("/api/auth/verify-code", json={
            "email": r.json()["email"],
            "code": verification_code(r.json()["email"]),
        })
        assert r.status_code == 201, r.text
        return r.json()

    return _register


@pytest.fixture
def login(client):
    def _login(email: str, password: str = PASSWORD) -> dict:
        r = client.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['token']}"}

    return _login


@pytest.fixture
def admin(register, login) -> Account:
    user = register("admin")
    return Account(user, login(user["email"]))


@pytest.fixture
def make_account(client, register, login, admin):
    """Register, approve and sign in a user of the given role."""

    def _make(role: str = "client", **kwargs) -> Account:
        user = register(role, **kwargs)
        r = client.patch(f"/api/users/{user['id']}/approve", headers=admin.headers)
        assert r.status_code == 200, r.text
        return Account(r.json(), login(user["email"]))

    return _make


@pytest.fixture
def buyer(make_account) -> Account:
    return make_account("client")


@pytest.fixture
def writer(make_account) -> Account:
    return make_account("freelancer")


def future(hours: float = 72) -> str:
    return to_iso(utcnow() + timedelta(hours=hours))


class Marketplace:
    """Drives an order through the lifecycle over HTTP."""

    def __init__(self, client: TestClient, admin: Account):
        self.client = client
        self.admin = admin

    def create_job(self, owner: Account, service_type: str = "essay", quantity: float = 4,
                   hours: float = 72, **extra) -> dict:
        r = self.client.post("/api/jobs", json={
            "title": "Climate policy essay",
            "instructions": "APA, 5 sources",
            "service_type": service_type,
            "quantity": quantity,
            "deadline": future(hours),
            **extra,
        }, headers=owner.headers)
        assert r.status_code == 201, r.text
        return r.json()

    def act(self, job_id: str, action: str, actor: Account, json: dict | None = None):
        return self.client.patch(f"/api/jobs/{job_id}/{action}", json=json, headers=actor.headers)

    def approved_job(self, owner: Account, **kwargs) -> dict:
        job = self.create_job(owner, **kwargs)
        r = self.act(job["id"], "approve", self.admin)
        assert r.status_code == 200, r.text
        return r.json()

    def bid(self, job_id: str, freelancer: Account, amount: float, message: str = "Can do"):
        return self.client.post("/api/bids", json={
            "job_id": job_id, "bid_amount": amount, "message": message,
        }, headers=freelancer.headers)

    def upload(self, job_id: str, uploader: Account, name: str = "draft.docx",
               content: bytes = b"final draft", upload_type: str | None = None):
        data = {"upload_type": upload_type} if upload_type else None
        return self.client.post(
            f"/api/jobs/{job_id}/attachments",
            files={"file": (name, content, "application/octet-stream")},
            data=data,
            headers=uploader.headers,
        )

    def in_progress_job(self, owner: Account, freelancer: Account, **kwargs) -> dict:
        job = self.approved_job(owner, **kwargs)
        r = self.bid(job["id"], freelancer, 500)
        assert r.status_code == 201, r.text
        r = self.act(job["id"], "assign", self.admin, {"bid_id": r.json()["id"]})
        assert r.status_code == 200, r.text
        r = self.act(job["id"], "start", freelancer)
        assert r.status_code == 200, r.text
        return r.json()

    def delivered_job(self, owner: Account, freelancer: Account, **kwargs) -> dict:
        job = self.in_progress_job(owner, freelancer, **kwargs)
        assert self.upload(job["id"], freelancer).status_code == 201
        r = self.act(job["id"], "submit", freelancer)
        assert r.status_code == 200, r.text
        r = self.act(job["id"], "deliver", self.admin)
        assert r.status_code == 200, r.text
        return r.json()

    def paid_job(self, owner: Account, freelancer: Account, **kwargs) -> dict:
        job = self.delivered_job(owner, freelancer, **kwargs)
        r = self.client.post("/api/payments", json={
            "job_id": job["id"], "mpesa_code": "QFT4XYZ123", "phone": "0712345678",
        }, headers=owner.headers)
        assert r.status_code == 201, r.text
        r = self.client.patch(f"/api/payments/{r.json()['id']}/confirm", json={"confirmed": True},
                              headers=self.admin.headers)
        assert r.status_code == 200, r.text
        return self.client.get(f"/api/jobs/{job['id']}", headers=owner.headers).json()


@pytest.fixture
def market(client, admin) -> Marketplace:
    return Marketplace(client, admin)
