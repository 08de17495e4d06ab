import sqlite3
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from tasklynk.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SCHEMA_SQL = """\
-- ============================================================
-- USERS
-- ============================================================
CREATE TABLE IF NOT EXISTS users (
    id                   TEXT PRIMARY KEY,
    display_id           TEXT NOT NULL UNIQUE,
    email                TEXT NOT NULL UNIQUE,
    password_hash        TEXT NOT NULL,
    name                 TEXT NOT NULL,
    phone                TEXT NOT NULL,
    role                 TEXT NOT NULL
                         CHECK(role IN ('client','freelancer','admin','account_owner')),
    approved             INTEGER NOT NULL DEFAULT 0,
    status               TEXT NOT NULL DEFAULT 'active'
                         CHECK(status IN ('active','suspended','blacklisted')),
    balance              REAL NOT NULL DEFAULT 0,
    rating               REAL,
    completed_jobs       INTEGER NOT NULL DEFAULT 0,
    freelancer_badge     TEXT
                         CHECK(freelancer_badge IN ('bronze','silver','gold','platinum','elite')),
    total_earned         REAL NOT NULL DEFAULT 0,
    client_tier          TEXT
                         CHECK(client_tier IN ('basic','silver','gold','platinum')),
    client_priority      TEXT NOT NULL DEFAULT 'regular'
                         CHECK(client_priority IN ('regular','priority','vip')),
    total_spent          REAL NOT NULL DEFAULT 0,
    rejected_at          TEXT,
    rejection_reason     TEXT,
    suspended_until      TEXT,
    suspension_reason    TEXT,
    blacklist_reason     TEXT,
    profile_picture_path TEXT,
    last_login_at        TEXT,
    created_at           TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at           TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
CREATE INDEX IF NOT EXISTS idx_users_status ON users(status);

-- ============================================================
-- ID COUNTERS (display ids, order and invoice numbers)
-- ============================================================
CREATE TABLE IF NOT EXISTS id_counters (
    name  TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

-- ============================================================
-- AUTH THROTTLE
-- ============================================================
CREATE TABLE IF NOT EXISTS auth_throttle (
    key             TEXT PRIMARY KEY,
    failed_attempts INTEGER NOT NULL,
    last_failed_at  REAL NOT NULL
);

-- ============================================================
-- JOBS
-- ============================================================
CREATE TABLE IF NOT EXISTS jobs (
    id                     TEXT PRIMARY KEY,
    display_id             TEXT NOT NULL UNIQUE,
    client_id              TEXT NOT NULL REFERENCES users(id),
    assigned_freelancer_id TEXT REFERENCES users(id),
    title                  TEXT NOT NULL,
    instructions           TEXT NOT NULL,
    service_type           TEXT NOT NULL,
    work_type              TEXT NOT NULL,
    quantity               REAL NOT NULL CHECK(quantity > 0),
    unit                   TEXT NOT NULL,
    amount                 REAL NOT NULL CHECK(amount > 0),
    calculated_price       REAL NOT NULL,
    urgency_multiplier     REAL NOT NULL DEFAULT 1.0,
    deadline               TEXT NOT NULL,
    freelancer_deadline    TEXT NOT NULL CHECK(freelancer_deadline <= deadline),
    status                 TEXT NOT NULL DEFAULT 'pending'
                           CHECK(status IN ('pending','approved','assigned','in_progress','editing',
                                            'delivered','revision','completed','cancelled')),
    admin_approved         INTEGER NOT NULL DEFAULT 0,
    client_approved        INTEGER NOT NULL DEFAULT 0,
    payment_confirmed      INTEGER NOT NULL DEFAULT 0,
    revision_requested     INTEGER NOT NULL DEFAULT 0,
    revision_notes         TEXT,
    revision_due_at        TEXT,
    client_rating          INTEGER CHECK(client_rating BETWEEN 1 AND 5),
    review_comment         TEXT,
    auto_approve_at        TEXT,
    completed_at           TEXT,
    version                INTEGER NOT NULL DEFAULT 1,
    created_at             TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at             TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    CHECK(client_approved = 0 OR payment_confirmed = 1)
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_client ON jobs(client_id);
CREATE INDEX IF NOT EXISTS idx_jobs_freelancer ON jobs(assigned_freelancer_id);
CREATE INDEX IF NOT EXISTS idx_jobs_auto_approve ON jobs(auto_approve_at);

-- ============================================================
-- BIDS
-- ============================================================
CREATE TABLE IF NOT EXISTS bids (
    id            TEXT PRIMARY KEY,
    job_id        TEXT NOT NULL REFERENCES jobs(id),
    freelancer_id TEXT NOT NULL REFERENCES users(id),
    bid_amount    REAL NOT NULL CHECK(bid_amount > 0),
    message       TEXT NOT NULL DEFAULT '',
    status        TEXT NOT NULL DEFAULT 'pending'
                  CHECK(status IN ('pending','accepted','rejected')),
    created_at    TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_bids_job ON bids(job_id);
CREATE INDEX IF NOT EXISTS idx_bids_freelancer ON bids(freelancer_id);

-- ============================================================
-- PAYMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS payments (
    id                  TEXT PRIMARY KEY,
    job_id              TEXT NOT NULL REFERENCES jobs(id),
    client_id           TEXT NOT NULL REFERENCES users(id),
    freelancer_id       TEXT REFERENCES users(id),
    amount              REAL NOT NULL CHECK(amount > 0),
    payment_method      TEXT NOT NULL DEFAULT 'mpesa'
                        CHECK(payment_method IN ('mpesa','manual')),
    status              TEXT NOT NULL DEFAULT 'pending'
                        CHECK(status IN ('pending','confirmed','failed')),
    mpesa_code          TEXT,
    phone_number        TEXT NOT NULL,
    checkout_request_id TEXT UNIQUE,
    merchant_request_id TEXT,
    receipt_number      TEXT,
    result_desc         TEXT,
    poll_attempts       INTEGER NOT NULL DEFAULT 0,
    confirmed_by_admin  INTEGER NOT NULL DEFAULT 0,
    confirmed_at        TEXT,
    created_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at          TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_payments_job ON payments(job_id);
CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_payments_one_confirmed
    ON payments(job_id) WHERE status = 'confirmed';

-- ============================================================
-- PAYMENT REQUESTS (wallet top-ups)
-- ============================================================
CREATE TABLE IF NOT EXISTS payment_requests (
    id                    TEXT PRIMARY KEY,
    client_id             TEXT NOT NULL REFERENCES users(id),
    amount                REAL NOT NULL CHECK(amount > 0),
    status                TEXT NOT NULL DEFAULT 'pending'
                          CHECK(status IN ('pending','confirmed','rejected')),
    payment_method        TEXT,
    phone_number          TEXT,
    transaction_reference TEXT,
    rejection_reason      TEXT,
    confirmed_at          TEXT,
    confirmed_by          TEXT REFERENCES users(id),
    created_at            TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_payment_requests_client ON payment_requests(client_id);

-- ============================================================
-- MESSAGES
-- ============================================================
CREATE TABLE IF NOT EXISTS messages (
    id             TEXT PRIMARY KEY,
    job_id         TEXT NOT NULL REFERENCES jobs(id),
    sender_id      TEXT NOT NULL REFERENCES users(id),
    message_type   TEXT NOT NULL DEFAULT 'text'
                   CHECK(message_type IN ('text','link','file')),
    content        TEXT NOT NULL,
    admin_approved INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_job ON messages(job_id);
CREATE INDEX IF NOT EXISTS idx_messages_pending ON messages(admin_approved);

-- ============================================================
-- ATTACHMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS attachments (
    id                    TEXT PRIMARY KEY,
    job_id                TEXT NOT NULL REFERENCES jobs(id),
    uploaded_by           TEXT NOT NULL REFERENCES users(id),
    file_name             TEXT NOT NULL,
    stored_path           TEXT NOT NULL UNIQUE,
    file_hash             TEXT NOT NULL,
    file_size             INTEGER NOT NULL,
    mime_type             TEXT,
    upload_type           TEXT NOT NULL
                          CHECK(upload_type IN ('initial','revision','final')),
    scheduled_deletion_at TEXT,
    deleted_at            TEXT,
    created_at            TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_attachments_job ON attachments(job_id);
CREATE INDEX IF NOT EXISTS idx_attachments_deletion ON attachments(scheduled_deletion_at);

-- ============================================================
-- RATINGS
-- ============================================================
CREATE TABLE IF NOT EXISTS ratings (
    id               TEXT PRIMARY KEY,
    job_id           TEXT NOT NULL REFERENCES jobs(id),
    rated_user_id    TEXT NOT NULL REFERENCES users(id),
    rated_by_user_id TEXT NOT NULL REFERENCES users(id),
    score            INTEGER NOT NULL CHECK(score BETWEEN 1 AND 5),
    comment          TEXT,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    UNIQUE(job_id, rated_by_user_id)
);

CREATE INDEX IF NOT EXISTS idx_ratings_rated ON ratings(rated_user_id);

-- ============================================================
-- INVOICES
-- ============================================================
CREATE TABLE IF NOT EXISTS invoices (
    id               TEXT PRIMARY KEY,
    job_id           TEXT NOT NULL REFERENCES jobs(id),
    client_id        TEXT NOT NULL REFERENCES users(id),
    freelancer_id    TEXT REFERENCES users(id),
    invoice_number   TEXT NOT NULL UNIQUE,
    amount           REAL NOT NULL,
    freelancer_amount REAL NOT NULL,
    admin_commission REAL NOT NULL,
    description      TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending','paid')),
    is_paid          INTEGER NOT NULL DEFAULT 0,
    paid_at          TEXT,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_invoices_job ON invoices(job_id);

-- ============================================================
-- NOTIFICATIONS
-- ============================================================
CREATE TABLE IF NOT EXISTS notifications (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    job_id     TEXT REFERENCES jobs(id),
    type       TEXT NOT NULL,
    title      TEXT NOT NULL,
    message    TEXT NOT NULL,
    read       INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, read);

-- ============================================================
-- PENDING REGISTRATIONS (awaiting email verification)
-- ============================================================
CREATE TABLE IF NOT EXISTS pending_registrations (
    email             TEXT PRIMARY KEY,
    name              TEXT NOT NULL,
    phone             TEXT NOT NULL,
    role              TEXT NOT NULL
                      CHECK(role IN ('client','freelancer','admin','account_owner')),
    password_hash     TEXT NOT NULL,
    verification_code TEXT NOT NULL,
    code_expires_at   TEXT NOT NULL,
    failed_attempts   INTEGER NOT NULL DEFAULT 0,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

-- ============================================================
-- EMAIL OUTBOX
-- ============================================================
CREATE TABLE IF NOT EXISTS email_outbox (
    id         TEXT PRIMARY KEY,
    recipient  TEXT NOT NULL,
    subject    TEXT NOT NULL,
    body       TEXT NOT NULL,
    status     TEXT NOT NULL DEFAULT 'pending'
               CHECK(status IN ('pending','sent','skipped','failed')),
    attempts   INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    sent_at    TEXT
);

CREATE INDEX IF NOT EXISTS idx_email_outbox_status ON email_outbox(status, created_at);
"""


# Counters catch up with ids already present, e.g. rows imported from a
# database created before id_counters existed. A no-op on a fresh database.
SEED_COUNTERS_SQL = """\
INSERT OR IGNORE INTO id_counters (name, value)
    SELECT substr(display_id, 1, 5), MAX(CAST(substr(display_id, 6) AS INTEGER))
    FROM users WHERE display_id LIKE 'ADMN#%' GROUP BY substr(display_id, 1, 5);
INSERT OR IGNORE INTO id_counters (name, value)
    SELECT substr(display_id, 1, 4), MAX(CAST(substr(display_id, 5) AS INTEGER))
    FROM users WHERE display_id LIKE 'CLT#%' GROUP BY substr(display_id, 1, 4);
INSERT OR IGNORE INTO id_counters (name, value)
    SELECT substr(display_id, 1, 4), MAX(CAST(substr(display_id, 5) AS INTEGER))
    FROM users WHERE display_id LIKE 'FRL#%' GROUP BY substr(display_id, 1, 4);
INSERT OR IGNORE INTO id_counters (name, value)
    SELECT substr(display_id, 1, 10), MAX(CAST(substr(display_id, 11) AS INTEGER))
    FROM jobs GROUP BY substr(display_id, 1, 10);
INSERT OR IGNORE INTO id_counters (name, value)
    SELECT substr(invoice_number, 1, 13), MAX(CAST(substr(invoice_number, 14) AS INTEGER))
    FROM invoices GROUP BY substr(invoice_number, 1, 13);
"""


def init_db(db_path: Path | None = None):
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    conn.executescript(SEED_COUNTERS_SQL)
    conn.close()
