from sqlalchemy import text
from sqlalchemy.orm import Session

# role -> (prefix, zero-padded width)
_USER_FORMATS = {
    "admin": ("ADMN#", 4),
    "freelancer": ("FRL#", 8),
    "client": ("CLT#", 7),
    "account_owner": ("CLT#", 7),
}


def next_sequence(db: Session, name: str) -> int:
    """Bump and return the named counter inside the caller's transaction.

    Numbers are never reused, even after the row that took one is deleted.
    """
    db.execute(
        text(
            """
            INSERT INTO id_counters (name, value) VALUES (:name, 1)
            ON CONFLICT(name) DO UPDATE SET value = value + 1
            """
        ),
        {"name": name},
    )
    return db.execute(
        text("SELECT value FROM id_counters WHERE name = :name"),
        {"name": name},
    ).scalar_one()


def next_user_display_id(db: Session, role: str) -> str:
    prefix, width = _USER_FORMATS[role]
    return f"{prefix}{next_sequence(db, prefix):0{width}d}"


def next_job_display_id(db: Session, year: int) -> str:
    """Year-scoped order number, e.g. Order#2025000000001."""
    prefix = f"Order#{year}"
    return f"{prefix}{next_sequence(db, prefix):09d}"


def next_invoice_number(db: Session, day: str) -> str:
    """Day-scoped invoice number, e.g. INV-20250301-00001."""
    prefix = f"INV-{day}-"
    return f"{prefix}{next_sequence(db, prefix):05d}"
