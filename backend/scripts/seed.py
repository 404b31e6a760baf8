"""Seed script — creates demo users and a handful of tasks.

Idempotent: users are matched by email, tasks by name.
Run from backend/: python scripts/seed.py
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.db.session import SyncSessionLocal
from app.models.task import Task
from app.models.user import User
from app.services import tasks as tasks_svc
from app.services import users as users_svc

logger = logging.getLogger(__name__)

NOW = datetime.now(timezone.utc)
DEMO_PASSWORD = "changeme123"

# (email, name, primary role, extra roles)
USERS = [
    ("admin@example.com", "Alex Admin", "admin", []),
    ("maker@example.com", "Morgan Maker", "maker", []),
    ("maker2@example.com", "Riley Maker", "maker", ["checker1"]),
    ("checker1@example.com", "Casey Reviewer", "checker1", []),
    ("checker2@example.com", "Jordan Approver", "checker2", []),
]

# (name, category, frequency, days from now, maker, checker1, checker2)
TASKS = [
    ("Bank reconciliation", "Finance", "monthly", 10, "maker@example.com", "checker1@example.com", "checker2@example.com"),
    ("Payroll variance review", "Payroll", "fortnightly", 3, "maker2@example.com", "checker1@example.com", "checker2@example.com"),
    ("Access rights recertification", "IT", "quarterly", -9, "maker@example.com", "maker2@example.com", "checker2@example.com"),
    ("Annual policy attestation", "Compliance", "one-time", -20, "maker2@example.com", "checker1@example.com", "checker2@example.com"),
]


# ─── Upsert helpers ───────────────────────────────────────────────────────────

def _upsert_user(db, email: str, name: str, role: str, roles: list[str], actor) -> User:
    user = db.execute(select(User).where(User.email == email)).scalars().first()
    if user:
        logger.info("  [skip] User %s", email)
        return user
    user, _ = users_svc.create_user(db, email=email, name=name, role=role, roles=roles, password=DEMO_PASSWORD, actor=actor)
    logger.info("  [new]  User %s (%s)", email, ", ".join(user.roles))
    return user


def _upsert_task(db, name, category, frequency, days, maker, checker1, checker2, actor) -> None:
    if db.execute(select(Task).where(Task.name == name)).scalars().first():
        logger.info("  [skip] Task %s", name)
        return
    task = tasks_svc.create_task(
        db,
        actor,
        name=name,
        category=category,
        due_date=NOW + timedelta(days=days),
        assigned_to=maker.id,
        checker1=checker1.id,
        checker2=checker2.id,
        frequency=frequency,
        description=f"{category} control: {name.lower()}.",
    )
    logger.info("  [new]  Task %s (%s, due %s)", task.name, task.frequency, task.due_date.date())


def run_seed() -> None:
    with SyncSessionLocal() as db:
        logger.info("Users")
        by_email: dict[str, User] = {}
        admin = None
        for email, name, role, roles in USERS:
            by_email[email] = _upsert_user(db, email, name, role, roles, admin)
            admin = admin or by_email[email]

        logger.info("Tasks")
        for name, category, frequency, days, maker, c1, c2 in TASKS:
            _upsert_task(db, name, category, frequency, days, by_email[maker], by_email[c1], by_email[c2], admin)

    logger.info("Seeding complete. Log in with any seeded email and password %r.", DEMO_PASSWORD)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    run_seed()
