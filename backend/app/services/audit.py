"""Audit trail helper — append-only writes to the audit_logs table.

Every state-changing service call records one entry in the same
transaction as the change, so an audit row exists iff the change committed.
"""
import json
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit import AuditLog

logger = logging.getLogger(__name__)

# Task columns captured in before/after snapshots.
TASK_SNAPSHOT_FIELDS = (
    "status",
    "due_date",
    "frequency",
    "is_recurring",
    "assigned_to",
    "checker1",
    "checker2",
    "observation_status",
    "is_escalated",
    "escalation_priority",
    "current_instance_id",
    "next_instance_date",
    "version",
)


def task_snapshot(task, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    """JSON-friendly view of the audited task fields."""
    snap = {name: getattr(task, name, None) for name in TASK_SNAPSHOT_FIELDS}
    if extra:
        snap.update(extra)
    return snap


def log(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None = None,
    actor=None,
    before: Any | None = None,
    after: Any | None = None,
    notes: str | None = None,
) -> AuditLog:
    """Write a single audit log entry.

    Args:
        db: Sync SQLAlchemy session; the caller owns the transaction.
        action: Dotted verb, e.g. 'task.submitted', 'user.created'.
        entity_type: Domain name, e.g. 'task', 'task_instance', 'user'.
        entity_id: PK of the affected record.
        actor: User who performed the action (None for system actions such
            as the notification job). Its email is denormalised onto the
            row so the entry survives the user's deletion.
        before: Snapshot of state before the action (JSON-serialisable).
        after: Snapshot of state after the action.
        notes: Free-text annotation.
    """
    actor_id = getattr(actor, "id", None)
    entry = AuditLog(
        actor_id=uuid.UUID(str(actor_id)) if actor_id else None,
        actor_email=getattr(actor, "email", None),
        action=action,
        entity_type=entity_type,
        entity_id=uuid.UUID(str(entity_id)) if entity_id else None,
        before_state=json.dumps(before, default=str) if before is not None else None,
        after_state=json.dumps(after, default=str) if after is not None else None,
        notes=notes,
    )
    db.add(entry)
    db.flush()  # surface FK problems now; caller commits
    logger.debug("Audit: %s %s/%s", action, entity_type, entity_id)
    return entry
