"""CSV bulk task import.

One task per data row. Rows that fail validation are skipped and reported by
spreadsheet row number (row 1 is the header); the rest are created through
``tasks.create_task`` so they get the same checks, instances and audit trail
as tasks created one at a time.
"""
import csv
import io
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.user import User
from app.rules.enums import Frequency, ObservationStatus, TaskPriority
from app.rules.maker_checker import ASSIGNMENT_FIELDS, Assignment, ensure_valid_assignment
from app.schemas.imports import ImportResult, ImportRowError
from app.services import tasks as tasks_svc

logger = logging.getLogger(__name__)

# ─── Constants ───

MAX_IMPORT_ROWS = 1000

# Accepted header spellings per task field, matched case-insensitively.
COLUMNS = {
    "name": ("task name", "name"),
    "description": ("description",),
    "category": ("category",),
    "assigned_to": ("assigned to", "assigned_to", "maker"),
    "checker1": ("checker 1", "checker1"),
    "checker2": ("checker 2", "checker2"),
    "priority": ("priority",),
    "frequency": ("frequency",),
    "is_recurring": ("recurring", "is_recurring"),
    "due_date": ("due date", "due_date"),
    "observation_status": ("observation status", "observation_status"),
}

REQUIRED = ("name", "category", "assigned_to", "checker1", "checker2", "due_date")

_TRUE = {"yes", "y", "true", "1"}
_FALSE = {"no", "n", "false", "0"}


# ─── Helpers ───

def _parse_csv(content: bytes) -> list[dict[str, str]]:
    text = content.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    return list(reader)


def _missing_cols(row_keys: list[str]) -> list[str]:
    lowered = {(k or "").lower().strip() for k in row_keys}
    return [COLUMNS[field][0] for field in REQUIRED if not lowered & set(COLUMNS[field])]


def _get(row: dict[str, str], aliases: tuple[str, ...]) -> str:
    """Case-insensitive lookup under any alias, stripped."""
    for k, v in row.items():
        if (k or "").lower().strip() in aliases:
            return (v or "").strip()
    return ""


def _parse_date(value: str) -> datetime | None:
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return None


def _parse_bool(value: str) -> bool | None:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(value)


def _user_directory(db: Session) -> dict[str, uuid.UUID]:
    """Active users keyed by lower-cased email, name and id."""
    users = db.execute(select(User).where(User.is_active.is_(True))).scalars().all()
    directory: dict[str, uuid.UUID] = {}
    for user in users:
        directory[str(user.id)] = user.id
        directory[user.name.strip().lower()] = user.id
        directory[user.email.strip().lower()] = user.id
    return directory


def _row_errors(idx: int, exc: ValidationError) -> list[ImportRowError]:
    if not exc.fields:
        return [ImportRowError(row=idx, field="", message=exc.message)]
    return [ImportRowError(row=idx, field=field, message=message) for field, message in exc.fields.items()]


# ─── Import ───

def import_tasks(db: Session, actor, content: bytes) -> ImportResult:
    """Create one task per CSV row.

    Assignees may be given by email, name or user id. A blank frequency means
    monthly, a blank Recurring cell follows the frequency and a blank
    observation status means "no".

    Raises:
        ValidationError: required columns are missing, or the file has more
            than ``MAX_IMPORT_ROWS`` data rows.
    """
    rows = _parse_csv(content)
    if len(rows) > MAX_IMPORT_ROWS:
        raise ValidationError.for_fields(
            f"Import files are limited to {MAX_IMPORT_ROWS} rows; got {len(rows)}.",
            {"file": "Split the file and import each part."},
        )
    if rows:
        missing = _missing_cols(list(rows[0].keys()))
        if missing:
            raise ValidationError.for_fields(
                f"Missing required columns: {', '.join(missing)}",
                {"file": f"Add the columns {missing}."},
            )

    directory = _user_directory(db) if rows else {}
    created = skipped = 0
    errors: list[ImportRowError] = []
    task_ids: list[uuid.UUID] = []

    for idx, row in enumerate(rows, start=2):  # row 1 = header
        values = {field: _get(row, aliases) for field, aliases in COLUMNS.items()}
        if not any(values.values()):
            continue

        missing = [field for field in REQUIRED if not values[field]]
        if missing:
            errors.extend(ImportRowError(row=idx, field=f, message=f"{f} is required") for f in missing)
            skipped += 1
            continue

        due_date = _parse_date(values["due_date"])
        if due_date is None:
            errors.append(ImportRowError(row=idx, field="due_date", message=f"Invalid due date: '{values['due_date']}'"))
            skipped += 1
            continue

        try:
            is_recurring = _parse_bool(values["is_recurring"]) if values["is_recurring"] else None
        except ValueError:
            errors.append(
                ImportRowError(row=idx, field="is_recurring", message=f"Expected yes or no, got '{values['is_recurring']}'")
            )
            skipped += 1
            continue

        unknown = [f for f in ASSIGNMENT_FIELDS if values[f].lower() not in directory]
        if unknown:
            errors.extend(
                ImportRowError(row=idx, field=f, message=f"No active user matches '{values[f]}'") for f in unknown
            )
            skipped += 1
            continue
        assignment = Assignment(*(directory[values[f].lower()] for f in ASSIGNMENT_FIELDS))

        try:
            ensure_valid_assignment(assignment)
            frequency = tasks_svc.parse_frequency_field(values["frequency"] or Frequency.monthly.value)
            task = tasks_svc.create_task(
                db,
                actor,
                name=values["name"],
                description=values["description"],
                category=values["category"],
                due_date=due_date,
                assigned_to=assignment.assigned_to,
                checker1=assignment.checker1,
                checker2=assignment.checker2,
                priority=(values["priority"] or TaskPriority.medium.value).lower(),
                frequency=frequency.value,
                is_recurring=is_recurring,
                observation_status=(values["observation_status"] or ObservationStatus.no.value).lower(),
            )
        except ValidationError as exc:
            errors.extend(_row_errors(idx, exc))
            skipped += 1
            continue

        task_ids.append(task.id)
        created += 1

    logger.info("Task import by %s: created=%d skipped=%d", getattr(actor, "id", None), created, skipped)
    return ImportResult(created=created, skipped=skipped, errors=errors, task_ids=task_ids)
