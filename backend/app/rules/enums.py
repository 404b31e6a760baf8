"""Canonical vocabularies for tasks, roles and escalation.

Values are the persisted spellings. ``parse_status`` and ``parse_frequency``
are the only places that accept alternative spellings coming from outside
(imports, legacy rows, query strings).
"""
import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    maker = "maker"
    checker1 = "checker1"
    checker2 = "checker2"


class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in-progress"
    submitted = "submitted"
    checker1_approved = "checker1-approved"
    approved = "approved"
    rejected = "rejected"


# Both represent "not yet submitted" for approval and escalation purposes.
OPEN_STATUSES = frozenset({TaskStatus.pending, TaskStatus.in_progress})

# Handed over to the checkers (or finished); no reminders to chase the maker.
SUBMITTED_STATUSES = frozenset(
    {TaskStatus.submitted, TaskStatus.checker1_approved, TaskStatus.approved}
)


class Frequency(str, enum.Enum):
    one_time = "one-time"
    daily = "daily"
    weekly = "weekly"
    fortnightly = "fortnightly"
    monthly = "monthly"
    quarterly = "quarterly"
    annually = "annually"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class EscalationPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class ObservationStatus(str, enum.Enum):
    yes = "yes"
    no = "no"
    mixed = "mixed"


class Decision(str, enum.Enum):
    approved = "approved"
    rejected = "rejected"


class PostNotificationFrequency(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"


# ─── Boundary mapping ───

_FREQUENCY_ALIASES = {
    "once": Frequency.one_time,
    "one_time": Frequency.one_time,
    "onetime": Frequency.one_time,
    "bi-weekly": Frequency.fortnightly,
    "biweekly": Frequency.fortnightly,
    "bi_weekly": Frequency.fortnightly,
    "yearly": Frequency.annually,
}


def _normalize_token(value: str) -> str:
    return value.strip().lower().replace("_", "-")


def parse_status(value: "str | TaskStatus") -> TaskStatus:
    """Map any external spelling of a status onto the canonical enum.

    ``in_progress``, ``In-Progress`` and ``in-progress`` all map to
    ``TaskStatus.in_progress``. Raises ValueError for unknown values.
    """
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(_normalize_token(value))
    except ValueError:
        raise ValueError(f"Unknown task status '{value}'.") from None


def parse_frequency(value: "str | Frequency") -> Frequency:
    """Map a frequency spelling (including aliases like ``bi-weekly``) onto the enum."""
    if isinstance(value, Frequency):
        return value
    raw = value.strip().lower()
    if raw in _FREQUENCY_ALIASES:
        return _FREQUENCY_ALIASES[raw]
    try:
        return Frequency(_normalize_token(raw))
    except ValueError:
        raise ValueError(f"Unknown task frequency '{value}'.") from None
