from app.models.user import User
from app.models.task import (
    Task,
    TaskApproval,
    TaskAttachment,
    TaskComment,
    TaskInstance,
    TaskNotificationSettings,
)
from app.models.audit import AuditLog

__all__ = [
    "User",
    "Task", "TaskInstance", "TaskApproval", "TaskComment", "TaskAttachment",
    "TaskNotificationSettings",
    "AuditLog",
]
