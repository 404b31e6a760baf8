"""Task templates, their recurring instances, and the records hanging off them."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin, VersionedMixin


class Task(Base, UUIDMixin, TimestampMixin, VersionedMixin):
    """A one-off task, or the template of a recurring one.

    For recurring tasks the current TaskInstance is authoritative for
    workflow status; ``status`` and ``observation_status`` here mirror it.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(
            "assigned_to <> checker1 AND assigned_to <> checker2 AND checker1 <> checker2",
            name="ck_tasks_distinct_assignees",
        ),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")  # low, medium, high, critical
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="pending", index=True
    )  # pending, in-progress, submitted, checker1-approved, approved, rejected
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="one-time")
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    assigned_to: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    checker1: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    checker2: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    observation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)  # yes, no, mixed

    # Explicit escalation; inferred escalation is computed, never stored.
    is_escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalation_priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Recurrence bookkeeping
    current_instance_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("task_instances.id", use_alter=True, name="fk_tasks_current_instance_id", ondelete="SET NULL"),
        nullable=True,
    )
    next_instance_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    instances: Mapped[list["TaskInstance"]] = relationship(
        "TaskInstance",
        back_populates="task",
        foreign_keys="TaskInstance.base_task_id",
        cascade="all, delete-orphan",
        order_by="TaskInstance.due_date",
    )
    notification_settings: Mapped["TaskNotificationSettings | None"] = relationship(
        "TaskNotificationSettings", back_populates="task", uselist=False, cascade="all, delete-orphan"
    )
    approvals: Mapped[list["TaskApproval"]] = relationship(
        "TaskApproval", back_populates="task", cascade="all, delete-orphan", order_by="TaskApproval.created_at"
    )
    comments: Mapped[list["TaskComment"]] = relationship(
        "TaskComment", back_populates="task", cascade="all, delete-orphan", order_by="TaskComment.created_at"
    )
    attachments: Mapped[list["TaskAttachment"]] = relationship(
        "TaskAttachment", back_populates="task", cascade="all, delete-orphan"
    )


class TaskInstance(Base, UUIDMixin, TimestampMixin, VersionedMixin):
    """One occurrence of a recurring task, with an assignment frozen at creation."""

    __tablename__ = "task_instances"

    base_task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending", index=True)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    assigned_to: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    checker1: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    checker2: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    observation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    instance_reference: Mapped[str] = mapped_column(String(50), nullable=False)  # "Jan 2024"
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="instances", foreign_keys=[base_task_id])
    approvals: Mapped[list["TaskApproval"]] = relationship(
        "TaskApproval", back_populates="instance", order_by="TaskApproval.created_at", passive_deletes=True
    )
    comments: Mapped[list["TaskComment"]] = relationship(
        "TaskComment", back_populates="instance", order_by="TaskComment.created_at", passive_deletes=True
    )
    attachments: Mapped[list["TaskAttachment"]] = relationship(
        "TaskAttachment", back_populates="instance", passive_deletes=True
    )


class TaskApproval(Base, UUIDMixin, TimestampMixin):
    """Append-only record of a checker decision."""

    __tablename__ = "task_approvals"

    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("task_instances.id", ondelete="CASCADE"), nullable=True, index=True
    )  # null for one-off tasks
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    user_role: Mapped[str] = mapped_column(String(20), nullable=False)  # checker1, checker2
    decision: Mapped[str] = mapped_column(String(20), nullable=False)  # approved, rejected
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="approvals")
    instance: Mapped["TaskInstance | None"] = relationship("TaskInstance", back_populates="approvals")


class TaskComment(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "task_comments"

    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("task_instances.id", ondelete="CASCADE"), nullable=True, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    task: Mapped["Task"] = relationship("Task", back_populates="comments")
    instance: Mapped["TaskInstance | None"] = relationship("TaskInstance", back_populates="comments")


class TaskAttachment(Base, UUIDMixin, TimestampMixin):
    """Attachment metadata; the file itself lives in external storage."""

    __tablename__ = "task_attachments"

    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("task_instances.id", ondelete="CASCADE"), nullable=True, index=True
    )
    uploaded_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_key: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="attachments")
    instance: Mapped["TaskInstance | None"] = relationship("TaskInstance", back_populates="attachments")


class TaskNotificationSettings(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "task_notification_settings"

    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    enable_pre_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pre_days: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: [1, 3, 7])  # sorted, unique, > 0
    enable_post_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    post_notification_frequency: Mapped[str] = mapped_column(String(10), nullable=False, default="daily")
    send_emails: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_maker: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_checker1: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_checker2: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    task: Mapped["Task"] = relationship("Task", back_populates="notification_settings")
