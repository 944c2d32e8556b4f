# models.py — Database models for the task portal
# - Integer primary keys (ids appear in URLs: /tasks/show/{id})
# - Two roles: administrator, collaborator
# - One execution per (task, collaborator), enforced by the schema

from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Integer, Text,
    Enum as SQLEnum, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMINISTRATOR = "administrator"
    COLLABORATOR = "collaborator"


class TaskStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ExecutionStatus(str, PyEnum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(
        SQLEnum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    tasks = relationship("Task", back_populates="assignee")
    executions = relationship("TaskExecution", back_populates="collaborator")


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # assignee
    task_type = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        SQLEnum(TaskStatus, name="task_status", values_callable=_enum_values),
        default=TaskStatus.PENDING,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    assignee = relationship("User", back_populates="tasks")
    executions = relationship("TaskExecution", back_populates="task")

    __table_args__ = (
        Index("idx_task_user_status", "user_id", "status"),
    )


# ============================================================
# TASK EXECUTIONS
# ============================================================

class TaskExecution(Base):
    __tablename__ = "task_execution"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    collaborator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    file_path = Column(String(1024), nullable=True)  # bare object key, or legacy full URL
    file_name = Column(String(255), nullable=True)
    status = Column(
        SQLEnum(ExecutionStatus, name="execution_status", values_callable=_enum_values),
        default=ExecutionStatus.SUBMITTED,
        nullable=False,
    )
    submitted_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    task = relationship("Task", back_populates="executions")
    collaborator = relationship("User", back_populates="executions")

    __table_args__ = (
        UniqueConstraint("task_id", "collaborator_id", name="uq_execution_task_collaborator"),
    )
