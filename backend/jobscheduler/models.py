from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import TEXT, Boolean, DateTime, Integer, String
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class TZDatetime(TypeDecorator):
    """Custom DateTime type that ensures timezone-aware datetimes."""

    impl = DateTime(timezone=True)

    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            raise ValueError(
                "Naive datetime is not allowed. Please provide a timezone-aware datetime."
            )
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            # SQLite drops the offset; everything is written in UTC
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(AsyncAttrs, DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models with async support."""

    pass


class ExecutionStatus(str, Enum):
    """Outcome of a single scheduled job run."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class SchedulerConfig(Base):
    """Durable schedule and enabled state of one registered job."""

    __tablename__ = "scheduler_config"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    schedule: Mapped[str] = mapped_column(String(100))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        TZDatetime(), default=lambda: datetime.now(timezone.utc)
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String(100))


class SchedulerExecution(Base):
    """One row per job run, inserted as running and patched when it settles."""

    __tablename__ = "scheduler_execution"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(255), index=True)
    started_at: Mapped[datetime] = mapped_column(TZDatetime(), index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(TZDatetime())
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[ExecutionStatus] = mapped_column(
        SQLAlchemyEnum(ExecutionStatus), default=ExecutionStatus.RUNNING
    )
    error: Mapped[Optional[str]] = mapped_column(TEXT)
