from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Automation(Base):
    __tablename__ = "automations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    trigger_conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    action_type: Mapped[str] = mapped_column(String(60), nullable=False)
    action_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    is_built_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    total_runs: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_successes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_automations_store_trigger_active", "store_id", "trigger_type", "is_active"),
        Index("ix_automations_trigger_active", "trigger_type", "is_active"),
    )


class AutomationRun(Base):
    __tablename__ = "automation_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    automation_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    store_id: Mapped[str] = mapped_column(String(36), ForeignKey("stores.id"), nullable=False, index=True)
    trigger_event_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    trigger_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", server_default="scheduled")
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_automation_runs_status_scheduled_for", "status", "scheduled_for"),
        Index("ix_automation_runs_status_started_at", "status", "started_at"),
        Index("ix_automation_runs_store_automation_created_at", "store_id", "automation_id", "created_at"),
    )
