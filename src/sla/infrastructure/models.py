"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for tickets, SLA profiles, tasks and automation.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, ForeignKey, Integer, Sequence, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from infrastructure.database import Base
from config import Priority, TicketStatus

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

TICKET_NUMBER_SEQ = Sequence("ticket_number_seq", start=1, metadata=Base.metadata)


def _uuid() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    """Assignable users; maintained by the user directory, read-only here."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAProfileModel(Base):
    """
    Database model for SLAProfile.

    Maps to the 'sla_profiles' table.
    """
    __tablename__ = "sla_profiles"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=240)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=1440)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority_multipliers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ContractModel(Base):
    """Organization contract; supplies the SLA profile for its tickets."""
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    sla_profile_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("sla_profiles.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table. ``version`` backs the optimistic
    concurrency check on save.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    ticket_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)

    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)

    organization_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True, index=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # SLA tracking
    sla_profile_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("sla_profiles.id", ondelete="SET NULL"), nullable=True
    )
    sla_response_due: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_resolution_due: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_response_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    sla_resolution_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    tag_relations: Mapped[list["TicketTagRelationModel"]] = relationship(
        back_populates="ticket", cascade="all, delete-orphan", lazy="selectin"
    )


class TicketTagModel(Base):
    __tablename__ = "ticket_tags"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#3B82F6")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketTagRelationModel(Base):
    __tablename__ = "ticket_tag_relations"
    __table_args__ = (UniqueConstraint("ticket_id", "tag_id"),)

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    ticket_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    tag_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("ticket_tags.id", ondelete="CASCADE"), nullable=False
    )

    ticket: Mapped[TicketModel] = relationship(back_populates="tag_relations")
    tag: Mapped[TicketTagModel] = relationship(lazy="selectin")


class TicketHistoryModel(Base):
    """Append-only audit log; maps to 'ticket_history'."""
    __tablename__ = "ticket_history"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    ticket_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    field_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TaskModel(Base):
    """Follow-up tasks; board placement is owned by the task board service."""
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    ticket_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    assignee_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    due_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AutomationRuleModel(Base):
    __tablename__ = "automation_rules"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_conditions: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_config: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    schedule_cron: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AutomationLogModel(Base):
    """Append-only rule execution log; maps to 'automation_logs'."""
    __tablename__ = "automation_logs"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid)
    rule_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )
    task_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
