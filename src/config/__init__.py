"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="servicedesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/servicedesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA / business calendar YAML file"
    )
    sweep_interval_seconds: int = Field(
        default=60,
        description="Seconds between automation sweeps (0 disables the scheduler)",
        ge=0
    )
    ticket_save_retries: int = Field(
        default=3,
        description="Attempts for a ticket transaction on version conflict",
        ge=1,
        le=10
    )

    # ========== Notifier ==========
    notifier_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL that receives automation notifications"
    )
    notifier_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for a single notification call",
        ge=0.1,
        le=30
    )

    # ========== Task Creator ==========
    task_creator_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for creating a follow-up task",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Priority(str):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SLAType(str):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAState(str):
    """SLA status states."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    MET = "met"


class TriggerType(str):
    """Events (or sweeps) that make an automation rule eligible."""
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    STATUS_CHANGED = "status_changed"
    SLA_BREACH = "sla_breach"
    SCHEDULED = "scheduled"
    TASK_DUE = "task_due"


class ActionType(str):
    """Side effects an automation rule can apply."""
    ASSIGN = "assign"
    CHANGE_STATUS = "change_status"
    CHANGE_PRIORITY = "change_priority"
    ADD_TAG = "add_tag"
    SEND_NOTIFICATION = "send_notification"
    CREATE_TASK = "create_task"
    ESCALATE = "escalate"


class AutomationLogStatus(str):
    """Outcome of a single rule execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class HistoryAction(str):
    """Ticket history actions."""
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    UPDATED = "updated"
    FIRST_RESPONSE = "first_response"
    SLA_BREACHED = "sla_breached"
    SLA_PROFILE_CHANGED = "sla_profile_changed"
    AUTOMATION = "automation"


# ========== Lists for validation ==========

VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.PENDING, TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING, TicketStatus.RESOLVED, TicketStatus.CLOSED
]
ACTIVE_STATUSES = [
    TicketStatus.OPEN, TicketStatus.PENDING,
    TicketStatus.IN_PROGRESS, TicketStatus.WAITING
]
# Ordered lowest to highest; ordinal comparisons rely on this order
VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.CRITICAL
]
VALID_SLA_TYPES = [SLAType.RESPONSE, SLAType.RESOLUTION]
VALID_TRIGGER_TYPES = [
    TriggerType.TICKET_CREATED, TriggerType.TICKET_UPDATED,
    TriggerType.STATUS_CHANGED, TriggerType.SLA_BREACH,
    TriggerType.SCHEDULED, TriggerType.TASK_DUE
]
VALID_ACTION_TYPES = [
    ActionType.ASSIGN, ActionType.CHANGE_STATUS, ActionType.CHANGE_PRIORITY,
    ActionType.ADD_TAG, ActionType.SEND_NOTIFICATION,
    ActionType.CREATE_TASK, ActionType.ESCALATE
]

DEFAULT_PRIORITY_MULTIPLIERS = {
    Priority.LOW: 2.0,
    Priority.MEDIUM: 1.0,
    Priority.HIGH: 0.5,
    Priority.CRITICAL: 0.25,
}
