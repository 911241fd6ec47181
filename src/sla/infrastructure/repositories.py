"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the storage interfaces using SQLAlchemy.

One SQLAlchemyStorage is bound to one session; everything a ticket
operation writes goes through it and commits together.
"""

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from automation.application import IAutomationStorage, IUserDirectory
from automation.domain import AutomationLog, AutomationRule
from config import ACTIVE_STATUSES
from core import ConcurrencyConflictException, RepositoryException
from sla.application import ITaskStorage, ITicketStorage, TicketOutcomeCount
from sla.domain import SLAProfile, SLAProfileConfig, Task, Ticket, TicketHistoryRecord
from sla.infrastructure.models import (
    TICKET_NUMBER_SEQ,
    AutomationLogModel,
    AutomationRuleModel,
    ContractModel,
    SLAProfileModel,
    TaskModel,
    TicketHistoryModel,
    TicketModel,
    TicketTagModel,
    TicketTagRelationModel,
    UserModel,
)
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Columns copied verbatim between Ticket and TicketModel
_TICKET_COLUMNS = (
    "subject", "description", "status", "priority", "organization_id",
    "assignee_id", "created_by_id", "sla_profile_id", "sla_response_due",
    "sla_resolution_due", "sla_response_met", "sla_resolution_met",
    "first_response_at", "resolved_at", "updated_at",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Drivers without timezone support (sqlite) hand back naive UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _to_profile(model: SLAProfileModel) -> SLAProfile:
    return SLAProfile(
        id=str(model.id),
        name=model.name,
        description=model.description,
        response_time_minutes=model.response_time_minutes,
        resolution_time_minutes=model.resolution_time_minutes,
        business_hours_only=model.business_hours_only,
        priority_multipliers=dict(model.priority_multipliers or {}),
        is_default=model.is_default,
    )


def _to_ticket(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        ticket_number=model.ticket_number,
        subject=model.subject,
        description=model.description,
        status=model.status,
        priority=model.priority,
        organization_id=model.organization_id,
        assignee_id=model.assignee_id,
        created_by_id=model.created_by_id,
        sla_profile_id=model.sla_profile_id,
        sla_response_due=_aware(model.sla_response_due),
        sla_resolution_due=_aware(model.sla_resolution_due),
        sla_response_met=model.sla_response_met,
        sla_resolution_met=model.sla_resolution_met,
        first_response_at=_aware(model.first_response_at),
        resolved_at=_aware(model.resolved_at),
        tags={relation.tag.name for relation in model.tag_relations},
        version=model.version,
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at),
    )


def _to_task(model: TaskModel) -> Task:
    return Task(
        id=str(model.id),
        title=model.title,
        ticket_id=model.ticket_id,
        description=model.description,
        priority=model.priority,
        assignee_id=model.assignee_id,
        due_date=_aware(model.due_date),
        completed_at=_aware(model.completed_at),
        due_notified_at=_aware(model.due_notified_at),
    )


def _to_rule(model: AutomationRuleModel) -> AutomationRule:
    return AutomationRule(
        id=str(model.id),
        name=model.name,
        description=model.description,
        is_active=model.is_active,
        trigger_type=model.trigger_type,
        trigger_conditions=model.trigger_conditions,
        action_type=model.action_type,
        action_config=dict(model.action_config or {}),
        schedule_cron=model.schedule_cron,
        last_run_at=_aware(model.last_run_at),
        created_at=_aware(model.created_at),
    )


class SQLAlchemyStorage(ITicketStorage, ITaskStorage, IAutomationStorage, IUserDirectory):
    """
    SQLAlchemy implementation of every storage interface.

    Tickets are loaded with SELECT ... FOR UPDATE and saved with a
    conditional UPDATE on ``version``; zero affected rows means another
    writer got there first.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        async with self._session.begin_nested():
            yield

    # ---------- tickets ----------

    async def _next_ticket_number(self) -> int:
        if self._session.get_bind().dialect.supports_sequences:
            return int(await self._session.scalar(select(TICKET_NUMBER_SEQ.next_value())))
        current = await self._session.scalar(
            select(func.coalesce(func.max(TicketModel.ticket_number), 0))
        )
        return int(current) + 1

    async def _tag_models(self, names: Iterable[str]) -> List[TicketTagModel]:
        names = sorted(set(names))
        if not names:
            return []
        result = await self._session.execute(
            select(TicketTagModel).where(TicketTagModel.name.in_(names))
        )
        existing = {tag.name: tag for tag in result.scalars().all()}
        for name in names:
            if name not in existing:
                tag = TicketTagModel(id=str(uuid4()), name=name)
                self._session.add(tag)
                existing[name] = tag
        await self._session.flush()
        return [existing[name] for name in names]

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        try:
            number = await self._next_ticket_number()
            model = TicketModel(
                id=ticket.id,
                ticket_number=number,
                version=1,
                created_at=ticket.created_at,
                **{name: getattr(ticket, name) for name in _TICKET_COLUMNS},
            )
            for tag in await self._tag_models(ticket.tags):
                model.tag_relations.append(TicketTagRelationModel(tag=tag))
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to create ticket", {"error": str(e)}) from e

        return replace(ticket, ticket_number=number, version=1, tags=set(ticket.tags))

    async def _get_ticket_model(self, ticket_id: str, for_update: bool) -> Optional[TicketModel]:
        if not _is_uuid(ticket_id):
            return None
        stmt = select(TicketModel).where(TicketModel.id == str(ticket_id))
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def load_ticket(self, ticket_id: str) -> Optional[Ticket]:
        model = await self._get_ticket_model(ticket_id, for_update=True)
        return _to_ticket(model) if model else None

    async def save_ticket(self, ticket: Ticket) -> Ticket:
        values = {name: getattr(ticket, name) for name in _TICKET_COLUMNS}
        stmt = (
            update(TicketModel)
            .where(and_(TicketModel.id == ticket.id, TicketModel.version == ticket.version))
            .values(version=ticket.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to save ticket",
                                      {"ticket_id": ticket.id, "error": str(e)}) from e
        if result.rowcount == 0:
            raise ConcurrencyConflictException(ticket.id, ticket.version)

        await self._sync_tags(ticket)
        return replace(ticket, version=ticket.version + 1)

    async def _sync_tags(self, ticket: Ticket) -> None:
        model = await self._get_ticket_model(ticket.id, for_update=False)
        current = {relation.tag.name for relation in model.tag_relations}
        if current == ticket.tags:
            return
        for relation in list(model.tag_relations):
            if relation.tag.name not in ticket.tags:
                model.tag_relations.remove(relation)
        for tag in await self._tag_models(ticket.tags - current):
            model.tag_relations.append(TicketTagRelationModel(tag=tag))
        await self._session.flush()

    async def list_active_tickets(self) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(ACTIVE_STATUSES))
            .order_by(TicketModel.created_at.asc(), TicketModel.ticket_number.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_ticket(model) for model in result.scalars().all()]

    async def append_history(self, records: Iterable[TicketHistoryRecord]) -> None:
        for record in records:
            self._session.add(TicketHistoryModel(
                ticket_id=record.ticket_id,
                user_id=record.user_id if record.user_id and _is_uuid(record.user_id) else None,
                action=record.action,
                field_name=record.field_name,
                old_value=record.old_value,
                new_value=record.new_value,
                metadata_=record.metadata or None,
                created_at=record.created_at,
            ))
        await self._session.flush()

    # ---------- profiles ----------

    async def load_sla_profile(self, profile_id: str) -> Optional[SLAProfile]:
        if not _is_uuid(profile_id):
            return None
        model = await self._session.get(SLAProfileModel, str(profile_id))
        return _to_profile(model) if model else None

    async def load_default_sla_profile(self) -> Optional[SLAProfile]:
        stmt = (
            select(SLAProfileModel)
            .where(SLAProfileModel.is_default.is_(True))
            .order_by(SLAProfileModel.created_at.asc())
            .limit(1)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_profile(model) if model else None

    async def load_contract_profile(self, organization_id: str, on: date) -> Optional[SLAProfile]:
        if not _is_uuid(organization_id):
            return None
        stmt = (
            select(SLAProfileModel)
            .join(ContractModel, ContractModel.sla_profile_id == SLAProfileModel.id)
            .where(
                ContractModel.organization_id == str(organization_id),
                ContractModel.is_active.is_(True),
                ContractModel.start_date <= on,
                or_(ContractModel.end_date.is_(None), ContractModel.end_date >= on),
            )
            .order_by(ContractModel.start_date.desc())
            .limit(1)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_profile(model) if model else None

    async def list_sla_profiles(self) -> List[SLAProfile]:
        stmt = select(SLAProfileModel).order_by(SLAProfileModel.name.asc())
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to list SLA profiles", {"error": str(e)}) from e
        return [_to_profile(model) for model in result.scalars().all()]

    async def count_ticket_outcomes(self) -> List[TicketOutcomeCount]:
        stmt = (
            select(
                TicketModel.status,
                TicketModel.priority,
                TicketModel.sla_response_met,
                TicketModel.sla_resolution_met,
                func.count(TicketModel.id),
            )
            .group_by(
                TicketModel.status,
                TicketModel.priority,
                TicketModel.sla_response_met,
                TicketModel.sla_resolution_met,
            )
        )
        try:
            rows = (await self._session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to count tickets", {"error": str(e)}) from e
        return [
            TicketOutcomeCount(
                status=status,
                priority=priority,
                sla_response_met=response_met,
                sla_resolution_met=resolution_met,
                count=count,
            )
            for status, priority, response_met, resolution_met, count in rows
        ]

    async def seed_profiles(self, profiles: List[SLAProfileConfig]) -> int:
        """Insert configured profiles whose name is not stored yet."""
        result = await self._session.execute(select(SLAProfileModel.name))
        existing = set(result.scalars().all())
        has_default = await self.load_default_sla_profile() is not None

        created = 0
        for profile in profiles:
            if profile.name in existing:
                continue
            data = profile.model_dump()
            if has_default:
                data["is_default"] = False
            self._session.add(SLAProfileModel(id=str(uuid4()), **data))
            has_default = has_default or data["is_default"]
            created += 1
        await self._session.flush()
        if created:
            logger.info("SLA profiles seeded", extra={"count": created})
        return created

    # ---------- automation ----------

    async def load_active_rules(self) -> List[AutomationRule]:
        stmt = (
            select(AutomationRuleModel)
            .where(AutomationRuleModel.is_active.is_(True))
            .order_by(AutomationRuleModel.created_at.asc(), AutomationRuleModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_rule(model) for model in result.scalars().all()]

    async def save_rule(self, rule: AutomationRule) -> None:
        await self._session.execute(
            update(AutomationRuleModel)
            .where(AutomationRuleModel.id == rule.id)
            .values(last_run_at=rule.last_run_at, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    async def append_automation_log(self, log: AutomationLog) -> AutomationLog:
        log_id = str(uuid4())
        self._session.add(AutomationLogModel(
            id=log_id,
            rule_id=log.rule_id,
            ticket_id=log.ticket_id,
            task_id=log.task_id,
            status=log.status,
            message=log.message,
            metadata_=log.metadata or None,
            created_at=log.created_at,
        ))
        await self._session.flush()
        return replace(log, id=log_id)

    async def rule_ran_since(self, rule_id: str, since: datetime) -> bool:
        stmt = (
            select(AutomationLogModel.id)
            .where(AutomationLogModel.rule_id == rule_id, AutomationLogModel.created_at >= since)
            .limit(1)
        )
        return (await self._session.execute(stmt)).first() is not None

    # ---------- tasks ----------

    async def list_due_tasks(self, now: datetime) -> List[Task]:
        stmt = (
            select(TaskModel)
            .where(
                TaskModel.due_date.is_not(None),
                TaskModel.due_date <= now,
                TaskModel.completed_at.is_(None),
                TaskModel.due_notified_at.is_(None),
            )
            .order_by(TaskModel.due_date.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_task(model) for model in result.scalars().all()]

    async def save_task(self, task: Task) -> Task:
        await self._session.execute(
            update(TaskModel)
            .where(TaskModel.id == task.id)
            .values(
                priority=task.priority,
                assignee_id=task.assignee_id,
                due_notified_at=task.due_notified_at,
                completed_at=task.completed_at,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return task

    # ---------- users ----------

    async def user_exists(self, user_id: str) -> bool:
        if not _is_uuid(user_id):
            return False
        stmt = select(UserModel.id).where(
            UserModel.id == str(user_id), UserModel.is_active.is_(True)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None
