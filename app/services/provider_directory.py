from datetime import date as date_type
from typing import List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import NotAuthorized, NotFound, UpstreamUnavailable
from app.models.blocked_time import BlockedTime
from app.models.provider import Provider
from app.models.working_hours import WeekDay, WorkingHours
from app.schemas.actor import Actor
from app.schemas.provider import (
    BlockedTimeCreate,
    DayScheduleEntry,
    ProviderScheduleResponse,
    ScheduleUpdate,
    WeekDayName,
)
from app.schemas.scheduling import ProviderSchedule
from app.services.availability import build_provider_schedule


logger = logging.getLogger(__name__)


class ProviderDirectoryService:
    """Reads and maintains provider availability configuration."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_provider(self, provider_id: int) -> Provider:
        """Load an active provider with its working hours, or raise NotFound."""
        query = (
            select(Provider)
            .options(selectinload(Provider.working_hours))
            .where(and_(Provider.id == provider_id, Provider.is_active.is_(True)))
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Schedule source unavailable for provider {provider_id}: {e}")
            raise UpstreamUnavailable("Provider schedule source is unreachable") from e

        provider = result.scalar_one_or_none()
        if not provider:
            raise NotFound(f"Provider {provider_id} not found")
        return provider

    async def get_schedule(self, provider_id: int) -> ProviderSchedule:
        provider = await self.get_provider(provider_id)
        return build_provider_schedule(provider)

    async def get_schedule_view(self, provider_id: int) -> ProviderScheduleResponse:
        provider = await self.get_provider(provider_id)
        return self._to_response(provider)

    async def update_schedule(
        self, provider_id: int, update: ScheduleUpdate, actor: Actor
    ) -> ProviderScheduleResponse:
        """Replace the provider's per-weekday entries and granularity."""
        self._require_owner(provider_id, actor)
        provider = await self.get_provider(provider_id)

        if update.days is not None:
            self._apply_days(provider, update.days)
        if update.slot_duration_minutes is not None:
            provider.slot_duration_minutes = update.slot_duration_minutes
        if update.timezone is not None:
            provider.timezone = update.timezone
        if update.supports_remote is not None:
            provider.supports_remote = update.supports_remote

        await self.db.commit()
        provider = await self._reload(provider_id)
        logger.info(
            f"Updated schedule for provider {provider_id}: "
            f"{len(provider.working_hours)} weekday entries, "
            f"{provider.slot_duration_minutes}m slots"
        )
        return self._to_response(provider)

    async def list_blocked_times(
        self,
        provider_id: int,
        start_date: Optional[date_type] = None,
        end_date: Optional[date_type] = None,
    ) -> List[BlockedTime]:
        await self.get_provider(provider_id)
        query = select(BlockedTime).where(BlockedTime.provider_id == provider_id)
        if start_date:
            query = query.where(BlockedTime.blocked_date >= start_date)
        if end_date:
            query = query.where(BlockedTime.blocked_date <= end_date)
        query = query.order_by(BlockedTime.blocked_date, BlockedTime.start_time)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def add_blocked_time(
        self, provider_id: int, data: BlockedTimeCreate, actor: Actor
    ) -> BlockedTime:
        """Block part of a day. Existing bookings in the range are left alone."""
        self._require_owner(provider_id, actor)
        await self.get_provider(provider_id)

        blocked = BlockedTime(
            provider_id=provider_id,
            blocked_date=data.blocked_date,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
        self.db.add(blocked)
        await self.db.commit()
        await self.db.refresh(blocked)
        logger.info(
            f"Provider {provider_id} blocked {data.blocked_date} "
            f"{data.start_time}-{data.end_time}"
        )
        return blocked

    async def remove_blocked_time(
        self, provider_id: int, blocked_uuid: Union[str, UUID], actor: Actor
    ) -> None:
        self._require_owner(provider_id, actor)
        try:
            key = blocked_uuid if isinstance(blocked_uuid, UUID) else UUID(str(blocked_uuid))
        except ValueError:
            raise NotFound(f"Blocked time {blocked_uuid} not found")

        result = await self.db.execute(
            select(BlockedTime).where(
                and_(BlockedTime.uuid == key, BlockedTime.provider_id == provider_id)
            )
        )
        blocked = result.scalar_one_or_none()
        if not blocked:
            raise NotFound(f"Blocked time {blocked_uuid} not found")

        await self.db.delete(blocked)
        await self.db.commit()

    # Helper methods
    def _require_owner(self, provider_id: int, actor: Actor) -> None:
        if not actor.is_provider or actor.id != provider_id:
            raise NotAuthorized("Only the provider can change its own schedule")

    def _apply_days(self, provider: Provider, days: List[DayScheduleEntry]) -> None:
        # Rows are updated in place so the (provider_id, weekday) unique key
        # never sees a delete and an insert for the same day in one flush.
        existing = {row.weekday: row for row in provider.working_hours}
        wanted = {WeekDay.from_name(entry.weekday.value).name: entry for entry in days}

        for name, row in list(existing.items()):
            if name not in wanted:
                provider.working_hours.remove(row)

        for name, entry in wanted.items():
            row = existing.get(name)
            if row is None:
                row = WorkingHours(weekday=name)
                provider.working_hours.append(row)
            row.is_enabled = entry.enabled
            row.start_time = entry.open_time if entry.enabled else None
            row.end_time = entry.close_time if entry.enabled else None

    async def _reload(self, provider_id: int) -> Provider:
        result = await self.db.execute(
            select(Provider)
            .options(selectinload(Provider.working_hours))
            .where(Provider.id == provider_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    def _to_response(self, provider: Provider) -> ProviderScheduleResponse:
        rows = sorted(provider.working_hours, key=lambda r: WeekDay.from_name(r.weekday).value)
        days = [
            DayScheduleEntry(
                weekday=WeekDayName(row.weekday.lower()),
                enabled=row.is_enabled,
                open_time=row.start_time,
                close_time=row.end_time,
            )
            for row in rows
        ]
        schedule = build_provider_schedule(provider)
        legacy_days = [
            WeekDayName(day.name.lower())
            for day in getattr(schedule.availability, "available_days", [])
        ]
        return ProviderScheduleResponse(
            provider_id=provider.id,
            provider_uuid=provider.uuid,
            timezone=schedule.timezone,
            slot_duration_minutes=schedule.slot_duration_minutes,
            supports_remote=provider.supports_remote,
            kind=schedule.availability.kind,
            days=days,
            legacy_open_time=provider.legacy_open_time,
            legacy_close_time=provider.legacy_close_time,
            legacy_available_days=legacy_days,
        )
