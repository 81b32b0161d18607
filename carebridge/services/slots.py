import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_first, parse_rows
from carebridge.backend.ports import BackendClientProtocol, Row
from carebridge.backend.query import Query
from carebridge.config import SchedulingConfig
from carebridge.domain.datetime_helpers import clinic_today, is_weekend
from carebridge.domain.exceptions import BackendError, RecordNotFoundError
from carebridge.domain.models import TimeSlot

GENERATE_SLOTS_RPC = "generate_default_slots_for_date"


class SlotService:
    """Reads and edits a staff member's time slots and keeps the calendar stocked."""

    def __init__(
        self,
        client: BackendClientProtocol,
        scheduling: SchedulingConfig | None = None,
        clinic_tz: dt.tzinfo = dt.timezone.utc,
    ) -> None:
        self._client = client
        self._scheduling = scheduling or SchedulingConfig()
        self._clinic_tz = clinic_tz

    async def slots_for_day(self, staff_id: UUID, date: dt.date) -> list[TimeSlot]:
        query = Query().eq("staff_id", staff_id).eq("slot_date", date).order("start_time")
        return parse_rows(TimeSlot, await self._client.select("time_slots", query))

    async def available_slots(self, staff_id: UUID, date: dt.date) -> list[TimeSlot]:
        """Open slots a patient can book, earliest first. Full slots are dropped."""
        query = (
            Query()
            .eq("staff_id", staff_id)
            .eq("slot_date", date)
            .eq("is_available", True)
            .order("start_time")
        )
        slots = parse_rows(TimeSlot, await self._client.select("time_slots", query))
        return [s for s in slots if not s.is_full]

    async def fetch_slot(self, slot_id: UUID) -> TimeSlot | None:
        rows = await self._client.select("time_slots", Query().eq("id", slot_id).limit(1))
        return parse_first(TimeSlot, rows)

    async def _update_slot(self, slot_id: UUID, values: Row) -> TimeSlot:
        rows = await self._client.update("time_slots", values, Query().eq("id", slot_id))
        slot = parse_first(TimeSlot, rows)
        if slot is None:
            raise RecordNotFoundError("time_slots", slot_id)
        return slot

    async def set_availability(self, slot_id: UUID, is_available: bool) -> TimeSlot:
        logger.info("Setting slot {} available={}", slot_id, is_available)
        return await self._update_slot(slot_id, {"is_available": is_available})

    async def mark_running_late(self, slot_id: UUID, delay_minutes: int) -> TimeSlot:
        if delay_minutes <= 0:
            raise ValueError("delay_minutes must be positive")
        logger.info("Slot {} running late by {} min", slot_id, delay_minutes)
        return await self._update_slot(
            slot_id, {"is_running_late": True, "delay_minutes": delay_minutes}
        )

    async def clear_running_late(self, slot_id: UUID) -> TimeSlot:
        return await self._update_slot(slot_id, {"is_running_late": False, "delay_minutes": 0})

    async def adjust_delay(self, slot: TimeSlot, by_minutes: int) -> TimeSlot:
        """Shift the delay by ``by_minutes``; the delay never goes below zero."""
        delay = max(0, slot.delay_minutes + by_minutes)
        return await self._update_slot(
            slot.id, {"delay_minutes": delay, "is_running_late": delay > 0}
        )

    async def update_capacity(self, slot_id: UUID, capacity: int) -> TimeSlot:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        logger.info("Setting slot {} capacity to {}", slot_id, capacity)
        return await self._update_slot(slot_id, {"max_capacity": capacity})

    async def disable_day(self, staff_id: UUID, date: dt.date) -> int:
        """Close every slot of ``staff_id`` on ``date``. Returns how many were closed."""
        rows = await self._client.update(
            "time_slots",
            {"is_available": False},
            Query().eq("staff_id", staff_id).eq("slot_date", date),
        )
        logger.info("Disabled {} slot(s) for staff {} on {}", len(rows), staff_id, date)
        return len(rows)

    async def generate_for_date(
        self, staff_id: UUID, date: dt.date, capacity: int | None = None
    ) -> None:
        """Ask the backend to create the default slots for one day."""
        await self._client.rpc(
            GENERATE_SLOTS_RPC,
            {
                "p_staff_id": str(staff_id),
                "p_date": date.isoformat(),
                "p_default_capacity": capacity or self._scheduling.default_slot_capacity,
            },
        )

    async def generate_range(
        self,
        staff_id: UUID,
        start: dt.date,
        weeks: int,
        *,
        weekdays_only: bool = False,
        weekend_only: bool = False,
    ) -> int:
        """Generate default slots for ``weeks`` weeks from ``start``.

        Days that fail are logged and skipped so one bad day does not stop the
        rest of the range. Returns the number of days generated.
        """
        generated = 0
        for offset in range(weeks * 7):
            date = start + dt.timedelta(days=offset)
            if weekdays_only and is_weekend(date):
                continue
            if weekend_only and not is_weekend(date):
                continue
            try:
                await self.generate_for_date(staff_id, date)
            except BackendError as exc:
                logger.warning("Slot generation failed for {} on {}: {}", staff_id, date, exc)
                continue
            generated += 1
        logger.info("Generated slots for {} day(s) starting {}", generated, start)
        return generated

    async def ensure_future_slots(self, staff_id: UUID, today: dt.date | None = None) -> int:
        """Top up the calendar when the latest slot is less than a threshold away.

        Returns the number of days generated (0 when the calendar is stocked).
        """
        today = today or clinic_today(self._clinic_tz)
        query = Query().eq("staff_id", staff_id).order("slot_date", ascending=False).limit(1)
        latest = parse_first(TimeSlot, await self._client.select("time_slots", query))

        if latest is None or latest.slot_date is None:
            logger.warning("No slots found for staff {}, generating initial set", staff_id)
            start = today
        elif (latest.slot_date - today).days < self._scheduling.restock_threshold_days:
            logger.warning("Low slots for staff {} (last on {}), generating more", staff_id, latest.slot_date)
            start = latest.slot_date + dt.timedelta(days=1)
        else:
            return 0

        return await self.generate_range(
            staff_id, start, self._scheduling.generation_weeks, weekdays_only=True
        )
