import datetime as dt
from collections.abc import Awaitable
from uuid import UUID

from loguru import logger

from carebridge.domain.exceptions import BackendError
from carebridge.domain.filters import group_slots_by_period
from carebridge.domain.models import DayPeriod, TimeSlot
from carebridge.services.slots import SlotService


class AvailabilityViewModel:
    """A staff member's own calendar for one day, with slot actions.

    Loading tops up the calendar first so a doctor never opens an empty week.
    """

    def __init__(self, slots: SlotService, staff_id: UUID) -> None:
        self._slots = slots
        self.staff_id = staff_id
        self.selected_date: dt.date = dt.date.today()
        self.time_slots: list[TimeSlot] = []
        self.is_loading = False
        self.error_message: str | None = None

    @property
    def slots_by_period(self) -> dict[DayPeriod, list[TimeSlot]]:
        return group_slots_by_period(self.time_slots)

    @property
    def selected_day_name(self) -> str:
        return self.selected_date.strftime("%A")

    def _replace(self, updated: TimeSlot) -> None:
        self.time_slots = [updated if s.id == updated.id else s for s in self.time_slots]

    async def load(self, date: dt.date | None = None, today: dt.date | None = None) -> bool:
        self.is_loading = True
        self.error_message = None
        if date is not None:
            self.selected_date = date
        try:
            try:
                await self._slots.ensure_future_slots(self.staff_id, today)
            except BackendError as exc:
                logger.warning("Auto-generation failed: {}", exc)
            self.time_slots = await self._slots.slots_for_day(self.staff_id, self.selected_date)
            logger.info("Loaded {} slot(s) for {}", len(self.time_slots), self.selected_date)
            return True
        except BackendError as exc:
            logger.warning("Failed to load slots: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error loading slots")
            self.error_message = "An unexpected error occurred while loading your slots."
            return False
        finally:
            self.is_loading = False

    async def toggle(self, slot: TimeSlot, is_available: bool) -> bool:
        return await self._apply(self._slots.set_availability(slot.id, is_available))

    async def mark_running_late(self, slot: TimeSlot, delay_minutes: int) -> bool:
        if delay_minutes <= 0:
            self.error_message = "Delay must be greater than zero minutes."
            return False
        return await self._apply(self._slots.mark_running_late(slot.id, delay_minutes))

    async def clear_running_late(self, slot: TimeSlot) -> bool:
        return await self._apply(self._slots.clear_running_late(slot.id))

    async def adjust_delay(self, slot: TimeSlot, by_minutes: int) -> bool:
        return await self._apply(self._slots.adjust_delay(slot, by_minutes))

    async def update_capacity(self, slot: TimeSlot, capacity: int) -> bool:
        if capacity < 1:
            self.error_message = "Capacity must be at least 1."
            return False
        return await self._apply(self._slots.update_capacity(slot.id, capacity))

    async def _apply(self, action: Awaitable[TimeSlot]) -> bool:
        self.error_message = None
        try:
            self._replace(await action)
            return True
        except BackendError as exc:
            logger.warning("Slot update failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error updating slot")
            self.error_message = "An unexpected error occurred while updating the slot."
            return False

    async def disable_day(self) -> bool:
        self.error_message = None
        try:
            await self._slots.disable_day(self.staff_id, self.selected_date)
            self.time_slots = await self._slots.slots_for_day(self.staff_id, self.selected_date)
            return True
        except BackendError as exc:
            logger.warning("Failed to disable {}: {}", self.selected_date, exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error disabling day")
            self.error_message = "An unexpected error occurred while disabling the day."
            return False

    async def enable_weekdays(self, start: dt.date, weeks: int = 2) -> int:
        return await self._enable(start, weeks, weekdays_only=True)

    async def enable_weekends(self, start: dt.date, weeks: int = 2) -> int:
        return await self._enable(start, weeks, weekend_only=True)

    async def _enable(self, start: dt.date, weeks: int, **days: bool) -> int:
        """Generate default slots; returns the number of days generated, 0 on failure."""
        self.error_message = None
        try:
            return await self._slots.generate_range(self.staff_id, start, weeks, **days)
        except BackendError as exc:
            logger.warning("Slot generation failed: {}", exc)
            self.error_message = str(exc)
            return 0
        except Exception:
            logger.exception("Unexpected error generating slots")
            self.error_message = "An unexpected error occurred while generating slots."
            return 0
