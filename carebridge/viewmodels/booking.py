import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.domain.exceptions import BackendError
from carebridge.domain.filters import group_slots_by_period
from carebridge.domain.models import Appointment, DayPeriod, SlotSuggestion, TimeSlot
from carebridge.services.analytics import AnalyticsService
from carebridge.services.appointments import AppointmentService
from carebridge.services.auth import AuthService
from carebridge.services.slots import SlotService


class BookingViewModel:
    """Patient-side booking: pick a day, pick a slot, book it."""

    def __init__(
        self,
        auth: AuthService,
        slots: SlotService,
        appointments: AppointmentService,
        analytics: AnalyticsService | None = None,
    ) -> None:
        self._auth = auth
        self._slots = slots
        self._appointments = appointments
        self._analytics = analytics

        self.selected_date: dt.date = dt.date.today()
        self.time_slots: list[TimeSlot] = []
        self.selected_slot: TimeSlot | None = None
        self.suggestions: list[SlotSuggestion] = []
        self.booked: Appointment | None = None
        self.is_loading = False
        self.error_message: str | None = None

    @property
    def booking_success(self) -> bool:
        return self.booked is not None

    @property
    def slots_by_period(self) -> dict[DayPeriod, list[TimeSlot]]:
        return group_slots_by_period(self.time_slots)

    async def load_slots(self, staff_id: UUID, date: dt.date) -> bool:
        self.is_loading = True
        self.error_message = None
        self.selected_date = date
        try:
            self.time_slots = await self._slots.available_slots(staff_id, date)
            self.selected_slot = None
            logger.info("Loaded {} available slot(s) for {}", len(self.time_slots), date)
            return True
        except BackendError as exc:
            logger.warning("Failed to load slots: {}", exc)
            self.error_message = "Failed to load time slots"
            return False
        except Exception:
            logger.exception("Unexpected error loading slots")
            self.error_message = "An unexpected error occurred while loading time slots."
            return False
        finally:
            self.is_loading = False

    def select(self, slot: TimeSlot) -> None:
        self.selected_slot = slot if slot.is_bookable else None

    async def book(self, staff_id: UUID, reason: str | None = None) -> bool:
        """Book the selected slot for the signed-in patient, then reload the day."""
        slot = self.selected_slot
        if slot is None:
            return False

        self.is_loading = True
        self.error_message = None
        self.booked = None
        try:
            patient_id = self._auth.require_user_id()
            self.booked = await self._appointments.book(
                patient_id, staff_id, slot.id, slot.slot_date or self.selected_date, reason
            )
            self.selected_slot = None
        except BackendError as exc:
            logger.warning("Booking failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error booking appointment")
            self.error_message = "An unexpected error occurred while booking the appointment."
            return False
        finally:
            self.is_loading = False

        await self.load_slots(staff_id, self.selected_date)
        return True

    async def reschedule(self, appointment_id: UUID, new_slot: TimeSlot) -> bool:
        self.is_loading = True
        self.error_message = None
        try:
            self.booked = await self._appointments.reschedule(appointment_id, new_slot.id)
            return True
        except BackendError as exc:
            logger.warning("Reschedule failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error rescheduling appointment")
            self.error_message = "An unexpected error occurred while rescheduling the appointment."
            return False
        finally:
            self.is_loading = False

    async def cancel(self, appointment_id: UUID) -> bool:
        self.error_message = None
        try:
            await self._appointments.cancel(appointment_id)
            return True
        except BackendError as exc:
            logger.warning("Cancellation failed: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error cancelling appointment")
            self.error_message = "An unexpected error occurred while cancelling the appointment."
            return False

    async def load_suggestions(self, today: dt.date | None = None) -> bool:
        """Ranked slot suggestions for the signed-in patient."""
        if self._analytics is None:
            self.suggestions = []
            return True
        self.error_message = None
        try:
            patient_id = self._auth.require_user_id()
            self.suggestions = await self._analytics.suggestions_for(patient_id, today)
            return True
        except BackendError as exc:
            logger.warning("Failed to load suggestions: {}", exc)
            self.error_message = str(exc)
            self.suggestions = []
            return False
        except Exception:
            logger.exception("Unexpected error loading suggestions")
            self.error_message = "An unexpected error occurred while loading suggestions."
            self.suggestions = []
            return False
