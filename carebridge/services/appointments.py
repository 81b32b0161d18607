import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_first, parse_rows
from carebridge.backend.ports import BackendClientProtocol
from carebridge.backend.query import Query
from carebridge.domain.datetime_helpers import clinic_today
from carebridge.domain.exceptions import (
    AppointmentBookingError,
    AppointmentUpdateError,
    BackendError,
    SlotUnavailableError,
)
from carebridge.domain.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    TimeSlot,
)

_WITH_STAFF_AND_SLOT = "*, staff(*), time_slots(*)"
_WITH_PATIENT_AND_SLOT = "*, patients(*), time_slots(*)"

_TERMINAL = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
_FROM_CONFIRMED = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Whether an appointment in ``current`` may move to ``target``."""
    if current == target or current in _TERMINAL:
        return False
    if current == AppointmentStatus.CONFIRMED:
        return target in _FROM_CONFIRMED
    return True


def check_bookable(slot: TimeSlot | None, slot_id: UUID, staff_id: UUID) -> TimeSlot:
    """Return ``slot`` if it can take one more booking for ``staff_id``."""
    if slot is None:
        raise SlotUnavailableError("slot does not exist", slot_id=slot_id)
    if slot.staff_id is not None and slot.staff_id != staff_id:
        raise SlotUnavailableError("slot belongs to another staff member", slot_id=slot_id)
    if not slot.is_available:
        raise SlotUnavailableError("slot is not available", slot_id=slot_id)
    if slot.is_full:
        raise SlotUnavailableError("slot is full", slot_id=slot_id)
    return slot


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class AppointmentService:
    """Appointment reads plus the booking, rescheduling and status rules.

    Booking counters on ``time_slots`` are maintained by the backend. The
    capacity check here reads the slot just before inserting, so two clients
    racing for the last place can both pass it; the backend constraint is
    what finally refuses the overbooking.
    """

    def __init__(self, client: BackendClientProtocol, clinic_tz: dt.tzinfo = dt.timezone.utc) -> None:
        self._client = client
        self._clinic_tz = clinic_tz

    def _today(self, today: dt.date | None) -> dt.date:
        return today or clinic_today(self._clinic_tz)

    async def _select(self, query: Query) -> list[Appointment]:
        return parse_rows(Appointment, await self._client.select("appointments", query))

    async def _fetch_slot(self, slot_id: UUID) -> TimeSlot | None:
        rows = await self._client.select("time_slots", Query().eq("id", slot_id).limit(1))
        return parse_first(TimeSlot, rows)

    # Reads

    async def fetch(self, appointment_id: UUID) -> Appointment | None:
        query = Query(_WITH_STAFF_AND_SLOT).eq("id", appointment_id).limit(1)
        return parse_first(Appointment, await self._client.select("appointments", query))

    async def for_patient(self, patient_id: UUID) -> list[Appointment]:
        query = Query(_WITH_STAFF_AND_SLOT).eq("patient_id", patient_id).order("appointment_date")
        return await self._select(query)

    async def upcoming_for_patient(
        self, patient_id: UUID, today: dt.date | None = None
    ) -> list[Appointment]:
        query = (
            Query(_WITH_STAFF_AND_SLOT)
            .eq("patient_id", patient_id)
            .in_("status", [s.value for s in ACTIVE_STATUSES])
            .gte("appointment_date", self._today(today))
            .order("appointment_date")
        )
        return await self._select(query)

    async def past_for_patient(
        self, patient_id: UUID, today: dt.date | None = None
    ) -> list[Appointment]:
        """Appointments before today, plus any already completed or cancelled."""
        query = (
            Query(_WITH_STAFF_AND_SLOT)
            .eq("patient_id", patient_id)
            .or_(
                ("appointment_date", "lt", self._today(today)),
                ("status", "eq", AppointmentStatus.COMPLETED),
                ("status", "eq", AppointmentStatus.CANCELLED),
            )
            .order("appointment_date", ascending=False)
        )
        return await self._select(query)

    async def today_for_staff(self, staff_id: UUID, today: dt.date | None = None) -> list[Appointment]:
        """Today's appointments for a staff member, in slot start order."""
        day = self._today(today)
        query = (
            Query(_WITH_PATIENT_AND_SLOT)
            .eq("staff_id", staff_id)
            .gte("appointment_date", day)
            .lt("appointment_date", day + dt.timedelta(days=1))
            .order("appointment_date")
        )
        appointments = await self._select(query)
        return sorted(
            appointments,
            key=lambda a: (a.time_slot is None, a.time_slot.start_time if a.time_slot else dt.time()),
        )

    async def completed_for_staff(self, staff_id: UUID) -> list[Appointment]:
        query = (
            Query(_WITH_PATIENT_AND_SLOT)
            .eq("staff_id", staff_id)
            .eq("status", AppointmentStatus.COMPLETED)
            .order("appointment_date", ascending=False)
        )
        return await self._select(query)

    async def for_staff_between(
        self, staff_id: UUID, start: dt.date, end: dt.date
    ) -> list[Appointment]:
        query = (
            Query(_WITH_PATIENT_AND_SLOT)
            .eq("staff_id", staff_id)
            .gte("appointment_date", start)
            .lte("appointment_date", end)
            .order("appointment_date")
        )
        return await self._select(query)

    async def between(self, start: dt.date, end: dt.date) -> list[Appointment]:
        query = (
            Query("*, staff(*)")
            .gte("appointment_date", start)
            .lte("appointment_date", end)
        )
        return await self._select(query)

    async def count_all(self) -> int:
        return await self._client.count("appointments")

    async def count_between(self, start: dt.datetime, end: dt.datetime) -> int:
        query = Query().gte("created_at", start.isoformat()).lte("created_at", end.isoformat())
        return await self._client.count("appointments", query)

    # Booking

    async def book(
        self,
        patient_id: UUID,
        staff_id: UUID,
        slot_id: UUID,
        appointment_date: dt.date,
        reason: str | None = None,
    ) -> Appointment:
        """Book ``slot_id`` for a patient after checking it still has room."""
        logger.info("Booking appointment: staff={}, slot={}, date={}", staff_id, slot_id, appointment_date)
        slot = check_bookable(await self._fetch_slot(slot_id), slot_id, staff_id)

        try:
            rows = await self._client.insert(
                "appointments",
                {
                    "patient_id": str(patient_id),
                    "staff_id": str(staff_id),
                    "time_slot_id": str(slot.id),
                    "appointment_date": appointment_date.isoformat(),
                    "appointment_time": slot.start_time.isoformat(),
                    "status": AppointmentStatus.SCHEDULED.value,
                    "reason": reason or None,
                },
            )
            appointment = parse_first(Appointment, rows)
        except BackendError:
            raise
        except Exception as exc:
            raise AppointmentBookingError(reason=str(exc), patient_id=patient_id) from exc

        if appointment is None:
            raise AppointmentBookingError(reason="backend returned no appointment", patient_id=patient_id)

        logger.info("Appointment booked: id={}", appointment.id)
        return appointment

    async def _require_active(self, appointment_id: UUID) -> Appointment:
        appointment = await self.fetch(appointment_id)
        if appointment is None:
            raise AppointmentUpdateError("appointment not found", appointment_id=appointment_id)
        if not appointment.is_active:
            raise AppointmentUpdateError(
                f"appointment is {appointment.appointment_status.display_name.lower()}",
                appointment_id=appointment_id,
            )
        return appointment

    async def reschedule(self, appointment_id: UUID, new_slot_id: UUID) -> Appointment:
        """Move an active appointment to another slot of the same staff member."""
        logger.info("Rescheduling appointment {} to slot {}", appointment_id, new_slot_id)
        appointment = await self._require_active(appointment_id)
        if appointment.time_slot_id == new_slot_id:
            raise AppointmentUpdateError("appointment is already in that slot", appointment_id=appointment_id)
        slot = check_bookable(await self._fetch_slot(new_slot_id), new_slot_id, appointment.staff_id)

        values = {
            "time_slot_id": str(slot.id),
            "appointment_time": slot.start_time.isoformat(),
            "status": AppointmentStatus.RESCHEDULED.value,
            "updated_at": _now_iso(),
        }
        if slot.slot_date is not None:
            values["appointment_date"] = slot.slot_date.isoformat()

        try:
            rows = await self._client.update("appointments", values, Query().eq("id", appointment_id))
        except BackendError:
            raise
        except Exception as exc:
            raise AppointmentUpdateError(reason=str(exc), appointment_id=appointment_id) from exc
        updated = parse_first(Appointment, rows)
        if updated is None:
            raise AppointmentUpdateError("appointment not found", appointment_id=appointment_id)

        logger.info("Appointment rescheduled: id={}", appointment_id)
        return updated

    async def reschedule_to_date(self, appointment_id: UUID, new_date: dt.date) -> Appointment:
        """Reschedule into the earliest open slot of the same staff member on ``new_date``."""
        appointment = await self._require_active(appointment_id)
        query = (
            Query()
            .eq("staff_id", appointment.staff_id)
            .eq("slot_date", new_date)
            .eq("is_available", True)
            .order("start_time")
        )
        slots = parse_rows(TimeSlot, await self._client.select("time_slots", query))
        slot = next((s for s in slots if s.is_bookable and s.id != appointment.time_slot_id), None)
        if slot is None:
            raise SlotUnavailableError(f"no open slot on {new_date.isoformat()}")
        return await self.reschedule(appointment_id, slot.id)

    async def update_status(self, appointment_id: UUID, status: AppointmentStatus) -> Appointment:
        logger.info("Updating appointment {} status to {}", appointment_id, status.value)
        appointment = await self.fetch(appointment_id)
        if appointment is None:
            raise AppointmentUpdateError("appointment not found", appointment_id=appointment_id)

        current = appointment.appointment_status
        if not can_transition(current, status):
            raise AppointmentUpdateError(
                f"cannot change status from {current.display_name} to {status.display_name}",
                appointment_id=appointment_id,
            )

        try:
            rows = await self._client.update(
                "appointments",
                {"status": status.value, "updated_at": _now_iso()},
                Query().eq("id", appointment_id),
            )
        except BackendError:
            raise
        except Exception as exc:
            raise AppointmentUpdateError(reason=str(exc), appointment_id=appointment_id) from exc
        updated = parse_first(Appointment, rows)
        if updated is None:
            raise AppointmentUpdateError("appointment not found", appointment_id=appointment_id)
        return updated

    async def cancel(self, appointment_id: UUID) -> Appointment:
        return await self.update_status(appointment_id, AppointmentStatus.CANCELLED)

    async def next_appointment_summary(self, patient_id: UUID, today: dt.date | None = None) -> str:
        upcoming = await self.upcoming_for_patient(patient_id, today)
        if not upcoming:
            return "You have no upcoming appointments."
        nearest = upcoming[0]
        return (
            f"Your next appointment is with {nearest.doctor_name} on {nearest.formatted_date}. "
            f"The status is {nearest.appointment_status.display_name}."
        )
