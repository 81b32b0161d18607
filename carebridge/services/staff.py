import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_first, parse_rows
from carebridge.backend.ports import BackendClientProtocol, Row
from carebridge.backend.query import Query
from carebridge.config import SchedulingConfig
from carebridge.domain.datetime_helpers import is_weekend
from carebridge.domain.exceptions import BackendUnavailableError
from carebridge.domain.models import Staff, TimeSlot

DEPARTMENTS: dict[str, str] = {
    "general": "General Medicine",
    "cardiology": "Cardiology",
    "neurology": "Neurology",
    "neurosurgery": "Neurosurgery",
    "orthopedics": "Orthopedics",
    "physiotherapy": "Physiotherapy",
    "sports_medicine": "Sports Medicine",
    "pediatrics": "Pediatrics",
    "neonatology": "Neonatology",
    "gynecology": "Gynecology",
    "obstetrics": "Obstetrics",
    "ent": "ENT (Ear, Nose & Throat)",
    "ophthalmology": "Ophthalmology",
    "psychiatry": "Psychiatry",
    "psychology": "Psychology",
    "dermatology": "Dermatology",
    "endocrinology": "Endocrinology",
    "radiology": "Radiology",
    "pathology": "Pathology",
    "laboratory": "Laboratory Medicine",
    "gastroenterology": "Gastroenterology",
    "pulmonology": "Pulmonology",
    "nephrology": "Nephrology",
    "urology": "Urology",
    "general_surgery": "General Surgery",
    "cardiac_surgery": "Cardiac Surgery",
    "plastic_surgery": "Plastic Surgery",
    "emergency": "Emergency Medicine",
    "critical_care": "Critical Care / ICU",
}


def department_name(department_id: str | None) -> str:
    """Display name for a department id; unknown ids are title-cased."""
    if not department_id:
        return DEPARTMENTS["general"]
    return DEPARTMENTS.get(department_id, department_id.replace("_", " ").title())


class StaffService:
    """Staff directory, profile edits and direct slot creation."""

    def __init__(self, client: BackendClientProtocol, scheduling: SchedulingConfig | None = None) -> None:
        self._client = client
        self._scheduling = scheduling or SchedulingConfig()

    async def list_staff(self) -> list[Staff]:
        rows = await self._client.select("staff", Query().order("created_at", ascending=False))
        return parse_rows(Staff, rows)

    async def fetch(self, staff_id: UUID) -> Staff | None:
        rows = await self._client.select("staff", Query().eq("id", staff_id).limit(1))
        return parse_first(Staff, rows)

    async def create(
        self, full_name: str, email: str, department_id: str, designation: str = "Doctor"
    ) -> Staff:
        """Insert a new active staff row and return it with its generated id."""
        logger.info("Creating staff record in department {}", department_id)
        rows = await self._client.insert(
            "staff",
            {
                "full_name": full_name,
                "email": email,
                "department_id": department_id,
                "designation": designation,
                "is_active": True,
            },
        )
        staff = parse_first(Staff, rows)
        if staff is None:
            raise BackendUnavailableError("Staff insert returned no row")
        logger.info("Staff created: id={}", staff.id)
        return staff

    async def update_personal_details(self, staff_id: UUID, full_name: str, phone: str) -> None:
        await self._client.update(
            "staff",
            {"full_name": full_name, "phone": phone or None},
            Query().eq("id", staff_id),
        )

    async def update_role_and_department(
        self, staff_id: UUID, designation: str, department_id: str
    ) -> None:
        await self._client.update(
            "staff",
            {"designation": designation or "Doctor", "department_id": department_id},
            Query().eq("id", staff_id),
        )

    async def create_default_slots(
        self, staff_id: UUID, date: dt.date, capacity: int | None = None
    ) -> list[TimeSlot]:
        """Insert one-hour slots covering the working day for ``date``."""
        capacity = capacity or self._scheduling.default_slot_capacity
        rows: list[Row] = [
            {
                "staff_id": str(staff_id),
                "slot_date": date.isoformat(),
                "start_time": dt.time(hour).isoformat(),
                "end_time": dt.time(hour + 1).isoformat(),
                "is_available": True,
                "current_bookings": 0,
                "max_capacity": capacity,
            }
            for hour in range(self._scheduling.day_start_hour, self._scheduling.day_end_hour)
        ]
        inserted = parse_rows(TimeSlot, await self._client.insert("time_slots", rows))
        logger.info("Created {} default slot(s) for staff {} on {}", len(inserted), staff_id, date)
        return inserted

    async def create_slots_for_range(
        self,
        staff_id: UUID,
        start: dt.date,
        end: dt.date,
        capacity: int | None = None,
        weekdays_only: bool = False,
    ) -> int:
        """Create default slots for every day in ``[start, end]``. Returns the day count."""
        days = 0
        current = start
        while current <= end:
            if not (weekdays_only and is_weekend(current)):
                await self.create_default_slots(staff_id, current, capacity)
                days += 1
            current += dt.timedelta(days=1)
        return days
