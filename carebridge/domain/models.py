import datetime as dt
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from carebridge.domain.datetime_helpers import (
    clock_hour,
    format_clock,
    format_medium_date,
    parse_flexible_date,
    time_to_12h,
)


class Role(str, Enum):
    """Role stored on a profile; drives which dashboard a user lands on."""

    PATIENT = "patient"
    STAFF = "staff"
    ADMIN = "admin"


class AppointmentStatus(str, Enum):
    """Possible states of an appointment."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "noShow"
    RESCHEDULED = "rescheduled"

    @property
    def display_name(self) -> str:
        if self is AppointmentStatus.NO_SHOW:
            return "No Show"
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: str | None) -> "AppointmentStatus":
        """Lenient parse: stored statuses are free text, unknown values read as scheduled."""
        if not value:
            return cls.SCHEDULED
        for status in cls:
            if status.value.lower() == value.strip().lower():
                return status
        if value.strip().lower().replace(" ", "") == "noshow":
            return cls.NO_SHOW
        return cls.SCHEDULED


ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED}
)


class SlotStatus(str, Enum):
    AVAILABLE = "Available"
    FILLING = "Filling Up"
    FULL = "Full"
    DISABLED = "Disabled"
    RUNNING_LATE = "Running Late"


class DayPeriod(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class FeedbackSubmitter(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"


class AuthUser(BaseModel):
    """The authenticated user as returned by the auth endpoint."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    def metadata_string(self, key: str) -> str | None:
        value = self.user_metadata.get(key)
        return value if isinstance(value, str) and value else None


class AuthSession(BaseModel):
    """An access/refresh token pair for a signed-in user."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = ""
    expires_at: int | None = None
    user: AuthUser

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or dt.datetime.now(dt.timezone.utc)
        return now.timestamp() >= self.expires_at


class Profile(BaseModel):
    """Row of the ``profiles`` table used for role-based routing."""

    model_config = ConfigDict(frozen=True)

    id: UUID | None = None
    role: str
    is_active: bool = True
    has_set_password: bool = True
    full_name: str | None = None
    email: str | None = None

    @property
    def resolved_role(self) -> Role | None:
        try:
            return Role(self.role)
        except ValueError:
            return None


class Patient(BaseModel):
    """A patient record."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    full_name: str
    email: str | None = None
    phone_number: str | None = None
    date_of_birth: dt.date | None = None
    gender: str | None = None
    created_at: dt.datetime | None = None
    blood_group: str | None = None
    allergies: list[str] | None = None
    current_medications: list[str] | None = None
    medical_history: str | None = None
    admission_status: str | None = None
    admission_date: str | None = None
    discharge_date: str | None = None
    assigned_doctor_id: UUID | None = None
    emergency_contact: str | None = None
    emergency_contact_relation: str | None = None
    medical_record_number: str | None = None
    address: str | None = None

    @property
    def initials(self) -> str:
        words = self.full_name.split()
        if len(words) >= 2:
            return f"{words[0][0]}{words[1][0]}".upper()
        if words:
            return words[0][:2].upper()
        return "??"

    def age(self, today: dt.date | None = None) -> int:
        if self.date_of_birth is None:
            return 0
        today = today or dt.date.today()
        dob = self.date_of_birth
        years = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
        return max(0, years)

    @property
    def full_search_text(self) -> str:
        parts = [
            self.full_name,
            self.medical_record_number or "",
            self.phone_number or "",
            self.email or "",
            self.address or "",
            self.blood_group or "",
            " ".join(self.allergies or []),
            self.medical_history or "",
        ]
        return " ".join(parts).lower()


class Staff(BaseModel):
    """A staff member (doctor, nurse, ...)."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    full_name: str
    email: str | None = None
    department_id: str | None = None
    designation: str | None = None
    phone: str | None = None
    created_at: dt.datetime | None = None
    specialization: str | None = None
    slot_capacity: int | None = None
    profile_image: str | None = None
    is_active: bool | None = None

    @property
    def role_label(self) -> str:
        return self.designation or "Doctor"


class TimeSlot(BaseModel):
    """A bookable interval on a staff member's calendar."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    staff_id: UUID | None = None
    slot_date: dt.date | None = None
    start_time: dt.time
    end_time: dt.time
    is_available: bool = True
    current_bookings: int = 0
    max_capacity: int = 5
    is_running_late: bool = False
    delay_minutes: int = 0
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @property
    def is_full(self) -> bool:
        return self.current_bookings >= self.max_capacity

    @property
    def is_bookable(self) -> bool:
        return self.is_available and not self.is_full

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.max_capacity - self.current_bookings)

    @property
    def fill_ratio(self) -> float:
        if self.max_capacity <= 0:
            return 0.0
        return self.current_bookings / self.max_capacity

    @property
    def status(self) -> SlotStatus:
        if not self.is_available:
            return SlotStatus.DISABLED
        if self.is_full:
            return SlotStatus.FULL
        if self.is_running_late:
            return SlotStatus.RUNNING_LATE
        if self.fill_ratio >= 0.7:
            return SlotStatus.FILLING
        return SlotStatus.AVAILABLE

    @property
    def time_range(self) -> str:
        return f"{time_to_12h(self.start_time)} - {time_to_12h(self.end_time)}"

    @property
    def day_name(self) -> str:
        return self.slot_date.strftime("%A") if self.slot_date else "-"

    @property
    def short_day_name(self) -> str:
        return self.slot_date.strftime("%a") if self.slot_date else "-"

    @property
    def formatted_date(self) -> str:
        return format_medium_date(self.slot_date) if self.slot_date else "-"

    @property
    def hour(self) -> int:
        return self.start_time.hour

    @property
    def day_period(self) -> DayPeriod | None:
        if 6 <= self.hour < 12:
            return DayPeriod.MORNING
        if 12 <= self.hour < 17:
            return DayPeriod.AFTERNOON
        if 17 <= self.hour < 22:
            return DayPeriod.EVENING
        return None


class Appointment(BaseModel):
    """An appointment row, optionally with its patient, staff and slot embedded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID
    patient_id: UUID
    staff_id: UUID
    time_slot_id: UUID | None = None
    appointment_date: str
    appointment_time: str | None = None
    status: str = AppointmentStatus.SCHEDULED.value
    reason: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    patient: Patient | None = Field(default=None, validation_alias=AliasChoices("patients", "patient"))
    staff: Staff | None = None
    time_slot: TimeSlot | None = Field(
        default=None, validation_alias=AliasChoices("time_slots", "time_slot")
    )

    @property
    def appointment_status(self) -> AppointmentStatus:
        return AppointmentStatus.parse(self.status)

    @property
    def is_active(self) -> bool:
        return self.appointment_status in ACTIVE_STATUSES

    @property
    def parsed_date(self) -> dt.date | None:
        return parse_flexible_date(self.appointment_date)

    @property
    def formatted_date(self) -> str:
        date = self.parsed_date
        return format_medium_date(date) if date else self.appointment_date

    @property
    def start_time_source(self) -> str | None:
        if self.appointment_time:
            return self.appointment_time
        if self.time_slot is not None:
            return self.time_slot.start_time.isoformat()
        return None

    @property
    def formatted_time(self) -> str:
        source = self.start_time_source
        return format_clock(source) if source else "Time not set"

    @property
    def start_hour(self) -> int | None:
        source = self.start_time_source
        return clock_hour(source) if source else None

    @property
    def display_date_time(self) -> str:
        return f"{self.formatted_date} • {self.formatted_time}"

    @property
    def formatted_slot(self) -> str:
        if self.time_slot is None:
            return "Time not set"
        return self.time_slot.time_range

    @property
    def doctor_name(self) -> str:
        return self.staff.full_name if self.staff else "Doctor"


class PrescriptionMedicine(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    prescription_id: UUID
    medicine_name: str
    dosage: str
    frequency: str
    duration: str
    instructions: str | None = None
    created_at: str | None = None


class MedicineInput(BaseModel):
    """A medicine line typed into the prescription form, before it is saved."""

    model_config = ConfigDict(frozen=True)

    name: str
    dosage: str
    frequency: str
    duration: str
    instructions: str = ""

    @classmethod
    def from_medicine(cls, medicine: PrescriptionMedicine) -> "MedicineInput":
        return cls(
            name=medicine.medicine_name,
            dosage=medicine.dosage,
            frequency=medicine.frequency,
            duration=medicine.duration,
            instructions=medicine.instructions or "",
        )


class Prescription(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID
    appointment_id: UUID
    patient_id: UUID
    staff_id: UUID
    prescription_date: str
    diagnosis: str | None = None
    notes: str | None = None
    follow_up_date: str | None = None
    follow_up_notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    patient: Patient | None = None
    staff: Staff | None = None
    medicines: list[PrescriptionMedicine] = Field(
        default_factory=list,
        validation_alias=AliasChoices("prescription_medicines", "medicines"),
    )


class Payment(BaseModel):
    """A payment row; read-only on the client."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    patient_id: UUID
    amount: int
    status: str
    payment_method: str | None = None
    transaction_id: str | None = None
    created_at: dt.datetime


class PaymentSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_paid: int = 0
    total_pending: int = 0
    count_by_status: dict[str, int] = Field(default_factory=dict)


class _NameOnly(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: str


class Feedback(BaseModel):
    """Feedback left on a completed appointment by a patient or a doctor."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID
    appointment_id: UUID
    patient_id: UUID
    doctor_id: UUID
    submitted_by: str
    rating: int | None = None
    comments: str | None = None
    created_at: dt.datetime | None = None
    patient: _NameOnly | None = Field(default=None, validation_alias=AliasChoices("patients", "patient"))
    doctor: _NameOnly | None = Field(default=None, validation_alias=AliasChoices("staff", "doctor"))

    @property
    def submitter(self) -> FeedbackSubmitter:
        try:
            return FeedbackSubmitter(self.submitted_by)
        except ValueError:
            return FeedbackSubmitter.PATIENT

    @property
    def star_rating(self) -> str:
        if self.rating is None:
            return "No rating"
        return "★" * self.rating


class MedicalReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    user_id: UUID
    uploaded_by: UUID
    doctor_id: UUID | None = None
    file_path: str
    file_type: str
    title: str
    description: str | None = None
    created_at: dt.datetime


class SlotSuggestion(BaseModel):
    """A ranked slot proposal for a patient."""

    model_config = ConfigDict(frozen=True)

    slot: TimeSlot
    score: float
    doctor_name: str
    is_preferred_doctor: bool = False

    @property
    def label(self) -> str:
        date = self.slot.slot_date.isoformat() if self.slot.slot_date else "-"
        suffix = " (Your Doctor)" if self.is_preferred_doctor else ""
        return f"{date} @ {self.slot.time_range} with {self.doctor_name}{suffix}"


class DashboardStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    patients_count: int
    appointments_count: int
    patients_delta: str
    appointments_delta: str


class SeriesPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: float
