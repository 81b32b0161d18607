import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_first, parse_rows
from carebridge.backend.ports import BackendClientProtocol, Row
from carebridge.backend.query import Query
from carebridge.domain.exceptions import BackendUnavailableError
from carebridge.domain.models import Appointment, Patient

_EDITABLE_COLUMNS = (
    "full_name",
    "date_of_birth",
    "gender",
    "phone_number",
    "email",
    "blood_group",
    "allergies",
    "current_medications",
    "medical_history",
    "admission_status",
    "admission_date",
    "discharge_date",
    "assigned_doctor_id",
    "emergency_contact",
    "emergency_contact_relation",
    "medical_record_number",
    "address",
)


def _editable_values(patient: Patient) -> Row:
    return patient.model_dump(mode="json", include=set(_EDITABLE_COLUMNS))


class PatientService:
    """Patient records: registration rows, profile edits, counts and history."""

    def __init__(self, client: BackendClientProtocol) -> None:
        self._client = client

    async def create(
        self,
        patient_id: UUID,
        full_name: str,
        email: str,
        phone_number: str | None = None,
        date_of_birth: dt.date | None = None,
        gender: str | None = None,
    ) -> Patient:
        """Insert the patient row created at sign-up (id equals the auth user id)."""
        logger.info("Creating patient record")
        rows = await self._client.insert(
            "patients",
            {
                "id": str(patient_id),
                "full_name": full_name,
                "email": email,
                "phone_number": phone_number,
                "date_of_birth": date_of_birth.isoformat() if date_of_birth else None,
                "gender": gender,
                "blood_group": None,
            },
        )
        patient = parse_first(Patient, rows)
        if patient is None:
            raise BackendUnavailableError("Patient insert returned no row")
        logger.info("Patient created: id={}", patient.id)
        return patient

    async def add(self, patient: Patient) -> Patient:
        """Insert a fully described patient (staff-side registration)."""
        rows = await self._client.insert(
            "patients", {"id": str(patient.id), **_editable_values(patient)}
        )
        return parse_first(Patient, rows) or patient

    async def fetch(self, patient_id: UUID) -> Patient | None:
        rows = await self._client.select("patients", Query().eq("id", patient_id).limit(1))
        return parse_first(Patient, rows)

    async def update(self, patient: Patient) -> None:
        """Write every editable column of ``patient``."""
        logger.info("Updating patient: id={}", patient.id)
        await self._client.update("patients", _editable_values(patient), Query().eq("id", patient.id))

    async def update_medical_history(
        self,
        patient_id: UUID,
        medical_history: str | None,
        allergies: list[str] | None,
        current_medications: list[str] | None,
    ) -> None:
        logger.info("Updating medical history: patient={}", patient_id)
        await self._client.update(
            "patients",
            {
                "medical_history": medical_history or None,
                "allergies": allergies,
                "current_medications": current_medications,
            },
            Query().eq("id", patient_id),
        )

    async def delete(self, patient_id: UUID) -> None:
        logger.info("Deleting patient: id={}", patient_id)
        await self._client.delete("patients", Query().eq("id", patient_id))

    async def count_all(self) -> int:
        return await self._client.count("patients")

    async def count_between(self, start: dt.datetime, end: dt.datetime) -> int:
        query = Query().gte("created_at", start.isoformat()).lte("created_at", end.isoformat())
        return await self._client.count("patients", query)

    async def list_between(self, start: dt.datetime, end: dt.datetime) -> list[Patient]:
        query = (
            Query()
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at")
        )
        return parse_rows(Patient, await self._client.select("patients", query))

    async def list_for_staff(self, staff_id: UUID) -> tuple[list[Patient], list[Appointment]]:
        """Patients with at least one appointment with ``staff_id``.

        Returns the patients (by name) together with the staff member's
        appointments, which the timeline filters work from.
        """
        appointments = parse_rows(
            Appointment,
            await self._client.select("appointments", Query().eq("staff_id", staff_id)),
        )
        patient_ids = list(dict.fromkeys(a.patient_id for a in appointments))
        logger.info(
            "Staff {} has {} appointment(s) across {} patient(s)",
            staff_id,
            len(appointments),
            len(patient_ids),
        )
        if not patient_ids:
            return [], appointments
        rows = await self._client.select(
            "patients", Query().in_("id", patient_ids).order("full_name")
        )
        return parse_rows(Patient, rows), appointments

    async def appointments_for(self, patient_id: UUID) -> list[Appointment]:
        """Appointment history for a patient, newest first, with staff and slot."""
        query = (
            Query("*, staff(*), time_slots(*)")
            .eq("patient_id", patient_id)
            .order("appointment_date", ascending=False)
        )
        return parse_rows(Appointment, await self._client.select("appointments", query))
