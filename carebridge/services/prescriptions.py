import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_first, parse_rows
from carebridge.backend.ports import BackendClientProtocol, Row
from carebridge.backend.query import Query
from carebridge.domain.exceptions import BackendError, PrescriptionError
from carebridge.domain.models import MedicineInput, Prescription

_WITH_MEDICINES = "*, prescription_medicines(*)"


def _blank_to_none(value: str | None) -> str | None:
    return value if value else None


def _medicine_rows(prescription_id: UUID, medicines: list[MedicineInput]) -> list[Row]:
    return [
        {
            "prescription_id": str(prescription_id),
            "medicine_name": m.name,
            "dosage": m.dosage,
            "frequency": m.frequency,
            "duration": m.duration,
            "instructions": _blank_to_none(m.instructions),
        }
        for m in medicines
    ]


class PrescriptionService:
    """Prescriptions written at the end of a consultation, with their medicines."""

    def __init__(self, client: BackendClientProtocol) -> None:
        self._client = client

    async def save_for_appointment(
        self,
        appointment_id: UUID,
        patient_id: UUID,
        staff_id: UUID,
        diagnosis: str,
        notes: str,
        medicines: list[MedicineInput],
        follow_up_date: dt.date | None = None,
        follow_up_notes: str = "",
        today: dt.date | None = None,
    ) -> UUID:
        """Create the appointment's prescription, or overwrite the existing one.

        Returns the prescription id. Medicines are replaced wholesale.
        """
        if not medicines:
            raise PrescriptionError("Please add at least one medicine")

        logger.info("Saving prescription for appointment {}", appointment_id)
        try:
            existing = await self._client.select(
                "prescriptions", Query("id").eq("appointment_id", appointment_id).limit(1)
            )
            header: Row = {
                "diagnosis": _blank_to_none(diagnosis),
                "notes": _blank_to_none(notes),
                "follow_up_date": follow_up_date.isoformat() if follow_up_date else None,
                "follow_up_notes": _blank_to_none(follow_up_notes),
            }

            if existing:
                prescription_id = UUID(str(existing[0]["id"]))
                logger.info("Updating existing prescription {}", prescription_id)
                await self._client.update(
                    "prescriptions",
                    {**header, "updated_at": dt.datetime.now(dt.timezone.utc).isoformat()},
                    Query().eq("id", prescription_id),
                )
                await self._replace_medicines(prescription_id, medicines)
                return prescription_id

            rows = await self._client.insert(
                "prescriptions",
                {
                    "appointment_id": str(appointment_id),
                    "patient_id": str(patient_id),
                    "staff_id": str(staff_id),
                    "prescription_date": (today or dt.date.today()).isoformat(),
                    **header,
                },
            )
            if not rows:
                raise PrescriptionError("backend returned no prescription")
            prescription_id = UUID(str(rows[0]["id"]))
            await self._client.insert("prescription_medicines", _medicine_rows(prescription_id, medicines))
        except BackendError:
            raise
        except Exception as exc:
            raise PrescriptionError(str(exc)) from exc

        logger.info("Prescription {} saved with {} medicine(s)", prescription_id, len(medicines))
        return prescription_id

    async def update(
        self,
        prescription_id: UUID,
        diagnosis: str,
        notes: str,
        medicines: list[MedicineInput],
    ) -> None:
        if not medicines:
            raise PrescriptionError("Please add at least one medicine")
        try:
            await self._client.update(
                "prescriptions",
                {
                    "diagnosis": _blank_to_none(diagnosis),
                    "notes": _blank_to_none(notes),
                    "updated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
                },
                Query().eq("id", prescription_id),
            )
            await self._replace_medicines(prescription_id, medicines)
        except BackendError:
            raise
        except Exception as exc:
            raise PrescriptionError(str(exc)) from exc
        logger.info("Prescription {} updated", prescription_id)

    async def _replace_medicines(self, prescription_id: UUID, medicines: list[MedicineInput]) -> None:
        await self._client.delete(
            "prescription_medicines", Query().eq("prescription_id", prescription_id)
        )
        await self._client.insert("prescription_medicines", _medicine_rows(prescription_id, medicines))

    async def list_for_patient(self, patient_id: UUID) -> list[Prescription]:
        query = (
            Query(_WITH_MEDICINES)
            .eq("patient_id", patient_id)
            .order("prescription_date", ascending=False)
        )
        return parse_rows(Prescription, await self._client.select("prescriptions", query))

    async def for_appointment(self, appointment_id: UUID) -> Prescription | None:
        query = Query(_WITH_MEDICINES).eq("appointment_id", appointment_id).limit(1)
        return parse_first(Prescription, await self._client.select("prescriptions", query))

    async def upcoming_follow_ups(
        self, patient_id: UUID, today: dt.date | None = None
    ) -> list[Prescription]:
        """Prescriptions whose follow-up date is today or later, soonest first."""
        query = (
            Query()
            .eq("patient_id", patient_id)
            .gte("follow_up_date", today or dt.date.today())
            .order("follow_up_date")
        )
        return parse_rows(Prescription, await self._client.select("prescriptions", query))
