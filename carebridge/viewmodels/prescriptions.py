import datetime as dt
from uuid import UUID

from loguru import logger

from carebridge.domain.datetime_helpers import parse_flexible_date
from carebridge.domain.exceptions import BackendError
from carebridge.domain.models import Appointment, AppointmentStatus, MedicineInput, Prescription
from carebridge.services.appointments import AppointmentService
from carebridge.services.prescriptions import PrescriptionService


class PrescriptionFormViewModel:
    """The prescription form a doctor fills in at the end of a consultation.

    Opening the form for an appointment that already has a prescription
    pre-fills it, and saving overwrites that prescription.
    """

    def __init__(
        self,
        prescriptions: PrescriptionService,
        appointment: Appointment,
        appointments: AppointmentService | None = None,
    ) -> None:
        self._prescriptions = prescriptions
        self._appointments = appointments
        self.appointment = appointment

        self.diagnosis = ""
        self.notes = ""
        self.follow_up_date: dt.date | None = None
        self.follow_up_notes = ""
        self.medicines: list[MedicineInput] = []
        self.existing: Prescription | None = None
        self.saved_id: UUID | None = None
        self.is_loading = False
        self.error_message: str | None = None

    @property
    def is_editing(self) -> bool:
        return self.existing is not None

    def add_medicine(self, medicine: MedicineInput) -> bool:
        if not (medicine.name.strip() and medicine.dosage.strip()):
            self.error_message = "Medicine name and dosage are required"
            return False
        self.medicines.append(medicine)
        self.error_message = None
        return True

    def update_medicine(self, index: int, medicine: MedicineInput) -> None:
        self.medicines[index] = medicine

    def remove_medicine(self, index: int) -> None:
        if 0 <= index < len(self.medicines):
            del self.medicines[index]

    async def load_existing(self) -> bool:
        self.error_message = None
        try:
            self.existing = await self._prescriptions.for_appointment(self.appointment.id)
        except BackendError as exc:
            logger.warning("Failed to load prescription for appointment {}: {}", self.appointment.id, exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error loading prescription")
            self.error_message = "An unexpected error occurred while loading the prescription."
            return False

        if self.existing is not None:
            self.diagnosis = self.existing.diagnosis or ""
            self.notes = self.existing.notes or ""
            self.follow_up_notes = self.existing.follow_up_notes or ""
            self.follow_up_date = parse_flexible_date(self.existing.follow_up_date)
            self.medicines = [MedicineInput.from_medicine(m) for m in self.existing.medicines]
        return True

    async def save(self, complete_appointment: bool = False) -> bool:
        """Save the form; optionally mark the appointment completed afterwards."""
        if not self.medicines:
            self.error_message = "Please add at least one medicine"
            return False

        self.is_loading = True
        self.error_message = None
        try:
            self.saved_id = await self._prescriptions.save_for_appointment(
                appointment_id=self.appointment.id,
                patient_id=self.appointment.patient_id,
                staff_id=self.appointment.staff_id,
                diagnosis=self.diagnosis.strip(),
                notes=self.notes.strip(),
                medicines=list(self.medicines),
                follow_up_date=self.follow_up_date,
                follow_up_notes=self.follow_up_notes.strip(),
            )
            if complete_appointment and self._appointments is not None:
                await self._appointments.update_status(self.appointment.id, AppointmentStatus.COMPLETED)
            return True
        except BackendError as exc:
            logger.warning("Failed to save prescription: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error saving prescription")
            self.error_message = "An unexpected error occurred while saving the prescription."
            return False
        finally:
            self.is_loading = False
