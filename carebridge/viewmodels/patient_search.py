import datetime as dt

from loguru import logger

from carebridge.domain.exceptions import BackendError
from carebridge.domain.filters import SortOption, TimelineFilter, apply_patient_filters
from carebridge.domain.models import Appointment, Patient
from carebridge.services.auth import AuthService
from carebridge.services.patients import PatientService


class PatientSearchViewModel:
    """A doctor's patient list with search, timeline filter and sort."""

    def __init__(self, auth: AuthService, patients: PatientService) -> None:
        self._auth = auth
        self._patients = patients

        self.patients: list[Patient] = []
        self.appointments: list[Appointment] = []
        self.search_query = ""
        self.timeline = TimelineFilter.ALL
        self.sort_option = SortOption.NAME_ASC
        self.is_loading = False
        self.error_message: str | None = None

    @property
    def total_count(self) -> int:
        return len(self.patients)

    @property
    def has_active_filters(self) -> bool:
        return bool(self.search_query) or self.timeline != TimelineFilter.ALL

    def filtered(self, today: dt.date | None = None) -> list[Patient]:
        return apply_patient_filters(
            self.patients,
            self.appointments,
            query=self.search_query,
            timeline=self.timeline,
            sort=self.sort_option,
            today=today,
        )

    def clear_filters(self) -> None:
        self.search_query = ""
        self.timeline = TimelineFilter.ALL
        self.sort_option = SortOption.NAME_ASC

    async def load(self) -> bool:
        staff_id = self._auth.current_user_id()
        if staff_id is None:
            self.error_message = "Unable to get staff ID"
            return False

        self.is_loading = True
        self.error_message = None
        try:
            self.patients, self.appointments = await self._patients.list_for_staff(staff_id)
            return True
        except BackendError as exc:
            logger.warning("Failed to load patients: {}", exc)
            self.error_message = f"Failed to load patients: {exc}"
            return False
        except Exception:
            logger.exception("Unexpected error loading patients")
            self.error_message = "An unexpected error occurred while loading patients."
            return False
        finally:
            self.is_loading = False

    async def delete(self, patient: Patient) -> bool:
        self.error_message = None
        try:
            await self._patients.delete(patient.id)
        except BackendError as exc:
            logger.warning("Failed to delete patient: {}", exc)
            self.error_message = f"Failed to delete patient: {exc}"
            return False
        except Exception:
            logger.exception("Unexpected error deleting patient")
            self.error_message = "An unexpected error occurred while deleting the patient."
            return False
        self.patients = [p for p in self.patients if p.id != patient.id]
        return True

    async def update(self, patient: Patient) -> bool:
        self.error_message = None
        try:
            await self._patients.update(patient)
        except BackendError as exc:
            logger.warning("Failed to update patient: {}", exc)
            self.error_message = f"Failed to update patient: {exc}"
            return False
        except Exception:
            logger.exception("Unexpected error updating patient")
            self.error_message = "An unexpected error occurred while updating the patient."
            return False
        self.patients = [patient if p.id == patient.id else p for p in self.patients]
        return True

    async def add(self, patient: Patient) -> bool:
        self.error_message = None
        try:
            added = await self._patients.add(patient)
        except BackendError as exc:
            logger.warning("Failed to add patient: {}", exc)
            self.error_message = f"Failed to add patient: {exc}"
            return False
        except Exception:
            logger.exception("Unexpected error adding patient")
            self.error_message = "An unexpected error occurred while adding the patient."
            return False
        self.patients = [*self.patients, added]
        return True

    async def history(self, patient: Patient) -> list[Appointment]:
        """Appointment history for the detail screen; empty when it cannot be loaded."""
        try:
            return await self._patients.appointments_for(patient.id)
        except BackendError as exc:
            logger.warning("Could not load appointments for patient {}: {}", patient.id, exc)
            return []
        except Exception:
            logger.exception("Unexpected error loading appointments for patient {}", patient.id)
            return []
