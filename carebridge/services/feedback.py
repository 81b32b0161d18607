from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_first, parse_rows
from carebridge.backend.ports import BackendClientProtocol
from carebridge.backend.query import Query
from carebridge.domain.exceptions import BackendRequestError, FeedbackError
from carebridge.domain.models import Appointment, AppointmentStatus, Feedback, FeedbackSubmitter

_WITH_NAMES = "*, patients(full_name), staff(full_name)"

ALREADY_SUBMITTED = "You have already submitted feedback for this appointment"


def _is_duplicate(exc: BackendRequestError) -> bool:
    if exc.code == "23505":
        return True
    reason = exc.reason.lower()
    return "duplicate" in reason or "unique" in reason


class FeedbackService:
    """Post-appointment feedback from patients and doctors."""

    def __init__(self, client: BackendClientProtocol) -> None:
        self._client = client

    async def submit(
        self,
        appointment: Appointment,
        submitted_by: FeedbackSubmitter,
        rating: int | None,
        comments: str = "",
    ) -> None:
        """Store feedback for ``appointment``.

        Patients must give a 1-5 rating; doctors may omit it. One submission
        per appointment and submitter is enforced by the backend.
        """
        if submitted_by == FeedbackSubmitter.PATIENT and rating is None:
            raise FeedbackError("Please provide a rating between 1 and 5 stars")
        if rating is not None and not 1 <= rating <= 5:
            raise FeedbackError("Please provide a rating between 1 and 5 stars")
        if appointment.appointment_status == AppointmentStatus.CANCELLED:
            raise FeedbackError("Feedback cannot be submitted for cancelled appointments")

        logger.info("Submitting {} feedback for appointment {}", submitted_by.value, appointment.id)
        try:
            await self._client.insert(
                "feedbacks",
                {
                    "appointment_id": str(appointment.id),
                    "patient_id": str(appointment.patient_id),
                    "doctor_id": str(appointment.staff_id),
                    "submitted_by": submitted_by.value,
                    "rating": rating,
                    "comments": comments or None,
                },
            )
        except BackendRequestError as exc:
            if _is_duplicate(exc):
                raise FeedbackError(ALREADY_SUBMITTED) from exc
            raise FeedbackError(f"Failed to submit feedback: {exc.reason}") from exc

    async def fetch(self, appointment_id: UUID, submitted_by: FeedbackSubmitter) -> Feedback | None:
        query = (
            Query()
            .eq("appointment_id", appointment_id)
            .eq("submitted_by", submitted_by)
            .limit(1)
        )
        return parse_first(Feedback, await self._client.select("feedbacks", query))

    async def exists(self, appointment_id: UUID, submitted_by: FeedbackSubmitter) -> bool:
        return await self.fetch(appointment_id, submitted_by) is not None

    async def for_appointment(self, appointment_id: UUID) -> list[Feedback]:
        query = Query().eq("appointment_id", appointment_id).order("created_at", ascending=False)
        return parse_rows(Feedback, await self._client.select("feedbacks", query))

    async def for_doctor(self, doctor_id: UUID) -> list[Feedback]:
        """Patient feedback about a doctor, newest first."""
        query = (
            Query()
            .eq("doctor_id", doctor_id)
            .eq("submitted_by", FeedbackSubmitter.PATIENT)
            .order("created_at", ascending=False)
        )
        return parse_rows(Feedback, await self._client.select("feedbacks", query))

    async def average_rating(self, doctor_id: UUID) -> float:
        ratings = [f.rating for f in await self.for_doctor(doctor_id) if f.rating is not None]
        if not ratings:
            return 0.0
        return sum(ratings) / len(ratings)

    async def recent(self, limit: int = 5) -> list[Feedback]:
        query = Query(_WITH_NAMES).order("created_at", ascending=False).limit(limit)
        return parse_rows(Feedback, await self._client.select("feedbacks", query))

    async def all(self) -> list[Feedback]:
        query = Query(_WITH_NAMES).order("created_at", ascending=False)
        return parse_rows(Feedback, await self._client.select("feedbacks", query))
