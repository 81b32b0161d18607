import uuid

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services
from carebridge.domain.exceptions import BackendRequestError, FeedbackError
from carebridge.domain.models import Appointment, FeedbackSubmitter
from carebridge.services.feedback import ALREADY_SUBMITTED


def _appointment(status: str = "completed") -> Appointment:
    return Appointment(
        id=uuid.uuid4(),
        patient_id=uuid.uuid4(),
        staff_id=uuid.uuid4(),
        appointment_date="2026-03-16",
        status=status,
    )


class TestSubmit:
    @pytest.mark.asyncio
    async def test_patient_feedback_is_stored(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        appointment = _appointment()

        await services.feedback.submit(appointment, FeedbackSubmitter.PATIENT, 5, "Great")

        [row] = fake_client.tables["feedbacks"]
        assert row["doctor_id"] == str(appointment.staff_id)
        assert row["submitted_by"] == "patient"
        assert row["comments"] == "Great"
        assert await services.feedback.exists(appointment.id, FeedbackSubmitter.PATIENT)
        assert not await services.feedback.exists(appointment.id, FeedbackSubmitter.DOCTOR)

    @pytest.mark.asyncio
    async def test_doctor_may_skip_rating(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        await services.feedback.submit(_appointment(), FeedbackSubmitter.DOCTOR, None)

        [row] = fake_client.tables["feedbacks"]
        assert row["rating"] is None
        assert row["comments"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [None, 0, 6])
    async def test_patient_rating_must_be_one_to_five(
        self, services: Services, rating: int | None
    ) -> None:
        with pytest.raises(FeedbackError, match="between 1 and 5"):
            await services.feedback.submit(_appointment(), FeedbackSubmitter.PATIENT, rating)

    @pytest.mark.asyncio
    async def test_cancelled_appointment(self, services: Services) -> None:
        with pytest.raises(FeedbackError, match="cancelled appointments"):
            await services.feedback.submit(
                _appointment("cancelled"), FeedbackSubmitter.PATIENT, 4
            )

    @pytest.mark.asyncio
    async def test_second_submission_is_refused(self, services: Services) -> None:
        appointment = _appointment()
        await services.feedback.submit(appointment, FeedbackSubmitter.PATIENT, 4)

        with pytest.raises(FeedbackError) as exc_info:
            await services.feedback.submit(appointment, FeedbackSubmitter.PATIENT, 5)
        assert str(exc_info.value) == ALREADY_SUBMITTED

    @pytest.mark.asyncio
    async def test_duplicate_detected_from_message(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        fake_client.fail(
            "insert",
            "feedbacks",
            BackendRequestError(reason="violates unique constraint feedbacks_key", status_code=409),
        )

        with pytest.raises(FeedbackError, match="already submitted"):
            await services.feedback.submit(_appointment(), FeedbackSubmitter.PATIENT, 4)

    @pytest.mark.asyncio
    async def test_other_rejection(self, services: Services, fake_client: FakeBackendClient) -> None:
        fake_client.fail(
            "insert", "feedbacks", BackendRequestError(reason="permission denied", status_code=403)
        )

        with pytest.raises(FeedbackError, match="Failed to submit feedback: permission denied"):
            await services.feedback.submit(_appointment(), FeedbackSubmitter.PATIENT, 4)


class TestReads:
    @pytest.mark.asyncio
    async def test_average_rating_uses_patient_feedback(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        doctor_id = str(uuid.uuid4())
        for submitted_by, rating in (("patient", 5), ("patient", 2), ("doctor", None)):
            fake_client.seed(
                "feedbacks",
                {
                    "appointment_id": str(uuid.uuid4()),
                    "patient_id": str(uuid.uuid4()),
                    "doctor_id": doctor_id,
                    "submitted_by": submitted_by,
                    "rating": rating,
                },
            )

        assert await services.feedback.average_rating(uuid.UUID(doctor_id)) == 3.5

    @pytest.mark.asyncio
    async def test_average_without_ratings(self, services: Services) -> None:
        assert await services.feedback.average_rating(uuid.uuid4()) == 0.0

    @pytest.mark.asyncio
    async def test_recent_includes_names(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        [doctor] = fake_client.seed("staff", {"full_name": "Dr. Ada"})
        [patient] = fake_client.seed("patients", {"full_name": "Grace"})
        for day in range(1, 8):
            fake_client.seed(
                "feedbacks",
                {
                    "appointment_id": str(uuid.uuid4()),
                    "patient_id": patient["id"],
                    "doctor_id": doctor["id"],
                    "submitted_by": "patient",
                    "rating": 4,
                    "created_at": f"2026-03-0{day}T10:00:00+00:00",
                },
            )

        recent = await services.feedback.recent(limit=5)

        assert len(recent) == 5
        assert recent[0].created_at is not None
        assert recent[0].created_at.day == 7
        assert recent[0].doctor is not None
        assert recent[0].doctor.full_name == "Dr. Ada"
        assert recent[0].patient is not None
        assert recent[0].patient.full_name == "Grace"
        assert len(await services.feedback.all()) == 7
