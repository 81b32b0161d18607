import datetime as dt
import uuid
from typing import Any
from uuid import UUID

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services
from carebridge.domain.models import Patient


class TestCreate:
    @pytest.mark.asyncio
    async def test_row_id_is_the_auth_user_id(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        user_id = uuid.uuid4()

        patient = await services.patients.create(
            user_id, "Grace Hopper", "grace@example.test", date_of_birth=dt.date(1990, 12, 9)
        )

        assert patient.id == user_id
        assert fake_client.tables["patients"][0]["date_of_birth"] == "1990-12-09"

    @pytest.mark.asyncio
    async def test_add_full_record(self, services: Services, fake_client: FakeBackendClient) -> None:
        patient = Patient(
            id=uuid.uuid4(), full_name="Alan Turing", blood_group="A+", allergies=["Pollen"]
        )

        stored = await services.patients.add(patient)

        assert stored.id == patient.id
        assert fake_client.tables["patients"][0]["allergies"] == ["Pollen"]


class TestEdits:
    @pytest.mark.asyncio
    async def test_update_writes_editable_columns(
        self, services: Services, patient: dict[str, Any]
    ) -> None:
        current = await services.patients.fetch(UUID(patient["id"]))
        assert current is not None

        await services.patients.update(current.model_copy(update={"phone_number": "555-0101"}))

        refreshed = await services.patients.fetch(UUID(patient["id"]))
        assert refreshed is not None
        assert refreshed.phone_number == "555-0101"
        assert refreshed.full_name == "Grace Hopper"

    @pytest.mark.asyncio
    async def test_medical_history_blank_is_null(
        self, services: Services, patient: dict[str, Any]
    ) -> None:
        await services.patients.update_medical_history(
            UUID(patient["id"]), "", ["Penicillin"], None
        )

        refreshed = await services.patients.fetch(UUID(patient["id"]))
        assert refreshed is not None
        assert refreshed.medical_history is None
        assert refreshed.allergies == ["Penicillin"]

    @pytest.mark.asyncio
    async def test_delete(self, services: Services, patient: dict[str, Any]) -> None:
        await services.patients.delete(UUID(patient["id"]))

        assert await services.patients.fetch(UUID(patient["id"])) is None
        assert await services.patients.count_all() == 0


class TestStaffView:
    @pytest.mark.asyncio
    async def test_patients_seen_by_staff(
        self,
        services: Services,
        fake_client: FakeBackendClient,
        doctor: dict[str, Any],
        patient: dict[str, Any],
    ) -> None:
        [other] = fake_client.seed("patients", {"full_name": "Alan Turing"})
        fake_client.seed("patients", {"full_name": "Never Seen"})
        for patient_id in (patient["id"], other["id"], patient["id"]):
            fake_client.seed(
                "appointments",
                {
                    "patient_id": patient_id,
                    "staff_id": doctor["id"],
                    "appointment_date": "2026-03-16",
                },
            )

        patients, appointments = await services.patients.list_for_staff(UUID(doctor["id"]))

        assert [p.full_name for p in patients] == ["Alan Turing", "Grace Hopper"]
        assert len(appointments) == 3

    @pytest.mark.asyncio
    async def test_no_appointments(self, services: Services) -> None:
        assert await services.patients.list_for_staff(uuid.uuid4()) == ([], [])

    @pytest.mark.asyncio
    async def test_history_embeds_staff(
        self,
        services: Services,
        fake_client: FakeBackendClient,
        doctor: dict[str, Any],
        patient: dict[str, Any],
    ) -> None:
        fake_client.seed(
            "appointments",
            {"patient_id": patient["id"], "staff_id": doctor["id"], "appointment_date": "2026-03-01"},
            {"patient_id": patient["id"], "staff_id": doctor["id"], "appointment_date": "2026-03-10"},
        )

        history = await services.patients.appointments_for(UUID(patient["id"]))

        assert [a.appointment_date for a in history] == ["2026-03-10", "2026-03-01"]
        assert history[0].doctor_name == "Dr. Ada Lovelace"


class TestCounts:
    @pytest.mark.asyncio
    async def test_count_between(self, services: Services, fake_client: FakeBackendClient) -> None:
        fake_client.seed(
            "patients",
            {"full_name": "In", "created_at": "2026-03-10T12:00:00+00:00"},
            {"full_name": "Out", "created_at": "2026-02-10T12:00:00+00:00"},
        )
        start = dt.datetime(2026, 3, 9, tzinfo=dt.timezone.utc)
        end = dt.datetime(2026, 3, 15, 23, 59, tzinfo=dt.timezone.utc)

        assert await services.patients.count_between(start, end) == 1
        assert [p.full_name for p in await services.patients.list_between(start, end)] == ["In"]
