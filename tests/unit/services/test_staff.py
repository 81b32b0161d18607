import datetime as dt
import uuid
from typing import Any
from uuid import UUID

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services
from carebridge.services.staff import department_name


class TestDepartmentName:
    @pytest.mark.parametrize(
        ("department_id", "expected"),
        [
            ("ent", "ENT (Ear, Nose & Throat)"),
            ("critical_care", "Critical Care / ICU"),
            ("space_medicine", "Space Medicine"),
            (None, "General Medicine"),
        ],
        ids=["known", "known-with-underscore", "unknown", "missing"],
    )
    def test_names(self, department_id: str | None, expected: str) -> None:
        assert department_name(department_id) == expected


class TestDirectory:
    @pytest.mark.asyncio
    async def test_list_newest_first(self, services: Services, fake_client: FakeBackendClient) -> None:
        fake_client.seed(
            "staff",
            {"full_name": "Dr. Old", "created_at": "2025-01-01T00:00:00+00:00"},
            {"full_name": "Dr. New", "created_at": "2026-01-01T00:00:00+00:00"},
        )

        staff = await services.staff.list_staff()

        assert [s.full_name for s in staff] == ["Dr. New", "Dr. Old"]

    @pytest.mark.asyncio
    async def test_create_returns_generated_id(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        staff = await services.staff.create("Dr. Alan Turing", "alan@clinic.test", "neurology")

        assert staff.designation == "Doctor"
        assert fake_client.tables["staff"][0]["id"] == str(staff.id)
        assert fake_client.tables["staff"][0]["is_active"] is True

    @pytest.mark.asyncio
    async def test_personal_details_blank_phone_is_null(
        self, services: Services, fake_client: FakeBackendClient, doctor: dict[str, Any]
    ) -> None:
        await services.staff.update_personal_details(UUID(doctor["id"]), "Dr. Ada King", "")

        stored = await services.staff.fetch(UUID(doctor["id"]))
        assert stored is not None
        assert stored.full_name == "Dr. Ada King"
        assert stored.phone is None

    @pytest.mark.asyncio
    async def test_blank_designation_defaults_to_doctor(
        self, services: Services, doctor: dict[str, Any]
    ) -> None:
        await services.staff.update_role_and_department(UUID(doctor["id"]), "", "oncology")

        stored = await services.staff.fetch(UUID(doctor["id"]))
        assert stored is not None
        assert stored.designation == "Doctor"
        assert stored.department_id == "oncology"


class TestDefaultSlots:
    @pytest.mark.asyncio
    async def test_working_day_of_hourly_slots(self, services: Services, today: dt.date) -> None:
        slots = await services.staff.create_default_slots(uuid.uuid4(), today, capacity=3)

        assert len(slots) == 8
        assert slots[0].start_time == dt.time(9)
        assert slots[-1].end_time == dt.time(17)
        assert {s.max_capacity for s in slots} == {3}

    @pytest.mark.asyncio
    async def test_range_skips_weekends(
        self, services: Services, fake_client: FakeBackendClient, today: dt.date
    ) -> None:
        days = await services.staff.create_slots_for_range(
            uuid.uuid4(), today, today + dt.timedelta(days=6), weekdays_only=True
        )

        assert days == 5
        assert len(fake_client.tables["time_slots"]) == 40
