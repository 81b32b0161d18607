import datetime as dt
import uuid
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services
from carebridge.domain.filters import SortOption, TimelineFilter
from carebridge.domain.models import AuthUser, Patient
from carebridge.viewmodels.patient_search import PatientSearchViewModel

# Fixtures (fake_client, services, doctor, patient, today) provided by tests/conftest.py


@pytest.fixture
def view_model(services: Services) -> PatientSearchViewModel:
    return PatientSearchViewModel(services.auth, services.patients)


@pytest.fixture
def signed_in_doctor(fake_client: FakeBackendClient, doctor: dict[str, Any]) -> dict[str, Any]:
    fake_client.set_session(AuthUser(id=UUID(doctor["id"]), email=doctor["email"]))
    return doctor


@pytest.fixture
def caseload(
    fake_client: FakeBackendClient,
    doctor: dict[str, Any],
    patient: dict[str, Any],
    today: dt.date,
) -> list[dict[str, Any]]:
    [other] = fake_client.seed(
        "patients",
        {"id": str(uuid.uuid4()), "full_name": "Alan Turing", "blood_group": "O+"},
    )
    fake_client.seed(
        "appointments",
        {
            "patient_id": patient["id"],
            "staff_id": doctor["id"],
            "appointment_date": today.isoformat(),
            "status": "scheduled",
        },
        {
            "patient_id": other["id"],
            "staff_id": doctor["id"],
            "appointment_date": "2026-02-10",
            "status": "completed",
        },
    )
    return [patient, other]


class TestLoad:
    @pytest.mark.asyncio
    async def test_requires_signed_in_staff(self, view_model: PatientSearchViewModel) -> None:
        assert not await view_model.load()
        assert view_model.error_message == "Unable to get staff ID"

    @pytest.mark.asyncio
    async def test_loads_caseload_sorted_by_name(
        self,
        view_model: PatientSearchViewModel,
        signed_in_doctor: dict[str, Any],
        caseload: list[dict[str, Any]],
    ) -> None:
        assert await view_model.load()

        assert [p.full_name for p in view_model.patients] == ["Alan Turing", "Grace Hopper"]
        assert view_model.total_count == 2
        assert len(view_model.appointments) == 2

    @pytest.mark.asyncio
    async def test_backend_failure(
        self,
        view_model: PatientSearchViewModel,
        fake_client: FakeBackendClient,
        signed_in_doctor: dict[str, Any],
    ) -> None:
        fake_client.fail("select", "appointments")

        assert not await view_model.load()
        assert view_model.error_message == (
            "Failed to load patients: Backend rejected request: select failed"
        )
        assert not view_model.is_loading


class TestFilters:
    @pytest.mark.asyncio
    async def test_search_timeline_and_clear(
        self,
        view_model: PatientSearchViewModel,
        signed_in_doctor: dict[str, Any],
        caseload: list[dict[str, Any]],
        today: dt.date,
    ) -> None:
        await view_model.load()

        view_model.search_query = "o+"
        assert [p.full_name for p in view_model.filtered(today)] == ["Alan Turing"]
        assert view_model.has_active_filters

        view_model.search_query = ""
        view_model.timeline = TimelineFilter.THIS_WEEK
        assert [p.full_name for p in view_model.filtered(today)] == ["Grace Hopper"]

        view_model.sort_option = SortOption.NAME_DESC
        view_model.clear_filters()

        assert not view_model.has_active_filters
        assert view_model.sort_option == SortOption.NAME_ASC
        assert len(view_model.filtered(today)) == 2


class TestEdits:
    @pytest.mark.asyncio
    async def test_add_update_delete(
        self,
        view_model: PatientSearchViewModel,
        fake_client: FakeBackendClient,
        signed_in_doctor: dict[str, Any],
        caseload: list[dict[str, Any]],
    ) -> None:
        await view_model.load()
        newcomer = Patient(id=uuid.uuid4(), full_name="Barbara Liskov")

        assert await view_model.add(newcomer)
        assert view_model.total_count == 3

        renamed = newcomer.model_copy(update={"full_name": "Barbara H. Liskov"})
        assert await view_model.update(renamed)
        assert "Barbara H. Liskov" in [p.full_name for p in view_model.patients]
        [stored] = [r for r in fake_client.tables["patients"] if r["id"] == str(newcomer.id)]
        assert stored["full_name"] == "Barbara H. Liskov"

        assert await view_model.delete(renamed)
        assert view_model.total_count == 2

    @pytest.mark.asyncio
    async def test_failures_keep_the_list(
        self,
        view_model: PatientSearchViewModel,
        fake_client: FakeBackendClient,
        signed_in_doctor: dict[str, Any],
        caseload: list[dict[str, Any]],
    ) -> None:
        await view_model.load()
        target = view_model.patients[0]
        fake_client.fail("delete", "patients")
        fake_client.fail("update", "patients")

        assert not await view_model.delete(target)
        assert view_model.error_message == "Failed to delete patient: Backend rejected request: delete failed"
        assert not await view_model.update(target)
        assert view_model.error_message == "Failed to update patient: Backend rejected request: update failed"
        assert view_model.total_count == 2


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_newest_first(
        self,
        view_model: PatientSearchViewModel,
        signed_in_doctor: dict[str, Any],
        caseload: list[dict[str, Any]],
        patient: dict[str, Any],
    ) -> None:
        await view_model.load()
        grace = next(p for p in view_model.patients if p.id == UUID(patient["id"]))

        [appointment] = await view_model.history(grace)

        assert appointment.staff is not None
        assert appointment.staff.full_name == "Dr. Ada Lovelace"

    @pytest.mark.asyncio
    async def test_history_is_empty_on_failure(
        self,
        view_model: PatientSearchViewModel,
        fake_client: FakeBackendClient,
        patient: dict[str, Any],
    ) -> None:
        fake_client.fail("select", "appointments")

        assert await view_model.history(Patient.model_validate(patient)) == []


class TestUnexpectedErrors:
    @pytest.mark.asyncio
    async def test_edits_report_a_message(
        self,
        services: Services,
        view_model: PatientSearchViewModel,
        patient: dict[str, Any],
    ) -> None:
        grace = Patient.model_validate(patient)
        view_model.patients = [grace]
        services.patients.delete = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        services.patients.add = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]

        assert not await view_model.delete(grace)
        assert view_model.error_message == "An unexpected error occurred while deleting the patient."
        assert not await view_model.add(grace)
        assert view_model.error_message == "An unexpected error occurred while adding the patient."
        assert view_model.patients == [grace]

    @pytest.mark.asyncio
    async def test_history(
        self,
        services: Services,
        view_model: PatientSearchViewModel,
        patient: dict[str, Any],
    ) -> None:
        services.patients.appointments_for = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]

        assert await view_model.history(Patient.model_validate(patient)) == []
