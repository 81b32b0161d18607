import datetime as dt
import uuid
from typing import Any

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services, build_services
from carebridge.config import AppConfig, SchedulingConfig, SupabaseConfig

# A fixed Monday keeps weekday-dependent tests deterministic.
TODAY = dt.date(2026, 3, 16)


@pytest.fixture
def today() -> dt.date:
    return TODAY


@pytest.fixture
def fake_client() -> FakeBackendClient:
    return FakeBackendClient()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        clinic_timezone="UTC",
        supabase=SupabaseConfig(url="https://example.supabase.test", anon_key="anon"),
        scheduling=SchedulingConfig(),
    )


@pytest.fixture
def services(config: AppConfig, fake_client: FakeBackendClient) -> Services:
    return build_services(config, client=fake_client)


@pytest.fixture
def doctor(fake_client: FakeBackendClient) -> dict[str, Any]:
    return fake_client.seed(
        "staff",
        {
            "id": str(uuid.uuid4()),
            "full_name": "Dr. Ada Lovelace",
            "email": "ada@clinic.test",
            "department_id": "Cardiology",
            "designation": "Doctor",
        },
    )[0]


@pytest.fixture
def patient(fake_client: FakeBackendClient) -> dict[str, Any]:
    return fake_client.seed(
        "patients",
        {
            "id": str(uuid.uuid4()),
            "full_name": "Grace Hopper",
            "email": "grace@example.test",
            "date_of_birth": "1990-12-09",
        },
    )[0]


@pytest.fixture
def slot(fake_client: FakeBackendClient, doctor: dict[str, Any]) -> dict[str, Any]:
    return fake_client.seed(
        "time_slots",
        {
            "id": str(uuid.uuid4()),
            "staff_id": doctor["id"],
            "slot_date": TODAY.isoformat(),
            "start_time": "10:00:00",
            "end_time": "11:00:00",
            "is_available": True,
            "current_bookings": 0,
            "max_capacity": 5,
        },
    )[0]
