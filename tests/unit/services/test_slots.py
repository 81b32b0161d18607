import datetime as dt
import uuid
from typing import Any
from uuid import UUID

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services
from carebridge.domain.exceptions import BackendRequestError, RecordNotFoundError
from carebridge.domain.models import SlotStatus, TimeSlot

# Fixtures (fake_client, services, doctor, slot, today) provided by tests/conftest.py


class TestReads:
    @pytest.mark.asyncio
    async def test_available_slots_drop_full_and_disabled(
        self,
        services: Services,
        fake_client: FakeBackendClient,
        doctor: dict[str, Any],
        slot: dict[str, Any],
        today: dt.date,
    ) -> None:
        fake_client.seed(
            "time_slots",
            {
                "staff_id": doctor["id"],
                "slot_date": today.isoformat(),
                "start_time": "09:00:00",
                "end_time": "10:00:00",
                "is_available": True,
                "current_bookings": 5,
                "max_capacity": 5,
            },
            {
                "staff_id": doctor["id"],
                "slot_date": today.isoformat(),
                "start_time": "11:00:00",
                "end_time": "12:00:00",
                "is_available": False,
            },
        )

        available = await services.slots.available_slots(UUID(doctor["id"]), today)
        all_slots = await services.slots.slots_for_day(UUID(doctor["id"]), today)

        assert [s.id for s in available] == [UUID(slot["id"])]
        assert [s.start_time.hour for s in all_slots] == [9, 10, 11]


class TestSlotEdits:
    @pytest.mark.asyncio
    async def test_set_availability(self, services: Services, slot: dict[str, Any]) -> None:
        updated = await services.slots.set_availability(UUID(slot["id"]), False)

        assert updated.status == SlotStatus.DISABLED

    @pytest.mark.asyncio
    async def test_running_late_round_trip(self, services: Services, slot: dict[str, Any]) -> None:
        late = await services.slots.mark_running_late(UUID(slot["id"]), 15)
        assert late.status == SlotStatus.RUNNING_LATE
        assert late.delay_minutes == 15

        cleared = await services.slots.clear_running_late(UUID(slot["id"]))
        assert not cleared.is_running_late
        assert cleared.delay_minutes == 0

    @pytest.mark.asyncio
    async def test_non_positive_delay_is_rejected(
        self, services: Services, slot: dict[str, Any]
    ) -> None:
        with pytest.raises(ValueError, match="positive"):
            await services.slots.mark_running_late(UUID(slot["id"]), 0)

    @pytest.mark.asyncio
    async def test_adjust_delay_never_goes_negative(
        self, services: Services, slot: dict[str, Any]
    ) -> None:
        late = await services.slots.mark_running_late(UUID(slot["id"]), 10)

        longer = await services.slots.adjust_delay(late, 5)
        cleared = await services.slots.adjust_delay(longer, -30)

        assert longer.delay_minutes == 15
        assert cleared.delay_minutes == 0
        assert not cleared.is_running_late

    @pytest.mark.asyncio
    async def test_update_capacity(self, services: Services, slot: dict[str, Any]) -> None:
        updated = await services.slots.update_capacity(UUID(slot["id"]), 8)

        assert updated.max_capacity == 8
        with pytest.raises(ValueError, match="at least 1"):
            await services.slots.update_capacity(UUID(slot["id"]), 0)

    @pytest.mark.asyncio
    async def test_unknown_slot(self, services: Services) -> None:
        with pytest.raises(RecordNotFoundError, match="time_slots"):
            await services.slots.set_availability(uuid.uuid4(), True)

    @pytest.mark.asyncio
    async def test_disable_day_only_touches_that_day(
        self,
        services: Services,
        fake_client: FakeBackendClient,
        doctor: dict[str, Any],
        slot: dict[str, Any],
        today: dt.date,
    ) -> None:
        [tomorrow] = fake_client.seed(
            "time_slots",
            {
                "staff_id": doctor["id"],
                "slot_date": (today + dt.timedelta(days=1)).isoformat(),
                "start_time": "10:00:00",
                "end_time": "11:00:00",
            },
        )

        closed = await services.slots.disable_day(UUID(doctor["id"]), today)

        assert closed == 1
        rows = {r["id"]: r for r in fake_client.tables["time_slots"]}
        assert rows[slot["id"]]["is_available"] is False
        assert "is_available" not in rows[tomorrow["id"]]


class TestGeneration:
    @pytest.mark.asyncio
    async def test_generate_for_date_uses_default_capacity(
        self, services: Services, fake_client: FakeBackendClient, today: dt.date
    ) -> None:
        staff_id = uuid.uuid4()

        await services.slots.generate_for_date(staff_id, today)

        assert fake_client.calls[-1] == (
            "rpc",
            "generate_default_slots_for_date",
            {"p_staff_id": str(staff_id), "p_date": "2026-03-16", "p_default_capacity": 5},
        )

    @pytest.mark.asyncio
    async def test_generate_range_weekdays_only(
        self, services: Services, fake_client: FakeBackendClient, today: dt.date
    ) -> None:
        generated = await services.slots.generate_range(
            uuid.uuid4(), today, weeks=1, weekdays_only=True
        )

        assert generated == 5
        dates = {r["slot_date"] for r in fake_client.tables["time_slots"]}
        assert dates == {(today + dt.timedelta(days=d)).isoformat() for d in range(5)}

    @pytest.mark.asyncio
    async def test_generate_range_weekend_only(
        self, services: Services, fake_client: FakeBackendClient, today: dt.date
    ) -> None:
        generated = await services.slots.generate_range(
            uuid.uuid4(), today, weeks=1, weekend_only=True
        )

        assert generated == 2

    @pytest.mark.asyncio
    async def test_failed_days_are_skipped(
        self, services: Services, fake_client: FakeBackendClient, today: dt.date
    ) -> None:
        fake_client.fail("rpc", error=BackendRequestError(reason="boom", status_code=400))

        generated = await services.slots.generate_range(uuid.uuid4(), today, weeks=1)

        assert generated == 0


class TestEnsureFutureSlots:
    @pytest.mark.asyncio
    async def test_empty_calendar_starts_today(
        self, services: Services, fake_client: FakeBackendClient, today: dt.date
    ) -> None:
        generated = await services.slots.ensure_future_slots(uuid.uuid4(), today)

        # Two weeks of weekdays from a Monday
        assert generated == 10
        assert min(r["slot_date"] for r in fake_client.tables["time_slots"]) == today.isoformat()

    @pytest.mark.asyncio
    async def test_stocked_calendar_is_left_alone(
        self,
        services: Services,
        fake_client: FakeBackendClient,
        doctor: dict[str, Any],
        today: dt.date,
    ) -> None:
        fake_client.seed(
            "time_slots",
            {
                "staff_id": doctor["id"],
                "slot_date": (today + dt.timedelta(days=10)).isoformat(),
                "start_time": "09:00:00",
                "end_time": "10:00:00",
            },
        )

        assert await services.slots.ensure_future_slots(UUID(doctor["id"]), today) == 0

    @pytest.mark.asyncio
    async def test_low_calendar_continues_after_last_slot(
        self,
        services: Services,
        fake_client: FakeBackendClient,
        doctor: dict[str, Any],
        slot: dict[str, Any],
        today: dt.date,
    ) -> None:
        generated = await services.slots.ensure_future_slots(UUID(doctor["id"]), today)

        assert generated == 10
        new_dates = {
            r["slot_date"] for r in fake_client.tables["time_slots"] if r["id"] != slot["id"]
        }
        assert min(new_dates) == (today + dt.timedelta(days=1)).isoformat()


class TestTimeSlotParsing:
    @pytest.mark.asyncio
    async def test_fetch_slot(self, services: Services, slot: dict[str, Any]) -> None:
        fetched = await services.slots.fetch_slot(UUID(slot["id"]))

        assert isinstance(fetched, TimeSlot)
        assert fetched.time_range == "10:00 AM - 11:00 AM"
