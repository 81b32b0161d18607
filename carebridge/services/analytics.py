"""Admin analytics and the personalised slot suggestions.

Everything except ``AnalyticsService`` is a pure function over rows that were
already fetched, so the heuristics can be tested without a backend.
"""

import asyncio
import datetime as dt
from collections import Counter, defaultdict
from enum import Enum
from uuid import UUID

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from carebridge.backend.parsing_helpers import parse_rows
from carebridge.backend.ports import BackendClientProtocol
from carebridge.backend.query import Query
from carebridge.config import SchedulingConfig
from carebridge.domain.datetime_helpers import clinic_today, time_to_12h
from carebridge.domain.models import (
    Appointment,
    DashboardStats,
    SeriesPoint,
    SlotSuggestion,
    Staff,
    TimeSlot,
)

NO_DATA = "No Data"
DEFAULT_PREFERRED_HOUR = 10.0

HIGH_UTILISATION = 0.85
LOW_UTILISATION = 0.30
HIGH_DEMAND_RATIO = 1.2
LOW_DEMAND_RATIO = 0.6


class StatsRange(str, Enum):
    TODAY = "Today"
    WEEK = "This Week"


class ChartRange(str, Enum):
    TODAY = "Today"
    WEEK = "Last 7 Days"
    MONTH = "Last 30 Days"


Period = tuple[dt.datetime, dt.datetime]


def busiest_day(appointments: list[Appointment]) -> str:
    """Weekday name with the most appointments."""
    counts = Counter(
        date.strftime("%A") for a in appointments if (date := a.parsed_date) is not None
    )
    if not counts:
        return NO_DATA
    return counts.most_common(1)[0][0]


def busiest_time_slot(slots: list[TimeSlot]) -> str:
    """Start-end window with the most bookings summed across all days."""
    if not slots:
        return NO_DATA
    totals: Counter[tuple[dt.time, dt.time]] = Counter()
    for slot in slots:
        totals[(slot.start_time, slot.end_time)] += slot.current_bookings
    (start, end), total = totals.most_common(1)[0]
    window = f"{time_to_12h(start)} - {time_to_12h(end)}"
    return f"{window} (Total: {total})"


def most_occupied_staff(appointments: list[Appointment], staff: list[Staff]) -> str:
    if not appointments:
        return NO_DATA
    staff_id, count = Counter(a.staff_id for a in appointments).most_common(1)[0]
    member = next((s for s in staff if s.id == staff_id), None)
    if member is None:
        return NO_DATA
    return f"{member.full_name} ({count} appointments)"


def suggest_slots(
    patient_id: UUID,
    history: list[Appointment],
    slots: list[TimeSlot],
    staff: list[Staff],
    limit: int = 5,
    today: dt.date | None = None,
) -> list[SlotSuggestion]:
    """Rank open slots for a patient.

    Score = max(0, 30 - days until the slot), +50 when the slot belongs to the
    patient's most visited doctor, +20 when it starts within two hours of the
    patient's usual appointment hour (10 AM without history). Ties go to the
    earlier date, then the earlier start.
    """
    today = today or dt.date.today()
    own = [a for a in history if a.patient_id == patient_id]

    visits = Counter(a.staff_id for a in own)
    preferred_doctor = visits.most_common(1)[0][0] if visits else None
    hours = [h for a in own if (h := a.start_hour) is not None]
    preferred_hour = sum(hours) / len(hours) if hours else DEFAULT_PREFERRED_HOUR

    names = {s.id: s.full_name for s in staff}
    ranked: list[SlotSuggestion] = []
    for slot in slots:
        if slot.slot_date is None or slot.slot_date < today or not slot.is_bookable:
            continue
        score = float(max(0, 30 - (slot.slot_date - today).days))
        is_preferred = preferred_doctor is not None and slot.staff_id == preferred_doctor
        if is_preferred:
            score += 50.0
        if abs(slot.hour - preferred_hour) <= 2.0:
            score += 20.0
        ranked.append(
            SlotSuggestion(
                slot=slot,
                score=score,
                doctor_name=names.get(slot.staff_id, "Unknown Doctor"),
                is_preferred_doctor=is_preferred,
            )
        )

    ranked.sort(key=lambda s: (-s.score, s.slot.slot_date, s.slot.start_time))
    return ranked[:limit]


def predict_staff_requirement(slots: list[TimeSlot]) -> list[str]:
    """Flag dates whose booked/capacity utilisation is unusually high or low."""
    if not slots:
        return ["Insufficient data"]

    booked: dict[dt.date, int] = defaultdict(int)
    capacity: dict[dt.date, int] = defaultdict(int)
    for slot in slots:
        if slot.slot_date is None:
            continue
        booked[slot.slot_date] += slot.current_bookings
        capacity[slot.slot_date] += slot.max_capacity

    messages = []
    for date in sorted(capacity):
        if capacity[date] <= 0:
            continue
        utilisation = booked[date] / capacity[date]
        percent = int(utilisation * 100)
        if utilisation > HIGH_UTILISATION:
            messages.append(f"High load on {date.isoformat()} ({percent}%). Consider adding staff.")
        elif utilisation < LOW_UTILISATION:
            messages.append(f"Low load on {date.isoformat()} ({percent}%). Consider reducing staff.")
    return messages or ["Staffing levels appear adequate."]


def expected_bookings_per_weekday(appointments: list[Appointment]) -> dict[int, float]:
    """Average appointments per calendar day, keyed by ``date.weekday()``."""
    counts: Counter[int] = Counter()
    dates_seen: dict[int, set[dt.date]] = defaultdict(set)
    for appointment in appointments:
        date = appointment.parsed_date
        if date is None:
            continue
        counts[date.weekday()] += 1
        dates_seen[date.weekday()].add(date)
    return {weekday: counts[weekday] / len(dates_seen[weekday]) for weekday in counts}


def predict_staff_requirement_by_demand(
    appointments: list[Appointment],
    lookahead_days: int = 7,
    today: dt.date | None = None,
) -> list[str]:
    """Compare bookings in the next ``lookahead_days`` with the weekday's usual demand."""
    today = today or dt.date.today()
    expected = expected_bookings_per_weekday(appointments)
    actual = Counter(d for a in appointments if (d := a.parsed_date) is not None)

    messages = []
    for offset in range(lookahead_days + 1):
        date = today + dt.timedelta(days=offset)
        usual = expected.get(date.weekday())
        if usual is None:
            continue
        ratio = actual[date] / max(1.0, usual)
        if ratio > HIGH_DEMAND_RATIO:
            messages.append(f"High demand expected on {date.isoformat()}. Consider adding staff.")
        elif ratio < LOW_DEMAND_RATIO:
            messages.append(f"Lower-than-usual demand on {date.isoformat()}. Monitor bookings.")
    return messages or ["Staffing appears aligned with expected demand."]


def staff_by_weekday_demand(
    appointments: list[Appointment], staff: list[Staff]
) -> dict[str, list[Staff]]:
    """For each weekday, the staff who see patients that day, busiest first."""
    per_day: dict[str, Counter[UUID]] = defaultdict(Counter)
    for appointment in appointments:
        date = appointment.parsed_date
        day = date.strftime("%A") if date else "Unknown"
        per_day[day][appointment.staff_id] += 1

    by_id = {s.id: s for s in staff}
    result: dict[str, list[Staff]] = {}
    for day, counts in per_day.items():
        members = [by_id[sid] for sid, _ in counts.most_common() if sid in by_id]
        if members:
            result[day] = members
    return result


def predict_patient_load(appointments: list[Appointment]) -> str:
    """Compare average daily volume in the later half of the history with the earlier half."""
    if len(appointments) <= 5:
        return "Need more data for trend analysis"

    daily = Counter(d for a in appointments if (d := a.parsed_date) is not None)
    days = sorted(daily)
    if len(days) < 2:
        return "Stable (Insufficient daily spread)"

    mid = len(days) // 2
    first = sum(daily[d] for d in days[:mid]) / mid
    second = sum(daily[d] for d in days[mid:]) / (len(days) - mid)
    if second > first * 1.05:
        return "Increasing Trend (+5% growth). Prepare resources."
    if second < first * 0.95:
        return "Decreasing Trend. Monitor marketing."
    return "Stable Trend."


def percentage_change(current: int, previous: int) -> str:
    """``percentage_change(15, 10)`` → ``+50%``."""
    if previous == 0:
        return "+100%" if current > 0 else "0%"
    change = (current - previous) / previous * 100.0
    sign = "+" if change >= 0 else ""
    return f"{sign}{change:.0f}%"


def daily_series(timestamps: list[dt.datetime], start: dt.date, end: dt.date) -> list[SeriesPoint]:
    """Count timestamps per day over ``[start, end]``; days without any are 0."""
    counts = Counter(ts.date() for ts in timestamps)
    points = []
    day = start
    while day <= end:
        points.append(SeriesPoint(label=day.isoformat(), value=float(counts[day])))
        day += dt.timedelta(days=1)
    return points


def _short_label(name: str, used: set[str]) -> str:
    label = name.split(" ")[0] if len(name) > 6 else name
    if label in used:
        parts = name.split(" ")
        label = f"{parts[0]} {parts[-1][0]}." if len(parts) > 1 and parts[-1] else name
        if label in used:
            label = name
    return label


def appointments_per_doctor(appointments: list[Appointment], top: int = 5) -> list[SeriesPoint]:
    """Appointment counts per doctor for a bar chart, busiest first.

    Long names are shortened to the first name, adding the last initial when
    two doctors would otherwise share a label.
    """
    counts = Counter(a.staff.full_name if a.staff else "Unknown" for a in appointments)
    used: set[str] = set()
    points = []
    for name, count in counts.most_common():
        label = _short_label(name, used)
        used.add(label)
        points.append(SeriesPoint(label=label, value=float(count)))
    return points[:top]


def stats_periods(range_: StatsRange, now: dt.datetime) -> tuple[Period, Period]:
    """Current and previous period for the dashboard counters. Weeks start on Monday."""
    start_of_today = dt.datetime.combine(now.date(), dt.time(), tzinfo=now.tzinfo)
    if range_ == StatsRange.TODAY:
        end_of_today = start_of_today + dt.timedelta(days=1) - dt.timedelta(seconds=1)
        yesterday = start_of_today - dt.timedelta(days=1)
        return (start_of_today, end_of_today), (yesterday, start_of_today - dt.timedelta(seconds=1))

    start_of_week = start_of_today - dt.timedelta(days=now.weekday())
    start_of_last_week = start_of_week - dt.timedelta(days=7)
    end_of_last_week = start_of_last_week + dt.timedelta(days=6)
    return (start_of_week, now), (start_of_last_week, end_of_last_week)


def chart_period(range_: ChartRange, now: dt.datetime) -> Period:
    if range_ == ChartRange.TODAY:
        return dt.datetime.combine(now.date(), dt.time(), tzinfo=now.tzinfo), now
    days = 7 if range_ == ChartRange.WEEK else 30
    return now - dt.timedelta(days=days), now


class AnalyticsReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    appointments_count: int
    slots_count: int
    staff_count: int
    busiest_day: str
    busiest_time_slot: str
    most_occupied_staff: str
    staff_by_weekday: dict[str, list[str]] = Field(default_factory=dict)
    patient_load: str
    staffing: list[str]
    demand_staffing: list[str]
    suggestion_patient_id: UUID | None = None
    suggestions: list[str] = Field(default_factory=list)


class AnalyticsService:
    """Fetches the rows the heuristics need and runs them."""

    def __init__(
        self,
        client: BackendClientProtocol,
        scheduling: SchedulingConfig | None = None,
        clinic_tz: dt.tzinfo = dt.timezone.utc,
    ) -> None:
        self._client = client
        self._scheduling = scheduling or SchedulingConfig()
        self._clinic_tz = clinic_tz

    def _now(self, now: dt.datetime | None) -> dt.datetime:
        return now or dt.datetime.now(self._clinic_tz)

    async def fetch_data(self) -> tuple[list[Appointment], list[TimeSlot], list[Staff]]:
        """Appointments, slots and staff, fetched concurrently."""
        appointments, slots, staff = await asyncio.gather(
            self._client.select("appointments"),
            self._client.select("time_slots"),
            self._client.select("staff"),
        )
        logger.info(
            "Analytics data: {} appointment(s), {} slot(s), {} staff",
            len(appointments),
            len(slots),
            len(staff),
        )
        return (
            parse_rows(Appointment, appointments),
            parse_rows(TimeSlot, slots),
            parse_rows(Staff, staff),
        )

    async def dashboard_stats(
        self, range_: StatsRange = StatsRange.WEEK, now: dt.datetime | None = None
    ) -> DashboardStats:
        current, previous = stats_periods(range_, self._now(now))

        def created_between(period: Period) -> Query:
            return Query().gte("created_at", period[0].isoformat()).lte("created_at", period[1].isoformat())

        patients, appointments, prev_patients, prev_appointments = await asyncio.gather(
            self._client.count("patients", created_between(current)),
            self._client.count("appointments", created_between(current)),
            self._client.count("patients", created_between(previous)),
            self._client.count("appointments", created_between(previous)),
        )
        return DashboardStats(
            patients_count=patients,
            appointments_count=appointments,
            patients_delta=percentage_change(patients, prev_patients),
            appointments_delta=percentage_change(appointments, prev_appointments),
        )

    async def footfall(
        self, range_: ChartRange = ChartRange.WEEK, now: dt.datetime | None = None
    ) -> list[SeriesPoint]:
        """New patient registrations per day over the chart range."""
        start, end = chart_period(range_, self._now(now))
        rows = await self._client.select(
            "patients",
            Query("id, created_at")
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at"),
        )
        stamps = [
            dt.datetime.fromisoformat(str(r["created_at"]).replace("Z", "+00:00"))
            for r in rows
            if r.get("created_at")
        ]
        return daily_series(stamps, start.date(), end.date())

    async def busiest_doctors(
        self, range_: ChartRange = ChartRange.WEEK, now: dt.datetime | None = None
    ) -> list[SeriesPoint]:
        start, end = chart_period(range_, self._now(now))
        rows = await self._client.select(
            "appointments",
            Query("*, staff(*)").gte("appointment_date", start.date()).lte("appointment_date", end.date()),
        )
        return appointments_per_doctor(parse_rows(Appointment, rows))

    async def suggestions_for(
        self, patient_id: UUID, today: dt.date | None = None
    ) -> list[SlotSuggestion]:
        appointments, slots, staff = await self.fetch_data()
        return suggest_slots(
            patient_id,
            appointments,
            slots,
            staff,
            limit=self._scheduling.suggestion_limit,
            today=today or clinic_today(self._clinic_tz),
        )

    async def build_report(self, today: dt.date | None = None) -> AnalyticsReport:
        """Run every heuristic over one snapshot of the data."""
        today = today or clinic_today(self._clinic_tz)
        appointments, slots, staff = await self.fetch_data()

        patient_id = appointments[0].patient_id if appointments else None
        suggestions = (
            suggest_slots(
                patient_id,
                appointments,
                slots,
                staff,
                limit=self._scheduling.suggestion_limit,
                today=today,
            )
            if patient_id
            else []
        )
        return AnalyticsReport(
            appointments_count=len(appointments),
            slots_count=len(slots),
            staff_count=len(staff),
            busiest_day=busiest_day(appointments),
            busiest_time_slot=busiest_time_slot(slots),
            most_occupied_staff=most_occupied_staff(appointments, staff),
            staff_by_weekday={
                day: [m.full_name for m in members[:3]]
                for day, members in sorted(staff_by_weekday_demand(appointments, staff).items())
            },
            patient_load=predict_patient_load(appointments),
            staffing=predict_staff_requirement(slots),
            demand_staffing=predict_staff_requirement_by_demand(
                appointments, self._scheduling.lookahead_days, today
            ),
            suggestion_patient_id=patient_id,
            suggestions=[s.label for s in suggestions],
        )
