"""List filtering and grouping used by the patient search and slot screens."""

import datetime as dt
from collections.abc import Iterable
from enum import Enum

from carebridge.domain.models import Appointment, DayPeriod, Patient, Staff, TimeSlot


class TimelineFilter(str, Enum):
    ALL = "All"
    TODAY = "Today"
    THIS_WEEK = "This Week"
    THIS_MONTH = "This Month"


class SortOption(str, Enum):
    NAME_ASC = "Name (A-Z)"
    NAME_DESC = "Name (Z-A)"
    DATE_ASC = "Date (Oldest)"
    DATE_DESC = "Date (Newest)"


_DISTANT_PAST = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def search_patients(patients: Iterable[Patient], query: str) -> list[Patient]:
    """Case-insensitive substring match over each patient's searchable text."""
    needle = query.strip().lower()
    if not needle:
        return list(patients)
    return [p for p in patients if needle in p.full_search_text]


def _in_timeline(date: dt.date, timeline: TimelineFilter, today: dt.date) -> bool:
    if timeline == TimelineFilter.TODAY:
        return date == today
    if timeline == TimelineFilter.THIS_WEEK:
        return date.isocalendar()[:2] == today.isocalendar()[:2]
    if timeline == TimelineFilter.THIS_MONTH:
        return (date.year, date.month) == (today.year, today.month)
    return True


def filter_by_timeline(
    patients: Iterable[Patient],
    appointments: Iterable[Appointment],
    timeline: TimelineFilter,
    today: dt.date | None = None,
) -> list[Patient]:
    """Keep patients with at least one appointment inside the timeline window."""
    if timeline == TimelineFilter.ALL:
        return list(patients)
    today = today or dt.date.today()
    matching = {
        a.patient_id
        for a in appointments
        if (date := a.parsed_date) is not None and _in_timeline(date, timeline, today)
    }
    return [p for p in patients if p.id in matching]


def sort_patients(patients: Iterable[Patient], option: SortOption) -> list[Patient]:
    if option in (SortOption.NAME_ASC, SortOption.NAME_DESC):
        return sorted(patients, key=lambda p: p.full_name, reverse=option == SortOption.NAME_DESC)

    def created(patient: Patient) -> dt.datetime:
        stamp = patient.created_at
        if stamp is None:
            return _DISTANT_PAST
        return stamp if stamp.tzinfo else stamp.replace(tzinfo=dt.timezone.utc)

    return sorted(patients, key=created, reverse=option == SortOption.DATE_DESC)


def apply_patient_filters(
    patients: Iterable[Patient],
    appointments: Iterable[Appointment],
    query: str = "",
    timeline: TimelineFilter = TimelineFilter.ALL,
    sort: SortOption = SortOption.NAME_ASC,
    today: dt.date | None = None,
) -> list[Patient]:
    """Search, then timeline filter, then sort."""
    result = search_patients(patients, query)
    result = filter_by_timeline(result, appointments, timeline, today)
    return sort_patients(result, sort)


def filter_staff_by_name(staff: Iterable[Staff], query: str) -> list[Staff]:
    needle = query.strip().lower()
    if not needle:
        return list(staff)
    return [s for s in staff if needle in s.full_name.lower()]


def group_slots_by_period(slots: Iterable[TimeSlot]) -> dict[DayPeriod, list[TimeSlot]]:
    """Morning/afternoon/evening buckets sorted by start time.

    Slots outside 6 AM - 10 PM are dropped; empty periods are omitted.
    """
    groups: dict[DayPeriod, list[TimeSlot]] = {}
    for slot in sorted(slots, key=lambda s: s.start_time):
        period = slot.day_period
        if period is None:
            continue
        groups.setdefault(period, []).append(slot)
    return {period: groups[period] for period in DayPeriod if period in groups}
