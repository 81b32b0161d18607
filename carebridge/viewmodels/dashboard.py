import asyncio
import datetime as dt

from loguru import logger

from carebridge.domain.exceptions import BackendError
from carebridge.domain.models import DashboardStats, Feedback, SeriesPoint
from carebridge.services.analytics import AnalyticsService, ChartRange, StatsRange
from carebridge.services.feedback import FeedbackService
from carebridge.services.staff import StaffService


class AdminDashboardViewModel:
    """Admin landing screen: headline counters, charts and recent feedback.

    Each section loads independently so one failing query leaves the others
    on screen.
    """

    def __init__(
        self,
        analytics: AnalyticsService,
        feedback: FeedbackService,
        staff: StaffService,
    ) -> None:
        self._analytics = analytics
        self._feedback = feedback
        self._staff = staff

        self.stats_range = StatsRange.WEEK
        self.chart_range = ChartRange.WEEK
        self.doctors_count = 0
        self.stats = DashboardStats(
            patients_count=0, appointments_count=0, patients_delta="+0%", appointments_delta="+0%"
        )
        self.footfall: list[SeriesPoint] = []
        self.busiest_doctors: list[SeriesPoint] = []
        self.recent_feedback: list[Feedback] = []
        self.all_feedback: list[Feedback] = []
        self.is_loading = False
        self.error_message: str | None = None

    async def load_stats(self, now: dt.datetime | None = None) -> bool:
        try:
            self.stats, staff = await asyncio.gather(
                self._analytics.dashboard_stats(self.stats_range, now),
                self._staff.list_staff(),
            )
            self.doctors_count = len(staff)
            return True
        except BackendError as exc:
            logger.warning("Failed to load dashboard stats: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error loading dashboard stats")
            self.error_message = "An unexpected error occurred while loading dashboard statistics."
            return False

    async def load_charts(self, now: dt.datetime | None = None) -> bool:
        try:
            self.footfall, self.busiest_doctors = await asyncio.gather(
                self._analytics.footfall(self.chart_range, now),
                self._analytics.busiest_doctors(self.chart_range, now),
            )
            return True
        except BackendError as exc:
            logger.warning("Failed to load analytics charts: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error loading analytics charts")
            self.error_message = "An unexpected error occurred while loading analytics charts."
            return False

    async def load_feedback(self) -> bool:
        try:
            self.recent_feedback, self.all_feedback = await asyncio.gather(
                self._feedback.recent(limit=5), self._feedback.all()
            )
            return True
        except BackendError as exc:
            logger.warning("Failed to load feedback: {}", exc)
            self.error_message = str(exc)
            return False
        except Exception:
            logger.exception("Unexpected error loading feedback")
            self.error_message = "An unexpected error occurred while loading feedback."
            return False

    async def set_stats_range(self, range_: StatsRange) -> bool:
        self.stats_range = range_
        return await self.load_stats()

    async def set_chart_range(self, range_: ChartRange) -> bool:
        self.chart_range = range_
        return await self.load_charts()

    async def refresh(self, now: dt.datetime | None = None) -> bool:
        """Reload every section. Returns True only when all of them loaded."""
        self.is_loading = True
        self.error_message = None
        try:
            results = [
                await self.load_stats(now),
                await self.load_charts(now),
                await self.load_feedback(),
            ]
            return all(results)
        finally:
            self.is_loading = False
