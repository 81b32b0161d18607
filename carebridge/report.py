"""Log an analytics summary for the configured backend.

Run with ``python -m carebridge.report``.
"""

import asyncio

from loguru import logger

from carebridge.backend.factory import build_services
from carebridge.config import AppConfig
from carebridge.services.analytics import AnalyticsReport


def log_report(report: AnalyticsReport) -> None:
    logger.info(
        "Analyzing {} appointments, {} slots, {} staff",
        report.appointments_count,
        report.slots_count,
        report.staff_count,
    )
    logger.info("Busiest day: {}", report.busiest_day)
    logger.info("Busiest time slot: {}", report.busiest_time_slot)
    logger.info("Most occupied staff: {}", report.most_occupied_staff)

    for day, names in report.staff_by_weekday.items():
        logger.info("Staff suggestion for {}: {}", day, ", ".join(names))

    logger.info("Patient load prediction: {}", report.patient_load)
    for line in report.staffing:
        logger.info("Staffing (utilisation): {}", line)
    for line in report.demand_staffing:
        logger.info("Staffing (demand): {}", line)

    if report.suggestion_patient_id is None:
        logger.info("No appointment history; skipping slot suggestions")
        return
    if not report.suggestions:
        logger.info("No slots available for patient {}", report.suggestion_patient_id)
    for label in report.suggestions:
        logger.info("Suggested slot for patient {}: {}", report.suggestion_patient_id, label)


async def run_report(config: AppConfig) -> AnalyticsReport:
    services = build_services(config)
    try:
        if not await services.client.health_check():
            logger.warning("Backend health check failed; results may be incomplete")
        report = await services.analytics.build_report()
    finally:
        await services.close()
    log_report(report)
    return report


def main() -> None:
    asyncio.run(run_report(AppConfig()))


if __name__ == "__main__":
    main()
