from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.adapters.rest import SupabaseRestClient
from carebridge.backend.ports import BackendClientProtocol
from carebridge.config import AppConfig, BackendAdapter
from carebridge.domain.datetime_helpers import resolve_timezone
from carebridge.services.analytics import AnalyticsService
from carebridge.services.appointments import AppointmentService
from carebridge.services.auth import AuthService
from carebridge.services.feedback import FeedbackService
from carebridge.services.patients import PatientService
from carebridge.services.payments import PaymentService
from carebridge.services.prescriptions import PrescriptionService
from carebridge.services.reports import MedicalReportService
from carebridge.services.slots import SlotService
from carebridge.services.staff import StaffService


def _build_rest(config: AppConfig) -> BackendClientProtocol:
    return SupabaseRestClient(
        base_url=config.supabase.url,
        anon_key=config.supabase.anon_key,
        timeout=config.supabase.timeout,
    )


def _build_memory(config: AppConfig) -> BackendClientProtocol:
    return FakeBackendClient()


_BUILDERS: dict[BackendAdapter, Callable[[AppConfig], BackendClientProtocol]] = {
    BackendAdapter.REST: _build_rest,
    BackendAdapter.MEMORY: _build_memory,
}


def build_backend_client(config: AppConfig) -> BackendClientProtocol:
    """Build the backend client selected by config."""
    adapter = config.supabase.adapter
    logger.info("Building backend client with adapter: {}", adapter.value)
    return _BUILDERS[adapter](config)


@dataclass
class Services:
    """Every service wired around one shared backend client."""

    client: BackendClientProtocol
    auth: AuthService
    patients: PatientService
    staff: StaffService
    slots: SlotService
    appointments: AppointmentService
    prescriptions: PrescriptionService
    payments: PaymentService
    feedback: FeedbackService
    reports: MedicalReportService
    analytics: AnalyticsService

    async def close(self) -> None:
        await self.client.close()


def build_services(
    config: AppConfig, client: BackendClientProtocol | None = None
) -> Services:
    """Wire all services around ``client`` (built from config when omitted)."""
    client = client or build_backend_client(config)
    tz = resolve_timezone(config.clinic_timezone)
    scheduling = config.scheduling

    patients = PatientService(client)
    staff = StaffService(client, scheduling=scheduling)
    slots = SlotService(client, scheduling=scheduling, clinic_tz=tz)
    appointments = AppointmentService(client, clinic_tz=tz)
    return Services(
        client=client,
        auth=AuthService(
            client,
            patients=patients,
            staff_service=staff,
            redirect_url=config.supabase.auth_redirect_url,
        ),
        patients=patients,
        staff=staff,
        slots=slots,
        appointments=appointments,
        prescriptions=PrescriptionService(client),
        payments=PaymentService(client),
        feedback=FeedbackService(client),
        reports=MedicalReportService(client, bucket=config.supabase.reports_bucket),
        analytics=AnalyticsService(client, scheduling=scheduling, clinic_tz=tz),
    )
