class BackendError(Exception):
    """Base exception for all hospital backend errors."""


class BackendUnavailableError(BackendError):
    """Raised when the backend is unreachable or returns an unusable response."""


class BackendRequestError(BackendError):
    """Raised when the backend rejects a request (4xx)."""

    def __init__(self, reason: str, status_code: int | None = None, code: str | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        self.code = code
        super().__init__(f"Backend rejected request: {reason}")


class AuthenticationError(BackendError):
    """Raised when sign-in, sign-up or a token exchange fails."""


class NotAuthenticatedError(AuthenticationError):
    """Raised when an operation needs a session and none exists."""


class AccountInactiveError(AuthenticationError):
    """Raised when the user's profile has been deactivated."""


class RecordNotFoundError(BackendError):
    """Raised when a lookup by id returns no row."""

    def __init__(self, table: str, record_id: object) -> None:
        self.table = table
        self.record_id = record_id
        super().__init__(f"No {table} record with id {record_id}")


class SlotUnavailableError(BackendError):
    """Raised when a time slot cannot take a booking."""

    def __init__(self, reason: str, slot_id: object | None = None) -> None:
        self.reason = reason
        self.slot_id = slot_id
        super().__init__(f"Slot unavailable: {reason}")


class AppointmentBookingError(BackendError):
    """Raised when an appointment cannot be created."""

    def __init__(self, reason: str, patient_id: object | None = None) -> None:
        self.reason = reason
        self.patient_id = patient_id
        super().__init__(f"Failed to book appointment: {reason}")


class AppointmentUpdateError(BackendError):
    """Raised when an appointment cannot be rescheduled, cancelled or moved to a new status."""

    def __init__(self, reason: str, appointment_id: object | None = None) -> None:
        self.reason = reason
        self.appointment_id = appointment_id
        super().__init__(f"Failed to update appointment: {reason}")


class PrescriptionError(BackendError):
    """Raised when a prescription cannot be saved."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to save prescription: {reason}")


class FeedbackError(BackendError):
    """Raised when feedback is invalid or cannot be stored."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class MedicalReportError(BackendError):
    """Raised when a medical report fails validation or storage."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
