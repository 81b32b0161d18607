from collections import Counter
from uuid import UUID

from carebridge.backend.parsing_helpers import parse_rows
from carebridge.backend.ports import BackendClientProtocol
from carebridge.backend.query import Query
from carebridge.domain.models import Payment, PaymentSummary

PAID_STATUSES = frozenset({"paid", "completed", "success", "succeeded"})
PENDING_STATUSES = frozenset({"pending", "unpaid", "processing"})


def summarize(payments: list[Payment]) -> PaymentSummary:
    """Totals for a payment history. Status matching is case-insensitive."""
    paid = sum(p.amount for p in payments if p.status.lower() in PAID_STATUSES)
    pending = sum(p.amount for p in payments if p.status.lower() in PENDING_STATUSES)
    counts = Counter(p.status.lower() for p in payments)
    return PaymentSummary(total_paid=paid, total_pending=pending, count_by_status=dict(counts))


class PaymentService:
    """Read-only payment history."""

    def __init__(self, client: BackendClientProtocol) -> None:
        self._client = client

    async def list_for_patient(self, patient_id: UUID) -> list[Payment]:
        query = Query().eq("patient_id", patient_id).order("created_at", ascending=False)
        return parse_rows(Payment, await self._client.select("payments", query))

    def summarize(self, payments: list[Payment]) -> PaymentSummary:
        return summarize(payments)
