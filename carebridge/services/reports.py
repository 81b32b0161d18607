import time
import uuid
from uuid import UUID

from loguru import logger

from carebridge.backend.parsing_helpers import parse_rows
from carebridge.backend.ports import BackendClientProtocol
from carebridge.backend.query import Query
from carebridge.domain.exceptions import BackendError, MedicalReportError
from carebridge.domain.models import MedicalReport

MAX_FILE_BYTES = 5 * 1024 * 1024
SIGNED_URL_TTL_SECONDS = 3600

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
}


def report_path(user_id: UUID, file_type: str, timestamp: int | None = None) -> str:
    """Storage path ``<user-id>/<unix-ts>_<uuid>.<ext>``.

    The user id is lower-cased so it matches the owner id the storage access
    policies compare against.
    """
    ts = int(time.time()) if timestamp is None else timestamp
    return f"{str(user_id).lower()}/{ts}_{uuid.uuid4()}.{file_type}"


class MedicalReportService:
    """Patient-uploaded medical reports: a storage object plus a metadata row."""

    def __init__(self, client: BackendClientProtocol, bucket: str = "medical-reports") -> None:
        self._client = client
        self._bucket = bucket

    async def upload(
        self,
        user_id: UUID,
        title: str,
        description: str | None,
        data: bytes,
        file_type: str,
    ) -> str:
        """Validate and store a report. Returns the storage path."""
        normalized = file_type.lower().lstrip(".")
        if normalized not in CONTENT_TYPES:
            raise MedicalReportError("Only PDF and image files are allowed.")
        if len(data) > MAX_FILE_BYTES:
            raise MedicalReportError("File size exceeds the allowed limit.")
        if not data:
            raise MedicalReportError("File data is empty.")

        path = report_path(user_id, normalized)
        logger.info("Uploading {} report ({} bytes)", normalized, len(data))

        try:
            await self._client.upload_file(self._bucket, path, data, CONTENT_TYPES[normalized])
        except BackendError as exc:
            raise MedicalReportError(f"Storage upload failed: {exc}") from exc

        try:
            await self._client.insert(
                "medical_reports",
                {
                    "user_id": str(user_id),
                    "uploaded_by": str(user_id),
                    "file_path": path,
                    "file_type": normalized,
                    "title": title,
                    "description": description or None,
                },
            )
        except BackendError as exc:
            raise MedicalReportError(f"Saving report details failed: {exc}") from exc

        logger.info("Report stored at {}", path)
        return path

    async def list_for_user(self, user_id: UUID) -> list[MedicalReport]:
        query = Query().eq("user_id", user_id).order("created_at", ascending=False)
        return parse_rows(MedicalReport, await self._client.select("medical_reports", query))

    async def signed_url(self, report: MedicalReport) -> str:
        return await self._client.create_signed_url(
            self._bucket, report.file_path, SIGNED_URL_TTL_SECONDS
        )

    async def delete(self, report: MedicalReport) -> None:
        """Remove the stored file, then its metadata row."""
        try:
            await self._client.remove_files(self._bucket, [report.file_path])
            await self._client.delete("medical_reports", Query().eq("id", report.id))
        except BackendError as exc:
            raise MedicalReportError("Failed to delete medical report.") from exc
        logger.info("Report {} deleted", report.id)
