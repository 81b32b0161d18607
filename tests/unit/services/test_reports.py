import re
import uuid

import pytest

from carebridge.backend.adapters.fake import FakeBackendClient
from carebridge.backend.factory import Services
from carebridge.domain.exceptions import BackendRequestError, MedicalReportError
from carebridge.services.reports import MAX_FILE_BYTES, report_path

USER_ID = uuid.UUID("8F14E45F-CEEA-467F-A8C7-3A1B2C3D4E5F")


class TestReportPath:
    def test_lowercase_owner_prefix(self) -> None:
        path = report_path(USER_ID, "pdf", timestamp=1_700_000_000)

        assert re.fullmatch(
            r"8f14e45f-ceea-467f-a8c7-3a1b2c3d4e5f/1700000000_[0-9a-f-]{36}\.pdf", path
        )


class TestUpload:
    @pytest.mark.asyncio
    async def test_stores_file_and_metadata(
        self, services: Services, fake_client: FakeBackendClient
    ) -> None:
        path = await services.reports.upload(USER_ID, "Blood test", "", b"%PDF-1.7", ".PDF")

        data, content_type = fake_client.storage["medical-reports"][path]
        assert data == b"%PDF-1.7"
        assert content_type == "application/pdf"
        [row] = fake_client.tables["medical_reports"]
        assert row["file_path"] == path
        assert row["file_type"] == "pdf"
        assert row["description"] is None

    @pytest.mark.asyncio
    async def test_rejects_unsupported_type(self, services: Services) -> None:
        with pytest.raises(MedicalReportError, match="Only PDF and image files"):
            await services.reports.upload(USER_ID, "Notes", None, b"text", "docx")

    @pytest.mark.asyncio
    async def test_rejects_oversized_file(self, services: Services) -> None:
        with pytest.raises(MedicalReportError, match="size exceeds"):
            await services.reports.upload(USER_ID, "Scan", None, b"x" * (MAX_FILE_BYTES + 1), "png")

    @pytest.mark.asyncio
    async def test_storage_failure(self, services: Services, fake_client: FakeBackendClient) -> None:
        fake_client.fail("upload_file", "medical-reports")

        with pytest.raises(MedicalReportError, match="Storage upload failed"):
            await services.reports.upload(USER_ID, "Scan", None, b"img", "jpg")
        assert "medical_reports" not in fake_client.tables

    @pytest.mark.asyncio
    async def test_metadata_failure(self, services: Services, fake_client: FakeBackendClient) -> None:
        fake_client.fail(
            "insert", "medical_reports", BackendRequestError(reason="rls", status_code=403)
        )

        with pytest.raises(MedicalReportError, match="Saving report details failed"):
            await services.reports.upload(USER_ID, "Scan", None, b"img", "jpg")


class TestListSignAndDelete:
    @pytest.mark.asyncio
    async def test_round_trip(self, services: Services, fake_client: FakeBackendClient) -> None:
        path = await services.reports.upload(USER_ID, "X-ray", "Left arm", b"img", "png")

        [report] = await services.reports.list_for_user(USER_ID)
        url = await services.reports.signed_url(report)
        await services.reports.delete(report)

        assert report.title == "X-ray"
        assert url == f"memory://medical-reports/{path}?expires_in=3600"
        assert fake_client.storage["medical-reports"] == {}
        assert await services.reports.list_for_user(USER_ID) == []

    @pytest.mark.asyncio
    async def test_delete_failure(self, services: Services, fake_client: FakeBackendClient) -> None:
        await services.reports.upload(USER_ID, "X-ray", None, b"img", "png")
        [report] = await services.reports.list_for_user(USER_ID)
        fake_client.fail("remove_files", "medical-reports")

        with pytest.raises(MedicalReportError, match="Failed to delete medical report."):
            await services.reports.delete(report)
