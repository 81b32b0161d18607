"""Integration tests for the Supabase REST adapter.

These tests run against a real Supabase project and require:
  - SUPABASE_URL + SUPABASE_ANON_KEY set in .env (or env vars)
  - Row level security that lets the anon role read ``staff`` and ``time_slots``

Run explicitly with::

    uv run pytest -m integration
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from carebridge.backend.adapters.rest import SupabaseRestClient
from carebridge.backend.parsing_helpers import parse_rows
from carebridge.backend.query import Query
from carebridge.domain.exceptions import AuthenticationError
from carebridge.domain.models import Staff, TimeSlot

load_dotenv(override=True)

_URL = os.environ.get("SUPABASE_URL", "")
_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")

_has_credentials = bool(_URL) and bool(_ANON_KEY)

pytestmark = [
    pytest.mark.integration,
    pytest.mark.asyncio,
    pytest.mark.skipif(
        not _has_credentials,
        reason="SUPABASE_URL + SUPABASE_ANON_KEY must be set",
    ),
]


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[SupabaseRestClient]:
    """An anonymous REST client, closed after each test."""
    c = SupabaseRestClient(base_url=_URL, anon_key=_ANON_KEY)
    yield c
    await c.close()


class TestHealthCheck:
    async def test_returns_true_when_healthy(self, client: SupabaseRestClient) -> None:
        assert await client.health_check() is True


class TestReads:
    async def test_staff_rows_parse(self, client: SupabaseRestClient) -> None:
        rows = await client.select("staff", Query().order("full_name").limit(5))

        assert len(parse_rows(Staff, rows)) == len(rows)

    async def test_time_slot_count_matches_select(self, client: SupabaseRestClient) -> None:
        query = Query().eq("is_available", True)

        total = await client.count("time_slots", query)
        rows = await client.select("time_slots", query.limit(1))

        assert total >= len(rows)
        assert len(parse_rows(TimeSlot, rows)) == len(rows)


class TestAuth:
    async def test_wrong_password_is_rejected(self, client: SupabaseRestClient) -> None:
        with pytest.raises(AuthenticationError):
            await client.sign_in("nobody@carebridge.invalid", "not-the-password")

        assert client.session is None
