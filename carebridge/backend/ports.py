from typing import Any, Protocol

from carebridge.backend.query import Query
from carebridge.domain.models import AuthSession, AuthUser

Row = dict[str, Any]


class BackendClientProtocol(Protocol):
    """Low-level interface to the hosted backend (auth, tables, RPC, storage)."""

    @property
    def session(self) -> AuthSession | None:
        """The current session, or None when signed out."""
        ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthSession | None:
        """Register a user. Returns a session when the backend auto-confirms."""
        ...

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Password sign-in; stores and returns the session."""
        ...

    async def sign_in_with_otp(
        self,
        email: str,
        *,
        redirect_to: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Send a magic link to ``email``."""
        ...

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        """Exchange a magic-link callback code for a session."""
        ...

    async def update_user(self, *, password: str) -> AuthUser:
        """Update the signed-in user's password."""
        ...

    async def sign_out(self) -> None:
        """Revoke and forget the current session."""
        ...

    async def select(self, table: str, query: Query | None = None) -> list[Row]:
        """Read rows."""
        ...

    async def count(self, table: str, query: Query | None = None) -> int:
        """Exact row count for the query's filters."""
        ...

    async def insert(self, table: str, rows: Row | list[Row]) -> list[Row]:
        """Insert rows and return them as stored."""
        ...

    async def upsert(self, table: str, rows: Row | list[Row], *, on_conflict: str) -> list[Row]:
        """Insert or merge rows on ``on_conflict``."""
        ...

    async def update(self, table: str, values: Row, query: Query) -> list[Row]:
        """Update rows matching ``query`` and return them."""
        ...

    async def delete(self, table: str, query: Query) -> list[Row]:
        """Delete rows matching ``query`` and return them."""
        ...

    async def rpc(self, function: str, params: Row | None = None) -> Any:
        """Call a database function."""
        ...

    async def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        """Store an object."""
        ...

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Return a time-limited URL for an object."""
        ...

    async def remove_files(self, bucket: str, paths: list[str]) -> None:
        """Delete objects."""
        ...

    async def health_check(self) -> bool:
        """Check if the backend is reachable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
