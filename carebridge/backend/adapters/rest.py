import base64
import datetime as dt
import hashlib
import secrets
from typing import Any

import httpx
from loguru import logger
from pydantic_core import to_jsonable_python

from carebridge.backend.ports import Row
from carebridge.backend.query import Query
from carebridge.domain.exceptions import (
    AuthenticationError,
    BackendError,
    BackendRequestError,
    BackendUnavailableError,
    NotAuthenticatedError,
)
from carebridge.domain.models import AuthSession, AuthUser

_RETURN_REPRESENTATION = "return=representation"


def _pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _as_list(rows: Row | list[Row]) -> list[Row]:
    return rows if isinstance(rows, list) else [rows]


class SupabaseRestClient:
    """Supabase client over plain HTTPS (PostgREST, GoTrue and Storage)."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        session: AuthSession | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._session = session
        self._code_verifier: str | None = None
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def _headers(self) -> dict[str, str]:
        token = self._session.access_token if self._session else self._anon_key
        return {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | dict[str, str] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        _retry_on_auth: bool = True,
    ) -> httpx.Response:
        """Send an authenticated request and map failures to domain errors."""
        try:
            resp = await self._client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=to_jsonable_python(json) if json is not None else None,
                content=content,
                headers={**self._headers(), **(headers or {})},
            )
        except Exception as exc:
            raise BackendUnavailableError(f"Backend request failed: {exc}") from exc

        if (
            resp.status_code == 401
            and _retry_on_auth
            and self._session is not None
            and self._session.refresh_token
        ):
            logger.warning("Access token rejected on {} {}, refreshing session", method, path)
            await self._refresh_session()
            return await self._request(
                method,
                path,
                params=params,
                json=json,
                content=content,
                headers=headers,
                _retry_on_auth=False,
            )

        if resp.is_error:
            raise self._error_for(resp)
        return resp

    def _error_for(self, resp: httpx.Response) -> BackendError:
        message = resp.text
        code: str | None = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = (
                body.get("message")
                or body.get("msg")
                or body.get("error_description")
                or body.get("error")
                or message
            )
            raw_code = body.get("code") or body.get("error_code")
            code = str(raw_code) if raw_code is not None else None
        if resp.status_code >= 500:
            return BackendUnavailableError(f"Backend error {resp.status_code}: {message}")
        return BackendRequestError(reason=str(message), status_code=resp.status_code, code=code)

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise BackendUnavailableError(f"Backend returned invalid JSON: {exc}") from exc

    # Auth

    def _session_from(self, data: dict[str, Any]) -> AuthSession:
        try:
            expires_at = data.get("expires_at")
            if expires_at is None and data.get("expires_in") is not None:
                now = dt.datetime.now(dt.timezone.utc).timestamp()
                expires_at = int(now) + int(data["expires_in"])
            return AuthSession(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token") or "",
                expires_at=expires_at,
                user=AuthUser.model_validate(data["user"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError(f"Auth response missing session fields: {exc}") from exc

    async def _auth_call(self, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._request("POST", path, _retry_on_auth=False, **kwargs)
        except BackendRequestError as exc:
            raise AuthenticationError(exc.reason) from exc
        return self._json(resp)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthSession | None:
        data = await self._auth_call(
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata or {}},
        )
        if isinstance(data, dict) and data.get("access_token"):
            self._session = self._session_from(data)
            return self._session
        logger.info("Sign-up accepted; email confirmation pending")
        return None

    async def sign_in(self, email: str, password: str) -> AuthSession:
        logger.info("Signing in with email/password")
        data = await self._auth_call(
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self._session = self._session_from(data)
        logger.info("Signed in; session cached for subsequent requests")
        return self._session

    async def sign_in_with_otp(
        self,
        email: str,
        *,
        redirect_to: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        verifier, challenge = _pkce_pair()
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._auth_call(
            "/auth/v1/otp",
            params=params,
            json={
                "email": email,
                "data": metadata or {},
                "create_user": True,
                "code_challenge": challenge,
                "code_challenge_method": "s256",
            },
        )
        self._code_verifier = verifier
        logger.info("Magic link requested")

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        data = await self._auth_call(
            "/auth/v1/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": self._code_verifier or ""},
        )
        self._session = self._session_from(data)
        self._code_verifier = None
        return self._session

    async def _refresh_session(self) -> None:
        if self._session is None or not self._session.refresh_token:
            raise NotAuthenticatedError("No refresh token available")
        data = await self._auth_call(
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session.refresh_token},
        )
        self._session = self._session_from(data)
        logger.info("Session refreshed")

    async def update_user(self, *, password: str) -> AuthUser:
        if self._session is None:
            raise NotAuthenticatedError("Sign in before updating the user")
        try:
            resp = await self._request("PUT", "/auth/v1/user", json={"password": password})
        except BackendRequestError as exc:
            raise AuthenticationError(exc.reason) from exc
        user = AuthUser.model_validate(self._json(resp))
        self._session = self._session.model_copy(update={"user": user})
        return user

    async def sign_out(self) -> None:
        if self._session is None:
            return
        try:
            await self._request("POST", "/auth/v1/logout", _retry_on_auth=False)
        except BackendError as exc:
            logger.warning("Sign-out request failed, dropping local session anyway: {}", exc)
        finally:
            self._session = None

    # Tables

    async def select(self, table: str, query: Query | None = None) -> list[Row]:
        query = query or Query()
        resp = await self._request("GET", f"/rest/v1/{table}", params=query.to_params())
        return self._json(resp) or []

    async def count(self, table: str, query: Query | None = None) -> int:
        query = query or Query()
        resp = await self._request(
            "HEAD",
            f"/rest/v1/{table}",
            params=[("select", "*"), *query.filter_params()],
            headers={"Prefer": "count=exact"},
        )
        content_range = resp.headers.get("Content-Range", "")
        total = content_range.rpartition("/")[2]
        if not total.isdigit():
            raise BackendUnavailableError(f"Count response had no total: '{content_range}'")
        return int(total)

    async def insert(self, table: str, rows: Row | list[Row]) -> list[Row]:
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=_as_list(rows),
            headers={"Prefer": _RETURN_REPRESENTATION},
        )
        return self._json(resp) or []

    async def upsert(self, table: str, rows: Row | list[Row], *, on_conflict: str) -> list[Row]:
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=_as_list(rows),
            headers={"Prefer": f"resolution=merge-duplicates,{_RETURN_REPRESENTATION}"},
        )
        return self._json(resp) or []

    async def update(self, table: str, values: Row, query: Query) -> list[Row]:
        if not query.filters and not query.or_groups:
            raise ValueError("Refusing to update every row of a table")
        resp = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=query.filter_params(),
            json=values,
            headers={"Prefer": _RETURN_REPRESENTATION},
        )
        return self._json(resp) or []

    async def delete(self, table: str, query: Query) -> list[Row]:
        if not query.filters and not query.or_groups:
            raise ValueError("Refusing to delete every row of a table")
        resp = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=query.filter_params(),
            headers={"Prefer": _RETURN_REPRESENTATION},
        )
        return self._json(resp) or []

    async def rpc(self, function: str, params: Row | None = None) -> Any:
        resp = await self._request("POST", f"/rest/v1/rpc/{function}", json=params or {})
        return self._json(resp)

    # Storage

    async def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        resp = await self._request(
            "POST",
            f"/storage/v1/object/sign/{bucket}/{path}",
            json={"expiresIn": expires_in},
        )
        data = self._json(resp) or {}
        signed: str | None = data.get("signedURL") or data.get("signedUrl")
        if not signed:
            raise BackendUnavailableError("Storage returned no signed URL")
        return f"{self._base_url}/storage/v1{signed}"

    async def remove_files(self, bucket: str, paths: list[str]) -> None:
        await self._request("DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": paths})

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/auth/v1/health", _retry_on_auth=False)
            return True
        except Exception as exc:
            logger.warning("Backend health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Backend REST client closed")
