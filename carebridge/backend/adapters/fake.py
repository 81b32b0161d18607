import copy
import datetime as dt
import secrets
import uuid
from collections.abc import Callable
from typing import Any

from pydantic_core import to_jsonable_python

from carebridge.backend.ports import Row
from carebridge.backend.query import Query
from carebridge.domain.exceptions import (
    AuthenticationError,
    BackendRequestError,
    NotAuthenticatedError,
)
from carebridge.domain.models import AuthSession, AuthUser

# (table, embedded relation) -> (foreign key column, one-to-many)
# One-to-one keys live on the parent row; one-to-many keys on the child rows.
_RELATIONS: dict[tuple[str, str], tuple[str, bool]] = {
    ("appointments", "patients"): ("patient_id", False),
    ("appointments", "staff"): ("staff_id", False),
    ("appointments", "time_slots"): ("time_slot_id", False),
    ("prescriptions", "patients"): ("patient_id", False),
    ("prescriptions", "staff"): ("staff_id", False),
    ("prescriptions", "prescription_medicines"): ("prescription_id", True),
    ("feedbacks", "patients"): ("patient_id", False),
    ("feedbacks", "staff"): ("doctor_id", False),
}

_DEFAULT_UNIQUE: dict[str, list[tuple[str, ...]]] = {
    "profiles": [("id",)],
    "feedbacks": [("appointment_id", "submitted_by")],
}


def _split_top_level(columns: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for char in columns:
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        parts.append(current)
    return parts


def _embeds(columns: str) -> list[tuple[str, str]]:
    """``"*,doc:staff!fk(full_name)"`` -> ``[("doc", "staff")]``."""
    result = []
    for part in _split_top_level(columns):
        if "(" not in part:
            continue
        head = part[: part.index("(")]
        alias, _, target = head.rpartition(":")
        relation = target.split("!")[0]
        result.append((alias or relation, relation))
    return result


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class FakeBackendClient:
    """In-memory test double for the BackendClientProtocol protocol.

    Pre-load ``tables`` (table name -> list of row dicts) to control what the
    client returns; every read applies the same ``Query`` semantics the REST
    adapter sends to the server.  Call ``fail("insert", "appointments", exc)``
    to make an operation raise, optionally for one table only; failures
    persist until ``clear_failures()``.

    After calls, inspect ``calls`` (operation, target, payload) and
    ``storage`` to verify what was passed to the client.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[Row]] = {}
        self.storage: dict[str, dict[str, tuple[bytes, str]]] = {}
        self.unique: dict[str, list[tuple[str, ...]]] = copy.deepcopy(_DEFAULT_UNIQUE)
        self.calls: list[tuple[str, str, Any]] = []
        self.rpc_handlers: dict[str, Callable[[Row], Any]] = {
            "generate_default_slots_for_date": self._generate_default_slots,
        }
        self.users: dict[str, tuple[str, AuthUser]] = {}
        self.otp_codes: dict[str, str] = {}
        self.require_email_confirmation: bool = False
        self.healthy: bool = True
        self.closed: bool = False

        self._session: AuthSession | None = None
        self._failures: dict[tuple[str, str | None], Exception] = {}

    # Test controls

    def fail(self, operation: str, table: str | None = None, error: Exception | None = None) -> None:
        self._failures[(operation, table)] = error or BackendRequestError(
            reason=f"{operation} failed", status_code=400
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def seed(self, table: str, *rows: Row) -> list[Row]:
        stored = [self._stamp(to_jsonable_python(row)) for row in rows]
        self.tables.setdefault(table, []).extend(stored)
        return copy.deepcopy(stored)

    def add_user(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthUser:
        user = AuthUser(id=uuid.uuid4(), email=email, user_metadata=metadata or {})
        self.users[email.lower()] = (password, user)
        return user

    def set_session(self, user: AuthUser | None, *, expires_at: int | None = None) -> None:
        if user is None:
            self._session = None
            return
        self._session = AuthSession(
            access_token=secrets.token_hex(8),
            refresh_token=secrets.token_hex(8),
            expires_at=expires_at,
            user=user,
        )

    def _check(self, operation: str, table: str | None = None) -> None:
        error = self._failures.get((operation, table)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    def _stamp(self, row: Row) -> Row:
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", _now_iso())
        return row

    def _rows(self, table: str) -> list[Row]:
        return self.tables.setdefault(table, [])

    def _embed(self, table: str, row: Row, columns: str) -> Row:
        result = copy.deepcopy(row)
        for key, relation in _embeds(columns):
            fk, many = _RELATIONS.get((table, relation), (f"{relation}_id", False))
            children = self._rows(relation)
            if many:
                result[key] = [copy.deepcopy(c) for c in children if c.get(fk) == row.get("id")]
            else:
                match = next((c for c in children if c.get("id") == row.get(fk)), None)
                result[key] = copy.deepcopy(match)
        return result

    def _violates_unique(self, table: str, candidate: Row, ignore: Row | None = None) -> bool:
        for columns in self.unique.get(table, []):
            for existing in self._rows(table):
                if existing is ignore:
                    continue
                if all(existing.get(c) == candidate.get(c) for c in columns):
                    return True
        return False

    @staticmethod
    def _duplicate(table: str) -> BackendRequestError:
        return BackendRequestError(
            reason=f'duplicate key value violates unique constraint "{table}_key"',
            status_code=409,
            code="23505",
        )

    # Auth

    @property
    def session(self) -> AuthSession | None:
        return self._session

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthSession | None:
        self._check("sign_up")
        self.calls.append(("sign_up", email, metadata or {}))
        if email.lower() in self.users:
            raise AuthenticationError("User already registered")
        user = self.add_user(email, password, metadata)
        if self.require_email_confirmation:
            return None
        self.set_session(user)
        return self._session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        self._check("sign_in")
        self.calls.append(("sign_in", email, None))
        stored = self.users.get(email.lower())
        if stored is None or stored[0] != password:
            raise AuthenticationError("Invalid login credentials")
        self.set_session(stored[1])
        assert self._session is not None
        return self._session

    async def sign_in_with_otp(
        self,
        email: str,
        *,
        redirect_to: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._check("sign_in_with_otp")
        self.calls.append(("sign_in_with_otp", email, {"redirect_to": redirect_to, "data": metadata}))
        if email.lower() not in self.users:
            self.add_user(email, secrets.token_hex(8), metadata)
        self.otp_codes[secrets.token_hex(6)] = email.lower()

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        self._check("exchange_code_for_session")
        self.calls.append(("exchange_code_for_session", auth_code, None))
        email = self.otp_codes.pop(auth_code, None)
        if email is None:
            raise AuthenticationError("invalid flow state, no valid flow state found")
        self.set_session(self.users[email][1])
        assert self._session is not None
        return self._session

    async def update_user(self, *, password: str) -> AuthUser:
        self._check("update_user")
        if self._session is None:
            raise NotAuthenticatedError("Sign in before updating the user")
        user = self._session.user
        self.calls.append(("update_user", str(user.id), None))
        if user.email:
            self.users[user.email.lower()] = (password, user)
        return user

    async def sign_out(self) -> None:
        self._check("sign_out")
        self.calls.append(("sign_out", "", None))
        self._session = None

    # Tables

    async def select(self, table: str, query: Query | None = None) -> list[Row]:
        self._check("select", table)
        query = query or Query()
        self.calls.append(("select", table, query.to_params()))
        return [self._embed(table, row, query.columns) for row in query.apply(self._rows(table))]

    async def count(self, table: str, query: Query | None = None) -> int:
        self._check("count", table)
        query = query or Query()
        self.calls.append(("count", table, query.filter_params()))
        return sum(1 for row in self._rows(table) if query.matches(row))

    async def insert(self, table: str, rows: Row | list[Row]) -> list[Row]:
        self._check("insert", table)
        batch = [self._stamp(to_jsonable_python(r)) for r in (rows if isinstance(rows, list) else [rows])]
        self.calls.append(("insert", table, batch))
        for row in batch:
            if self._violates_unique(table, row):
                raise self._duplicate(table)
        self._rows(table).extend(batch)
        return copy.deepcopy(batch)

    async def upsert(self, table: str, rows: Row | list[Row], *, on_conflict: str) -> list[Row]:
        self._check("upsert", table)
        keys = [c.strip() for c in on_conflict.split(",")]
        batch = [to_jsonable_python(r) for r in (rows if isinstance(rows, list) else [rows])]
        self.calls.append(("upsert", table, batch))
        result = []
        for row in batch:
            existing = next(
                (r for r in self._rows(table) if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is None:
                existing = self._stamp(row)
                self._rows(table).append(existing)
            else:
                existing.update(row)
            result.append(copy.deepcopy(existing))
        return result

    async def update(self, table: str, values: Row, query: Query) -> list[Row]:
        self._check("update", table)
        payload = to_jsonable_python(values)
        self.calls.append(("update", table, payload))
        updated = []
        for row in self._rows(table):
            if query.matches(row):
                row.update(payload)
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table: str, query: Query) -> list[Row]:
        self._check("delete", table)
        self.calls.append(("delete", table, query.filter_params()))
        rows = self._rows(table)
        removed = [r for r in rows if query.matches(r)]
        self.tables[table] = [r for r in rows if not query.matches(r)]
        return removed

    async def rpc(self, function: str, params: Row | None = None) -> Any:
        self._check("rpc", function)
        payload = to_jsonable_python(params or {})
        self.calls.append(("rpc", function, payload))
        handler = self.rpc_handlers.get(function)
        if handler is None:
            raise BackendRequestError(
                reason=f"Could not find the function public.{function}", status_code=404, code="PGRST202"
            )
        return handler(payload)

    def _generate_default_slots(self, params: Row) -> None:
        staff_id = params["p_staff_id"]
        date = params["p_date"]
        slots = self._rows("time_slots")
        if any(s.get("staff_id") == staff_id and s.get("slot_date") == date for s in slots):
            return None
        for hour in range(9, 17):
            slots.append(
                self._stamp(
                    {
                        "staff_id": staff_id,
                        "slot_date": date,
                        "start_time": f"{hour:02d}:00:00",
                        "end_time": f"{hour + 1:02d}:00:00",
                        "is_available": True,
                        "current_bookings": 0,
                        "max_capacity": params.get("p_default_capacity", 5),
                        "is_running_late": False,
                        "delay_minutes": 0,
                    }
                )
            )
        return None

    # Storage

    async def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        self._check("upload_file", bucket)
        self.calls.append(("upload_file", f"{bucket}/{path}", content_type))
        objects = self.storage.setdefault(bucket, {})
        if path in objects:
            raise BackendRequestError(reason="The resource already exists", status_code=409)
        objects[path] = (data, content_type)

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        self._check("create_signed_url", bucket)
        self.calls.append(("create_signed_url", f"{bucket}/{path}", expires_in))
        if path not in self.storage.get(bucket, {}):
            raise BackendRequestError(reason="Object not found", status_code=400)
        return f"memory://{bucket}/{path}?expires_in={expires_in}"

    async def remove_files(self, bucket: str, paths: list[str]) -> None:
        self._check("remove_files", bucket)
        self.calls.append(("remove_files", bucket, list(paths)))
        objects = self.storage.get(bucket, {})
        for path in paths:
            objects.pop(path, None)

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True
