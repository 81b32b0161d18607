from typing import Any, TypeVar
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ValidationError

from carebridge.domain.exceptions import BackendUnavailableError

M = TypeVar("M", bound=BaseModel)


def parse_rows(model: type[M], rows: list[dict[str, Any]]) -> list[M]:
    """Validate backend rows into ``model`` instances.

    A row that does not fit the model means the backend schema and the client
    disagree, which is reported as an unusable response.
    """
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise BackendUnavailableError(
            f"Malformed {model.__name__} payload: {exc.error_count()} validation error(s)"
        ) from exc


def parse_first(model: type[M], rows: list[dict[str, Any]]) -> M | None:
    parsed = parse_rows(model, rows[:1])
    return parsed[0] if parsed else None


def extract_auth_code(url: str) -> str | None:
    """Extract the ``code`` query parameter from ``ihms://auth-callback?code=...``."""
    values = parse_qs(urlparse(url).query).get("code")
    return values[0] if values and values[0] else None
