"""
Error definitions for the proxy.

Every failure path renders through make_error so that callers always see
{"error": {"message", "type", "code"}} with the HTTP status equal to code.
"""

import json

import httpx
from fastapi.responses import JSONResponse

# Error type mapping from backend status to OpenAI error type
ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
    500: "api_error",
    502: "api_error",
    503: "api_error",
    504: "api_error",
}

INVALID_REQUEST_ERROR = "invalid_request_error"
API_ERROR = "api_error"


def make_error(message: str, type: str, code: int) -> dict:
    """Build the uniform error body."""
    return {"error": {"message": message, "type": type, "code": code}}


def error_type_for_status(status_code: int) -> str:
    if status_code in ERROR_TYPE_MAP:
        return ERROR_TYPE_MAP[status_code]
    return API_ERROR if status_code >= 500 else INVALID_REQUEST_ERROR


class ProxyError(Exception):
    """An error that is returned to the caller in the uniform error shape."""

    def __init__(self, message: str, status_code: int = 500, error_type: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type or error_type_for_status(status_code)

    def to_dict(self) -> dict:
        return make_error(self.message, self.error_type, self.status_code)

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BackendHTTPError(ProxyError):
    """The backend answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, payload=None):
        super().__init__(message, status_code)
        self.payload = payload


class BackendTransportError(ProxyError):
    """The backend could not be reached or the connection failed."""

    def __init__(self, message: str = "Failed to reach backend"):
        super().__init__(message, 500, API_ERROR)


class BackendResponseError(ProxyError):
    """The backend answered 2xx with a body that cannot be translated."""

    def __init__(self, message: str = "Invalid response from backend"):
        super().__init__(message, 502, API_ERROR)


def _message_from_payload(payload) -> str | None:
    """Pick the most specific human-readable message out of a backend error body.

    NIM returns FastAPI-style {"detail": ...} for most errors and
    OpenAI-style {"error": {"message": ...}} for some.
    """
    if isinstance(payload, str):
        return payload.strip() or None
    if not isinstance(payload, dict):
        return None

    detail = payload.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    if detail:
        return json.dumps(detail)

    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error

    message = payload.get("message")
    if message:
        return str(message)
    return None


def parse_backend_error(status_code: int, body: bytes) -> BackendHTTPError:
    """Turn a non-2xx backend response body into a BackendHTTPError."""
    payload = None
    if body:
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = body.decode("utf-8", errors="replace")

    message = _message_from_payload(payload)
    if not message:
        message = f"Request failed with status code {status_code}"
    return BackendHTTPError(message, status_code, payload)


async def read_backend_error(response: httpx.Response) -> BackendHTTPError:
    """Read an httpx response body (streamed or not) and parse it as an error."""
    body = await response.aread()
    return parse_backend_error(response.status_code, body)
