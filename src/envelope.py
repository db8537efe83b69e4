from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional, TYPE_CHECKING
from types import MappingProxyType
from enum import Enum
import json
import logging

from errors import TransportError

if TYPE_CHECKING:
    import requests

logger = logging.getLogger("app.envelope")

DEFAULT_SESSION_COOKIE = "PHPSESSID"
DEFAULT_STATUS_FIELD = "status"


class AppOutcome(Enum):
    """
    Application-level outcome of a Jablotron cloud request.

    The cloud API reports its own status inside the JSON body, independent of the
    HTTP status code. These are the only outcomes the rest of the client reasons about.
    """
    OK = "ok"
    NO_SESSION = "no_session"  # Session expired or was never established.
    BUSY = "busy"  # Panel is mid-operation. Back off, do not retry immediately.
    REDIRECT = "redirect"  # Never followed. Fatal for the current request.
    UNKNOWN = "unknown"


STATUS_OUTCOMES = MappingProxyType(
    {
        200: AppOutcome.OK,
        800: AppOutcome.NO_SESSION,
        201: AppOutcome.BUSY,
        300: AppOutcome.REDIRECT,
    }
)


def classify_status(status: int) -> AppOutcome:
    """
    Translate a wire status code into an AppOutcome.

    Args:
        status: Value of the "status" field (or the HTTP status for non-JSON pages)

    Returns:
        Matching AppOutcome, UNKNOWN for anything not in STATUS_OUTCOMES
    """
    outcome = STATUS_OUTCOMES.get(status)
    if outcome is None:
        logger.warning(f"Unknown status code received: {status}")
        return AppOutcome.UNKNOWN
    return outcome


def extract_session_cookie(
    cookies: Optional[Mapping[str, str]], cookie_name: str = DEFAULT_SESSION_COOKIE
) -> Optional[str]:
    """
    Build the "name=value" pair echoed in the Cookie header from response cookies.

    Args:
        cookies: Cookies set by the response (name -> value)
        cookie_name: Name of the session cookie

    Returns:
        "name=value" string, or None if the session cookie was not set
    """
    if not cookies:
        return None
    value = cookies.get(cookie_name)
    if not value:
        return None
    return f"{cookie_name}={value}"


class ResponseEnvelope(NamedTuple):
    """
    Normalized result of one HTTP exchange with the cloud service.

    Constructed per request and consumed immediately. Construction never raises:
    decoding problems are captured in transport_error.

    Attributes:
        http_status_code: HTTP status code, 0 if no response was received
        app_status: Raw application status ("status" field), 0 if absent
        app_outcome: Classified application outcome
        session_cookie: "PHPSESSID=..." pair if the response set the session cookie
        raw_body: Response body text
        payload: Decoded JSON object (empty for non-JSON pages)
        transport_error: TransportError for a network or decoding failure, None on success
    """
    http_status_code: int = 0
    app_status: int = 0
    app_outcome: AppOutcome = AppOutcome.UNKNOWN
    session_cookie: Optional[str] = None
    raw_body: str = ""
    payload: Mapping[str, Any] = MappingProxyType({})
    transport_error: Optional[TransportError] = None

    @classmethod
    def from_exception(cls, error: Exception) -> "ResponseEnvelope":
        return cls(transport_error=TransportError(str(error), cause=error))

    @classmethod
    def from_parts(
        cls,
        http_status_code: int,
        body: str,
        cookies: Optional[Mapping[str, str]] = None,
        cookie_name: str = DEFAULT_SESSION_COOKIE,
        expect_json: bool = True,
        status_field: str = DEFAULT_STATUS_FIELD,
    ) -> "ResponseEnvelope":
        """
        Build an envelope from the raw pieces of a response.

        HTTP redirects are classified as REDIRECT without looking at the body.
        Pages that are not JSON (expect_json=False) are classified from the
        HTTP status code using the same table as the JSON status.

        Args:
            http_status_code: HTTP status code of the response
            body: Response body text
            cookies: Cookies set by the response
            cookie_name: Name of the session cookie
            expect_json: Whether the body must decode to a JSON object
            status_field: JSON field holding the application status

        Returns:
            ResponseEnvelope for the exchange
        """
        session_cookie = extract_session_cookie(cookies, cookie_name)
        if 300 <= http_status_code < 400:
            return cls(
                http_status_code=http_status_code,
                app_status=http_status_code,
                app_outcome=AppOutcome.REDIRECT,
                session_cookie=session_cookie,
                raw_body=body,
            )
        if not expect_json:
            return cls(
                http_status_code=http_status_code,
                app_status=http_status_code,
                app_outcome=classify_status(http_status_code),
                session_cookie=session_cookie,
                raw_body=body,
            )
        try:
            decoded = json.loads(body)
            if not isinstance(decoded, dict):
                raise ValueError(f"Expected JSON object, got {type(decoded).__name__}")
            raw_status = decoded.get(status_field)
            app_status = int(raw_status) if raw_status is not None else 0
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Cannot decode response body: {e}")
            return cls(
                http_status_code=http_status_code,
                session_cookie=session_cookie,
                raw_body=body,
                transport_error=TransportError(f"Cannot decode response body: {e}", cause=e),
            )
        return cls(
            http_status_code=http_status_code,
            app_status=app_status,
            app_outcome=classify_status(app_status),
            session_cookie=session_cookie,
            raw_body=body,
            payload=MappingProxyType(decoded),
        )

    @classmethod
    def from_response(
        cls,
        response: "requests.Response",
        cookie_name: str = DEFAULT_SESSION_COOKIE,
        expect_json: bool = True,
        status_field: str = DEFAULT_STATUS_FIELD,
    ) -> "ResponseEnvelope":
        return cls.from_parts(
            response.status_code,
            response.text,
            cookies=response.cookies.get_dict(),
            cookie_name=cookie_name,
            expect_json=expect_json,
            status_field=status_field,
        )

    @property
    def is_ok(self) -> bool:
        return self.transport_error is None and self.app_outcome is AppOutcome.OK

    def has_fields(self, *names: str) -> bool:
        return all(name in self.payload for name in names)
