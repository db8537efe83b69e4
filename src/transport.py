from typing import Mapping, Optional
import logging
import requests

from api_profile import ApiProfile
from envelope import ResponseEnvelope

logger = logging.getLogger("app.transport")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 6.1; WOW64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/54.0.2840.59 Safari/537.36"
)
DEFAULT_TIMEOUT_SECONDS = 10.0


class Transport(object):
    """
    HTTPS exchange with the Jablotron cloud.

    Every request carries a stable browser-like identity and never follows
    redirects: a redirect is itself an outcome the state machine reacts to.
    The session cookie is passed explicitly per request; the underlying
    requests cookie jar is cleared after each exchange so the SessionManager
    stays the only owner of the token.

    Attributes:
        profile: API profile supplying the base URL and response field names
        timeout: Per-request timeout in seconds
        http: Underlying requests.Session
    """
    def __init__(
        self,
        profile: ApiProfile,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.profile = profile
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()
        self.http.headers.update(
            {
                "User-Agent": user_agent,
                "Accept-Language": "cs-CZ",
                "Accept-Encoding": "gzip, deflate",
            }
        )

    def request(
        self,
        method: str,
        path: str,
        data: Optional[Mapping[str, str]] = None,
        session_token: Optional[str] = None,
        referer: Optional[str] = None,
        ajax: bool = True,
        expect_json: bool = True,
    ) -> ResponseEnvelope:
        """
        Perform one request and wrap the result in a ResponseEnvelope.

        Network failures are returned as an envelope with transport_error set,
        never raised.

        Args:
            method: HTTP method ("GET" or "POST")
            path: Path relative to the profile base URL
            data: Form fields for POST requests
            session_token: "PHPSESSID=..." pair to send as the Cookie header
            referer: Referer header value
            ajax: Whether to mark the request as XMLHttpRequest
            expect_json: Whether the response body must be a JSON object

        Returns:
            ResponseEnvelope for the exchange
        """
        url = self.profile.url(path)
        headers = {}
        if referer:
            headers["Referer"] = referer
        if session_token:
            headers["Cookie"] = session_token
        if ajax:
            headers["X-Requested-With"] = "XMLHttpRequest"
        logger.debug(f"{method} {url}")
        try:
            response = self.http.request(
                method,
                url,
                data=dict(data) if data else None,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Request {method} {url} failed: {e}")
            return ResponseEnvelope.from_exception(e)
        finally:
            self.http.cookies.clear()
        logger.debug(f"Response {response.status_code}: {response.text}")
        return ResponseEnvelope.from_response(
            response,
            cookie_name=self.profile.session_cookie_name,
            expect_json=expect_json,
            status_field=self.profile.status_field,
        )

    def close(self) -> None:
        self.http.close()
