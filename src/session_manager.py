from typing import Callable, NamedTuple, Optional
import datetime
import logging

from api_profile import ApiProfile
from envelope import AppOutcome
from errors import AuthError, AuthFailure, DiscoveryError, DiscoveryFailure
from service_locator import ServiceLocator

logger = logging.getLogger("app.session_manager")


class Session(NamedTuple):
    """
    Authenticated cloud session.

    Attributes:
        token: "PHPSESSID=..." pair echoed in the Cookie header
        service_id: Id of the alarm service being operated
        service_name: Display name of the service
        acquired_at: When the login completed
    """
    token: str
    service_id: str
    service_name: str
    acquired_at: datetime.datetime


class SessionManager(object):
    """
    Owns login, logout and the current Session.

    Not thread safe on its own: PollingController serializes every call under
    its lock.

    Attributes:
        transport: Transport used for login and logout requests
        profile: API profile
        locator: ServiceLocator called after a successful login
        polls: Number of status polls made with the current session
    """
    def __init__(
        self,
        transport,
        profile: ApiProfile,
        locator: ServiceLocator,
        username: str,
        password: str,
        on_reset: Optional[Callable[[], None]] = None,
    ) -> None:
        self.transport = transport
        self.profile = profile
        self.locator = locator
        self._username = username
        self._password = password
        self._on_reset = on_reset
        self._session: Optional[Session] = None
        self.polls = 0

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def referer(self) -> str:
        if self._session is None:
            return self.profile.base_url
        return self.profile.service_url(self._session.service_id)

    def login(self) -> Session:
        """
        Log in and discover the alarm service.

        Cached zone state is reset to UNKNOWN before anything is sent so a stale
        snapshot never survives a re-login. The new Session is only stored once
        every step succeeded.

        Returns:
            The new Session

        Raises:
            AuthError: REJECTED, NO_SERVICE_FOUND or TRANSPORT
        """
        self._session = None
        self.polls = 0
        if self._on_reset is not None:
            self._on_reset()

        form = dict(self.profile.login_extra_fields)
        form[self.profile.username_field] = self._username
        form[self.profile.password_field] = self._password
        envelope = self.transport.request(
            "POST",
            self.profile.login_path,
            data=form,
            referer=self.profile.base_url,
        )
        if envelope.transport_error is not None:
            raise AuthError(
                AuthFailure.TRANSPORT, f"Login failed: {envelope.transport_error}"
            )
        if envelope.app_outcome is not AppOutcome.OK:
            raise AuthError(
                AuthFailure.REJECTED, "Login rejected", status=envelope.app_status
            )
        if envelope.session_cookie is None:
            raise AuthError(AuthFailure.REJECTED, "Login returned no session cookie")

        try:
            service = self.locator.discover(envelope.session_cookie)
        except DiscoveryError as e:
            match e.reason:
                case DiscoveryFailure.EMPTY:
                    raise AuthError(AuthFailure.NO_SERVICE_FOUND, e.message) from e
                case DiscoveryFailure.TRANSPORT:
                    raise AuthError(AuthFailure.TRANSPORT, e.message) from e
                case _:
                    raise AuthError(AuthFailure.REJECTED, e.message, e.status) from e

        self._session = Session(
            token=envelope.session_cookie,
            service_id=service.service_id,
            service_name=service.name,
            acquired_at=datetime.datetime.now(),
        )
        logger.info(f"Successfully logged in to Jablotron cloud ({service.name}).")
        return self._session

    def logout(self) -> None:
        """
        Log out and drop the session.

        The request is best effort: its failures are logged and discarded since
        the session is abandoned either way. The local session is always cleared.
        """
        token = self._session.token if self._session is not None else None
        referer = self.referer
        try:
            envelope = self.transport.request(
                "GET",
                self.profile.logout_path,
                session_token=token,
                referer=referer,
                ajax=False,
                expect_json=False,
            )
            if envelope.transport_error is not None:
                logger.debug(f"Logout failed (ignored): {envelope.transport_error}")
        except Exception as e:
            logger.debug(f"Logout failed (ignored): {e}")
        finally:
            self._session = None
            self.polls = 0
        logger.debug("Logged out.")

    def ensure_session(self) -> Session:
        if self._session is not None:
            return self._session
        return self.login()

    def invalidate(self) -> None:
        if self._session is not None:
            logger.debug("Invalidating session.")
        self._session = None
        self.polls = 0
