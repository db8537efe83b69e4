from typing import NamedTuple, Optional
from types import MappingProxyType
from enum import Enum
import logging

from api_profile import ApiProfile
from envelope import AppOutcome
from errors import CommandError, CommandFailure
from session_manager import Session
from zone_state import Section, TriState, ZoneState

logger = logging.getLogger("app.command_dispatcher")


class CommandOutcome(NamedTuple):
    """
    Result of a code submission that reached the server.

    Attributes:
        app_outcome: Classified request status
        app_status: Raw request status
        result_code: Business result ("vysledek"), None when not reported
    """
    app_outcome: AppOutcome
    app_status: int
    result_code: Optional[int] = None


class DispatchAction(Enum):
    """What the controller does with a command outcome."""
    ACCEPT = "accept"
    LOGOUT = "logout"  # Give up and drop the session.
    RELOGIN = "relogin"  # Session expired. Re-authenticate, do not resubmit.
    FAIL = "fail"


DISPATCH_ACTIONS = MappingProxyType(
    {
        AppOutcome.OK: DispatchAction.ACCEPT,
        AppOutcome.BUSY: DispatchAction.LOGOUT,
        AppOutcome.UNKNOWN: DispatchAction.LOGOUT,
        AppOutcome.REDIRECT: DispatchAction.FAIL,
        AppOutcome.NO_SESSION: DispatchAction.RELOGIN,
    }
)


class CommandDispatcher(object):
    """
    Submits user codes to the panel.

    The caller is responsible for checking that control is enabled and the panel
    is not in service mode before calling send_code().
    """
    def __init__(self, transport, profile: ApiProfile) -> None:
        self.transport = transport
        self.profile = profile

    def send_code(
        self, session: Session, section: Optional[Section], code: str, current: ZoneState
    ) -> CommandOutcome:
        """
        Submit a code. The code itself selects what the panel arms or disarms.

        Args:
            session: Valid session
            section: Section being armed, None for a disarm
            code: Numeric user code
            current: Most recent snapshot, used for the "status" form field

        Returns:
            CommandOutcome for the request

        Raises:
            CommandError: REJECTED if the panel refused the code, TRANSPORT on
                network failure
        """
        form = {
            "section": self.profile.command_section,
            "status": "1" if current.zone_a is TriState.ACTIVE else "",
            "code": code,
        }
        target = section.value if section is not None else "disarm"
        logger.debug(f"Sending user code for {target}.")
        envelope = self.transport.request(
            "POST",
            self.profile.command_path,
            data=form,
            session_token=session.token,
            referer=self.profile.service_url(session.service_id),
        )
        if envelope.transport_error is not None:
            raise CommandError(
                CommandFailure.TRANSPORT,
                f"Command request failed: {envelope.transport_error}",
            )

        result_code = None
        raw_result = envelope.payload.get(self.profile.result_field)
        if (
            envelope.http_status_code == 200
            and envelope.app_outcome is AppOutcome.OK
            and raw_result is not None
        ):
            try:
                result_code = int(raw_result)
            except (TypeError, ValueError, OverflowError):
                raise CommandError(
                    CommandFailure.FAILED, f"Invalid command result: {raw_result}"
                )
        outcome = CommandOutcome(envelope.app_outcome, envelope.app_status, result_code)
        logger.debug(f"Command outcome: {outcome}")

        if result_code is not None and result_code not in self.profile.accepted_results:
            raise CommandError(
                CommandFailure.REJECTED,
                f"Code rejected for {target}",
                status=envelope.app_status,
                result_code=result_code,
            )
        return outcome

    @staticmethod
    def action_for(outcome: CommandOutcome) -> DispatchAction:
        return DISPATCH_ACTIONS[outcome.app_outcome]
