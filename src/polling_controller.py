from __future__ import annotations

from typing import NamedTuple, Optional, TYPE_CHECKING
from enum import Enum
import datetime
import logging
import queue
import threading
import time

if TYPE_CHECKING:
    from mqtt_client import MQTTClient

from command_dispatcher import CommandDispatcher, DispatchAction
from config import JablotronConfig
from envelope import AppOutcome
from errors import (
    AuthError,
    CommandError,
    CommandFailure,
    ConfigError,
    JablotronError,
    PollError,
    PollFailure,
)
from service_locator import ServiceLocator
from session_manager import Session, SessionManager
from status_poller import StatusPoller
from transport import Transport
from zone_state import Output, Section, ZoneState

logger = logging.getLogger("app.polling_controller")

# Configuration constants
LOOP_SLEEP_SECONDS = 0.1  # Interval between command queue checks in the control loop
REPUBLISH_INTERVAL_MINUTES = 60  # How often to republish all states to MQTT


class ControllerState(Enum):
    """Connection state of the controller."""
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    POLLING = "polling"
    COMMANDING = "commanding"


class Command(NamedTuple):
    """
    Arm/disarm request queued by the host for the control loop.

    Attributes:
        target: Section the user toggled
        arm: True to arm, False to disarm
    """
    target: Section
    arm: bool


class PollingController(object):
    """
    Session and polling state machine for one Jablotron cloud account.

    Serializes login, polling and command execution under a single lock so two
    requests never run concurrently against the same session cookie.
    poll() and execute() hold the lock for their entire sequence.

    Attributes:
        config: Validated configuration
        state: Current ControllerState
        last_state: Most recent snapshot, reset to UNKNOWN on every login
        session_manager: Owner of the Session
        poller: StatusPoller
        dispatcher: CommandDispatcher
    """
    def __init__(self, config: JablotronConfig, transport=None) -> None:
        """
        Build the controller and its collaborators.

        Args:
            config: Validated configuration
            transport: Transport to use. A requests based Transport is created
                from the config when omitted.
        """
        self.config = config
        profile = config.profile
        self.transport = (
            transport
            if transport is not None
            else Transport(profile, timeout=config.request_timeout)
        )
        self.state = ControllerState.DISCONNECTED
        self.last_state = ZoneState.unknown()
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._command_queue: queue.Queue[Command] = queue.Queue()
        self._mqtt_client: Optional[MQTTClient] = None
        self._published_state: Optional[ZoneState] = None
        self.session_manager = SessionManager(
            self.transport,
            profile,
            ServiceLocator(self.transport, profile),
            config.username,
            config.password,
            on_reset=self._reset_state,
        )
        self.poller = StatusPoller(self.transport, profile)
        self.dispatcher = CommandDispatcher(self.transport, profile)

    def _reset_state(self) -> None:
        self.last_state = ZoneState.unknown()

    def _ensure_session(self) -> Session:
        if self.session_manager.session is None:
            self.state = ControllerState.AUTHENTICATING
        try:
            return self.session_manager.ensure_session()
        except AuthError as e:
            logger.error(f"Cannot log in to Jablotron cloud: {e}")
            self.state = ControllerState.DISCONNECTED
            raise

    def _fetch_state(self) -> ZoneState:
        """
        Fetch state, re-authenticating and retrying exactly once on NoSession.

        Raises:
            PollError: From the fetch. A second NO_SESSION is raised as is.
            AuthError: If the re-login fails
        """
        session = self._ensure_session()
        try:
            zone_state = self.poller.fetch_state(session)
        except PollError as e:
            if e.reason is not PollFailure.NO_SESSION:
                raise
            logger.info("Session expired. Logging in again.")
            self.session_manager.invalidate()
            session = self._ensure_session()
            try:
                zone_state = self.poller.fetch_state(session)
            except PollError as retry_error:
                if retry_error.reason is PollFailure.NO_SESSION:
                    logger.error("Session expired again right after login. Giving up.")
                    self.session_manager.invalidate()
                raise
        self.session_manager.polls += 1
        self.last_state = zone_state
        zone_state.log_state(logger.debug)
        return zone_state

    def _handle_poll_error(self, error: PollError) -> None:
        if error.reason is PollFailure.BUSY:
            logger.info("Jablotron cloud is busy. Giving up until next poll.")
            self.session_manager.logout()
        else:
            logger.error(f"Cannot get Jablotron alarm status: {error}")
            self.session_manager.invalidate()

    def poll(self, cancel: Optional[threading.Event] = None) -> ZoneState:
        """
        Fetch the current panel state.

        Args:
            cancel: Optional event. A set event aborts before any request is sent.

        Returns:
            Fresh ZoneState

        Raises:
            AuthError: Login failed. Controller is DISCONNECTED.
            PollError: Fetch failed. BUSY also logs out; the host's next poll retries.
            PollError: CANCELLED if the cancel event was set
        """
        with self._lock:
            if cancel is not None and cancel.is_set():
                raise PollError(PollFailure.CANCELLED, "Poll cancelled")
            try:
                self._ensure_session()
                self.state = ControllerState.POLLING
                zone_state = self._fetch_state()
            except PollError as e:
                self._handle_poll_error(e)
                self.state = ControllerState.DISCONNECTED
                raise
            except BaseException:
                self.state = ControllerState.DISCONNECTED
                raise
            self.state = ControllerState.READY
            self._apply_session_policy()
            return zone_state

    def _apply_session_policy(self) -> None:
        if not self.config.hold_session:
            logger.debug("Not holding session between polls. Logging out.")
            self.session_manager.logout()
        elif (
            self.config.session_max_polls
            and self.session_manager.polls >= self.config.session_max_polls
        ):
            logger.info(
                f"Session used for {self.session_manager.polls} polls. Rotating."
            )
            self.session_manager.logout()

    def _wait_for_control(
        self, zone_state: ZoneState, cancel: threading.Event, budget: float
    ) -> ZoneState:
        """
        Re-poll until control is enabled, bounded by budget seconds.

        Raises:
            CommandError: SERVICE_MODE if the panel enters service mode while
                waiting, TIMEOUT when the budget is spent, CANCELLED if the cancel
                event is set
        """
        deadline = time.monotonic() + budget
        while zone_state.control_disabled:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CommandError(
                    CommandFailure.TIMEOUT,
                    f"Control still disabled after {budget} seconds",
                )
            logger.info("Waiting for control enabling...")
            if cancel.wait(min(self.config.control_wait_interval, remaining)):
                raise CommandError(CommandFailure.CANCELLED, "Command cancelled")
            zone_state = self._fetch_state()
            if zone_state.in_service_mode:
                raise CommandError(
                    CommandFailure.SERVICE_MODE, "Panel entered service mode"
                )
        return zone_state

    def _confirm_state(self, zone_state: ZoneState, cancel: threading.Event) -> ZoneState:
        for _ in range(self.config.confirm_polls):
            if cancel.wait(self.config.confirm_interval):
                break
            try:
                zone_state = self._fetch_state()
            except (PollError, AuthError) as e:
                logger.warning(f"Cannot confirm state after command: {e}")
                break
        return zone_state

    def execute(
        self,
        section: Optional[Section],
        code: str,
        cancel: Optional[threading.Event] = None,
        max_wait: Optional[float] = None,
    ) -> ZoneState:
        """
        Submit a user code and return the resulting state.

        The whole sequence runs under the controller lock and always ends with
        exactly one logout attempt. A command is never resubmitted automatically.

        Args:
            section: Section being armed, None when disarming
            code: User code to submit
            cancel: Optional event interrupting the wait for control enabling
            max_wait: Seconds to wait for control enabling, defaults to
                config.control_wait_budget

        Returns:
            ZoneState after the command (after confirmatory polls, if configured)

        Raises:
            CommandError: SERVICE_MODE, TIMEOUT, CANCELLED, REJECTED, BUSY, FAILED,
                REDIRECT_UNSUPPORTED, SESSION_EXPIRED or TRANSPORT
            AuthError: Login failed
            PollError: The state could not be confirmed before submitting
        """
        cancel = cancel if cancel is not None else threading.Event()
        budget = max_wait if max_wait is not None else self.config.control_wait_budget
        with self._lock:
            try:
                session = self._ensure_session()
                self.state = ControllerState.COMMANDING
                zone_state = self._fetch_state()
                if zone_state.in_service_mode:
                    raise CommandError(
                        CommandFailure.SERVICE_MODE,
                        "Panel is in service mode. Not sending code.",
                    )
                zone_state = self._wait_for_control(zone_state, cancel, budget)
                session = self.session_manager.session or session
                outcome = self.dispatcher.send_code(session, section, code, zone_state)
                match self.dispatcher.action_for(outcome):
                    case DispatchAction.ACCEPT:
                        logger.info("Command accepted.")
                        zone_state = self._confirm_state(zone_state, cancel)
                    case DispatchAction.LOGOUT:
                        reason = (
                            CommandFailure.BUSY
                            if outcome.app_outcome is AppOutcome.BUSY
                            else CommandFailure.FAILED
                        )
                        raise CommandError(
                            reason, "Command not accepted", status=outcome.app_status
                        )
                    case DispatchAction.FAIL:
                        logger.error("Redirect not supported")
                        raise CommandError(
                            CommandFailure.REDIRECT_UNSUPPORTED,
                            "Redirect not supported",
                            status=outcome.app_status,
                        )
                    case DispatchAction.RELOGIN:
                        self.session_manager.invalidate()
                        try:
                            self._ensure_session()
                        except AuthError as e:
                            logger.warning(f"Re-login after expired session failed: {e}")
                        raise CommandError(
                            CommandFailure.SESSION_EXPIRED,
                            "Session expired while sending code",
                            status=outcome.app_status,
                        )
            except JablotronError as e:
                logger.error(f"Command failed: {e}")
                self.state = ControllerState.DISCONNECTED
                raise
            except BaseException:
                self.state = ControllerState.DISCONNECTED
                raise
            else:
                self.state = ControllerState.READY
            finally:
                self.session_manager.logout()
            return zone_state

    def submit_command(self, target: Section | Output, arm: bool) -> None:
        """
        Queue an arm/disarm request for the control loop thread.

        Args:
            target: Section or output the user toggled
            arm: True to arm, False to disarm

        Raises:
            CommandError: NOT_CONTROLLABLE for PG outputs
        """
        if isinstance(target, Output):
            logger.error("Controlling of PGX/Y outputs is not supported!")
            raise CommandError(
                CommandFailure.NOT_CONTROLLABLE, f"Output {target.value} is read only"
            )
        self._command_queue.put(Command(target, arm))

    def stop(self) -> None:
        self._stop_event.set()

    def _process_command_queue(self) -> None:
        while not self._command_queue.empty():
            command = self._command_queue.get()
            try:
                self._run_command(command)
            finally:
                self._command_queue.task_done()

    def _run_command(self, command: Command) -> None:
        try:
            code = self.config.code_for(command.target, command.arm)
        except ConfigError as e:
            logger.error(str(e))
            return
        section = command.target if command.arm else None
        try:
            zone_state = self.execute(section, code, cancel=self._stop_event)
        except JablotronError:
            # Already logged by execute(). Publish whatever is known.
            zone_state = self.last_state
        self._publish(zone_state)

    def _publish(self, zone_state: ZoneState) -> None:
        if self._mqtt_client is None:
            return
        if zone_state != self._published_state:
            self._mqtt_client.publish_zone_state(zone_state)
            self._published_state = zone_state

    def control_loop(self, mqtt_client: MQTTClient) -> int:
        """
        Host loop: poll on a fixed interval, run queued commands, publish snapshots.

        Args:
            mqtt_client: MQTT client for publishing states

        Returns:
            0 for normal exit, 1 for error exit
        """
        logger.debug("Starting controller run loop.")
        self._mqtt_client = mqtt_client
        self._published_state = None
        online = False
        next_poll = datetime.datetime.min
        next_republish = datetime.datetime.max
        rc = 0
        try:
            while not self._stop_event.is_set():
                self._process_command_queue()
                now = datetime.datetime.now()
                if now >= next_poll:
                    next_poll = now + datetime.timedelta(seconds=self.config.poll_interval)
                    try:
                        zone_state = self.poll()
                    except AuthError:
                        if online:
                            mqtt_client.publish_offline()
                            online = False
                    except PollError:
                        pass  # Logged by poll(). Next poll retries.
                    else:
                        if not online:
                            mqtt_client.publish_configs()
                            mqtt_client.publish_online()
                            online = True
                            next_republish = now + datetime.timedelta(
                                minutes=REPUBLISH_INTERVAL_MINUTES
                            )
                        self._publish(zone_state)
                if online and now >= next_republish:
                    next_republish = now + datetime.timedelta(
                        minutes=REPUBLISH_INTERVAL_MINUTES
                    )
                    mqtt_client.publish_zone_state(self.last_state)
                self._stop_event.wait(LOOP_SLEEP_SECONDS)
        except KeyboardInterrupt:
            logger.debug("Received keyboard interrupt. Normal stop")
        except Exception as e:
            logger.error(f"Jablotron controller received exception: {e}")
            rc = 1
        finally:
            if mqtt_client is not None:
                mqtt_client.publish_offline()
            with self._lock:
                if self.session_manager.session is not None:
                    self.session_manager.logout()
            while not self._command_queue.empty():
                logger.debug("Shutdown: Discarding command from _command_queue.")
                self._command_queue.get_nowait()
                self._command_queue.task_done()
            self._mqtt_client = None
        logger.debug("Exiting controller run loop.")
        return rc
