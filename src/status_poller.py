from typing import Any, List, Mapping, Optional
import datetime
import logging
import time

from api_profile import ApiProfile
from envelope import AppOutcome
from errors import PollError, PollFailure
from session_manager import Session
from zone_state import Output, PanelEvent, Section, TriState, ZoneState

logger = logging.getLogger("app.status_poller")


def _array_state(array: List[Any], position: int, state_field: str) -> TriState:
    if position < 0 or position >= len(array):
        return TriState.UNKNOWN
    entry = array[position]
    if not isinstance(entry, dict) or state_field not in entry:
        return TriState.UNKNOWN
    return TriState.from_wire(entry[state_field])


def _wire_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return int(value) != 0


def _flag(payload: Mapping[str, Any], field: str, default: bool) -> bool:
    value = payload.get(field)
    if value is None:
        return default
    return int(value) == 1


def _last_event_time(
    payload: Mapping[str, Any], field: str
) -> Optional[datetime.datetime]:
    entry = payload.get(field)
    if not isinstance(entry, dict):
        return None
    cid = entry.get("cid")
    if not isinstance(cid, dict) or cid.get("time") is None:
        return None
    return datetime.datetime.fromtimestamp(int(cid["time"]), tz=datetime.timezone.utc)


def parse_report(payload: Mapping[str, Any], field: str = "vypis") -> List[PanelEvent]:
    """
    Flatten the event report carried by some status responses.

    The report is keyed by day, then by time, each entry holding "code" and
    "event". Entries that are not objects are skipped.

    Args:
        payload: Decoded status response
        field: Name of the report field

    Returns:
        Events in payload order, empty if there is no report
    """
    report = payload.get(field)
    if not isinstance(report, dict):
        return []
    events = []
    for day in report.values():
        if not isinstance(day, dict):
            continue
        for event_time, data in day.items():
            if not isinstance(data, dict):
                continue
            events.append(
                PanelEvent(
                    time=event_time,
                    code=str(data.get("code", "")),
                    event=str(data.get("event", "")),
                )
            )
    return events


def translate_status(payload: Mapping[str, Any], profile: ApiProfile) -> ZoneState:
    """
    Map a status payload to a ZoneState.

    Section and output positions come from the profile since their order differs
    between API generations. controlDisabled defaults to True so commands stay
    blocked when the field is missing; service and alarm default to False.

    Args:
        payload: Decoded status response
        profile: API profile with field names and index mappings

    Returns:
        ZoneState snapshot

    Raises:
        PollError: MALFORMED if the section or output arrays are missing or the
            payload carries non-integer values
    """
    sections = payload.get(profile.sections_field)
    outputs = payload.get(profile.outputs_field)
    if not isinstance(sections, list) or not isinstance(outputs, list):
        raise PollError(
            PollFailure.MALFORMED,
            f"Status response lacks '{profile.sections_field}'/'{profile.outputs_field}' arrays",
        )
    state_field = profile.state_field
    section_index = profile.section_index
    output_index = profile.output_index
    control_disabled = payload.get(profile.control_disabled_field)
    try:
        return ZoneState(
            zone_a=_array_state(sections, section_index[Section.A], state_field),
            zone_b=_array_state(sections, section_index[Section.B], state_field),
            zone_abc=_array_state(sections, section_index[Section.ABC], state_field),
            output_x=_array_state(outputs, output_index[Output.PGX], state_field),
            output_y=_array_state(outputs, output_index[Output.PGY], state_field),
            control_disabled=(
                True if control_disabled is None else _wire_bool(control_disabled)
            ),
            in_service_mode=_flag(payload, profile.service_field, False),
            is_alarm_active=_flag(payload, profile.alarm_field, False),
            last_event_time=_last_event_time(payload, profile.last_entry_field),
            events=tuple(parse_report(payload, profile.report_field)),
        )
    except (TypeError, ValueError, OverflowError) as e:
        raise PollError(PollFailure.MALFORMED, f"Invalid status value: {e}") from e


class StatusPoller(object):
    """Fetches the current panel state for a session."""

    def __init__(self, transport, profile: ApiProfile) -> None:
        self.transport = transport
        self.profile = profile

    def fetch_state(self, session: Session) -> ZoneState:
        """
        Request the current state and translate it.

        Args:
            session: Valid session

        Returns:
            Fresh ZoneState

        Raises:
            PollError: NO_SESSION, BUSY, MALFORMED, TRANSPORT or UNEXPECTED_STATUS
        """
        path = self.profile.status_path.format(timestamp=int(time.time() * 1000))
        envelope = self.transport.request(
            self.profile.status_method,
            path,
            data=self.profile.status_form or None,
            session_token=session.token,
            referer=self.profile.service_url(session.service_id),
        )
        if envelope.transport_error is not None:
            raise PollError(
                PollFailure.TRANSPORT, f"Status request failed: {envelope.transport_error}"
            )
        match envelope.app_outcome:
            case AppOutcome.OK:
                pass
            case AppOutcome.NO_SESSION:
                raise PollError(PollFailure.NO_SESSION, "Session expired", 800)
            case AppOutcome.BUSY:
                raise PollError(PollFailure.BUSY, "Panel is busy", 201)
            case _:
                raise PollError(
                    PollFailure.UNEXPECTED_STATUS,
                    "Cannot get alarm status",
                    status=envelope.app_status,
                )
        zone_state = translate_status(envelope.payload, self.profile)
        for event in zone_state.events:
            logger.info(f"Time: {event.time} code: {event.code} event: {event.event}")
        return zone_state
