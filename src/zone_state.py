from typing import Any, Callable, NamedTuple, Optional, Tuple
from enum import Enum, IntEnum
import datetime


class TriState(IntEnum):
    """
    Section or output status as reported by the cloud.

    UNKNOWN is distinct from INACTIVE: it means the value was never observed
    (or the snapshot was reset by a re-login).
    """
    UNKNOWN = -1
    INACTIVE = 0
    ACTIVE = 1

    @classmethod
    def from_wire(cls, value: Optional[Any]) -> "TriState":
        """
        Map a "stav" value to a TriState.

        Args:
            value: Raw state from the payload, None if absent

        Returns:
            ACTIVE for 1, UNKNOWN for None or -1, INACTIVE otherwise

        Raises:
            ValueError: If value is not an integer
        """
        if value is None:
            return cls.UNKNOWN
        state = int(value)
        if state == 1:
            return cls.ACTIVE
        if state == -1:
            return cls.UNKNOWN
        return cls.INACTIVE


class Section(Enum):
    """Arm/disarm sections of the panel."""
    A = "A"
    B = "B"
    ABC = "ABC"


class Output(Enum):
    """PG outputs. Reported alongside sections but not controllable."""
    PGX = "PGX"
    PGY = "PGY"


class EventCode(IntEnum):
    """Contact ID event codes seen in the panel report."""
    UNCONFIRMED_ALARM = 1138
    IMMEDIATE_ALARM = 1130
    POWER_FAILURE = 1301
    SERVICE_ENTER = 1306
    DISARMED = 1401
    TIME_RESET = 1625
    POWER_RESTORATION = 3301
    SERVICE_LEAVE = 3306
    ARM_FULL = 3401
    ARM_PARTIAL = 3402
    ARM_FULL_KEYBOARD = 3408


class PanelEvent(NamedTuple):
    """One entry of the panel event report."""
    time: str
    code: str
    event: str

    @property
    def event_code(self) -> Optional[EventCode]:
        try:
            return EventCode(int(self.code))
        except ValueError:
            return None


class ZoneState(NamedTuple):
    """
    Snapshot of the panel produced by one successful poll.

    The client never deduplicates snapshots; hosts compare with == to decide
    whether anything changed.
    """
    zone_a: TriState = TriState.UNKNOWN
    zone_b: TriState = TriState.UNKNOWN
    zone_abc: TriState = TriState.UNKNOWN
    output_x: TriState = TriState.UNKNOWN
    output_y: TriState = TriState.UNKNOWN
    control_disabled: bool = True
    in_service_mode: bool = False
    is_alarm_active: bool = False
    last_event_time: Optional[datetime.datetime] = None
    events: Tuple[PanelEvent, ...] = ()

    @classmethod
    def unknown(cls) -> "ZoneState":
        return cls()

    def section(self, section: Section) -> TriState:
        match section:
            case Section.A:
                return self.zone_a
            case Section.B:
                return self.zone_b
            case Section.ABC:
                return self.zone_abc
        raise ValueError(f"Unknown section: {section}")

    def output(self, output: Output) -> TriState:
        match output:
            case Output.PGX:
                return self.output_x
            case Output.PGY:
                return self.output_y
        raise ValueError(f"Unknown output: {output}")

    def log_state(self, logger: Callable[[str], None]) -> None:
        """
        Log the snapshot in one line.

        Args:
            logger: Logging function to call with the formatted string
        """
        logger(
            f"A={self.zone_a.name} B={self.zone_b.name} ABC={self.zone_abc.name} "
            f"PGX={self.output_x.name} PGY={self.output_y.name} "
            f"controlDisabled={self.control_disabled} service={self.in_service_mode} "
            f"alarm={self.is_alarm_active} lastEvent={self.last_event_time}"
        )
