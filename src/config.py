from typing import Dict, Mapping, NamedTuple
from types import MappingProxyType
import logging

from api_profile import LEGACY_PROFILE, ApiProfile
from errors import ConfigError
from zone_state import Section

logger = logging.getLogger("app.config")

DEFAULT_POLL_INTERVAL_SECONDS = 8.0
DEFAULT_CONTROL_WAIT_INTERVAL_SECONDS = 1.0
DEFAULT_CONTROL_WAIT_BUDGET_SECONDS = 30.0
DEFAULT_CONFIRM_INTERVAL_SECONDS = 1.0


class JablotronConfig(NamedTuple):
    """
    Validated client configuration.

    Attributes:
        username: Jablonet account e-mail
        password: Jablonet account password
        arm_codes: Code arming each section
        disarm_code: Code disarming the panel
        profile: API profile (endpoints, field names, index mappings)
        poll_interval: Seconds between polls driven by the control loop
        hold_session: Keep the session open between polls
        session_max_polls: Log out after this many polls on one session, 0 to disable
        control_wait_interval: Seconds between re-polls while control is disabled
        control_wait_budget: Maximum seconds to wait for control to be enabled
        confirm_polls: Polls made after an accepted command to let the state settle
        confirm_interval: Seconds between confirmatory polls
        request_timeout: HTTP timeout in seconds
    """
    username: str
    password: str
    arm_codes: Mapping[Section, str]
    disarm_code: str
    profile: ApiProfile = LEGACY_PROFILE
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    hold_session: bool = True
    session_max_polls: int = 0
    control_wait_interval: float = DEFAULT_CONTROL_WAIT_INTERVAL_SECONDS
    control_wait_budget: float = DEFAULT_CONTROL_WAIT_BUDGET_SECONDS
    confirm_polls: int = 1
    confirm_interval: float = DEFAULT_CONFIRM_INTERVAL_SECONDS
    request_timeout: float = 10.0

    def code_for(self, section: Section, arm: bool) -> str:
        """
        Return the code to submit for an arm or disarm request.

        Args:
            section: Section the request targets
            arm: True to arm, False to disarm

        Returns:
            The section arm code, or the disarm code

        Raises:
            ConfigError: If no code is configured for the request
        """
        code = self.arm_codes.get(section, "") if arm else self.disarm_code
        if not code:
            action = f"arming section {section.value}" if arm else "disarming"
            raise ConfigError(f"No code configured for {action}")
        return code


def parse_index_mapping(text: str) -> Dict[Section, int]:
    """
    Parse a section index mapping such as "A:2,B:1,ABC:0".

    Args:
        text: Comma-separated SECTION:INDEX pairs

    Returns:
        Section -> array position

    Raises:
        ConfigError: If a pair is malformed or names an unknown section
    """
    mapping: Dict[Section, int] = {}
    for pair in text.split(","):
        pair = pair.strip()
        if not pair:
            continue
        name, sep, index = pair.partition(":")
        if not sep:
            raise ConfigError(f"Invalid zone mapping entry '{pair}'. Expected NAME:INDEX")
        try:
            section = Section(name.strip().upper())
        except ValueError:
            raise ConfigError(f"Unknown section '{name}' in zone mapping")
        try:
            mapping[section] = int(index)
        except ValueError:
            raise ConfigError(f"Invalid index '{index}' for section {section.value}")
    return mapping


def _is_code(code: str) -> bool:
    return code.isdigit()


def validate_config(config: JablotronConfig) -> JablotronConfig:
    """
    Check a configuration before the controller is built.

    Args:
        config: Configuration to check

    Returns:
        The same configuration

    Raises:
        ConfigError: On the first problem found
    """
    if not config.username:
        raise ConfigError("Jablonet username is required")
    if not config.password:
        raise ConfigError("Jablonet password is required")
    for section, code in config.arm_codes.items():
        if code and not _is_code(code):
            raise ConfigError(f"Arm code for section {section.value} must be numeric")
    if config.disarm_code and not _is_code(config.disarm_code):
        raise ConfigError("Disarm code must be numeric")
    if not config.disarm_code and not any(config.arm_codes.values()):
        logger.warning("No arm or disarm codes configured. Commands are disabled.")
    if config.poll_interval <= 0:
        raise ConfigError("Poll interval must be positive")
    if config.control_wait_interval <= 0:
        raise ConfigError("Control wait interval must be positive")
    if config.control_wait_budget <= 0:
        raise ConfigError("Control wait budget must be positive")
    if config.session_max_polls < 0:
        raise ConfigError("Session max polls cannot be negative")
    if config.confirm_polls < 0:
        raise ConfigError("Confirm polls cannot be negative")

    section_index = config.profile.section_index
    missing = [s.value for s in Section if s not in section_index]
    if missing:
        raise ConfigError(f"Zone mapping lacks sections: {', '.join(missing)}")
    positions = list(section_index.values())
    if any(p < 0 for p in positions):
        raise ConfigError("Zone mapping indices must not be negative")
    if len(set(positions)) != len(positions):
        raise ConfigError("Zone mapping indices must be unique")
    return config


def arm_code_map(a: str = "", b: str = "", abc: str = "") -> Mapping[Section, str]:
    return MappingProxyType({Section.A: a, Section.B: b, Section.ABC: abc})
