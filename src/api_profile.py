from typing import Mapping, NamedTuple, Tuple
from types import MappingProxyType
from enum import Enum

from zone_state import Output, Section

JABLONET_URL = "https://www.jablonet.net/"


class DiscoveryFormat(Enum):
    """How the service listing is returned after login."""
    JSON = "json"  # Widget listing: cnt-widgets / widgets / widget[].
    HTML = "html"  # Cloud landing page with app/oasis?service=<id> links.


class ApiProfile(NamedTuple):
    """
    Everything that differs between generations of the Jablotron cloud API.

    Endpoint paths are relative to base_url and may contain format fields:
    {service_id} for the service page and {timestamp} (milliseconds) for the
    cache-busting status request. The state machine itself is identical for
    every profile.
    """
    name: str
    base_url: str = JABLONET_URL
    session_cookie_name: str = "PHPSESSID"

    login_path: str = "ajax/login.php"
    username_field: str = "login"
    password_field: str = "heslo"
    login_extra_fields: Mapping[str, str] = MappingProxyType(
        {"aStatus": "200", "loginType": "Login"}
    )
    logout_path: str = "logout"

    discovery_path: str = "cloud"
    discovery_format: DiscoveryFormat = DiscoveryFormat.HTML
    service_path: str = "app/oasis?service={service_id}"
    open_service_page: bool = True

    status_path: str = "app/oasis/ajax/stav.php?_={timestamp}"
    status_method: str = "GET"
    status_form: Mapping[str, str] = MappingProxyType({})

    command_path: str = "app/oasis/ajax/ovladani.php"
    command_section: str = "STATE"

    status_field: str = "status"
    sections_field: str = "sekce"
    outputs_field: str = "pgm"
    state_field: str = "stav"
    control_disabled_field: str = "controlDisabled"
    service_field: str = "service"
    alarm_field: str = "isAlarm"
    last_entry_field: str = "last_entry"
    result_field: str = "vysledek"
    report_field: str = "vypis"

    section_index: Mapping[Section, int] = MappingProxyType(
        {Section.A: 0, Section.B: 1, Section.ABC: 2}
    )
    output_index: Mapping[Output, int] = MappingProxyType(
        {Output.PGX: 0, Output.PGY: 1}
    )
    accepted_results: Tuple[int, ...] = (1,)

    def url(self, path: str) -> str:
        return self.base_url + path

    def service_url(self, service_id: str) -> str:
        return self.url(self.service_path.format(service_id=service_id))

    def with_section_index(self, mapping: Mapping[Section, int]) -> "ApiProfile":
        """
        Return a copy of this profile using a different section ordering.

        Args:
            mapping: Section -> position in the "sekce" array

        Returns:
            New ApiProfile with the mapping applied
        """
        return self._replace(section_index=MappingProxyType(dict(mapping)))


# Original web client API. Service is scraped from the cloud landing page.
LEGACY_PROFILE = ApiProfile(name="legacy")

# Later widget based API. The section array is reported in reverse order.
WIDGET_PROFILE = ApiProfile(
    name="widget",
    discovery_path="ajax/widget/new-widget.php?_={timestamp}",
    discovery_format=DiscoveryFormat.JSON,
    status_path="app/oasis/ajax/stav.php?_={timestamp}",
    status_method="POST",
    status_form=MappingProxyType({"activeTab": "heat"}),
    section_index=MappingProxyType({Section.A: 2, Section.B: 1, Section.ABC: 0}),
)

PROFILES = MappingProxyType(
    {
        LEGACY_PROFILE.name: LEGACY_PROFILE,
        WIDGET_PROFILE.name: WIDGET_PROFILE,
    }
)
