from typing import List, NamedTuple
import logging
import re
import time

from api_profile import ApiProfile, DiscoveryFormat
from envelope import AppOutcome, ResponseEnvelope
from errors import DiscoveryError, DiscoveryFailure

logger = logging.getLogger("app.service_locator")


class ServiceRef(NamedTuple):
    """An alarm service (site) the account controls."""
    service_id: str
    name: str


class ServiceLocator(object):
    """
    Discovers which alarm service the logged-in account controls.

    Accounts may expose several services. Only the first one listed is ever
    tracked; multi-site accounts are not supported.
    """
    def __init__(self, transport, profile: ApiProfile) -> None:
        self.transport = transport
        self.profile = profile

    def discover(self, session_token: str) -> ServiceRef:
        """
        Select the service to operate on and open it.

        Args:
            session_token: Cookie pair returned by the login request

        Returns:
            ServiceRef for the first listed service

        Raises:
            DiscoveryError: EMPTY if no service is listed, REJECTED if the listing
                or the service page is refused, TRANSPORT on network failure
        """
        services = self.list_services(session_token)
        if not services:
            raise DiscoveryError(DiscoveryFailure.EMPTY, "No alarm service found")
        if len(services) > 1:
            logger.info(
                f"Account has {len(services)} services. Using the first one only."
            )
        service = services[0]
        logger.info(f"Found Jablotron service: {service.name} id: {service.service_id}")
        if self.profile.open_service_page:
            self._open_service(session_token, service)
        return service

    def list_services(self, session_token: str) -> List[ServiceRef]:
        path = self.profile.discovery_path.format(timestamp=int(time.time() * 1000))
        json_listing = self.profile.discovery_format is DiscoveryFormat.JSON
        envelope = self.transport.request(
            "GET",
            path,
            session_token=session_token,
            referer=self.profile.base_url,
            ajax=json_listing,
            expect_json=json_listing,
        )
        self._check(envelope, "Service listing")
        if json_listing:
            return self._parse_widgets(envelope)
        return self._parse_cloud_page(envelope.raw_body)

    def _open_service(self, session_token: str, service: ServiceRef) -> None:
        envelope = self.transport.request(
            "GET",
            self.profile.service_path.format(service_id=service.service_id),
            session_token=session_token,
            referer=self.profile.base_url,
            ajax=False,
            expect_json=False,
        )
        self._check(envelope, f"Opening service {service.service_id}")

    @staticmethod
    def _check(envelope: ResponseEnvelope, what: str) -> None:
        if envelope.transport_error is not None:
            raise DiscoveryError(
                DiscoveryFailure.TRANSPORT,
                f"{what} failed: {envelope.transport_error}",
            )
        if envelope.app_outcome is not AppOutcome.OK:
            raise DiscoveryError(
                DiscoveryFailure.REJECTED,
                f"{what} rejected",
                status=envelope.app_status,
            )

    def _parse_widgets(self, envelope: ResponseEnvelope) -> List[ServiceRef]:
        """
        Parse the JSON widget listing.

        "widgets" holds the service ids, "widget" the matching objects with a
        display name. "cnt-widgets" caps the number of entries considered.
        """
        payload = envelope.payload
        ids = payload.get("widgets") or []
        details = payload.get("widget") or []
        count = payload.get("cnt-widgets", len(ids))
        try:
            count = min(int(count), len(ids))
        except (TypeError, ValueError):
            raise DiscoveryError(
                DiscoveryFailure.REJECTED, f"Invalid widget count: {count}"
            )
        services = []
        for i in range(count):
            name = ""
            if i < len(details) and isinstance(details[i], dict):
                name = str(details[i].get("name", ""))
            services.append(ServiceRef(str(ids[i]), name))
        return services

    def _parse_cloud_page(self, body: str) -> List[ServiceRef]:
        # Links look like <a href="https://www.jablonet.net/app/oasis?service=123">Home</a>
        prefix = self.profile.service_url("")
        pattern = re.escape(prefix) + r'([^"&]+)"[^>]*>([^<]*)</a>'
        services = []
        seen = set()
        for service_id, name in re.findall(pattern, body):
            if service_id in seen:
                continue
            seen.add(service_id)
            services.append(ServiceRef(service_id, name.strip()))
        return services
