"""Scripted stand-in for Transport used by the client tests."""
import json
import threading
import time
from typing import Dict, List, NamedTuple, Optional

import requests

from api_profile import LEGACY_PROFILE, ApiProfile
from envelope import ResponseEnvelope

SESSION_ID = "abc123"
SESSION_TOKEN = f"PHPSESSID={SESSION_ID}"
SERVICE_ID = "4242"
SERVICE_NAME = "Home"


def json_response(body: dict, http_status: int = 200, cookies=None) -> ResponseEnvelope:
    return ResponseEnvelope.from_parts(http_status, json.dumps(body), cookies=cookies)


def page(body: str = "<html></html>", http_status: int = 200) -> ResponseEnvelope:
    return ResponseEnvelope.from_parts(http_status, body, expect_json=False)


def failure(message: str = "connection refused") -> ResponseEnvelope:
    return ResponseEnvelope.from_exception(requests.exceptions.ConnectionError(message))


def cloud_page(*services) -> ResponseEnvelope:
    links = "".join(
        f'<li><a href="https://www.jablonet.net/app/oasis?service={sid}" class="x">{name}</a></li>'
        for sid, name in services
    )
    return page(f"<html><body><ul>{links}</ul></body></html>")


def status_payload(
    sections=(0, 0, 0),
    outputs=(0, 0),
    control_disabled: Optional[bool] = False,
    service: int = 0,
    alarm: int = 0,
    status: int = 200,
    **extra,
) -> dict:
    payload = {
        "status": status,
        "sekce": [{"stav": s} for s in sections],
        "pgm": [{"stav": s} for s in outputs],
        "service": service,
        "isAlarm": alarm,
    }
    if control_disabled is not None:
        payload["controlDisabled"] = control_disabled
    payload.update(extra)
    return payload


def status_response(**kwargs) -> ResponseEnvelope:
    return json_response(status_payload(**kwargs))


class Call(NamedTuple):
    kind: str
    method: str
    path: str
    data: Optional[dict]
    session_token: Optional[str]
    referer: Optional[str]


class FakeTransport(object):
    """
    Transport returning scripted envelopes per endpoint kind.

    Kinds are login, discovery, service, status, command and logout. Each kind
    has a queue of envelopes; the last one stays in place once the others are
    consumed. Every request is recorded in calls.
    """
    def __init__(self, profile: ApiProfile = LEGACY_PROFILE, delay: float = 0.0):
        self.profile = profile
        self.delay = delay
        self.routes = {
            profile.login_path.split("?")[0]: "login",
            profile.discovery_path.split("?")[0]: "discovery",
            profile.service_path.split("?")[0]: "service",
            profile.status_path.split("?")[0]: "status",
            profile.command_path.split("?")[0]: "command",
            profile.logout_path.split("?")[0]: "logout",
        }
        self.responses: Dict[str, List[ResponseEnvelope]] = {
            "login": [json_response({"status": 200}, cookies={"PHPSESSID": SESSION_ID})],
            "discovery": [cloud_page((SERVICE_ID, SERVICE_NAME))],
            "service": [page()],
            "status": [status_response()],
            "command": [json_response({"status": 200, "vysledek": 1})],
            "logout": [page()],
        }
        self.calls: List[Call] = []
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def script(self, kind: str, *envelopes: ResponseEnvelope) -> None:
        self.responses[kind] = list(envelopes)

    def count(self, kind: str) -> int:
        return len([c for c in self.calls if c.kind == kind])

    def kinds(self) -> List[str]:
        return [c.kind for c in self.calls]

    def request(
        self,
        method,
        path,
        data=None,
        session_token=None,
        referer=None,
        ajax=True,
        expect_json=True,
    ) -> ResponseEnvelope:
        kind = self.routes[path.split("?")[0]]
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls.append(
                Call(kind, method, path, dict(data) if data else None, session_token, referer)
            )
            queued = self.responses[kind]
            envelope = queued.pop(0) if len(queued) > 1 else queued[0]
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1
        return envelope
