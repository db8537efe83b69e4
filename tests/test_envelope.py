"""Tests for response normalization and status classification."""
import pytest
from unittest.mock import Mock

import requests

from errors import TransportError
from envelope import (
    AppOutcome,
    ResponseEnvelope,
    STATUS_OUTCOMES,
    classify_status,
    extract_session_cookie,
)


class TestClassifyStatus:
    """Tests for the wire status -> AppOutcome table."""

    @pytest.mark.parametrize(
        "status,outcome",
        [
            (200, AppOutcome.OK),
            (800, AppOutcome.NO_SESSION),
            (201, AppOutcome.BUSY),
            (300, AppOutcome.REDIRECT),
        ],
    )
    def test_known_codes(self, status, outcome):
        assert classify_status(status) is outcome

    @pytest.mark.parametrize("status", [0, 100, 404, 500, 801])
    def test_unknown_codes(self, status):
        assert classify_status(status) is AppOutcome.UNKNOWN

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            STATUS_OUTCOMES[999] = AppOutcome.OK


class TestExtractSessionCookie:
    """Tests for building the Cookie header pair."""

    def test_cookie_present(self):
        assert extract_session_cookie({"PHPSESSID": "xyz"}) == "PHPSESSID=xyz"

    def test_cookie_missing(self):
        assert extract_session_cookie({"other": "1"}) is None
        assert extract_session_cookie(None) is None
        assert extract_session_cookie({"PHPSESSID": ""}) is None

    def test_custom_cookie_name(self):
        assert extract_session_cookie({"SID": "1"}, cookie_name="SID") == "SID=1"


class TestResponseEnvelope:
    """Tests for ResponseEnvelope construction."""

    def test_ok_json(self):
        envelope = ResponseEnvelope.from_parts(200, '{"status": 200, "sekce": []}')
        assert envelope.app_status == 200
        assert envelope.app_outcome is AppOutcome.OK
        assert envelope.is_ok
        assert envelope.has_fields("status", "sekce")
        assert not envelope.has_fields("pgm")

    def test_status_as_string(self):
        envelope = ResponseEnvelope.from_parts(200, '{"status": "800"}')
        assert envelope.app_outcome is AppOutcome.NO_SESSION
        assert envelope.app_status == 800

    def test_missing_status_is_unknown(self):
        envelope = ResponseEnvelope.from_parts(200, '{"sekce": []}')
        assert envelope.app_status == 0
        assert envelope.app_outcome is AppOutcome.UNKNOWN
        assert envelope.transport_error is None
        assert not envelope.is_ok

    def test_invalid_json_is_transport_error(self):
        envelope = ResponseEnvelope.from_parts(200, "<html>login</html>")
        assert envelope.transport_error is not None
        assert envelope.app_outcome is AppOutcome.UNKNOWN
        assert envelope.raw_body == "<html>login</html>"

    def test_non_object_json_is_transport_error(self):
        envelope = ResponseEnvelope.from_parts(200, "[1, 2]")
        assert isinstance(envelope.transport_error, TransportError)
        assert isinstance(envelope.transport_error.cause, ValueError)

    def test_non_integer_status_is_transport_error(self):
        envelope = ResponseEnvelope.from_parts(200, '{"status": "busy"}')
        assert envelope.transport_error is not None

    @pytest.mark.parametrize("body", ['{"status": Infinity}', '{"status": 1e400}'])
    def test_out_of_range_status_is_transport_error(self, body):
        envelope = ResponseEnvelope.from_parts(200, body)
        assert isinstance(envelope.transport_error, TransportError)
        assert isinstance(envelope.transport_error.cause, OverflowError)
        assert envelope.app_outcome is AppOutcome.UNKNOWN

    def test_http_redirect(self):
        envelope = ResponseEnvelope.from_parts(302, "")
        assert envelope.app_outcome is AppOutcome.REDIRECT
        assert envelope.http_status_code == 302

    def test_page_classified_from_http_status(self):
        ok = ResponseEnvelope.from_parts(200, "<html></html>", expect_json=False)
        assert ok.is_ok
        assert ok.payload == {}
        error = ResponseEnvelope.from_parts(500, "oops", expect_json=False)
        assert error.app_outcome is AppOutcome.UNKNOWN

    def test_session_cookie_captured(self):
        envelope = ResponseEnvelope.from_parts(
            200, '{"status": 200}', cookies={"PHPSESSID": "s1"}
        )
        assert envelope.session_cookie == "PHPSESSID=s1"

    def test_payload_is_read_only(self):
        envelope = ResponseEnvelope.from_parts(200, '{"status": 200}')
        with pytest.raises(TypeError):
            envelope.payload["status"] = 800

    def test_from_exception(self):
        error = requests.exceptions.Timeout("slow")
        envelope = ResponseEnvelope.from_exception(error)
        assert isinstance(envelope.transport_error, TransportError)
        assert envelope.transport_error.cause is error
        assert envelope.http_status_code == 0
        assert not envelope.is_ok

    def test_from_response(self):
        response = Mock()
        response.status_code = 200
        response.text = '{"status": 201}'
        response.cookies.get_dict.return_value = {"PHPSESSID": "r1"}
        envelope = ResponseEnvelope.from_response(response)
        assert envelope.app_outcome is AppOutcome.BUSY
        assert envelope.session_cookie == "PHPSESSID=r1"
