"""Tests for MQTT topic generation and message formatting."""
import datetime
import json
from unittest.mock import Mock, patch

from mqtt_client import ENTITIES, MQTTClient, sanitize_mqtt_identifier, state_payloads
from zone_state import Section, TriState, ZoneState


class TestSanitizeMqttIdentifier:
    """Tests for sanitize_mqtt_identifier."""

    def test_valid_identifier_unchanged(self):
        assert sanitize_mqtt_identifier("jablotron_panel-1") == "jablotron_panel-1"

    def test_special_characters_replaced(self):
        assert sanitize_mqtt_identifier("my panel/#+") == "my_panel___"


class TestStatePayloads:
    """Tests for building entity state payloads."""

    def test_unknown_sections_skipped(self):
        payloads = state_payloads(ZoneState.unknown())
        assert "section_a" not in payloads
        assert "pgx" not in payloads
        assert "last_event" not in payloads
        assert payloads["control_disabled"] == "ON"
        assert payloads["alarm"] == "OFF"

    def test_known_values(self):
        state = ZoneState(
            zone_a=TriState.ACTIVE,
            zone_b=TriState.INACTIVE,
            zone_abc=TriState.INACTIVE,
            output_x=TriState.ACTIVE,
            output_y=TriState.INACTIVE,
            control_disabled=False,
            in_service_mode=True,
            is_alarm_active=True,
            last_event_time=datetime.datetime(2020, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc),
        )
        payloads = state_payloads(state)
        assert payloads["section_a"] == "ON"
        assert payloads["section_b"] == "OFF"
        assert payloads["pgx"] == "ON"
        assert payloads["pgy"] == "OFF"
        assert payloads["service_mode"] == "ON"
        assert payloads["alarm"] == "ON"
        assert payloads["control_disabled"] == "OFF"
        assert payloads["last_event"] == "2020-01-02T03:04:05+00:00"


class TestMQTTClient:
    """Tests for MQTTClient with a mocked paho client."""

    def setup_method(self):
        self.patcher = patch("mqtt_client.mqtt.Client")
        self.client_class = self.patcher.start()
        self.paho = self.client_class.return_value
        self.controller = Mock()
        self.controller.last_state = ZoneState(zone_a=TriState.ACTIVE)
        self.mqtt = MQTTClient(
            self.controller,
            "localhost",
            1883,
            "user",
            "password",
            "homeassistant",
            "test panel",
            "Test Panel",
            version="1.0.0",
        )
        self.mqtt.connected = True

    def teardown_method(self):
        self.patcher.stop()

    def published(self):
        return {c.args[0]: c.kwargs.get("payload", c.args[1] if len(c.args) > 1 else None)
                for c in self.paho.publish.call_args_list}

    def test_connect(self):
        assert self.mqtt.panel_unique_id == "test_panel"
        self.paho.will_set.assert_called_once_with(
            "homeassistant/switch/test_panel/availability", "offline", qos=1, retain=True
        )
        self.paho.connect.assert_called_once_with("localhost", 1883, 60)
        self.paho.loop_start.assert_called_once()

    def test_on_connect_subscribes(self):
        self.mqtt.on_connect(None, None, None, 0)
        self.paho.subscribe.assert_any_call("homeassistant/switch/test_panel/+/set")
        self.paho.subscribe.assert_any_call("homeassistant/status")
        assert self.published()["homeassistant/switch/test_panel/availability"] == "offline"

    def test_on_connect_failure(self):
        self.mqtt.on_connect(None, None, None, 5)
        assert self.mqtt.connected is False
        self.paho.subscribe.assert_not_called()

    def test_publish_configs(self):
        self.mqtt.publish_configs()
        published = self.published()
        assert len(published) == len(ENTITIES)
        config = json.loads(published["homeassistant/switch/test_panel/section_a/config"])
        assert config["unique_id"] == "test_panel_section_a"
        assert config["~"] == "homeassistant/switch/test_panel/section_a"
        assert config["command_topic"] == "~/set"
        assert config["availability_topic"] == "homeassistant/switch/test_panel/availability"
        assert config["device"]["manufacturer"] == "Jablotron"
        sensor = json.loads(published["homeassistant/sensor/test_panel/last_event/config"])
        assert sensor["device_class"] == "timestamp"
        assert "command_topic" not in sensor

    def test_publish_zone_state(self):
        self.mqtt.publish_zone_state(ZoneState(zone_a=TriState.ACTIVE, output_x=TriState.INACTIVE))
        published = self.published()
        assert published["homeassistant/switch/test_panel/section_a/state"] == "ON"
        assert published["homeassistant/binary_sensor/test_panel/pgx/state"] == "OFF"
        assert "homeassistant/switch/test_panel/section_b/state" not in published

    def test_switch_commands(self):
        message = Mock(topic="homeassistant/switch/test_panel/section_b/set", payload=b"ON")
        self.mqtt.on_message(None, None, message)
        self.controller.submit_command.assert_called_once_with(Section.B, True)
        message = Mock(topic="homeassistant/switch/test_panel/section_abc/set", payload=b"OFF")
        self.mqtt.on_message(None, None, message)
        self.controller.submit_command.assert_called_with(Section.ABC, False)

    def test_unknown_command_ignored(self):
        message = Mock(topic="homeassistant/switch/test_panel/section_a/set", payload=b"TOGGLE")
        self.mqtt.on_message(None, None, message)
        message = Mock(topic="homeassistant/switch/test_panel/section_z/set", payload=b"ON")
        self.mqtt.on_message(None, None, message)
        self.controller.submit_command.assert_not_called()

    def test_messages_ignored_when_disconnected(self):
        self.mqtt.connected = False
        message = Mock(topic="homeassistant/switch/test_panel/section_a/set", payload=b"ON")
        self.mqtt.on_message(None, None, message)
        self.controller.submit_command.assert_not_called()

    def test_home_assistant_restart_republishes(self):
        message = Mock(topic="homeassistant/status", payload=b"online")
        self.mqtt.on_message(None, None, message)
        published = self.published()
        assert published["homeassistant/switch/test_panel/availability"] == "online"
        assert published["homeassistant/switch/test_panel/section_a/state"] == "ON"
        assert "homeassistant/binary_sensor/test_panel/alarm/config" in published

    def test_online_offline(self):
        self.mqtt.publish_online()
        self.paho.publish.assert_called_with(
            "homeassistant/switch/test_panel/availability", payload="online", qos=1, retain=True
        )
        self.mqtt.publish_offline()
        self.paho.publish.assert_called_with(
            "homeassistant/switch/test_panel/availability", payload="offline", qos=1, retain=True
        )
