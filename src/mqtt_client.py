from typing import Dict, List, NamedTuple, Optional
import json
import logging
import paho.mqtt.client as mqtt

from zone_state import Output, Section, TriState, ZoneState

logger = logging.getLogger("app.mqtt_client")


def sanitize_mqtt_identifier(value: str) -> str:
    """
    Sanitize a string for use in MQTT topics and identifiers.

    MQTT wildcards (#, +), the hierarchy separator (/) and whitespace are
    replaced with underscores.

    Args:
        value: The string to sanitize

    Returns:
        Sanitized string with only alphanumeric, underscore, and dash characters
    """
    return "".join(c if c.isalnum() or c in ("_", "-") else "_" for c in value)


class Entity(NamedTuple):
    """
    Home Assistant entity exposed for the panel.

    Attributes:
        component: Home Assistant component ("switch", "binary_sensor", "sensor")
        key: Unique suffix, also the topic segment
        name: Display name
        device_class: Home Assistant device class, None for none
    """
    component: str
    key: str
    name: str
    device_class: Optional[str] = None


SECTION_KEYS = {
    Section.A: "section_a",
    Section.B: "section_b",
    Section.ABC: "section_abc",
}
KEY_SECTIONS = {key: section for section, key in SECTION_KEYS.items()}

ENTITIES = (
    Entity("switch", "section_a", "Section A"),
    Entity("switch", "section_b", "Section B"),
    Entity("switch", "section_abc", "Section ABC"),
    Entity("binary_sensor", "pgx", "PGX", "power"),
    Entity("binary_sensor", "pgy", "PGY", "power"),
    Entity("binary_sensor", "alarm", "Alarm", "safety"),
    Entity("binary_sensor", "service_mode", "Service mode", "problem"),
    Entity("binary_sensor", "control_disabled", "Control disabled"),
    Entity("sensor", "last_event", "Last event", "timestamp"),
)


def _on_off(value: bool) -> str:
    return "ON" if value else "OFF"


def state_payloads(zone_state: ZoneState) -> Dict[str, str]:
    """
    Build the state payload of every entity with a known value.

    Sections and outputs still UNKNOWN are left out so Home Assistant keeps the
    last retained value instead of showing a made up one.

    Args:
        zone_state: Snapshot to publish

    Returns:
        Entity key -> payload
    """
    payloads: Dict[str, str] = {}
    for section, key in SECTION_KEYS.items():
        value = zone_state.section(section)
        if value is not TriState.UNKNOWN:
            payloads[key] = _on_off(value is TriState.ACTIVE)
    for output, key in ((Output.PGX, "pgx"), (Output.PGY, "pgy")):
        value = zone_state.output(output)
        if value is not TriState.UNKNOWN:
            payloads[key] = _on_off(value is TriState.ACTIVE)
    payloads["alarm"] = _on_off(zone_state.is_alarm_active)
    payloads["service_mode"] = _on_off(zone_state.in_service_mode)
    payloads["control_disabled"] = _on_off(zone_state.control_disabled)
    if zone_state.last_event_time is not None:
        payloads["last_event"] = zone_state.last_event_time.isoformat()
    return payloads


class MQTTClient(object):
    """
    MQTT client publishing Jablotron panel state to Home Assistant.

    Implements Home Assistant MQTT Discovery for the panel sections (switches),
    PG outputs and panel flags (binary sensors) and the last event time (sensor).
    Switch commands are queued on the controller.

    Attributes:
        qos: MQTT Quality of Service level (0, 1, or 2)
        panel_unique_id: Sanitized unique identifier for the panel
        panel_name: Human-readable panel name
        connected: True when connected to MQTT broker
    """
    def __init__(
        self,
        controller,
        host: str,
        port: int,
        user: str,
        password: str,
        topic_root: str,
        panel_unique_id: str,
        panel_name: str,
        version: str = "Unknown",
        timeout_seconds: int = 60,
        qos: int = 1,
    ):
        """
        Initialize MQTT client and connect to broker.

        Args:
            controller: PollingController receiving switch commands
            host: MQTT broker hostname or IP
            port: MQTT broker port
            user: MQTT username
            password: MQTT password
            topic_root: Root topic for all messages (default: "homeassistant")
            panel_unique_id: Unique identifier for panel (sanitized automatically)
            panel_name: Human-readable panel name
            version: Software version for discovery
            timeout_seconds: Connection timeout in seconds
            qos: MQTT QoS level (0, 1, or 2)

        Raises:
            Exception: If connection to MQTT broker fails
        """
        self.software_version = version
        self.qos = qos
        self.topic_root = topic_root

        sanitized_id = sanitize_mqtt_identifier(panel_unique_id)
        if sanitized_id != panel_unique_id:
            logger.warning(
                f"Panel unique ID sanitized from '{panel_unique_id}' to '{sanitized_id}'"
            )
        self.panel_unique_id = sanitized_id
        self.panel_name = panel_name

        self.command_topic_path = f"{self.topic_root}/switch/{self.panel_unique_id}/+/set"
        self.availability_topic = (
            f"{self.topic_root}/switch/{self.panel_unique_id}/availability"
        )
        self.controller = controller
        self.timeout_seconds = timeout_seconds
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION1)
        self.connected = False

        self.client.username_pw_set(user, password)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect
        self.client.reconnect_delay_set(self.timeout_seconds)

        # Broker publishes "offline" if we disconnect unexpectedly
        self.client.will_set(
            self.availability_topic, "offline", qos=self.qos, retain=True
        )

        logger.info(f"Connecting to MQTT server at {host}:{port}.")

        try:
            self.client.connect(host, port, self.timeout_seconds)
            self.client.loop_start()
        except Exception as e:
            logger.debug(f"Failed to connect to MQTT broker at {host}: {str(e)}")
            raise e

    def topic_prefix(self, entity: Entity) -> str:
        return f"{self.topic_root}/{entity.component}/{self.panel_unique_id}/{entity.key}"

    def on_connect(self, _client, _userdata, _flags, rc) -> None:
        """
        Handle MQTT broker connection initialization.

        On success, publishes offline availability until the first successful
        poll and subscribes to switch commands and the Home Assistant status topic.

        Args:
            _client: MQTT client instance (unused)
            _userdata: User data (unused)
            _flags: Connection flags (unused)
            rc: Result code (0 = success)
        """
        if rc == 0:
            self.connected = True
            logger.info("Connected to MQTT server.")
            self.publish_offline()
            self.client.subscribe(self.command_topic_path)
            self.client.subscribe(f"{self.topic_root}/status")
        else:
            self.connected = False
            logger.debug(f"Failed to connect to MQTT server result code {rc}.")

    def on_message(self, _client, _userdata, msg) -> None:
        """
        Handle incoming MQTT messages.

        Processes two types of messages:
        1. Home Assistant status ("<topic_root>/status"), republishing everything
           when Home Assistant comes back online
        2. Switch commands ("<topic_root>/switch/<panel_id>/section_<x>/set"),
           ON arms the section, OFF disarms

        Args:
            _client: MQTT client instance (unused)
            _userdata: User data (unused)
            msg: MQTT message with topic and payload
        """
        if not self.connected:
            return
        topic_parts: List[str] = msg.topic.split("/")
        if topic_parts == [self.topic_root, "status"]:
            if msg.payload == b"online":
                logger.info("MQTT integration restarted. Re-synchronizing data.")
                self.publish_configs()
                self.publish_online()
                self.publish_zone_state(self.controller.last_state)
            return
        if (
            len(topic_parts) == 5
            and topic_parts[0] == self.topic_root
            and topic_parts[1] == "switch"
            and topic_parts[2] == self.panel_unique_id
            and topic_parts[4] == "set"
        ):
            section = KEY_SECTIONS.get(topic_parts[3])
            if section is None:
                logger.error(f"Got command for unknown section '{topic_parts[3]}'.")
                return
            command = msg.payload.decode("utf-8")
            match command:
                case "ON":
                    self.controller.submit_command(section, True)
                case "OFF":
                    self.controller.submit_command(section, False)
                case _:
                    logger.error(f"Unknown command: {command}")

    def on_disconnect(self, _client, _userdata, _rc) -> None:
        self.connected = False

    def publish_online(self) -> None:
        """Mark all entities available. Called after the first successful poll."""
        self.client.publish(
            self.availability_topic, payload="online", qos=self.qos, retain=True
        )

    def publish_offline(self) -> None:
        """Mark all entities unavailable. Called on startup, auth failure and shutdown."""
        self.client.publish(
            self.availability_topic, payload="offline", qos=self.qos, retain=True
        )

    def entity_config(self, entity: Entity) -> dict:
        """
        Build the discovery config of one entity.

        All entities share a single panel device in Home Assistant.

        Args:
            entity: Entity to describe

        Returns:
            Discovery config dictionary
        """
        config = {
            "name": entity.name,
            "unique_id": f"{self.panel_unique_id}_{entity.key}",
            "device": {
                "name": self.panel_name,
                "identifiers": [self.panel_unique_id],
                "manufacturer": "Jablotron",
                "model": "JA-100 (Jablonet)",
                "sw_version": self.software_version,
            },
            "origin": {"name": "Jablotron MQTT Controller", "sw_version": "1.0.0"},
            "~": self.topic_prefix(entity),
            "availability_topic": self.availability_topic,
            "payload_available": "online",
            "payload_not_available": "offline",
            "state_topic": "~/state",
        }
        if entity.device_class is not None:
            config["device_class"] = entity.device_class
        if entity.component == "switch":
            config["command_topic"] = "~/set"
            config["optimistic"] = False
            config["retain"] = False
        return config

    def publish_configs(self) -> None:
        """Publish the discovery config of every panel entity."""
        for entity in ENTITIES:
            config_topic = f"{self.topic_prefix(entity)}/config"
            self.client.publish(
                config_topic,
                json.dumps(self.entity_config(entity)),
                qos=self.qos,
                retain=True,
            )
        logger.debug("Published panel configs.")

    def publish_zone_state(self, zone_state: ZoneState) -> None:
        """
        Publish the state of every entity with a known value.

        Args:
            zone_state: Snapshot to publish
        """
        payloads = state_payloads(zone_state)
        for entity in ENTITIES:
            payload = payloads.get(entity.key)
            if payload is None:
                continue
            state_topic = f"{self.topic_prefix(entity)}/state"
            self.client.publish(state_topic, payload, qos=self.qos, retain=True)
        logger.debug("Published panel state.")
