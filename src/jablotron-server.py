from typing import Final
import os
import signal
import sys
import argparse
import logging

from api_profile import PROFILES
from config import (
    DEFAULT_CONTROL_WAIT_BUDGET_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    JablotronConfig,
    arm_code_map,
    parse_index_mapping,
    validate_config,
)
from errors import ConfigError
from mqtt_client import MQTTClient
from polling_controller import PollingController

VERSION: Final = "1.0.0"
DEFAULT_MQTT_PORT: Final = 1883
LOG_FORMAT: Final = "%(asctime)s - %(module)s - %(levelname)s - %(message)s"


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def build_config(args: argparse.Namespace) -> JablotronConfig:
    """
    Assemble and validate the client configuration from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Validated JablotronConfig

    Raises:
        ConfigError: If an option is missing or invalid
    """
    profile = PROFILES.get(args.profile)
    if profile is None:
        raise ConfigError(
            f"Unknown API profile '{args.profile}'. Use one of: {', '.join(PROFILES)}"
        )
    if args.zone_map:
        mapping = dict(profile.section_index)
        mapping.update(parse_index_mapping(args.zone_map))
        profile = profile.with_section_index(mapping)
    config = JablotronConfig(
        username=args.username or "",
        password=args.password or "",
        arm_codes=arm_code_map(
            a=args.arm_a_code or "",
            b=args.arm_b_code or "",
            abc=args.arm_abc_code or "",
        ),
        disarm_code=args.disarm_code or "",
        profile=profile,
        poll_interval=float(args.poll_interval),
        hold_session=args.hold_session,
        session_max_polls=int(args.session_max_polls),
        control_wait_budget=float(args.control_wait),
    )
    return validate_config(config)


def build_parser() -> argparse.ArgumentParser:
    # Gather the arguments from command line or environment.
    parser = argparse.ArgumentParser(description="Jablotron MQTT Server")
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level",
        default=os.getenv("LOG_LEVEL", "INFO"),
    )
    parser.add_argument(
        "--username",
        type=str,
        help="Jablonet account e-mail",
        default=os.getenv("JABLOTRON_USERNAME", None),
    )
    parser.add_argument(
        "--password",
        type=str,
        help="Jablonet account password",
        default=os.getenv("JABLOTRON_PASSWORD", None),
    )
    parser.add_argument(
        "--arm-a-code",
        type=str,
        help="Code arming section A",
        default=os.getenv("ARM_A_CODE", None),
    )
    parser.add_argument(
        "--arm-b-code",
        type=str,
        help="Code arming section B",
        default=os.getenv("ARM_B_CODE", None),
    )
    parser.add_argument(
        "--arm-abc-code",
        type=str,
        help="Code arming sections ABC",
        default=os.getenv("ARM_ABC_CODE", None),
    )
    parser.add_argument(
        "--disarm-code",
        type=str,
        help="Code disarming the panel",
        default=os.getenv("DISARM_CODE", None),
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between status polls",
        default=os.getenv("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
    )
    parser.add_argument(
        "--profile",
        type=str,
        help="Jablonet API generation (legacy or widget)",
        default=os.getenv("API_PROFILE", "legacy"),
    )
    parser.add_argument(
        "--zone-map",
        type=str,
        help="Section to status array index mapping, e.g. A:0,B:1,ABC:2",
        default=os.getenv("ZONE_MAP", None),
    )
    parser.add_argument(
        "--hold-session",
        action=argparse.BooleanOptionalAction,
        help="Keep the cloud session open between polls",
        default=env_flag("HOLD_SESSION", True),
    )
    parser.add_argument(
        "--session-max-polls",
        type=int,
        help="Log out after this many polls on one session (0 = never)",
        default=os.getenv("SESSION_MAX_POLLS", 0),
    )
    parser.add_argument(
        "--control-wait",
        type=float,
        help="Maximum seconds to wait for control to be enabled before a command",
        default=os.getenv("CONTROL_WAIT", DEFAULT_CONTROL_WAIT_BUDGET_SECONDS),
    )
    parser.add_argument(
        "--mqtt-host",
        type=str,
        help="MQTT host",
        default=os.getenv("MQTT_HOST", "127.0.0.1"),
    )
    parser.add_argument(
        "--mqtt-port",
        type=int,
        help="MQTT port number",
        default=os.getenv("MQTT_PORT", DEFAULT_MQTT_PORT),
    )
    parser.add_argument(
        "--mqtt-user",
        type=str,
        help="MQTT user name",
        default=os.getenv("MQTT_USER", None),
    )
    parser.add_argument(
        "--mqtt-password",
        type=str,
        help="MQTT password",
        default=os.getenv("MQTT_PASSWORD", None),
    )
    parser.add_argument(
        "--mqtt-topic-root",
        type=str,
        help="Root topic for MQTT Client publishing",
        default=os.getenv("TOPIC_ROOT", "homeassistant"),
    )
    parser.add_argument(
        "--panel-unique-id",
        type=str,
        help="Unique ID for panel device",
        default=os.getenv("PANEL_UNIQUE_ID", "jablotron_panel"),
    )
    parser.add_argument(
        "--panel-name",
        type=str,
        help="Panel Friendly Name",
        default=os.getenv("PANEL_NAME", "Jablotron Alarm"),
    )
    return parser


def main() -> int:
    mqtt = None
    controller = None

    # Setup for exit
    def exit_handler(_sig, _frame):
        if controller is not None:
            controller.stop()
        if mqtt is not None:
            mqtt.publish_offline()
        sys.exit(0)

    signal.signal(signal.SIGINT, exit_handler)
    signal.signal(signal.SIGTERM, exit_handler)

    args = build_parser().parse_args()

    logging.basicConfig(format=LOG_FORMAT, level=args.log_level)
    logger = logging.getLogger(__name__)
    logger.info("Starting Jablotron MQTT Server")

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    controller = PollingController(config)

    # Initialize the MQTT client
    try:
        mqtt = MQTTClient(
            controller,
            args.mqtt_host,
            args.mqtt_port,
            args.mqtt_user,
            args.mqtt_password,
            args.mqtt_topic_root,
            args.panel_unique_id,
            args.panel_name,
            version=VERSION,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Jablotron MQTT Client: {e}")
        return 1

    # Run the controller loop
    code = controller.control_loop(mqtt)
    return code


if __name__ == "__main__":
    rc = main()
    sys.exit(rc)
