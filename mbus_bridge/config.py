"""Configuration module using pydantic for environment-based settings."""

import re
from typing import List

from croniter import croniter
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

PRIMARY_ADDRESS_RE = re.compile(r"^[0-9]{1,3}$")
SECONDARY_ADDRESS_RE = re.compile(r"^[0-9A-Fa-f]{16}$")


def _is_bus_address(address: str) -> bool:
    """Primary address 0-250 or secondary address of 16 hex digits."""
    if PRIMARY_ADDRESS_RE.match(address):
        return int(address) <= 250
    return bool(SECONDARY_ADDRESS_RE.match(address))


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # M-Bus serial line (libmbus mbus-serial-request-data)
    MBUS_SERIAL_DEVICE: str | None = None
    MBUS_BAUDRATE: int = 2400

    # M-Bus over a TCP gateway (libmbus mbus-tcp-request-data)
    MBUS_HOST: str | None = None
    MBUS_PORT: int = 10001

    MBUS_TIMEOUT_S: float = 10.0

    # Comma separated primary (0-250) or secondary (16 hex digits) addresses
    MBUS_BUS_ADDRESSES: str = ""

    # Cron expression for refresh polls; a sixth field means seconds
    PUBLISH_SCHEDULE: str = "* * * * *"

    # MQTT Configuration
    MQTT_HOST: str = "localhost"
    MQTT_PORT: int = 1883
    MQTT_USERNAME: str | None = None
    MQTT_PASSWORD: str | None = None
    MQTT_TLS: bool = False
    MQTT_CLIENT_ID: str = "mbus-to-mqtt-homie"
    MQTT_QOS: int = 1

    # Homie device identification
    HOMIE_BASE_TOPIC: str = "homie"
    HOMIE_DEVICE_ID: str = "mbus-to-mqtt-homie"
    HOMIE_DEVICE_NAME: str = "MBus to MQTT Homie Bridge"

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        validate_default=True,
    )

    @field_validator("MBUS_BUS_ADDRESSES")
    @classmethod
    def _valid_addresses(cls, value: str) -> str:
        addresses = [a.strip() for a in value.split(",") if a.strip()]
        if not addresses:
            raise ValueError("at least one bus address is required")
        invalid = [a for a in addresses if not _is_bus_address(a)]
        if invalid:
            raise ValueError(
                f"invalid bus address(es) {', '.join(invalid)}: expected 0-250 or 16 hex digits"
            )
        return value

    @field_validator("PUBLISH_SCHEDULE")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        if not croniter.is_valid(value):
            raise ValueError(f"invalid cron expression: {value!r}")
        return value

    @field_validator("MQTT_QOS")
    @classmethod
    def _valid_qos(cls, value: int) -> int:
        if value not in (0, 1, 2):
            raise ValueError("MQTT_QOS must be 0, 1 or 2")
        return value

    @model_validator(mode="after")
    def _transport_configured(self) -> "Settings":
        if not self.MBUS_SERIAL_DEVICE and not self.MBUS_HOST:
            raise ValueError("either MBUS_SERIAL_DEVICE or MBUS_HOST must be set")
        return self

    @property
    def bus_addresses(self) -> List[str]:
        return [a.strip() for a in self.MBUS_BUS_ADDRESSES.split(",") if a.strip()]

    def describe_transport(self) -> str:
        if self.MBUS_SERIAL_DEVICE:
            return f"serial {self.MBUS_SERIAL_DEVICE} @ {self.MBUS_BAUDRATE} baud"
        return f"tcp {self.MBUS_HOST}:{self.MBUS_PORT}"


def load_settings(env_file: str | None = ".env", **overrides) -> Settings:
    """
    Build the settings, turning validation failures into ConfigurationError.

    Args:
        env_file: dotenv file to read in addition to the environment
        **overrides: explicit values, mainly for tests

    Raises:
        ConfigurationError: If a required value is missing or invalid
    """
    try:
        return Settings(_env_file=env_file, **overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e
