"""M-Bus to MQTT Homie bridge."""

__version__ = "0.1.0"
