"""Constants used across the daemonctl package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "daemonctl"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.conf"
DEFAULT_CONFIG_PATH = Path("/etc") / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_DAEMON_EXECUTABLE = "daemond"

DEFAULT_CONTROL_PORT = 8953
DEFAULT_CONTROL_INTERFACE = "127.0.0.1"

DEFAULT_SERVER_CERT_FILE = "daemon_server.pem"
DEFAULT_CONTROL_KEY_FILE = "daemon_control.key"
DEFAULT_CONTROL_CERT_FILE = "daemon_control.pem"

# Request line: protocol tag, command words, newline.
PROTOCOL_TAG = "CTL1"

READ_BUFFER_SIZE = 1024
