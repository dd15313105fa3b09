"""Configuration loader for daemonctl."""

from __future__ import annotations

from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from . import constants
from .errors import ConfigError
from .tls import IdentityMaterial

REMOTE_CONTROL_SECTION = "remote-control"
SERVER_SECTION = "server"
LOGGING_SECTION = "logging"


@dataclass(slots=True)
class RemoteControlConfig:
    enabled: bool = False
    interfaces: List[str] = field(default_factory=list)
    port: int = constants.DEFAULT_CONTROL_PORT
    server_cert_file: str = constants.DEFAULT_SERVER_CERT_FILE
    control_key_file: str = constants.DEFAULT_CONTROL_KEY_FILE
    control_cert_file: str = constants.DEFAULT_CONTROL_CERT_FILE


@dataclass(slots=True)
class ServerConfig:
    chroot: str = ""
    directory: Optional[Path] = None


@dataclass(slots=True)
class LoggingConfig:
    level: str = "WARNING"
    path: Optional[Path] = None


@dataclass(slots=True)
class DaemonctlConfig:
    remote_control: RemoteControlConfig
    server: ServerConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path

    def resolve_path(self, name: str) -> Path:
        return path_after_chroot(
            name, chroot=self.server.chroot, directory=self.server.directory
        )

    def identity_material(self) -> IdentityMaterial:
        """Certificate and key paths as seen from outside the chroot."""

        return IdentityMaterial(
            client_cert=self.resolve_path(self.remote_control.control_cert_file),
            client_key=self.resolve_path(self.remote_control.control_key_file),
            trusted_issuer=self.resolve_path(self.remote_control.server_cert_file),
        )


def path_after_chroot(
    name: str, *, chroot: str = "", directory: Optional[Path] = None
) -> Path:
    """Locate a daemon-relative file from outside the daemon's chroot.

    Paths already inside the chroot are returned unchanged. Relative paths
    are placed under ``directory`` and the result is prefixed with the
    chroot when one is configured.
    """

    path = Path(name).expanduser()
    root = Path(chroot) if chroot else None

    if root is not None and path.is_relative_to(root):
        return path

    if not path.is_absolute() and directory is not None:
        path = directory / path

    if root is not None and not path.is_relative_to(root):
        relative = path.relative_to(path.anchor) if path.is_absolute() else path
        path = root / relative

    return path


def _parse_list(value: str, *, default: Iterable[str] = ()) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: Optional[Path] = None) -> DaemonctlConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = Path(path or constants.DEFAULT_CONFIG_PATH)
    parser = ConfigParser()
    parser.read_dict(
        {
            REMOTE_CONTROL_SECTION: {
                "control-enable": "no",
                "control-interface": "",
                "control-port": str(constants.DEFAULT_CONTROL_PORT),
                "server-cert-file": constants.DEFAULT_SERVER_CERT_FILE,
                "control-key-file": constants.DEFAULT_CONTROL_KEY_FILE,
                "control-cert-file": constants.DEFAULT_CONTROL_CERT_FILE,
            },
            SERVER_SECTION: {
                "chroot": "",
                "directory": "",
            },
            LOGGING_SECTION: {
                "level": "WARNING",
                "path": "",
            },
        }
    )

    try:
        with config_path.open("r", encoding="utf-8") as stream:
            parser.read_file(stream, source=str(config_path))
    except OSError as exc:
        raise ConfigError(
            f"could not read config file {config_path}: {exc.strerror or exc}"
        ) from exc
    except ConfigParserError as exc:
        raise ConfigError(f"could not read config file {config_path}: {exc}") from exc

    try:
        remote_control = RemoteControlConfig(
            enabled=parser.getboolean(REMOTE_CONTROL_SECTION, "control-enable"),
            interfaces=_parse_list(
                parser.get(REMOTE_CONTROL_SECTION, "control-interface")
            ),
            port=parser.getint(REMOTE_CONTROL_SECTION, "control-port"),
            server_cert_file=parser.get(REMOTE_CONTROL_SECTION, "server-cert-file"),
            control_key_file=parser.get(REMOTE_CONTROL_SECTION, "control-key-file"),
            control_cert_file=parser.get(
                REMOTE_CONTROL_SECTION, "control-cert-file"
            ),
        )
    except ValueError as exc:
        raise ConfigError(f"invalid [{REMOTE_CONTROL_SECTION}] value: {exc}") from exc

    if not 0 < remote_control.port < 65536:
        raise ConfigError(f"control-port out of range: {remote_control.port}")

    directory_value = parser.get(SERVER_SECTION, "directory")
    server = ServerConfig(
        chroot=parser.get(SERVER_SECTION, "chroot"),
        directory=(
            Path(directory_value).expanduser()
            if directory_value
            else config_path.resolve().parent
        ),
    )

    log_path_value = parser.get(LOGGING_SECTION, "path")
    logging_config = LoggingConfig(
        level=parser.get(LOGGING_SECTION, "level"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
    )

    return DaemonctlConfig(
        remote_control=remote_control,
        server=server,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )
