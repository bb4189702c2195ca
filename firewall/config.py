import os, re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

SERVER_HOST = "127.0.0.1"

ADMISSION_DELAY_MS = 3000   # the flood tool gives up on an endpoint after ~2 s
IDLE_TIMEOUT_SEC = 30
CLEANUP_INTERVAL_SEC = 30
SELECT_TIMEOUT_SEC = 10
BAN_THRESHOLD = 4
BUFFER_SIZE = 65536

IPV4_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)\.(\d+)$")


class ConfigError(ValueError):
    pass


@dataclass
class RelayConfig:
    external_ip: str
    port: int
    server_host: str = SERVER_HOST
    server_port: Optional[int] = None   # defaults to the listen port
    admission_delay: float = ADMISSION_DELAY_MS / 1000.0
    idle_timeout: float = IDLE_TIMEOUT_SEC
    cleanup_interval: float = CLEANUP_INTERVAL_SEC
    select_timeout: float = SELECT_TIMEOUT_SEC
    ban_threshold: int = BAN_THRESHOLD
    buffer_size: int = BUFFER_SIZE

    @property
    def listen_endpoint(self):
        return (self.external_ip, self.port)

    @property
    def server_endpoint(self):
        return (self.server_host, self.server_port or self.port)


@dataclass
class AppConfig:
    external_ip: str
    ports: List[int]
    admission_delay: float = ADMISSION_DELAY_MS / 1000.0
    idle_timeout: float = IDLE_TIMEOUT_SEC
    cleanup_interval: float = CLEANUP_INTERVAL_SEC
    select_timeout: float = SELECT_TIMEOUT_SEC
    ban_threshold: int = BAN_THRESHOLD
    ui_listen: Optional[Tuple[str, int]] = None
    log_file: Optional[str] = None

    def relay_configs(self) -> List[RelayConfig]:
        return [
            RelayConfig(
                external_ip=self.external_ip,
                port=port,
                admission_delay=self.admission_delay,
                idle_timeout=self.idle_timeout,
                cleanup_interval=self.cleanup_interval,
                select_timeout=self.select_timeout,
                ban_threshold=self.ban_threshold,
            )
            for port in self.ports
        ]


def parse_ipv4(text) -> str:
    """
    Validates the external listen address.

    It has to be one specific IPv4 address: the game server itself listens on
    0.0.0.0, and only a more specific bind wins the incoming traffic.
    """
    m = IPV4_RE.match(str(text).strip())
    if not m:
        raise ConfigError(f"{text} is not a valid IPv4 address")
    octets = [int(g) for g in m.groups()]
    if any(o >= 255 for o in octets):
        raise ConfigError(f"{text} is not a valid IPv4 address")
    if octets == [0, 0, 0, 0]:
        raise ConfigError(f"{text} is a wildcard address, a specific IP is required")
    return ".".join(str(o) for o in octets)


def parse_port(text) -> int:
    try:
        port = int(str(text).strip())
    except ValueError:
        raise ConfigError(f"{text} is not a valid port number")
    if port <= 0 or port >= 65535:
        raise ConfigError(f"{text} is not a valid port number")
    return port


def parse_listen(text) -> Tuple[str, int]:
    """Status UI address: host:port, or a bare port bound on 127.0.0.1."""
    text = str(text).strip()
    if not text:
        raise ConfigError("empty UI listen address")
    host, sep, port = text.rpartition(":")
    if not sep:
        host = "127.0.0.1"
    elif not host:
        raise ConfigError(f"{text}: missing host in UI listen address")
    return host, parse_port(port)


def _positive(cfg: Dict[str, Any], key: str, default, conv=float):
    raw = cfg.get(key)
    if raw is None:
        return default
    try:
        val = conv(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key}: {raw!r} is not a number")
    if val <= 0:
        raise ConfigError(f"{key}: must be positive, got {raw!r}")
    return val


def read_cfg(path: Optional[str]) -> Dict[str, Any]:
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read {path}: {e}")
    if not isinstance(cfg, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return cfg


def load_config(cli_ip=None, cli_ports=None, cfg: Optional[Dict[str, Any]] = None) -> AppConfig:
    cfg = cfg or {}
    relay = cfg.get("relay", {}) or {}
    timing = cfg.get("timing", {}) or {}

    raw_ip = cli_ip or relay.get("listen_ip")
    if not raw_ip:
        raise ConfigError("no listen IP given")
    raw_ports = list(cli_ports or []) or list(relay.get("ports", []) or [])
    if not raw_ports:
        raise ConfigError("no ports given")

    ports = []
    for p in raw_ports:
        port = parse_port(p)
        if port not in ports:
            ports.append(port)

    ui = cfg.get("ui", {}) or {}
    log = cfg.get("logging", {}) or {}

    return AppConfig(
        external_ip=parse_ipv4(raw_ip),
        ports=ports,
        admission_delay=_positive(timing, "admission_delay_ms", ADMISSION_DELAY_MS) / 1000.0,
        idle_timeout=_positive(timing, "idle_timeout_sec", IDLE_TIMEOUT_SEC),
        cleanup_interval=_positive(timing, "cleanup_interval_sec", CLEANUP_INTERVAL_SEC),
        select_timeout=_positive(timing, "select_timeout_sec", SELECT_TIMEOUT_SEC),
        ban_threshold=_positive(timing, "ban_threshold", BAN_THRESHOLD, conv=int),
        ui_listen=parse_listen(ui["listen"]) if str(ui.get("listen") or "").strip() else None,
        log_file=log.get("file") or None,
    )
