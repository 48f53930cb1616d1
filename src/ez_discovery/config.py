"""Configuration loading, environment fallback and address validation."""

import ipaddress
import logging
import os
import socket
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Callable, Optional, Tuple

import yaml

from .errors import (
    ConfigurationError,
    EnvError,
    EzIOError,
    LocalIPError,
    ParseError,
)


logger = logging.getLogger(__name__)

ENV_REGISTRY_ADDR = "NACOS_ADDR"
ENV_NAMESPACE = "NACOS_NAMESPACE"
ENV_SERVICE_ADDR = "SERVICE_ADDR"
ENV_SERVICE_NAME = "SERVICE_NAME"
ENV_SERVICE_HOST = "SERVICE_HOST"

# Any routable address works; connecting a UDP socket sends no packets.
_ROUTE_CHECK_ADDR = ("10.255.255.255", 1)

EnvLookup = Callable[[str], Optional[str]]


@dataclass
class ServeOptions:
    """Explicit settings. ``None`` means "read the environment variable"."""
    registry_addr: Optional[str] = None
    namespace: Optional[str] = None
    service_addr: Optional[str] = None
    service_name: Optional[str] = None
    service_host: Optional[str] = None

    # Registry credentials are never taken from the environment
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class ResolvedOptions:
    registry_addr: str
    namespace: str
    service_addr: str
    service_name: str
    service_host: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


def parse_socket_addr(addr: str) -> Tuple[str, int]:
    """Validate an ``ip:port`` socket address and return ``(ip, port)``.

    IPv4 addresses are written ``a.b.c.d:port`` and IPv6 addresses
    ``[addr]:port``. Hostnames are rejected.
    """
    host, sep, port_str = addr.rpartition(":")
    if not sep or not host:
        raise ParseError(addr, "missing port")

    bracketed = host.startswith("[") and host.endswith("]")
    if bracketed:
        host = host[1:-1]
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        raise ParseError(addr, "invalid IP address") from None
    if (ip.version == 6) != bracketed:
        raise ParseError(addr, "IPv6 addresses must be enclosed in brackets")

    if not (port_str.isascii() and port_str.isdigit()):
        raise ParseError(addr, "invalid port")
    port = int(port_str)
    if port > 65535:
        raise ParseError(addr, "port out of range")
    return host, port


def split_host_port(addr: str) -> Tuple[str, str]:
    """Split ``host:port`` into its two parts without validating the host."""
    host, sep, port = addr.rpartition(":")
    if not sep or not host:
        raise ConfigurationError(f"Invalid service address {addr!r}: missing port")
    if not port.isdigit():
        raise ConfigurationError(f"Invalid service address {addr!r}: port is not an integer")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port


def local_ip() -> str:
    """Return the machine's primary non-loopback IPv4 address."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(_ROUTE_CHECK_ADDR)
            candidate = sock.getsockname()[0]
        if _is_usable(candidate):
            return candidate
        candidate = socket.gethostbyname(socket.gethostname())
    except OSError as exc:
        raise LocalIPError(f"Failed to determine local IP address: {exc}") from exc

    if not _is_usable(candidate):
        raise LocalIPError(f"No non-loopback local IP address found (got {candidate})")
    return candidate


def _is_usable(ip: str) -> bool:
    addr = ipaddress.ip_address(ip)
    return not (addr.is_loopback or addr.is_unspecified)


def _lookup(value: Optional[str], name: str, getenv: EnvLookup) -> str:
    if value is not None:
        return value
    env_value = getenv(name)
    if not env_value:
        raise EnvError(name)
    return env_value


def resolve_options(
    options: Optional[ServeOptions] = None,
    getenv: Optional[EnvLookup] = None,
) -> ResolvedOptions:
    """Fill unset fields from the environment and validate the result.

    *getenv* defaults to ``os.environ.get``. It is only called for fields
    that are ``None`` in *options*.
    """
    options = options or ServeOptions()
    getenv = getenv or os.environ.get

    registry_addr = _lookup(options.registry_addr, ENV_REGISTRY_ADDR, getenv)
    parse_socket_addr(registry_addr)
    namespace = _lookup(options.namespace, ENV_NAMESPACE, getenv)
    service_addr = _lookup(options.service_addr, ENV_SERVICE_ADDR, getenv)
    bind_host, _ = parse_socket_addr(service_addr)
    service_name = _lookup(options.service_name, ENV_SERVICE_NAME, getenv)
    if not service_name.strip():
        raise ConfigurationError("Service name must not be empty")

    # The published IP: explicit override, else the bind address unless it
    # is a wildcard, else the detected local address.
    service_host = options.service_host
    if service_host is None:
        service_host = getenv(ENV_SERVICE_HOST) or None
    if service_host is None:
        if ipaddress.ip_address(bind_host).is_unspecified:
            service_host = local_ip()
        else:
            service_host = bind_host

    logger.info("[%s]: %s", ENV_REGISTRY_ADDR, registry_addr)
    logger.info("[%s]: %s", ENV_NAMESPACE, namespace)
    logger.info("[%s]: %s", ENV_SERVICE_ADDR, service_addr)
    logger.info("[%s]: %s", ENV_SERVICE_NAME, service_name)
    logger.info("[%s]: %s", ENV_SERVICE_HOST, service_host)

    return ResolvedOptions(
        registry_addr=registry_addr,
        namespace=namespace,
        service_addr=service_addr,
        service_name=service_name,
        service_host=service_host,
        username=options.username,
        password=options.password,
    )


def load_options(path: str | Path) -> ServeOptions:
    """Load ServeOptions from a YAML file. Unknown keys are ignored."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise EzIOError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    valid_fields = {f.name for f in fields(ServeOptions)}
    # Ports and the like may come back from YAML as ints
    filtered = {
        k: str(v) for k, v in data.items()
        if k in valid_fields and v is not None
    }
    return ServeOptions(**filtered)


def merge_cli_args(options: ServeOptions, args) -> ServeOptions:
    """Overlay CLI arguments onto existing options. CLI values take precedence."""
    for f in fields(ServeOptions):
        cli_val = getattr(args, f.name, None)
        if cli_val is not None:
            setattr(options, f.name, cli_val)
    return options
