"""CLI entry point for ez-discovery."""

import argparse
import ipaddress
import json
import logging
import shlex
import signal
import socket
import subprocess
import sys
import threading
import time
from typing import Optional

import yaml

from .config import ServeOptions, load_options, merge_cli_args, parse_socket_addr, resolve_options
from .errors import EzError
from .lifecycle import ServiceLifecycleManager
from .registry import DEFAULT_GROUP, ServiceInstance


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add option flags shared by all subcommands."""
    parser.add_argument("--config", type=str, help="Path to YAML options file")
    parser.add_argument(
        "--registry-addr", type=str, dest="registry_addr",
        help="Nacos server address, ip:port (default: $NACOS_ADDR)",
    )
    parser.add_argument(
        "--namespace", type=str,
        help="Nacos namespace (default: $NACOS_NAMESPACE)",
    )
    parser.add_argument(
        "--service-addr", type=str, dest="service_addr",
        help="Address the service listens on, ip:port (default: $SERVICE_ADDR)",
    )
    parser.add_argument(
        "--service-name", type=str, dest="service_name",
        help="Name to register the service under (default: $SERVICE_NAME)",
    )
    parser.add_argument(
        "--service-host", type=str, dest="service_host",
        help="IP to publish instead of the listen address (default: $SERVICE_HOST)",
    )
    parser.add_argument("--username", type=str, help="Nacos username")
    parser.add_argument("--password", type=str, help="Nacos password")


def _build_options(args) -> ServeOptions:
    """Build ServeOptions from an options file + CLI overrides."""
    if args.config:
        options = load_options(args.config)
    else:
        options = ServeOptions()
    return merge_cli_args(options, args)


# ---------------------------------------------------------------------------
# ez-discovery show
# ---------------------------------------------------------------------------

def _format_instance(service_name: str, instance: ServiceInstance, fmt: str) -> str:
    """Format the instance that would be registered."""
    data = {"service_name": service_name, "group": DEFAULT_GROUP, **instance.to_dict()}
    if fmt == "json":
        return json.dumps(data, indent=2)
    if fmt == "yaml":
        return yaml.dump(data, default_flow_style=False, sort_keys=False).rstrip("\n")
    meta = " ".join(f"{k}={v}" for k, v in instance.metadata.items())
    return (f"{service_name}@{DEFAULT_GROUP}  {instance.ip}:{instance.port}  "
            f"weight={instance.weight}  {meta}")


def cmd_show(args) -> None:
    """Print the instance that would be registered, without contacting Nacos."""
    try:
        resolved = resolve_options(_build_options(args))
    except EzError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    _, port = parse_socket_addr(resolved.service_addr)
    instance = ServiceInstance.for_grpc(resolved.service_host, port)
    print(_format_instance(resolved.service_name, instance, args.format))


# ---------------------------------------------------------------------------
# ez-discovery run
# ---------------------------------------------------------------------------

def _dial_host(host: str) -> str:
    """Map a wildcard bind address to the matching loopback address."""
    ip = ipaddress.ip_address(host)
    if ip.is_unspecified:
        return "::1" if ip.version == 6 else "127.0.0.1"
    return host


def _wait_for_port(
    host: str,
    port: int,
    proc: subprocess.Popen,
    timeout: int = 60,
    poll_interval: float = 1.0,
) -> None:
    """Poll the service address until it accepts TCP connections."""
    deadline = time.monotonic() + timeout
    cycle = 0

    while time.monotonic() < deadline:
        cycle += 1
        if proc.poll() is not None:
            print(
                f"Error: service exited with code {proc.returncode} before it was ready",
                file=sys.stderr,
            )
            sys.exit(1)
        try:
            with socket.create_connection((host, port), timeout=poll_interval):
                print(f"Service is accepting connections on {host}:{port}", file=sys.stderr)
                return
        except OSError as exc:
            print(f"[poll {cycle}] {host}:{port} not ready: {exc}", file=sys.stderr)
        time.sleep(poll_interval)

    print(f"Error: Timed out after {timeout}s waiting for {host}:{port}", file=sys.stderr)
    _stop_child(proc)
    sys.exit(1)


def _stop_child(proc: Optional[subprocess.Popen], grace: int = 10) -> Optional[int]:
    """Terminate the child if it is still running and return its exit code."""
    if proc is None:
        return None
    if proc.poll() is None:
        proc.terminate()
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            print(f"Service did not stop within {grace}s, killing it", file=sys.stderr)
            proc.kill()
            proc.wait()
    return proc.returncode


def cmd_run(args) -> None:
    """Register the service, wait for shutdown, then deregister it."""
    try:
        manager = ServiceLifecycleManager(_build_options(args))
    except EzError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    command = args.service_command or []
    # Strip leading '--' separator that REMAINDER captures
    if command and command[0] == "--":
        command = command[1:]

    proc = None
    if command:
        print(f"Starting service: {shlex.join(command)}", file=sys.stderr)
        proc = subprocess.Popen(command)
        host, port = parse_socket_addr(manager.options.service_addr)
        try:
            _wait_for_port(_dial_host(host), port, proc, timeout=args.ready_timeout)
        except KeyboardInterrupt:
            print("Interrupted while waiting for the service, stopping it", file=sys.stderr)
            _stop_child(proc)
            manager.close()
            sys.exit(130)

    try:
        manager.online()
    except EzError as exc:
        print(f"online fail, caused by: {exc}", file=sys.stderr)
        _stop_child(proc)
        manager.close()
        sys.exit(1)

    stop = threading.Event()

    def _request_stop(signum, _frame):
        print(f"Received {signal.Signals(signum).name}, going offline", file=sys.stderr)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    while not stop.is_set():
        if proc is not None and proc.poll() is not None:
            print(f"Service exited with code {proc.returncode}", file=sys.stderr)
            break
        stop.wait(0.5)

    exit_code = 0
    child_exited = proc is not None and proc.poll() is not None
    try:
        manager.offline()
    except EzError as exc:
        print(f"offline fail, caused by: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        returncode = _stop_child(proc)
        manager.close()

    if child_exited and returncode:
        exit_code = returncode
    sys.exit(exit_code)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ez-discovery",
        description="Register a service instance with a Nacos naming service",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO", dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for library messages (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # show
    show_parser = subparsers.add_parser(
        "show", help="Print the instance that would be registered",
    )
    _add_common_args(show_parser)
    show_parser.add_argument(
        "--format", choices=["text", "yaml", "json"], default="text",
        help="Output format (default: text)",
    )
    show_parser.set_defaults(func=cmd_show)

    # run
    run_parser = subparsers.add_parser(
        "run", help="Register the service until it exits or a signal arrives",
    )
    _add_common_args(run_parser)
    run_parser.add_argument(
        "--ready-timeout", type=int, default=60, dest="ready_timeout",
        help="Seconds to wait for the service command to accept connections (default: 60)",
    )
    run_parser.add_argument(
        "service_command", nargs=argparse.REMAINDER,
        help="Service command to start and supervise (put after --)",
    )
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=args.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
