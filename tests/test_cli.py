import json
import signal
import types
from unittest.mock import MagicMock

import pytest
import yaml

from ez_discovery import cli
from ez_discovery.lifecycle import ServiceLifecycleManager

from .conftest import FakeRegistryClient


ADDR_ARGS = [
    "--registry-addr", "127.0.0.1:8848",
    "--namespace", "public",
    "--service-addr", "192.168.1.10:50051",
    "--service-name", "order-svc",
]


class _SetEvent:
    """Stand-in for threading.Event that is already set."""

    def is_set(self):
        return True

    def set(self):
        pass

    def wait(self, timeout=None):
        return True


@pytest.fixture
def no_wait(monkeypatch):
    monkeypatch.setattr(cli, "threading", types.SimpleNamespace(Event=_SetEvent))
    handlers = {}
    monkeypatch.setattr(signal, "signal", lambda signum, handler: handlers.setdefault(signum, handler))
    return handlers


def _use_client(monkeypatch, client):
    monkeypatch.setattr(
        cli, "ServiceLifecycleManager",
        lambda options: ServiceLifecycleManager(options, client=client),
    )


def test_show_json(clean_env, capsys):
    cli.main(["show", "--format", "json", *ADDR_ARGS])

    data = json.loads(capsys.readouterr().out)
    assert data["service_name"] == "order-svc"
    assert data["group"] == "DEFAULT_GROUP"
    assert data["ip"] == "192.168.1.10"
    assert data["port"] == 50051
    assert data["metadata"] == {"gRPC_port": "50051"}


def test_show_text_from_environment(clean_env, capsys):
    clean_env.setenv("NACOS_ADDR", "10.0.0.1:8848")
    clean_env.setenv("NACOS_NAMESPACE", "dev")
    clean_env.setenv("SERVICE_ADDR", "10.0.0.5:9000")
    clean_env.setenv("SERVICE_NAME", "user-svc")
    clean_env.setenv("SERVICE_HOST", "172.16.0.4")

    cli.main(["show"])

    out = capsys.readouterr().out
    assert "user-svc@DEFAULT_GROUP" in out
    assert "172.16.0.4:9000" in out
    assert "gRPC_port=9000" in out


def test_show_config_file_with_cli_override(clean_env, tmp_path, capsys):
    path = tmp_path / "ez.yaml"
    path.write_text(yaml.dump({
        "registry_addr": "127.0.0.1:8848",
        "namespace": "public",
        "service_addr": "10.0.0.5:9000",
        "service_name": "from-file",
    }))

    cli.main(["show", "--format", "yaml", "--config", str(path), "--service-name", "from-cli"])

    data = yaml.safe_load(capsys.readouterr().out)
    assert data["service_name"] == "from-cli"
    assert data["port"] == 9000


def test_show_missing_variable_exits(clean_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["show", "--registry-addr", "127.0.0.1:8848"])

    assert excinfo.value.code == 1
    assert "NACOS_NAMESPACE" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 1


def test_run_registers_and_deregisters(clean_env, monkeypatch, no_wait):
    client = FakeRegistryClient()
    _use_client(monkeypatch, client)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", *ADDR_ARGS])

    assert excinfo.value.code == 0
    assert [c[0] for c in client.calls] == ["register", "deregister"]
    assert set(no_wait) == {signal.SIGINT, signal.SIGTERM}


def test_run_online_failure_exits_1(clean_env, monkeypatch, no_wait, capsys):
    client = FakeRegistryClient(register_error=ConnectionError("unreachable"))
    _use_client(monkeypatch, client)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", *ADDR_ARGS])

    assert excinfo.value.code == 1
    assert "online fail" in capsys.readouterr().err
    assert [c[0] for c in client.calls] == ["register"]


def test_run_offline_failure_exits_1(clean_env, monkeypatch, no_wait, capsys):
    client = FakeRegistryClient(deregister_error=RuntimeError("server error"))
    _use_client(monkeypatch, client)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", *ADDR_ARGS])

    assert excinfo.value.code == 1
    assert "offline fail" in capsys.readouterr().err


def test_run_bad_address_exits_1(clean_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", *ADDR_ARGS[:-4], "--service-addr", "nowhere", "--service-name", "x"])

    assert excinfo.value.code == 1
    assert "Parse error" in capsys.readouterr().err


def test_dial_host_maps_wildcards():
    assert cli._dial_host("0.0.0.0") == "127.0.0.1"
    assert cli._dial_host("::") == "::1"
    assert cli._dial_host("10.0.0.5") == "10.0.0.5"


def test_wait_for_port_child_exited_early(capsys):
    proc = MagicMock()
    proc.poll.return_value = 3
    proc.returncode = 3

    with pytest.raises(SystemExit) as excinfo:
        cli._wait_for_port("127.0.0.1", 1, proc, timeout=5)

    assert excinfo.value.code == 1
    assert "exited with code 3" in capsys.readouterr().err


def test_stop_child_terminates_running_process():
    proc = MagicMock()
    proc.poll.return_value = None
    proc.returncode = -15

    assert cli._stop_child(proc) == -15
    proc.terminate.assert_called_once()
    proc.wait.assert_called_once_with(timeout=10)
    assert cli._stop_child(None) is None


def test_run_interrupted_while_waiting_stops_child(clean_env, monkeypatch, capsys):
    client = FakeRegistryClient()
    _use_client(monkeypatch, client)
    proc = MagicMock()
    proc.poll.return_value = None
    monkeypatch.setattr(cli.subprocess, "Popen", MagicMock(return_value=proc))

    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "_wait_for_port", interrupted)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", *ADDR_ARGS, "--", "my-server", "--port", "50051"])

    assert excinfo.value.code == 130
    proc.terminate.assert_called_once()
    assert client.calls == []
    assert "Interrupted" in capsys.readouterr().err
