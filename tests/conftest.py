from __future__ import annotations

from typing import Optional

import pytest

from ez_discovery.config import ServeOptions
from ez_discovery.registry import ServiceInstance


class FakeRegistryClient:
    """Records every call; optionally fails or rejects."""

    def __init__(
        self,
        register_result: bool = True,
        deregister_result: bool = True,
        register_error: Optional[Exception] = None,
        deregister_error: Optional[Exception] = None,
    ) -> None:
        self.register_result = register_result
        self.deregister_result = deregister_result
        self.register_error = register_error
        self.deregister_error = deregister_error
        self.calls: list[tuple[str, str, str, ServiceInstance]] = []
        self.shutdown_count = 0

    async def register_instance(self, service_name, group, instance):
        self.calls.append(("register", service_name, group, instance))
        if self.register_error is not None:
            raise self.register_error
        return self.register_result

    async def deregister_instance(self, service_name, group, instance):
        self.calls.append(("deregister", service_name, group, instance))
        if self.deregister_error is not None:
            raise self.deregister_error
        return self.deregister_result

    async def shutdown(self):
        self.shutdown_count += 1


def no_env(name: str):
    raise AssertionError(f"environment variable {name} should not be read")


def host_env_unset(name: str):
    """Only the optional SERVICE_HOST may be looked up, and it is unset."""
    if name == "SERVICE_HOST":
        return None
    return no_env(name)


@pytest.fixture
def fake_client() -> FakeRegistryClient:
    return FakeRegistryClient()


@pytest.fixture
def options() -> ServeOptions:
    return ServeOptions(
        registry_addr="127.0.0.1:8848",
        namespace="public",
        service_addr="192.168.1.10:50051",
        service_name="order-svc",
    )


@pytest.fixture
def env_vars() -> dict[str, str]:
    return {
        "NACOS_ADDR": "10.0.0.1:8848",
        "NACOS_NAMESPACE": "dev",
        "SERVICE_ADDR": "10.0.0.5:9000",
        "SERVICE_NAME": "user-svc",
    }


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("NACOS_ADDR", "NACOS_NAMESPACE", "SERVICE_ADDR", "SERVICE_NAME", "SERVICE_HOST"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
