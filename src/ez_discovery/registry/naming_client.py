"""
Registry boundary: instance descriptor and naming-service client

This module provides:
- ServiceInstance: the descriptor sent to the registry on register/deregister
- RegistryClient: the async interface the lifecycle manager talks to
- NacosRegistryClient: RegistryClient backed by the nacos-sdk-python v2 client
"""

import asyncio
import logging
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from v2.nacos import (
    ClientConfigBuilder,
    DeregisterInstanceParam,
    NacosNamingService,
    RegisterInstanceParam,
)

from ..errors import ClientInitError


logger = logging.getLogger(__name__)

DEFAULT_GROUP = "DEFAULT_GROUP"
META_GRPC_PORT = "gRPC_port"


@dataclass(frozen=True)
class ServiceInstance:
    """One endpoint of a named service, as published to the registry."""
    ip: str
    port: int
    weight: float = 1.0
    healthy: bool = True
    enabled: bool = True
    ephemeral: bool = True
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Register and deregister must see the same metadata
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def for_grpc(cls, ip: str, port: int) -> 'ServiceInstance':
        """Build the default instance, annotated with its transport port."""
        return cls(ip=ip, port=port, metadata={META_GRPC_PORT: str(port)})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON/YAML serialisable dictionary."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["metadata"] = dict(self.metadata)
        return data


@runtime_checkable
class RegistryClient(Protocol):
    """Async naming-service operations used by the lifecycle manager."""

    async def register_instance(self, service_name: str, group: str,
                                instance: ServiceInstance) -> bool: ...

    async def deregister_instance(self, service_name: str, group: str,
                                  instance: ServiceInstance) -> bool: ...

    async def shutdown(self) -> None: ...


class NacosRegistryClient:
    """RegistryClient talking to a Nacos server through ``v2.nacos``.

    Building the client config is local. The naming service itself opens a
    gRPC connection, so it is created on first use from inside the event
    loop that will keep driving it.
    """

    def __init__(self, server_addr: str, namespace: str,
                 username: Optional[str] = None, password: Optional[str] = None):
        self.server_addr = server_addr
        self.namespace = namespace
        builder = ClientConfigBuilder().server_address(server_addr).namespace_id(namespace)
        if username:
            builder = builder.username(username)
        if password:
            builder = builder.password(password)
        self._client_config = builder.build()
        self._naming: Optional[NacosNamingService] = None
        self._init_lock = asyncio.Lock()

    async def _naming_service(self) -> NacosNamingService:
        async with self._init_lock:
            if self._naming is None:
                try:
                    self._naming = await NacosNamingService.create_naming_service(
                        self._client_config)
                except Exception as exc:
                    raise ClientInitError(
                        f"NamingService create failed for {self.server_addr}: {exc}"
                    ) from exc
                logger.debug("Naming service connected to %s (namespace=%r)",
                             self.server_addr, self.namespace)
        return self._naming

    async def register_instance(self, service_name: str, group: str,
                                instance: ServiceInstance) -> bool:
        naming = await self._naming_service()
        return await naming.register_instance(
            request=RegisterInstanceParam(
                service_name=service_name,
                group_name=group,
                ip=instance.ip,
                port=instance.port,
                weight=instance.weight,
                enabled=instance.enabled,
                healthy=instance.healthy,
                ephemeral=instance.ephemeral,
                metadata=dict(instance.metadata),
            )
        )

    async def deregister_instance(self, service_name: str, group: str,
                                  instance: ServiceInstance) -> bool:
        naming = await self._naming_service()
        return await naming.deregister_instance(
            request=DeregisterInstanceParam(
                service_name=service_name,
                group_name=group,
                ip=instance.ip,
                port=instance.port,
                ephemeral=instance.ephemeral,
            )
        )

    async def shutdown(self) -> None:
        if self._naming is not None:
            naming, self._naming = self._naming, None
            await naming.shutdown()
