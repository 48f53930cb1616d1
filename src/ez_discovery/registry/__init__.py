"""
Naming-service boundary

This package provides:
1. ServiceInstance: the descriptor published to the registry
2. RegistryClient: async interface for register/deregister
3. NacosRegistryClient: RegistryClient backed by nacos-sdk-python v2
"""

from .naming_client import (
    DEFAULT_GROUP,
    META_GRPC_PORT,
    NacosRegistryClient,
    RegistryClient,
    ServiceInstance,
)

__all__ = [
    'DEFAULT_GROUP',
    'META_GRPC_PORT',
    'NacosRegistryClient',
    'RegistryClient',
    'ServiceInstance',
]
