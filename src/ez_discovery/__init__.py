"""
ez-discovery: register a service instance with a Nacos naming service

Start your service, then call ``online()``; call ``offline()`` before
stopping it.

Settings come from ServeOptions or, when a field is unset, from the
environment:
- NACOS_ADDR       Nacos server address (ip:port)
- NACOS_NAMESPACE  Nacos namespace
- SERVICE_ADDR     address the service listens on (ip:port)
- SERVICE_NAME     service name to register under
- SERVICE_HOST     optional IP to publish instead of the listen address
"""

from .config import ServeOptions, ResolvedOptions, load_options, resolve_options
from .errors import (
    ClientInitError,
    ConfigurationError,
    DeregistrationError,
    EnvError,
    EzError,
    EzIOError,
    LocalIPError,
    ParseError,
    RegistrationError,
)
from .lifecycle import ServiceLifecycleManager, online
from .registry import DEFAULT_GROUP, RegistryClient, ServiceInstance

__version__ = '0.1.0'
__all__ = [
    'ClientInitError',
    'ConfigurationError',
    'DEFAULT_GROUP',
    'DeregistrationError',
    'EnvError',
    'EzError',
    'EzIOError',
    'LocalIPError',
    'ParseError',
    'RegistrationError',
    'RegistryClient',
    'ResolvedOptions',
    'ServeOptions',
    'ServiceInstance',
    'ServiceLifecycleManager',
    'load_options',
    'online',
    'resolve_options',
]
