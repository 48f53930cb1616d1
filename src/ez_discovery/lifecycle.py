"""Register and deregister one service instance with the naming service."""

import asyncio
import logging
import threading
from contextlib import contextmanager
from typing import Awaitable, Iterator, Optional, TypeVar

from .config import EnvLookup, ServeOptions, resolve_options, split_host_port
from .errors import (
    ClientInitError,
    DeregistrationError,
    RegistrationError,
)
from .registry import DEFAULT_GROUP, NacosRegistryClient, RegistryClient, ServiceInstance


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Background event loop shared by every manager and registry client
# ---------------------------------------------------------------------------

_loop_lock = threading.Lock()
_loop: Optional[asyncio.AbstractEventLoop] = None


def _registry_loop() -> asyncio.AbstractEventLoop:
    """Return the process-wide registry loop, starting its thread on first use."""
    global _loop
    with _loop_lock:
        if _loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=loop.run_forever, name="ez-discovery-loop", daemon=True,
            )
            thread.start()
            _loop = loop
        return _loop


def _run_blocking(coro: Awaitable[T]) -> T:
    """Run *coro* on the registry loop and block until it finishes."""
    return asyncio.run_coroutine_threadsafe(coro, _registry_loop()).result()


async def _run_async(coro: Awaitable[T]) -> T:
    """Run *coro* on the registry loop and await it from the caller's loop."""
    future = asyncio.run_coroutine_threadsafe(coro, _registry_loop())
    return await asyncio.wrap_future(future)


# ---------------------------------------------------------------------------
# Lifecycle manager
# ---------------------------------------------------------------------------

class ServiceLifecycleManager:
    """Holds a registry client and the instance to publish for one service.

    ``online()`` and ``offline()`` block the calling thread; ``aonline()``
    and ``aoffline()`` are the awaitable versions of the same calls. The
    manager does not track whether it is currently registered.
    """

    def __init__(
        self,
        options: Optional[ServeOptions] = None,
        *,
        client: Optional[RegistryClient] = None,
        getenv: Optional[EnvLookup] = None,
    ):
        resolved = resolve_options(options, getenv=getenv)

        self._owns_client = client is None
        if client is None:
            try:
                client = NacosRegistryClient(
                    resolved.registry_addr,
                    resolved.namespace,
                    username=resolved.username,
                    password=resolved.password,
                )
            except Exception as exc:
                raise ClientInitError(f"NamingService create failed: {exc}") from exc
        self.client = client

        _, port = split_host_port(resolved.service_addr)
        self.service_name = resolved.service_name
        self.group = DEFAULT_GROUP
        self.instance = ServiceInstance.for_grpc(resolved.service_host, int(port))
        self.options = resolved

    def __repr__(self) -> str:
        return (f"ServiceLifecycleManager(service_name={self.service_name!r}, "
                f"instance={self.instance.ip}:{self.instance.port})")

    async def _register(self) -> None:
        try:
            ok = await self.client.register_instance(self.service_name, self.group, self.instance)
        except Exception as exc:
            raise RegistrationError(f"register service error: {exc}") from exc
        if not ok:
            raise RegistrationError(
                f"register service error: registry rejected {self.service_name} "
                f"{self.instance.ip}:{self.instance.port}"
            )
        logger.info("Service %s online at %s:%d", self.service_name,
                    self.instance.ip, self.instance.port)

    async def _deregister(self) -> None:
        try:
            ok = await self.client.deregister_instance(self.service_name, self.group, self.instance)
        except Exception as exc:
            raise DeregistrationError(f"deregister service error: {exc}") from exc
        if not ok:
            raise DeregistrationError(
                f"deregister service error: registry rejected {self.service_name} "
                f"{self.instance.ip}:{self.instance.port}"
            )
        logger.info("Service %s offline at %s:%d", self.service_name,
                    self.instance.ip, self.instance.port)

    def online(self) -> None:
        """Register the instance, blocking until the registry answers."""
        _run_blocking(self._register())

    def offline(self) -> None:
        """Deregister the instance, blocking until the registry answers."""
        _run_blocking(self._deregister())

    async def aonline(self) -> None:
        await _run_async(self._register())

    async def aoffline(self) -> None:
        await _run_async(self._deregister())

    @contextmanager
    def registered(self) -> Iterator['ServiceLifecycleManager']:
        """Keep the instance registered for the duration of a ``with`` block."""
        self.online()
        try:
            yield self
        finally:
            self.offline()

    def close(self) -> None:
        """Shut down the registry client if this manager created it."""
        if self._owns_client:
            _run_blocking(self.client.shutdown())

    async def aclose(self) -> None:
        if self._owns_client:
            await _run_async(self.client.shutdown())


def online(
    options: Optional[ServeOptions] = None,
    *,
    client: Optional[RegistryClient] = None,
    getenv: Optional[EnvLookup] = None,
) -> ServiceLifecycleManager:
    """Build a manager, register its instance and return it.

    Keep the returned manager and call ``offline()`` on it before shutting
    the service down.
    """
    manager = ServiceLifecycleManager(options, client=client, getenv=getenv)
    manager.online()
    return manager
