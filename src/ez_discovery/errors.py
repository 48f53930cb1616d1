"""Exception hierarchy for ez-discovery."""

from typing import Optional


class EzError(Exception):
    """Base class for every error raised by this package."""


class EzIOError(EzError):
    """Low-level I/O failure (the original ``OSError`` is the cause)."""


class EnvError(EzError):
    """A required environment variable is not set."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Read environment variable [{name}] error: not present")


class ParseError(EzError):
    """A value is not a valid ``ip:port`` socket address."""

    def __init__(self, value: str, reason: Optional[str] = None):
        self.value = value
        self.reason = reason
        message = f"Parse error: invalid socket address {value!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class LocalIPError(EzError):
    """The local non-loopback IP address could not be determined."""


class ConfigurationError(EzError):
    """Structurally invalid input not covered by the other kinds."""


class ClientInitError(EzError):
    """The registry client could not be constructed."""


class RegistrationError(EzError):
    """The registry rejected or failed the register call."""


class DeregistrationError(EzError):
    """The registry rejected or failed the deregister call."""
