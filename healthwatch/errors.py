"""Exceptions raised by the health daemon."""


class HealthwatchError(Exception):
    """Base class for health daemon errors."""


class ConfigError(HealthwatchError):
    """The service registry or configuration is invalid."""


class ProbeError(HealthwatchError):
    """A liveness probe could not produce an answer."""


class LaunchError(HealthwatchError):
    """A start action did not complete its launch."""


class StatePersistenceError(HealthwatchError):
    """Health state could not be written to durable storage."""
