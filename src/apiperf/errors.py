from __future__ import annotations


class ApiPerfError(Exception):
    """Base class for failures that stop a run before or after load is generated."""


class ConfigurationError(ApiPerfError, ValueError):
    """Run parameters or the endpoint list are unusable; no request was sent."""


class BaselineError(ApiPerfError, RuntimeError):
    """A stored baseline exists but cannot be reconstructed."""
