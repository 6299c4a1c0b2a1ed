"""
Error taxonomy

- ValidationError: bad configuration or input, surfaced to the caller
- TransportError: balance / price source unreachable or non-success reply
- StateCorruptionError: persisted learning blob cannot be decoded
"""


class ScannerError(Exception):
    """Base class for scanner errors."""


class ValidationError(ScannerError, ValueError):
    """Malformed configuration or input. No partial mutation is applied."""


class TransportError(ScannerError):
    """Upstream call failed (network, HTTP status, API-level error)."""

    def __init__(self, message, status_code=None, source=None):
        super().__init__(message)
        self.status_code = status_code
        self.source = source


class StateCorruptionError(ScannerError):
    """Persisted state could not be parsed."""

    def __init__(self, message, key=None, raw=None):
        super().__init__(message)
        self.key = key
        self.raw = raw
