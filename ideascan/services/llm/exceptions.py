"""Provider failure taxonomy.

Transient failures (network errors, 408, 429, 5xx) are worth retrying;
permanent failures (other 4xx, malformed bodies, unparseable model output)
are not.
"""
from typing import Optional


class ProviderError(Exception):
    """Base class for provider failures"""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderFailure(ProviderError):
    pass


class PermanentProviderFailure(ProviderError):
    pass


class CapabilityNotSupported(ProviderError):
    """Raised when an operation is invoked on a provider that reports it as unsupported."""
