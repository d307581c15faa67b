"""Exception hierarchy for the run engine.

Configuration problems surface before a stream starts; provider
errors abort an in-progress stream. Both end up as a single
``error`` frame on the wire.
"""
from __future__ import annotations


class LuskError(Exception):
    """Base exception for all LuskUI errors."""


class ConfigurationError(LuskError):
    """The process is not configured to run the requested operation."""


class ProviderUnavailableError(ConfigurationError):
    """The provider cannot be reached (network disabled or CLI missing)."""
    def __init__(self, provider_name: str, reason: str):
        self.provider_name = provider_name
        self.reason = reason
        super().__init__(f"{provider_name.capitalize()} backend {reason}")


class MissingCredentialsError(ConfigurationError):
    """No usable API key or token could be resolved."""
    def __init__(self, provider_name: str, message: str):
        self.provider_name = provider_name
        super().__init__(message)


class ProviderError(LuskError):
    """The provider reported a failure through its protocol."""
    def __init__(
        self,
        provider_name: str,
        message: str,
        status: int | None = None,
    ):
        self.provider_name = provider_name
        self.status = status
        super().__init__(message)


class CatalogFetchError(LuskError):
    """Fetching the provider's model catalog failed."""
    def __init__(self, provider_name: str, reason: str):
        self.provider_name = provider_name
        self.reason = reason
        super().__init__(
            f"Model catalog fetch failed for {provider_name}: {reason}"
        )


class PathEscapeError(LuskError):
    """A requested path resolves outside the workspace root."""
    def __init__(self, path: str):
        self.path = path
        super().__init__("Path escapes repository")
