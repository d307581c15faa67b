"""Run engine: configuration, run state, workspace access and backends."""
from .config import Settings, load_settings
from .errors import (
    CatalogFetchError,
    ConfigurationError,
    LuskError,
    MissingCredentialsError,
    PathEscapeError,
    ProviderError,
    ProviderUnavailableError,
)
from .run_store import RunEntry, RunStore
from .workspace import Workspace

__all__ = [
    "Settings",
    "load_settings",
    "LuskError",
    "ConfigurationError",
    "ProviderUnavailableError",
    "MissingCredentialsError",
    "ProviderError",
    "CatalogFetchError",
    "PathEscapeError",
    "RunEntry",
    "RunStore",
    "Workspace",
]
