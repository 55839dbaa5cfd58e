# Shared utilities package
from .config import (
    Config,
    ConfigurationError,
    Credentials,
    Settings,
    load_config,
    load_credentials,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "Credentials",
    "Settings",
    "load_config",
    "load_credentials",
]
