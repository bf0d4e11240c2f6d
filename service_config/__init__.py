"""Application configuration from a local file or Nacos, with live reload."""

__version__ = "0.1.0"

from service_config.errors import (
    ConfigParseError,
    EnvironmentConfigError,
    InvalidFormatError,
    ServiceConfigError,
    SourceUnreachableError,
)
from service_config.formats import parse_config
from service_config.provider import ConfigProvider, get_provider, new_options, reset_provider
from service_config.schemas import EnvKeys, FormatKind, NacosSettings, ProviderOptions, SourceKind

__all__ = [
    "__version__",
    "ConfigParseError",
    "ConfigProvider",
    "EnvKeys",
    "EnvironmentConfigError",
    "FormatKind",
    "InvalidFormatError",
    "NacosSettings",
    "ProviderOptions",
    "ServiceConfigError",
    "SourceKind",
    "SourceUnreachableError",
    "get_provider",
    "new_options",
    "parse_config",
    "reset_provider",
]
