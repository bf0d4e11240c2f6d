"""Configuration sources (file, Nacos) and environment-based selection."""

from service_config.sources.base import ConfigSource, Subscription
from service_config.sources.file import FileSource
from service_config.sources.nacos import NacosClient, NacosSource
from service_config.sources.resolver import load_nacos_settings, resolve_source, resolve_source_kind

__all__ = [
    "ConfigSource",
    "Subscription",
    "FileSource",
    "NacosClient",
    "NacosSource",
    "load_nacos_settings",
    "resolve_source",
    "resolve_source_kind",
]
