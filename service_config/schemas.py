"""Pydantic schemas for provider options and remote connection settings."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    """Where configuration text comes from; fixed for the lifetime of a provider."""

    FILE = "file"
    REMOTE = "remote"


class FormatKind(str, Enum):
    """Declared format of the configuration text."""

    JSON = "json"
    YAML = "yaml"


class EnvKeys(BaseModel):
    """Names of the environment variables that locate the configuration source."""

    model_config = {"frozen": True}

    config_file: str = "CONFIG_FILE"
    nacos_host: str = "NACOS_HOST"
    nacos_port: str = "NACOS_PORT"
    nacos_scheme: str = "NACOS_SCHEME"
    nacos_context_path: str = "NACOS_CONTEXT_PATH"
    nacos_username: str = "NACOS_USERNAME"
    nacos_password: str = "NACOS_PASSWORD"
    nacos_namespace_id: str = "NACOS_NAMESPACE_ID"
    nacos_data_id: str = "NACOS_DATA_ID"
    nacos_group: str = "NACOS_GROUP"


class NacosSettings(BaseModel):
    """Connection parameters for the Nacos config service (read from env)."""

    model_config = {"frozen": True, "extra": "forbid"}

    host: str = Field(..., min_length=1, description="Nacos server host")
    port: int = Field(8848, ge=1, le=65535)
    scheme: str = Field("http", pattern=r"^https?$")
    context_path: str = Field("/nacos", description="Server context path, e.g. /nacos")
    username: str | None = None
    password: str | None = None
    namespace_id: str = Field("", description="Tenant / namespace id; empty means public")
    data_id: str = Field(..., min_length=1)
    group: str = "DEFAULT_GROUP"

    @property
    def base_url(self) -> str:
        ctx = "/" + self.context_path.strip("/") if self.context_path.strip("/") else ""
        return f"{self.scheme}://{self.host}:{self.port}{ctx}"


class ProviderOptions(BaseModel):
    """Immutable options for building a ConfigProvider."""

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    format: FormatKind
    # Type the text is decoded into: pydantic model, dataclass, TypedDict, dict, ...
    target: Any = Field(..., description="Target type; a fresh instance is built on every parse")
    env_keys: EnvKeys = Field(default_factory=EnvKeys)
    watch: bool = Field(False, description="Reload when the source reports a change")
    eager: bool = Field(True, description="Fetch and parse at construction; False defers to first config()")
    expand_env: bool = Field(False, description="Replace ${VAR} / $VAR in string values from the environment")
    fetch_timeout: float = Field(10.0, gt=0, description="Seconds allowed for one remote fetch")
    long_poll_timeout: float = Field(30.0, ge=1, le=120, description="Seconds the remote listener long poll may hang")
