"""
Pick the configuration source from the environment.

A non-empty CONFIG_FILE (name configurable) selects the local file;
otherwise Nacos connection settings are read from NACOS_* variables.
"""

import os
from typing import Mapping

from pydantic import ValidationError

from service_config.errors import EnvironmentConfigError
from service_config.schemas import EnvKeys, NacosSettings, ProviderOptions, SourceKind
from service_config.sources.base import ConfigSource
from service_config.sources.file import FileSource
from service_config.sources.nacos import NacosSource


def resolve_source_kind(env_keys: EnvKeys, environ: Mapping[str, str] | None = None) -> SourceKind:
    env = os.environ if environ is None else environ
    return SourceKind.FILE if (env.get(env_keys.config_file) or "").strip() else SourceKind.REMOTE


def load_nacos_settings(env_keys: EnvKeys, environ: Mapping[str, str] | None = None) -> NacosSettings:
    """
    Build Nacos settings from environment variables.

    Unset or empty variables fall back to the model defaults.

    Raises:
        EnvironmentConfigError: a required variable is missing or a value is malformed.
    """
    env = os.environ if environ is None else environ
    names = {
        "host": env_keys.nacos_host,
        "port": env_keys.nacos_port,
        "scheme": env_keys.nacos_scheme,
        "context_path": env_keys.nacos_context_path,
        "username": env_keys.nacos_username,
        "password": env_keys.nacos_password,
        "namespace_id": env_keys.nacos_namespace_id,
        "data_id": env_keys.nacos_data_id,
        "group": env_keys.nacos_group,
    }
    data = {field: env[name].strip() for field, name in names.items() if (env.get(name) or "").strip()}
    try:
        return NacosSettings.model_validate(data)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            field = str(err["loc"][0]) if err["loc"] else "?"
            problems.append(f"{names.get(field, field)}: {err['msg']}")
        raise EnvironmentConfigError(f"invalid Nacos environment: {'; '.join(problems)}") from e


def resolve_source(options: ProviderOptions, environ: Mapping[str, str] | None = None) -> ConfigSource:
    """
    Construct the source selected by the environment.

    FILE performs no I/O here. REMOTE builds the Nacos client (no request yet).

    Raises:
        EnvironmentConfigError: Nacos variables missing or malformed.
        SourceUnreachableError: the Nacos client cannot be constructed.
    """
    env = os.environ if environ is None else environ
    keys = options.env_keys
    if resolve_source_kind(keys, env) is SourceKind.FILE:
        return FileSource(env[keys.config_file].strip())
    settings = load_nacos_settings(keys, env)
    return NacosSource(
        settings,
        fetch_timeout=options.fetch_timeout,
        long_poll_timeout=options.long_poll_timeout,
    )
