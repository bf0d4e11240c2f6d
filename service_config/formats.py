"""
Decode raw configuration text (JSON or YAML) into the caller's target type.

- Format is declared by the caller, never sniffed from content.
- Optional ${VAR} / $VAR substitution in decoded string values.
- Every call builds a fresh target instance; nothing cached is mutated.
"""

import json
import os
import re
from functools import lru_cache
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from service_config.errors import ConfigParseError, InvalidFormatError
from service_config.schemas import FormatKind

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def coerce_format(value: Any) -> FormatKind:
    """Return value as a FormatKind; raise InvalidFormatError naming it if unrecognized."""
    if isinstance(value, FormatKind):
        return value
    if isinstance(value, str):
        try:
            return FormatKind(value.strip().lower())
        except ValueError:
            pass
    raise InvalidFormatError(value)


def substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings; recurse into dict/list. Unknown names are left as written."""
    if isinstance(value, str):
        def repl(m: re.Match[str]) -> str:
            name = m.group(1) or m.group(2) or ""
            return os.environ.get(name, m.group(0))
        return _ENV_PATTERN.sub(repl, value)
    if isinstance(value, dict):
        return {k: substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_env(v) for v in value]
    return value


@lru_cache(maxsize=64)
def _cached_adapter(target: Any) -> TypeAdapter:
    return TypeAdapter(target)


def _adapter_for(target: Any) -> TypeAdapter:
    # Unhashable targets (e.g. Annotated with list metadata) skip the cache
    try:
        return _cached_adapter(target)
    except TypeError:
        return TypeAdapter(target)


def decode_text(fmt: FormatKind | str, raw: str | bytes) -> Any:
    """Decode JSON or YAML text into plain Python data (dict/list/scalars)."""
    fmt = coerce_format(fmt)
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConfigParseError(f"configuration is not valid UTF-8: {e}") from e
    # Truncated mid-write files show up as empty documents; never treat them as config
    if not raw.strip():
        raise ConfigParseError("empty configuration document")
    if fmt is FormatKind.JSON:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigParseError(f"invalid JSON: {e}") from e
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"invalid YAML: {e}") from e


def parse_config(
    fmt: FormatKind | str,
    raw: str | bytes,
    target: Any,
    expand_env: bool = False,
) -> Any:
    """
    Parse raw configuration text into a new instance of target.

    Args:
        fmt: Declared format (json or yaml).
        raw: Configuration text or UTF-8 bytes.
        target: Target type (pydantic model, dataclass, TypedDict, dict, ...).
        expand_env: Substitute environment variables in string values first.

    Returns:
        A freshly constructed, fully validated target instance.

    Raises:
        InvalidFormatError: fmt is not a known format.
        ConfigParseError: text does not decode or does not fit target.
    """
    data = decode_text(fmt, raw)
    if expand_env:
        data = substitute_env(data)
    try:
        return _adapter_for(target).validate_python(data)
    except ValidationError as e:
        raise ConfigParseError(f"configuration does not match {getattr(target, '__name__', target)!s}: {e}") from e
