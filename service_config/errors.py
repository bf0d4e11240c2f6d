"""Exception hierarchy for configuration sources and parsing."""


class ServiceConfigError(Exception):
    """Base class for all service-config errors."""


class EnvironmentConfigError(ServiceConfigError):
    """A required environment variable is missing or malformed."""


class SourceUnreachableError(ServiceConfigError):
    """The configuration file cannot be read or the remote service cannot be reached."""


class ConfigParseError(ServiceConfigError):
    """Raw configuration text does not decode in the declared format or does not fit the target type."""


class InvalidFormatError(ServiceConfigError, ValueError):
    """Unrecognized format kind (programming error)."""

    def __init__(self, value: object):
        super().__init__(f"invalid format identifier: {value!r}")
        self.value = value
