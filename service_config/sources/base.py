"""
Abstract base for configuration sources: local file, Nacos.

- fetch() returns the full configuration text.
- subscribe() arms change notification; the callback receives the new text,
  or None when the source only knows that something changed and the
  caller should fetch again.
"""

from abc import ABC, abstractmethod
from typing import Callable

from service_config.schemas import SourceKind

ChangeCallback = Callable[[str | None], None]


class Subscription(ABC):
    """Handle for an armed change notification."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering notifications and release threads/handles. Idempotent."""
        ...


class ConfigSource(ABC):
    """Where configuration text comes from."""

    kind: SourceKind

    @abstractmethod
    def fetch(self) -> str:
        """
        Read the current configuration text.

        Raises:
            SourceUnreachableError: the file or remote service cannot be read.
        """
        ...

    @abstractmethod
    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        """
        Start delivering change notifications to on_change (from a background thread).

        Raises:
            SourceUnreachableError: the subscription cannot be armed.
        """
        ...

    def close(self) -> None:
        """Release connections held by the source."""
        return None

    def describe(self) -> str:
        """Short human-readable location, for logs."""
        return self.kind.value
