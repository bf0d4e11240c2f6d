"""Shared test doubles: target model and in-memory config source."""

import threading

from pydantic import BaseModel

from service_config.errors import SourceUnreachableError
from service_config.schemas import SourceKind
from service_config.sources.base import ConfigSource, Subscription


class AppConfig(BaseModel):
    """Target shape used across tests."""

    port: int
    name: str = "svc"
    debug: bool = False


class FakeSubscription(Subscription):
    def __init__(self):
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeSource(ConfigSource):
    """In-memory source: fetch() returns .content; push() plays a change notification."""

    def __init__(self, content: str = '{"port": 8080}', kind: SourceKind = SourceKind.REMOTE):
        self.kind = kind
        self.content = content
        self.fail_fetch = False
        self.fetch_count = 0
        self.closed = False
        self.subscription: FakeSubscription | None = None
        self._on_change = None
        self._lock = threading.Lock()

    def fetch(self) -> str:
        with self._lock:
            self.fetch_count += 1
        if self.fail_fetch:
            raise SourceUnreachableError("fake source down")
        return self.content

    def subscribe(self, on_change):
        self._on_change = on_change
        self.subscription = FakeSubscription()
        return self.subscription

    def push(self, content: str | None = None) -> None:
        """Deliver content like a push source; None means 'changed, fetch again'."""
        assert self._on_change is not None, "not subscribed"
        self._on_change(content)

    def close(self) -> None:
        self.closed = True
