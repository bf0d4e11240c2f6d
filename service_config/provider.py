"""
Configuration provider: cached config value with optional live reload.

- Source (file or Nacos) is resolved once from the environment.
- Initial fetch + parse at construction (or on first config() when eager=False).
- Watch: the source's change notifications feed a queue drained by one reload
  worker thread, so at most one fetch-parse-swap runs at a time; bursts of
  notifications are coalesced to the latest one.
- A failed reload is logged and leaves the previous value in place.
- get_provider() keeps one process-wide instance; ConfigProvider can also be
  built and closed explicitly (or used as a context manager).
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable, Generic, Iterable, Mapping, TypeVar

import structlog

from service_config.errors import ServiceConfigError
from service_config.formats import coerce_format, parse_config
from service_config.schemas import FormatKind, ProviderOptions, SourceKind
from service_config.sources.base import ConfigSource, Subscription
from service_config.sources.resolver import resolve_source

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Listener = Callable[[Any], None]

_UNSET: Any = object()
# Queue markers: re-read the source / shut the worker down
_FETCH: Any = object()
_STOP: Any = object()

WORKER_JOIN_TIMEOUT = 10.0


def new_options(format: FormatKind | str, target: Any, **overrides: Any) -> ProviderOptions:
    """
    Build ProviderOptions with default env keys.

    Args:
        format: "json" / "yaml" or a FormatKind.
        target: Type each parse produces (pydantic model, dataclass, dict, ...).
        overrides: Any other ProviderOptions field (watch, eager, env_keys, ...).

    Raises:
        InvalidFormatError: format is not recognized.
    """
    return ProviderOptions(format=coerce_format(format), target=target, **overrides)


class ConfigProvider(Generic[T]):
    """
    Holds the current configuration and keeps it in sync with its source.

    listeners are registered before the first load, so they also see the
    initial value of an eager provider and cannot miss an early reload.
    """

    def __init__(
        self,
        options: ProviderOptions,
        source: ConfigSource | None = None,
        environ: Mapping[str, str] | None = None,
        listeners: Iterable[Listener] = (),
    ):
        self.options = options
        self.source = source if source is not None else resolve_source(options, environ)
        self._value: T = _UNSET
        self._version = 0
        self._write_lock = threading.Lock()
        # Serializes listener calls; a version older than the last one delivered is dropped
        self._notify_lock = threading.RLock()
        self._notified_version = 0
        self._listeners: list[Listener] = list(listeners)
        self._queue: queue.Queue[Any] = queue.Queue()
        self._subscription: Subscription | None = None
        self._worker: threading.Thread | None = None
        self._closed = threading.Event()
        try:
            if options.eager:
                self.reload()
            if options.watch:
                self._start_watch()
        except Exception:
            self.close()
            raise

    def __enter__(self) -> "ConfigProvider[T]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ConfigProvider(source={self.source.describe()!r}, version={self._version}, watch={self.options.watch})"

    @property
    def source_kind(self) -> SourceKind:
        return self.source.kind

    @property
    def version(self) -> int:
        """Number of successful loads so far (0 before the first)."""
        return self._version

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def watching(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def config(self) -> T:
        """
        Return the current configuration.

        Served from the cache; only the very first call of a lazy provider
        (eager=False) reads the source.

        Raises:
            SourceUnreachableError, ConfigParseError: lazy first load failed.
        """
        value = self._value
        if value is not _UNSET:
            return value
        with self._write_lock:
            if self._value is _UNSET:
                self._load_locked(None)
            value = self._value
        return value

    def reload(self, content: str | None = None) -> T:
        """
        Fetch (unless content is given), parse and swap synchronously.

        Raises:
            SourceUnreachableError, ConfigParseError: cached value is unchanged.
        """
        with self._write_lock:
            value = self._load_locked(content)
            version = self._version
        self._notify_listeners(value, version)
        return value

    def add_listener(self, listener: Listener) -> Listener:
        """Call listener(new_value) after every successful swap. Returns listener (decorator-friendly)."""
        self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def close(self) -> None:
        """Stop watching and release the source. Safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        if self._subscription is not None:
            self._subscription.stop()
        if self._worker is not None:
            self._queue.put(_STOP)
            if self._worker is not threading.current_thread():
                self._worker.join(timeout=WORKER_JOIN_TIMEOUT)
        self.source.close()
        logger.debug("config_provider_closed", source=self.source.describe())

    def _load_locked(self, content: str | None) -> T:
        raw = self.source.fetch() if content is None else content
        value = parse_config(
            self.options.format,
            raw,
            self.options.target,
            expand_env=self.options.expand_env,
        )
        self._value = value
        self._version += 1
        logger.info("config_loaded", source=self.source.describe(), version=self._version)
        return value

    def _notify_listeners(self, value: T, version: int) -> None:
        with self._notify_lock:
            if version <= self._notified_version:
                logger.debug("config_listeners_skipped_stale", version=version, delivered=self._notified_version)
                return
            self._notified_version = version
            for listener in list(self._listeners):
                try:
                    listener(value)
                except Exception as e:
                    logger.exception("config_listener_failed", listener=getattr(listener, "__name__", repr(listener)), error=str(e))

    def _start_watch(self) -> None:
        self._worker = threading.Thread(
            target=self._run_worker,
            name="service-config-reload",
            daemon=True,
        )
        self._worker.start()
        self._subscription = self.source.subscribe(self._on_change)
        logger.info("config_watch_started", source=self.source.describe())

    def _on_change(self, content: str | None) -> None:
        if self._closed.is_set():
            return
        self._queue.put(_FETCH if content is None else content)

    def _next_item(self) -> Any:
        """Block for one notification, then drain the backlog keeping only the newest."""
        item = self._queue.get()
        while item is not _STOP:
            try:
                newer = self._queue.get_nowait()
            except queue.Empty:
                break
            item = _STOP if newer is _STOP else newer
        return item

    def _run_worker(self) -> None:
        while True:
            item = self._next_item()
            if item is _STOP or self._closed.is_set():
                break
            try:
                self.reload(None if item is _FETCH else item)
            except ServiceConfigError as e:
                logger.warning("config_reload_failed", source=self.source.describe(), error=str(e))
            except Exception as e:
                logger.exception("config_reload_error", source=self.source.describe(), error=str(e))
            else:
                logger.info("config_reloaded", source=self.source.describe(), version=self._version)
        logger.debug("config_reload_worker_stopped", source=self.source.describe())


# Process-wide instance (get_provider / reset_provider)
_provider: ConfigProvider[Any] | None = None
_provider_lock = threading.Lock()


def get_provider(options: ProviderOptions | None = None) -> ConfigProvider[Any]:
    """
    Return the process-wide provider, building it on the first call.

    Later calls return the same instance and ignore options. If construction
    fails nothing is kept, so the next call starts over.

    Raises:
        EnvironmentConfigError, SourceUnreachableError, ConfigParseError: first construction failed.
        ServiceConfigError: no provider exists yet and options is None.
    """
    global _provider
    existing = _provider
    if existing is not None:
        return existing
    with _provider_lock:
        if _provider is None:
            if options is None:
                raise ServiceConfigError("config provider not initialized; pass options on the first call")
            _provider = ConfigProvider(options)
        return _provider


def reset_provider() -> None:
    """Close and forget the process-wide provider (tests, shutdown)."""
    global _provider
    with _provider_lock:
        provider, _provider = _provider, None
    if provider is not None:
        provider.close()
