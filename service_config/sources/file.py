"""
Local file source with watchdog change notification.

The parent directory is watched and events are filtered to the configured
path, so editors that save via write-to-temp-then-rename are picked up as
a create of the target.
"""

import os
from pathlib import Path

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from service_config.errors import SourceUnreachableError
from service_config.schemas import SourceKind
from service_config.sources.base import ChangeCallback, ConfigSource, Subscription

logger = structlog.get_logger(__name__)


def _same_path(candidate: str | bytes, targets: frozenset[str]) -> bool:
    if isinstance(candidate, bytes):
        candidate = os.fsdecode(candidate)
    return bool(candidate) and os.path.abspath(candidate) in targets


class _PathHandler(FileSystemEventHandler):
    """Forward create/write/move-onto events for one file to the callback."""

    def __init__(self, path: str, on_change: ChangeCallback):
        self.path = path
        self.on_change = on_change
        # Backends may report the directory through its resolved (symlink-free) path
        self.targets = frozenset({path, os.path.join(os.path.realpath(os.path.dirname(path)), os.path.basename(path))})

    def _notify(self, event_type: str) -> None:
        logger.debug("config_file_event", event_type=event_type, path=self.path)
        self.on_change(None)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and _same_path(event.src_path, self.targets):
            self._notify("created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and _same_path(event.src_path, self.targets):
            self._notify("modified")

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory and _same_path(getattr(event, "dest_path", ""), self.targets):
            self._notify("moved")


class FileSubscription(Subscription):
    def __init__(self, observer: Observer):
        self._observer = observer
        self._stopped = False

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._observer.stop()
        self._observer.join(timeout=5)


class FileSource(ConfigSource):
    """Configuration read from a local JSON/YAML file."""

    kind = SourceKind.FILE

    def __init__(self, path: str | os.PathLike[str]):
        self.path = os.path.abspath(os.fspath(path))

    def fetch(self) -> str:
        try:
            return Path(self.path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnreachableError(f"cannot read config file {self.path}: {e}") from e

    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        directory = os.path.dirname(self.path)
        if not os.path.isdir(directory):
            raise SourceUnreachableError(f"cannot watch config file {self.path}: directory does not exist")
        observer = Observer()
        observer.daemon = True
        try:
            observer.schedule(_PathHandler(self.path, on_change), directory, recursive=False)
            observer.start()
        except OSError as e:
            raise SourceUnreachableError(f"cannot watch config file {self.path}: {e}") from e
        logger.info("config_file_watch_started", path=self.path)
        return FileSubscription(observer)

    def describe(self) -> str:
        return f"file:{self.path}"
