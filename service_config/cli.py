"""
Command line entry point: show, watch, version.

The source is picked from the environment exactly as the library does it
(CONFIG_FILE, else NACOS_*); the document is loaded untyped and printed as JSON.
"""

import argparse
import json
import logging
import sys
import threading
from typing import Any, Iterable

import structlog

from service_config import __version__
from service_config.errors import ServiceConfigError
from service_config.provider import ConfigProvider, Listener, new_options


def _configure_logging(level: str) -> None:
    """Filter structlog output below level (library modules never configure logging themselves)."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
    )


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def _build_provider(
    args: argparse.Namespace,
    watch: bool,
    listeners: Iterable[Listener] = (),
) -> ConfigProvider[dict[str, Any]]:
    options = new_options(args.format, dict[str, Any], watch=watch, expand_env=args.expand_env)
    return ConfigProvider(options, listeners=listeners)


def cmd_show(args: argparse.Namespace) -> int:
    """Load the configuration once and print it."""
    try:
        with _build_provider(args, watch=False) as provider:
            print(_dump(provider.config()))
    except ServiceConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Print the configuration, then every reloaded version until interrupted (or --count reloads)."""
    done = threading.Event()
    seen = 0

    def on_reload(value: dict[str, Any]) -> None:
        nonlocal seen
        seen += 1
        print(_dump(value), flush=True)
        # The first call is the initial load
        if args.count and seen > args.count:
            done.set()

    try:
        provider = _build_provider(args, watch=True, listeners=[on_reload])
    except ServiceConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    with provider:
        try:
            done.wait(timeout=args.timeout)
        except KeyboardInterrupt:
            pass
    return 0


def cmd_version(_: argparse.Namespace) -> int:
    print(__version__)
    return 0


def _add_source_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--format", default="json", choices=["json", "yaml"], help="Document format (default: json)")
    p.add_argument("--expand-env", action="store_true", help="Replace ${VAR} in string values from the environment")
    p.add_argument("--log-level", default="warning", help="structlog level filter (default: warning)")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="service-config",
        description="Service config: read configuration from CONFIG_FILE or Nacos (NACOS_* env) and show or watch it.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # show
    p_show = sub.add_parser("show", help="Load configuration once and print it as JSON")
    _add_source_args(p_show)
    p_show.set_defaults(func=cmd_show)

    # watch
    p_watch = sub.add_parser("watch", help="Print configuration and every reload until Ctrl-C")
    _add_source_args(p_watch)
    p_watch.add_argument("--count", type=int, default=0, help="Exit after this many reloads (default: never)")
    p_watch.add_argument("--timeout", type=float, default=None, help="Exit after this many seconds (default: never)")
    p_watch.set_defaults(func=cmd_watch)

    # version
    p_version = sub.add_parser("version", help="Print version")
    p_version.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)
    if hasattr(args, "log_level"):
        _configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
