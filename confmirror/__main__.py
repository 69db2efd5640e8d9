"""CLI entry point for confmirror."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .config import Config, load_config
from .registry import NOTSET, Registry
from .store import StoreError, create_store


# Attributes every LogRecord carries; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class JSONLineFormatter(logging.Formatter):
    """One JSON object per record, carrying `extra=` fields alongside the message."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (name, value) for name, value in vars(record).items() if name not in _RECORD_ATTRS
        )
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=repr)


def resolve_level(verbose: bool, log_level: str | None) -> int:
    """Pick the root level; an explicit --log-level beats -v."""
    if log_level:
        return _LEVELS[log_level]
    return logging.DEBUG if verbose else logging.WARNING


def setup_logging(level: int, json_output: bool = False) -> None:
    """Send log records to stderr so command output on stdout stays parseable."""
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONLineFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)-7s %(name)s: %(message)s"))
    logging.basicConfig(level=level, handlers=[handler])


def parse_value(text: str) -> Any:
    """Parse a command-line value as JSON, falling back to the raw string."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def _format_value(value: Any) -> str:
    if value is NOTSET:
        return "<unset>"
    return json.dumps(value)


async def _open_registry(config: Config, monitor: bool = False) -> Registry | None:
    """Create a registry and wait for its bootstrap pull."""
    config.registry.monitor = monitor
    registry = Registry.from_config(config)
    result = await registry.wait_ready()
    if not result.ok:
        print(f"Error: could not load namespace: {result.error}", file=sys.stderr)
        await registry.close()
        return None
    return registry


async def cmd_get(args: argparse.Namespace) -> int:
    """Print the value of a key."""
    registry = await _open_registry(load_config(args.config))
    if registry is None:
        return 1

    try:
        value = registry.get(args.key)
        if value is NOTSET:
            if args.default is None:
                print(f"Key not set: {args.key}", file=sys.stderr)
                return 1
            value = parse_value(args.default)
        print(_format_value(value))
        return 0
    finally:
        await registry.close()


async def _write(args: argparse.Namespace, apply) -> int:
    registry = await _open_registry(load_config(args.config))
    if registry is None:
        return 1

    errors: list[Exception] = []
    registry.on_error.connect(errors.append)
    try:
        apply(registry)
        await registry.flush()
    finally:
        await registry.close()

    if errors:
        print(f"Error: {errors[0]}", file=sys.stderr)
        return 1
    return 0


async def cmd_set(args: argparse.Namespace) -> int:
    """Set a key."""
    value = parse_value(args.value)
    return await _write(args, lambda registry: registry.set(args.key, value))


async def cmd_clear(args: argparse.Namespace) -> int:
    """Clear a key."""
    return await _write(args, lambda registry: registry.clear(args.key))


async def cmd_dump(args: argparse.Namespace) -> int:
    """Print every key in the namespace as a JSON object."""
    registry = await _open_registry(load_config(args.config))
    if registry is None:
        return 1

    try:
        print(json.dumps(registry.snapshot(), indent=2, sort_keys=True))
        return 0
    finally:
        await registry.close()


async def cmd_watch(args: argparse.Namespace) -> int:
    """Print changes until interrupted."""
    registry = await _open_registry(load_config(args.config), monitor=True)
    if registry is None:
        return 1

    def on_set(key: str, value: Any, previous: Any) -> None:
        if not args.keys or key in args.keys:
            print(f"set {key} = {_format_value(value)} (was {_format_value(previous)})", flush=True)

    def on_cleared(key: str) -> None:
        if not args.keys or key in args.keys:
            print(f"cleared {key}", flush=True)

    registry.on("set", on_set)
    registry.on("cleared", on_cleared)

    print(f"Watching namespace '{registry.namespace}' (Ctrl-C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        await registry.close()
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Check store and broker connectivity."""
    config = load_config(args.config)

    status: dict[str, Any] = {
        "namespace": config.registry.namespace,
        "store": {"backend": config.store.backend, "connected": False},
        "transport": {"backend": config.transport.backend, "connected": False},
    }

    store = create_store(config.store)
    try:
        fields = await store.fetch_all(f"{config.registry.key_prefix}{config.registry.namespace}")
        status["store"]["connected"] = True
        status["store"]["keys"] = len(fields)
    except StoreError as e:
        status["store"]["error"] = str(e)
    finally:
        await store.close()

    if config.transport.backend == "mqtt":
        from .transport.mqtt import MQTTTransport

        transport = MQTTTransport(config.transport.mqtt)
        status["transport"]["broker"] = (
            f"{config.transport.mqtt.broker}:{config.transport.mqtt.port}"
        )
        status["transport"]["connected"] = await transport.check_connection()
    else:
        status["transport"]["connected"] = True

    if args.json:
        print(json.dumps(status, indent=2))
    else:
        print(f"Namespace: {status['namespace']}")
        for name in ("store", "transport"):
            part = status[name]
            state = "OK" if part["connected"] else "UNREACHABLE"
            print(f"{name.capitalize()} ({part['backend']}): {state}")
            if "error" in part:
                print(f"  {part['error']}")

    ok = status["store"]["connected"] and status["transport"]["connected"]
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="confmirror",
        description="Namespaced configuration mirrored across processes",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    get_parser = subparsers.add_parser("get", help="Print the value of a key")
    get_parser.add_argument("key")
    get_parser.add_argument(
        "-d", "--default",
        default=None,
        help="Value to print if the key is not set",
    )
    get_parser.set_defaults(func=cmd_get)

    set_parser = subparsers.add_parser("set", help="Set a key (value parsed as JSON)")
    set_parser.add_argument("key")
    set_parser.add_argument("value")
    set_parser.set_defaults(func=cmd_set)

    clear_parser = subparsers.add_parser("clear", help="Clear a key")
    clear_parser.add_argument("key")
    clear_parser.set_defaults(func=cmd_clear)

    dump_parser = subparsers.add_parser("dump", help="Print the whole namespace")
    dump_parser.set_defaults(func=cmd_dump)

    watch_parser = subparsers.add_parser("watch", help="Print changes as they arrive")
    watch_parser.add_argument("keys", nargs="*", help="Only show these keys")
    watch_parser.set_defaults(func=cmd_watch)

    status_parser = subparsers.add_parser("status", help="Check connectivity status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(resolve_level(args.verbose, args.log_level), args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
