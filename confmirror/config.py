"""Configuration loading for confmirror."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "confmirror-node"


@dataclass
class RegistryConfig:
    namespace: str = "global"
    key_prefix: str = "config:"
    monitor: bool = True
    publish_on_store_error: bool = True  # broadcast even when the store write failed


@dataclass
class StoreConfig:
    backend: str = "sqlite"  # "sqlite", "redis" or "memory"
    db_path: str = "~/.confmirror/registry.db"
    redis_url: str = "redis://localhost:6379/0"


@dataclass
class MQTTConfig:
    broker: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    topic_prefix: str = "confmirror"
    keepalive: int = 60
    connect_timeout_seconds: float = 5.0


@dataclass
class TransportConfig:
    backend: str = "mqtt"  # "mqtt" or "memory"
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CONFMIRROR_ prefix."""
    return os.environ.get(f"CONFMIRROR_{key}", default)


def _is_truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Registry overrides
    if namespace := _get_env("NAMESPACE"):
        config.registry.namespace = namespace
    if monitor := _get_env("MONITOR"):
        config.registry.monitor = _is_truthy(monitor)

    # Store overrides
    if backend := _get_env("STORE_BACKEND"):
        config.store.backend = backend
    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path
    if redis_url := _get_env("REDIS_URL"):
        config.store.redis_url = redis_url

    # Transport overrides
    if backend := _get_env("TRANSPORT_BACKEND"):
        config.transport.backend = backend
    if broker := _get_env("MQTT_BROKER"):
        config.transport.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.transport.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.transport.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.transport.mqtt.password = password
    if prefix := _get_env("MQTT_TOPIC_PREFIX"):
        config.transport.mqtt.topic_prefix = prefix

    return config


def _parse_mqtt(data: dict, default: MQTTConfig) -> MQTTConfig:
    """Parse MQTT connection configuration."""
    return MQTTConfig(
        broker=data.get("broker", default.broker),
        port=data.get("port", default.port),
        username=data.get("username"),
        password=data.get("password"),
        topic_prefix=data.get("topic_prefix", default.topic_prefix),
        keepalive=data.get("keepalive", default.keepalive),
        connect_timeout_seconds=data.get(
            "connect_timeout_seconds", default.connect_timeout_seconds
        ),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.

    Raises:
        ValueError: If a backend name is not recognised.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "registry" in data:
                reg_data = data["registry"]
                config.registry = RegistryConfig(
                    namespace=reg_data.get("namespace", config.registry.namespace),
                    key_prefix=reg_data.get("key_prefix", config.registry.key_prefix),
                    monitor=reg_data.get("monitor", config.registry.monitor),
                    publish_on_store_error=reg_data.get(
                        "publish_on_store_error",
                        config.registry.publish_on_store_error,
                    ),
                )

            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    backend=store_data.get("backend", config.store.backend),
                    db_path=store_data.get("db_path", config.store.db_path),
                    redis_url=store_data.get("redis_url", config.store.redis_url),
                )

            if "transport" in data:
                transport_data = data["transport"]
                mqtt_config = config.transport.mqtt
                if "mqtt" in transport_data:
                    mqtt_config = _parse_mqtt(transport_data["mqtt"], mqtt_config)

                config.transport = TransportConfig(
                    backend=transport_data.get("backend", config.transport.backend),
                    mqtt=mqtt_config,
                )

    config = _apply_env_overrides(config)

    if config.store.backend not in ("sqlite", "redis", "memory"):
        raise ValueError(f"Unknown store backend: {config.store.backend}")
    if config.transport.backend not in ("mqtt", "memory"):
        raise ValueError(f"Unknown transport backend: {config.transport.backend}")

    return config
