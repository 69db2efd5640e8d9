"""Tests for configuration loading."""

import pytest

from confmirror.config import load_config


class TestLoadConfig:
    """Tests for load_config."""

    def test_default_config(self):
        """Test default configuration values."""
        config = load_config()

        assert config.node.name == "confmirror-node"
        assert config.registry.namespace == "global"
        assert config.registry.key_prefix == "config:"
        assert config.registry.monitor is True
        assert config.registry.publish_on_store_error is True
        assert config.store.backend == "sqlite"
        assert config.transport.backend == "mqtt"
        assert config.transport.mqtt.broker == "localhost"
        assert config.transport.mqtt.port == 1883

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.registry.namespace == "global"

    def test_yaml_file(self, tmp_path):
        """Test values are read from a YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """
node:
  name: edge-1
registry:
  namespace: billing
  monitor: false
  publish_on_store_error: false
store:
  backend: redis
  redis_url: redis://cache:6379/2
transport:
  backend: mqtt
  mqtt:
    broker: mqtt.internal
    port: 8883
    username: svc
    password: pw
    topic_prefix: site/config
"""
        )

        config = load_config(path)

        assert config.node.name == "edge-1"
        assert config.registry.namespace == "billing"
        assert config.registry.monitor is False
        assert config.registry.publish_on_store_error is False
        assert config.registry.key_prefix == "config:"
        assert config.store.backend == "redis"
        assert config.store.redis_url == "redis://cache:6379/2"
        assert config.transport.mqtt.broker == "mqtt.internal"
        assert config.transport.mqtt.port == 8883
        assert config.transport.mqtt.username == "svc"
        assert config.transport.mqtt.topic_prefix == "site/config"
        assert config.transport.mqtt.keepalive == 60

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path).store.backend == "sqlite"

    def test_env_override(self, monkeypatch, tmp_path):
        """Test environment variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("registry:\n  namespace: from-file\n")

        monkeypatch.setenv("CONFMIRROR_NAMESPACE", "from-env")
        monkeypatch.setenv("CONFMIRROR_MONITOR", "no")
        monkeypatch.setenv("CONFMIRROR_STORE_BACKEND", "memory")
        monkeypatch.setenv("CONFMIRROR_TRANSPORT_BACKEND", "memory")
        monkeypatch.setenv("CONFMIRROR_MQTT_BROKER", "mqtt.env")
        monkeypatch.setenv("CONFMIRROR_MQTT_PORT", "1999")

        config = load_config(path)

        assert config.registry.namespace == "from-env"
        assert config.registry.monitor is False
        assert config.store.backend == "memory"
        assert config.transport.backend == "memory"
        assert config.transport.mqtt.broker == "mqtt.env"
        assert config.transport.mqtt.port == 1999

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("CONFMIRROR_STORE_BACKEND", "etcd")

        with pytest.raises(ValueError):
            load_config()
