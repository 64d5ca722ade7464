"""Configuration management for the collector."""

import os
import yaml
from typing import Dict, Any, Optional


class Config:
    """Configuration manager for the Mesos metrics collector."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file (YAML)
        """
        self.config_path = config_path
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self):
        """Load configuration from file and environment variables."""
        # Load from file if provided
        if self.config_path and os.path.exists(self.config_path):
            with open(self.config_path, "r") as f:
                self._config = self._without_nulls(yaml.safe_load(f) or {})

        # Override with environment variables
        self._load_env_variables()

        # Set defaults
        self._set_defaults()

    @staticmethod
    def _without_nulls(data: Dict[str, Any]) -> Dict[str, Any]:
        """Drop null entries, so that an empty section such as ``prometheus:`` gets defaults."""
        return {
            key: Config._without_nulls(value) if isinstance(value, dict) else value
            for key, value in data.items()
            if value is not None
        }

    def _load_env_variables(self):
        """Load configuration from environment variables."""
        # Mesos
        if os.getenv("MESOS_COLLECTOR_AGENT_URL"):
            self._config.setdefault("mesos", {})
            self._config["mesos"]["agent_url"] = os.getenv("MESOS_COLLECTOR_AGENT_URL")

        # API
        if os.getenv("MESOS_COLLECTOR_API_HOST"):
            self._config.setdefault("api", {})
            self._config["api"]["host"] = os.getenv("MESOS_COLLECTOR_API_HOST")

        if os.getenv("MESOS_COLLECTOR_API_PORT"):
            self._config.setdefault("api", {})
            self._config["api"]["port"] = int(os.getenv("MESOS_COLLECTOR_API_PORT"))

        # Statsd registrations
        if os.getenv("MESOS_COLLECTOR_CONTAINERS_DIR"):
            self._config.setdefault("statsd", {})
            self._config["statsd"]["containers_dir"] = os.getenv(
                "MESOS_COLLECTOR_CONTAINERS_DIR"
            )

        # Logging
        if os.getenv("MESOS_COLLECTOR_LOG_LEVEL"):
            self._config.setdefault("logging", {})
            self._config["logging"]["level"] = os.getenv("MESOS_COLLECTOR_LOG_LEVEL")

    def _set_defaults(self):
        """Set default configuration values."""
        # Prometheus scrape defaults
        self._config.setdefault("prometheus", {})
        self._config["prometheus"].setdefault("urls", [])
        self._config["prometheus"].setdefault("dns_services", [])
        self._config["prometheus"].setdefault("response_timeout", 3.0)
        self._config["prometheus"].setdefault("bearer_token", None)
        self._config["prometheus"].setdefault("format", "prometheus")
        self._config["prometheus"].setdefault("tls", {})
        self._config["prometheus"]["tls"].setdefault("ca", None)
        self._config["prometheus"]["tls"].setdefault("cert", None)
        self._config["prometheus"]["tls"].setdefault("key", None)
        self._config["prometheus"]["tls"].setdefault("insecure_skip_verify", False)

        # Mesos defaults
        self._config.setdefault("mesos", {})
        self._config["mesos"].setdefault("agent_url", None)
        self._config["mesos"].setdefault("timeout", 10.0)
        self._config["mesos"].setdefault("ca_certificate_path", None)
        self._config["mesos"].setdefault("user_agent", "mesos-collector")
        self._config["mesos"].setdefault("masters", [])
        self._config["mesos"].setdefault("agents", [])

        # Metadata defaults
        self._config.setdefault("metadata", {})
        self._config["metadata"].setdefault("enabled", True)
        self._config["metadata"].setdefault("timeout", 10.0)
        self._config["metadata"].setdefault("rate_limit", 5.0)

        # Statsd defaults
        self._config.setdefault("statsd", {})
        self._config["statsd"].setdefault("host", "127.0.0.1")
        self._config["statsd"].setdefault("containers_dir", None)

        # API defaults
        self._config.setdefault("api", {})
        self._config["api"].setdefault("host", "127.0.0.1")
        self._config["api"].setdefault("port", 8888)

        # Collection defaults
        self._config.setdefault("collection", {})
        self._config["collection"].setdefault("interval", 10.0)

        # Processor defaults
        self._config.setdefault("processors", {})
        self._config["processors"].setdefault("lowercase", {})
        self._config["processors"]["lowercase"].setdefault("enabled", False)
        self._config["processors"]["lowercase"].setdefault("send_original", False)
        self._config["processors"].setdefault("nginx_vts_filter", {})
        self._config["processors"]["nginx_vts_filter"].setdefault("conversions", [])

        # Logging defaults
        self._config.setdefault("logging", {})
        self._config["logging"].setdefault("level", "INFO")
        self._config["logging"].setdefault(
            "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Args:
            key: Configuration key (supports dot notation, e.g., 'mesos.agent_url')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

            if value is None:
                return default

        return value

    def section(self, key: str) -> Dict[str, Any]:
        """Get a configuration section as a dictionary (empty if absent)."""
        value = self.get(key, {})
        return dict(value) if isinstance(value, dict) else {}

    def set(self, key: str, value: Any):
        """Set configuration value.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            config = config.setdefault(k, {})

        config[keys[-1]] = value

    def save(self, path: Optional[str] = None):
        """Save configuration to file.

        Args:
            path: Path to save configuration (uses config_path if not provided)
        """
        save_path = path or self.config_path

        if not save_path:
            raise ValueError("No path provided for saving configuration")

        with open(save_path, "w") as f:
            yaml.dump(self._config, f, default_flow_style=False)

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return self._config.copy()


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file or defaults.

    Args:
        config_path: Path to configuration file

    Returns:
        Config instance
    """
    return Config(config_path)
