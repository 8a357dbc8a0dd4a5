"""
Runtime configuration module for the London liveability collector

Manages environment-based settings for HTTP transport, filesystem locations
and logging. The liveability configuration itself (sources, scoring bands,
weights) lives in a YAML file and is handled by liveability_config.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "london-liveability-collector"


@dataclass
class ApiTransportConfig:
    """Unified HTTP transport policy for upstream requests."""
    trust_env: bool = field(default_factory=lambda: os.getenv("API_TRANSPORT_TRUST_ENV", "false").lower() == "true")
    connect_timeout: float = field(default_factory=lambda: float(os.getenv("API_TRANSPORT_CONNECT_TIMEOUT", "10.0")))
    read_timeout: float = field(default_factory=lambda: float(os.getenv("API_TRANSPORT_READ_TIMEOUT", "20.0")))
    write_timeout: float = field(default_factory=lambda: float(os.getenv("API_TRANSPORT_WRITE_TIMEOUT", "10.0")))
    pool_timeout: float = field(default_factory=lambda: float(os.getenv("API_TRANSPORT_POOL_TIMEOUT", "5.0")))
    max_connections: int = field(default_factory=lambda: int(os.getenv("API_TRANSPORT_MAX_CONNECTIONS", "20")))
    max_keepalive_connections: int = field(
        default_factory=lambda: int(os.getenv("API_TRANSPORT_MAX_KEEPALIVE_CONNECTIONS", "10"))
    )
    user_agent: str = field(default_factory=lambda: os.getenv("API_TRANSPORT_USER_AGENT", DEFAULT_USER_AGENT))

    def __post_init__(self):
        if self.connect_timeout <= 0:
            self.connect_timeout = 10.0
        if self.read_timeout <= 0:
            self.read_timeout = 20.0
        if self.write_timeout <= 0:
            self.write_timeout = 10.0
        if self.pool_timeout <= 0:
            self.pool_timeout = 5.0
        if self.max_connections <= 0:
            self.max_connections = 20
        if self.max_keepalive_connections < 0:
            self.max_keepalive_connections = 10
        if not self.user_agent.strip():
            self.user_agent = DEFAULT_USER_AGENT


@dataclass
class CollectorPathsConfig:
    """Filesystem locations used by a collection run"""
    config_path: Path = field(
        default_factory=lambda: Path(os.getenv("LIVEABILITY_CONFIG_PATH", "config/liveability.yaml"))
    )
    output_dir: Path = field(default_factory=lambda: Path(os.getenv("LIVEABILITY_OUTPUT_DIR", "data")))
    latest_filename: str = "latest.json"
    history_filename: str = "history.json"
    meta_filename: str = "meta.json"
    # Relative prefix written into meta.json so the dashboard can locate the files.
    public_prefix: str = field(default_factory=lambda: os.getenv("LIVEABILITY_PUBLIC_PREFIX", "data"))

    def __post_init__(self):
        self.public_prefix = self.public_prefix.strip("/") or "data"


@dataclass
class LoggingConfig:
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def __post_init__(self):
        if self.level not in logging.getLevelNamesMapping():
            logger.warning(f"Unknown LOG_LEVEL {self.level!r}, falling back to INFO")
            self.level = "INFO"


class ConfigManager:
    """Central runtime configuration for the collector"""

    def __init__(self):
        self.api = ApiTransportConfig()
        self.paths = CollectorPathsConfig()
        self.logging = LoggingConfig()

    def log_configuration(self):
        """Log current runtime configuration (without sensitive data)"""
        logger.info("Runtime configuration loaded:")
        logger.info(f"  Config path: {self.paths.config_path}")
        logger.info(f"  Output dir: {self.paths.output_dir}")
        logger.info(
            "  Transport timeouts: "
            f"connect={self.api.connect_timeout}, read={self.api.read_timeout}, "
            f"write={self.api.write_timeout}, pool={self.api.pool_timeout}"
        )
        logger.info(f"  Transport trust_env: {self.api.trust_env}")


# Global runtime configuration instance
config = ConfigManager()
