"""Harness configuration settings."""

import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from ..errors import ConfigurationError


class LoggingConfig(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    json_format: bool = Field(default=False, description="Use JSON log format")

    class Config:
        env_prefix = "LOG_"


class HarnessSettings(BaseSettings):
    """Main harness settings."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # External programs
    server_command: List[str] = Field(
        default_factory=lambda: ["mongod"],
        description="Command prefix used to launch a server process",
    )
    client_command: List[str] = Field(
        default_factory=lambda: ["mongo"],
        description="Command prefix used to invoke the external client",
    )

    bind_ip: str = Field(default="127.0.0.1", description="Server bind address")
    data_root: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "mongo-harness"),
        description="Root directory for per-scenario data directories",
    )
    tls_fixture_dir: str = Field(
        default="jstests/libs", description="Directory holding PEM/CRL fixtures"
    )
    srv_test_uri: str = Field(
        default="mongodb+srv://test1.test.build.10gen.cc./?ssl=false",
        description="SRV connection string used by the srv_uri scenario",
    )

    # Timeouts (seconds unless noted)
    startup_timeout: float = Field(default=60.0, description="Readiness bound")
    shutdown_timeout: float = Field(default=30.0, description="Graceful stop bound")
    program_timeout: float = Field(
        default=60.0, description="Bound for external client invocations"
    )
    connect_timeout_ms: int = Field(default=10000, description="Driver connect bound")
    command_timeout_ms: int = Field(default=30000, description="Driver socket bound")

    # Polling
    poll_interval: float = Field(default=0.05, description="Initial poll delay")
    max_poll_interval: float = Field(default=1.0, description="Backoff ceiling")
    output_grace_period: float = Field(
        default=2.0, description="Window before concluding a log line is absent"
    )
    readiness_log_line: str = Field(
        default="waiting for connections",
        description="Case-insensitive log line signalling readiness",
    )

    class Config:
        env_prefix = "MONGO_HARNESS_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def get_data_root(self) -> Path:
        """Get the data root directory path."""
        return Path(self.data_root)

    def tls_fixture(self, name: str) -> str:
        """Resolve a TLS fixture file name against the fixture directory."""
        return str(Path(self.tls_fixture_dir) / name)


def load_settings(config_file: Optional[str] = None, **overrides: Any) -> HarnessSettings:
    """Build settings from environment, an optional YAML file and overrides.

    Raises:
        ConfigurationError: the file is missing or unreadable, or a value fails validation
    """
    data: Dict[str, Any] = {}

    if config_file:
        path = Path(config_file)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}",
                {"path": str(path)},
            )
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid configuration file: {e}", {"path": str(path)}
            )
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                "Configuration file must contain a mapping",
                {"path": str(path), "type": type(loaded).__name__},
            )
        data.update(loaded)

    data.update(overrides)
    try:
        return HarnessSettings(**data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid settings: {'; '.join(errors)}",
            {"path": config_file, "errors": errors},
        )
