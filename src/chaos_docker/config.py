"""
Configuration management for the container execution engine.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_REPO = "registry.cn-hangzhou.aliyuncs.com/chaosblade/chaosblade-tool"
DEFAULT_IMAGE_VERSION = "latest"
DEFAULT_API_VERSION = "1.41"
DEFAULT_TOOL_VERSION = "1.7.2"

RESIDENT = "resident"
EPHEMERAL = "ephemeral"


def _default_sidecar_policies() -> Dict[str, str]:
    return {"network": RESIDENT}


@dataclass
class EngineConfig:
    """Engine configuration parameters."""

    endpoint: str = ""
    api_version: str = DEFAULT_API_VERSION
    ping_timeout: float = 2.0
    request_timeout: float = 60.0
    stop_timeout: int = 1
    readiness_timeout: float = 10.0
    readiness_interval: float = 0.2
    image_repo: str = DEFAULT_IMAGE_REPO
    image_version: str = DEFAULT_IMAGE_VERSION
    tool_name: str = "chaosblade"
    tool_bin: str = "blade"
    tool_version: str = DEFAULT_TOOL_VERSION
    staging_dir: str = "/opt"
    sidecar_label: str = "chaosblade-sidecar"
    sidecar_policies: Dict[str, str] = field(default_factory=_default_sidecar_policies)

    @property
    def install_dir(self) -> str:
        return f"{self.staging_dir.rstrip('/')}/{self.tool_name}"

    @property
    def tool_path(self) -> str:
        return f"{self.install_dir}/{self.tool_bin}"

    @property
    def default_archive_path(self) -> str:
        return f"{self.staging_dir.rstrip('/')}/{self.tool_name}-{self.tool_version}.tar.gz"

    def image_ref(self, repo: str = "", version: str = "") -> str:
        """Sidecar image reference, falling back to the configured defaults."""
        return f"{repo or self.image_repo}:{version or self.image_version}"

    @classmethod
    def from_file(cls, path: str = "config/chaos_docker.yaml") -> "EngineConfig":
        """
        Load configuration from a YAML file.
        Falls back to defaults if file missing or invalid.

        Args:
            path: Path to configuration file

        Returns:
            EngineConfig instance with loaded or default values
        """
        config = cls()
        config_path = Path(path)

        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                section = data.get("chaos_docker", {}) or {}
                for key, value in section.items():
                    if not hasattr(config, key):
                        logger.warning(f"Ignoring unknown configuration key: {key}")
                        continue
                    setattr(config, key, value)
                logger.info(f"Loaded engine configuration from {path}")
            except (yaml.YAMLError, AttributeError, TypeError) as e:
                logger.error(
                    f"Failed to load configuration from {path}: {e}. Using defaults.",
                    exc_info=True
                )
                config = cls()
        else:
            logger.info(f"Configuration file {path} not found. Using defaults.")

        config._apply_env_overrides()
        return config

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if os.getenv("CHAOS_DOCKER_ENDPOINT"):
            self.endpoint = os.getenv("CHAOS_DOCKER_ENDPOINT")

        if os.getenv("CHAOS_DOCKER_API_VERSION"):
            self.api_version = os.getenv("CHAOS_DOCKER_API_VERSION")

        if os.getenv("CHAOS_DOCKER_PING_TIMEOUT"):
            try:
                self.ping_timeout = float(os.getenv("CHAOS_DOCKER_PING_TIMEOUT"))
            except ValueError:
                logger.warning("Invalid CHAOS_DOCKER_PING_TIMEOUT environment variable")

        if os.getenv("CHAOS_DOCKER_REQUEST_TIMEOUT"):
            try:
                self.request_timeout = float(os.getenv("CHAOS_DOCKER_REQUEST_TIMEOUT"))
            except ValueError:
                logger.warning("Invalid CHAOS_DOCKER_REQUEST_TIMEOUT environment variable")

        if os.getenv("CHAOS_DOCKER_IMAGE_REPO"):
            self.image_repo = os.getenv("CHAOS_DOCKER_IMAGE_REPO")

        if os.getenv("CHAOS_DOCKER_IMAGE_VERSION"):
            self.image_version = os.getenv("CHAOS_DOCKER_IMAGE_VERSION")

        if os.getenv("CHAOS_DOCKER_TOOL_VERSION"):
            self.tool_version = os.getenv("CHAOS_DOCKER_TOOL_VERSION")

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If parameters are invalid
        """
        errors = []

        if self.ping_timeout <= 0:
            errors.append("ping_timeout must be positive")

        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")

        if self.stop_timeout < 0:
            errors.append("stop_timeout must be non-negative")

        if self.readiness_timeout <= 0:
            errors.append("readiness_timeout must be positive")

        if self.readiness_interval <= 0:
            errors.append("readiness_interval must be positive")

        if not self.tool_name or "/" in self.tool_name:
            errors.append("tool_name must be a plain directory name")

        if not self.staging_dir.startswith("/"):
            errors.append("staging_dir must be an absolute path")

        for category, policy in self.sidecar_policies.items():
            if policy not in (RESIDENT, EPHEMERAL):
                errors.append(f"sidecar policy for {category} must be {RESIDENT} or {EPHEMERAL}")

        if errors:
            error_msg = "; ".join(errors)
            logger.error(f"Invalid engine configuration: {error_msg}")
            raise ValueError(f"Invalid engine configuration: {error_msg}")
