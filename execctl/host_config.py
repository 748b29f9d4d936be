"""Centralized host-side configuration for execctld."""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from execctl.models.daemon_config import (
    AttachConfig,
    DaemonConfigModel,
    StaticContainerModel,
)
from execctl.paths import HostPaths

logger = logging.getLogger(__name__)


class HostConfig:
    """Manages daemon configuration from ~/.config/execctl/config.yml."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or HostPaths.config_file()
        self.model = self._load()

    def _load(self) -> DaemonConfigModel:
        if not self.config_path.exists():
            return DaemonConfigModel()

        try:
            with open(self.config_path) as f:
                raw_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {self.config_path}: {e}")
            return DaemonConfigModel()

        try:
            return DaemonConfigModel.model_validate(raw_config)
        except ValidationError as e:
            logger.warning(f"Config validation errors, using defaults: {e}")
            return DaemonConfigModel()

    @classmethod
    def from_model(cls, model: DaemonConfigModel) -> "HostConfig":
        """Build a config without touching the filesystem (tests, embedding)."""
        config = cls.__new__(cls)
        config.config_path = None
        config.model = model
        return config

    @property
    def socket_path(self) -> Path:
        """Control socket path.

        Priority:
        1. EXECCTL_SOCKET environment variable
        2. socket_path in config.yml
        3. $XDG_RUNTIME_DIR/execctld/execctld.sock
        """
        env_socket = os.getenv("EXECCTL_SOCKET")
        if env_socket:
            return Path(env_socket)
        if self.model.socket_path:
            return Path(self.model.socket_path).expanduser()
        return HostPaths.execctld_socket()

    @property
    def container_source(self) -> str:
        return self.model.container_source

    @property
    def static_containers(self) -> List[StaticContainerModel]:
        return list(self.model.containers)

    @property
    def nsenter_path(self) -> str:
        return self.model.nsenter_path

    @property
    def attach(self) -> AttachConfig:
        return self.model.attach


_config: Optional[HostConfig] = None


def get_config() -> HostConfig:
    """Get the process-wide config loaded from the default location."""
    global _config
    if _config is None:
        _config = HostConfig()
    return _config
