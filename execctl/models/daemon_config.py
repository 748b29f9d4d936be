# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT

"""Pydantic models for the daemon configuration (~/.config/execctl/config.yml)."""

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_ENTRY_PATTERN = re.compile(r"^[^=]+=.*$", re.DOTALL)


def check_env_entries(entries: List[str]) -> List[str]:
    """KEY=VALUE entries; exec() cannot carry NUL bytes."""
    for entry in entries:
        if not ENV_ENTRY_PATTERN.match(entry):
            raise ValueError(f"env entry must be KEY=VALUE: {entry!r}")
        if "\x00" in entry:
            raise ValueError(f"env entry contains a NUL byte: {entry!r}")
    return entries


class StaticContainerModel(BaseModel):
    """A container described directly in the config file.

    ``pid`` is the container's init process on the host. Leave it unset to
    run exec processes in the daemon's own namespaces.
    """

    id: str
    name: Optional[str] = None
    running: bool = True
    pid: Optional[int] = None
    env: List[str] = Field(default_factory=list)
    working_dir: str = ""
    user: str = ""
    platform: Literal["linux", "windows"] = "linux"
    rootfs: str = "/"

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: List[str]) -> List[str]:
        return check_env_entries(v)


class AttachConfig(BaseModel):
    """Attach stream tuning."""

    flush_timeout: float = Field(default=2.0, gt=0)
    read_chunk_size: int = Field(default=32 * 1024, ge=512)


class DaemonConfigModel(BaseModel):
    """Root configuration model for execctld."""

    model_config = ConfigDict(extra="ignore")

    socket_path: Optional[str] = None
    container_source: Literal["docker", "static"] = "docker"
    containers: List[StaticContainerModel] = Field(default_factory=list)
    nsenter_path: str = "nsenter"
    attach: AttachConfig = Field(default_factory=AttachConfig)
