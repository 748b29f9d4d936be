# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT

"""Pydantic model for an exec create request."""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from execctl.models.daemon_config import check_env_entries


class ExecConfig(BaseModel):
    """What to run inside the container and which streams to wire up."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    cmd: List[str] = Field(min_length=1)
    env: List[str] = Field(default_factory=list)
    working_dir: str = ""
    user: str = ""
    tty: bool = False
    attach_stdin: bool = False
    attach_stdout: bool = True
    attach_stderr: bool = True
    console_size: Optional[Tuple[int, int]] = None  # (height, width)

    @field_validator("cmd")
    @classmethod
    def validate_cmd(cls, v: List[str]) -> List[str]:
        if not v[0]:
            raise ValueError("cmd[0] must not be empty")
        if any("\x00" in arg for arg in v):
            raise ValueError("cmd arguments must not contain NUL bytes")
        return v

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: List[str]) -> List[str]:
        return check_env_entries(v)

    @field_validator("working_dir", "user")
    @classmethod
    def validate_no_nul(cls, v: str) -> str:
        if "\x00" in v:
            raise ValueError("must not contain NUL bytes")
        return v

    @field_validator("console_size")
    @classmethod
    def validate_console_size(cls, v: Optional[Tuple[int, int]]) -> Optional[Tuple[int, int]]:
        if v is not None and (v[0] <= 0 or v[1] <= 0):
            raise ValueError("console_size must be positive (height, width)")
        return v
