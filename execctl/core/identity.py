# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""User and group resolution against a container's own user database.

Accepted forms: ``uid``, ``uid:gid``, ``name``, ``name:group`` and mixes
such as ``name:gid``. Names are looked up in <rootfs>/etc/passwd and
<rootfs>/etc/group, never in the host's database, so ``1:1`` and
``daemon:daemon`` produce the same identity inside an image where daemon
is uid 1.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from execctl.errors import IdentityError

logger = logging.getLogger(__name__)

MAX_ID = 2**31 - 1


@dataclass(frozen=True)
class PasswdEntry:
    name: str
    uid: int
    gid: int
    home: str
    shell: str


@dataclass(frozen=True)
class GroupEntry:
    name: str
    gid: int
    members: Tuple[str, ...]


@dataclass(frozen=True)
class Identity:
    """Effective identity for the exec process."""

    uid: int
    gid: int
    supplementary_gids: Tuple[int, ...] = ()
    home: str = "/"
    name: Optional[str] = None


def parse_passwd(text: str) -> List[PasswdEntry]:
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(":")
        if len(parts) < 7:
            continue
        try:
            entries.append(
                PasswdEntry(
                    name=parts[0],
                    uid=int(parts[2]),
                    gid=int(parts[3]),
                    home=parts[5],
                    shell=parts[6],
                )
            )
        except ValueError:
            logger.debug(f"Skipping malformed passwd line: {line!r}")
    return entries


def parse_group(text: str) -> List[GroupEntry]:
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(":")
        if len(parts) < 4:
            continue
        try:
            members = tuple(m for m in parts[3].split(",") if m)
            entries.append(GroupEntry(name=parts[0], gid=int(parts[2]), members=members))
        except ValueError:
            logger.debug(f"Skipping malformed group line: {line!r}")
    return entries


class UserDatabase:
    """passwd/group files of one container root filesystem."""

    def __init__(self, rootfs: Path):
        self.rootfs = Path(rootfs)
        self._users: Optional[List[PasswdEntry]] = None
        self._groups: Optional[List[GroupEntry]] = None

    def _read(self, relative: str) -> str:
        path = self.rootfs / relative
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise IdentityError(f"unable to read {path}: {e}") from e

    @property
    def users(self) -> List[PasswdEntry]:
        if self._users is None:
            self._users = parse_passwd(self._read("etc/passwd"))
        return self._users

    @property
    def groups(self) -> List[GroupEntry]:
        if self._groups is None:
            self._groups = parse_group(self._read("etc/group"))
        return self._groups

    def user_by_name(self, name: str) -> Optional[PasswdEntry]:
        return next((u for u in self.users if u.name == name), None)

    def user_by_uid(self, uid: int) -> Optional[PasswdEntry]:
        return next((u for u in self.users if u.uid == uid), None)

    def group_by_name(self, name: str) -> Optional[GroupEntry]:
        return next((g for g in self.groups if g.name == name), None)

    def groups_for(self, user_name: str) -> Tuple[int, ...]:
        return tuple(g.gid for g in self.groups if user_name in g.members)


def _parse_id(value: str) -> Optional[int]:
    if not value.isdigit():
        return None
    number = int(value)
    if number > MAX_ID:
        raise IdentityError(f"{value} is out of range for a uid/gid")
    return number


def resolve_identity(spec: str, users: UserDatabase) -> Identity:
    """Resolve a user spec to uid/gid using the container's database."""
    user_part, _, group_part = spec.partition(":")
    if not user_part:
        raise IdentityError(f"invalid user spec {spec!r}: missing user")

    uid = _parse_id(user_part)
    if uid is None:
        entry = users.user_by_name(user_part)
        if entry is None:
            raise IdentityError(
                f"unable to find user {user_part}: no matching entries in passwd file"
            )
    else:
        entry = users.user_by_uid(uid)

    if entry is not None:
        uid, gid, home, name = entry.uid, entry.gid, entry.home or "/", entry.name
    else:
        # Unknown numeric uid runs with the root group
        gid, home, name = 0, "/", None

    if group_part:
        explicit_gid = _parse_id(group_part)
        if explicit_gid is None:
            group = users.group_by_name(group_part)
            if group is None:
                raise IdentityError(
                    f"unable to find group {group_part}: no matching entries in group file"
                )
            explicit_gid = group.gid
        gid = explicit_gid

    supplementary = users.groups_for(name) if name else ()
    return Identity(
        uid=uid,
        gid=gid,
        supplementary_gids=tuple(g for g in supplementary if g != gid),
        home=home,
        name=name,
    )
