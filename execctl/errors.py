# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Exception classes shared by the daemon, the client and the CLI.

Every error carries a ``kind`` string so it can cross the control socket
and be raised again on the client side as the same class.
"""

from typing import Dict, Optional, Type


class ExecError(Exception):
    """Base class for exec session errors.

    The optional hint is shown by the CLI's handle_errors panel.
    """

    kind = "exec_error"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class NotFoundError(ExecError):
    """Unknown exec session or container reference."""

    kind = "not_found"


class InvalidStateError(ExecError):
    """Operation not allowed in the session's or container's current state."""

    kind = "invalid_state"


class LaunchError(ExecError):
    """Namespace entry or process creation failed."""

    kind = "launch_error"


class IdentityError(ExecError):
    """The requested user/group could not be resolved."""

    kind = "identity_error"


class BadRequestError(ExecError):
    """Malformed request payload."""

    kind = "bad_request"


class ClientTimeoutError(ExecError):
    """Caller gave up waiting. Never stored on a session."""

    kind = "timeout"


_ERROR_KINDS: Dict[str, Type[ExecError]] = {
    cls.kind: cls
    for cls in (
        ExecError,
        NotFoundError,
        InvalidStateError,
        LaunchError,
        IdentityError,
        BadRequestError,
        ClientTimeoutError,
    )
}


def error_from_kind(kind: Optional[str], message: str) -> ExecError:
    """Rebuild an error received over the wire."""
    cls = _ERROR_KINDS.get(kind or "", ExecError)
    return cls(message)
