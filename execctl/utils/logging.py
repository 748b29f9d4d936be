"""Logging setup for execctl.

One place configures the ``execctl`` logger tree:
1. Rotating log file under ~/.local/state/execctl/logs (always on)
2. Plain stderr output when running as the daemon
3. Rich console output for CLI commands
4. Debug mode via EXECCTL_DEBUG or the --debug flag

Usage:
    from execctl.utils.logging import get_logger, configure_logging

    configure_logging(debug=debug)          # CLI entry point
    logger = get_logger(__name__)
    logger.info("Session started")

Library modules that do not print to the console use the plain
``logging.getLogger(__name__)`` and inherit the handlers set up here.

Environment Variables:
    EXECCTL_DEBUG=1          Enable debug mode
    EXECCTL_LOG_LEVEL=DEBUG  Set log level (DEBUG, INFO, WARNING, ERROR)
    EXECCTL_LOG_FILE=/path   Override log file location
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console

from execctl.paths import HostPaths

_configured = False
_debug_mode = False
_daemon_mode = False
_log_file: Optional[Path] = None

console = Console()
err_console = Console(stderr=True)

ROOT_LOGGER = "execctl"


def _get_log_file() -> Path:
    """Resolve the log file path, creating its directory."""
    global _log_file
    if _log_file:
        return _log_file

    env_log_file = os.environ.get("EXECCTL_LOG_FILE")
    if env_log_file:
        _log_file = Path(env_log_file)
    else:
        _log_file = HostPaths.log_dir() / "execctl.log"

    _log_file.parent.mkdir(parents=True, exist_ok=True)
    return _log_file


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode or os.environ.get("EXECCTL_DEBUG", "").lower() in ("1", "true", "yes")


def configure_logging(
    debug: bool = False,
    daemon: bool = False,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> None:
    """Configure the logging system once per process.

    Args:
        debug: Enable debug mode (verbose output, debug to console)
        daemon: Daemon mode (stderr only, no Rich formatting)
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Override log file path
    """
    global _configured, _debug_mode, _daemon_mode, _log_file

    if _configured:
        return

    _debug_mode = debug or is_debug_mode()
    _daemon_mode = daemon

    if log_file:
        _log_file = log_file

    if log_level:
        level_name = log_level.upper()
    else:
        level_name = os.environ.get("EXECCTL_LOG_LEVEL", "DEBUG" if _debug_mode else "INFO").upper()

    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    try:
        file_handler = RotatingFileHandler(
            _get_log_file(),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)
    except (OSError, PermissionError):
        # No writable log location, keep going without a file
        pass

    if _daemon_mode:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(logging.Formatter("%(name)s: %(levelname)s: %(message)s"))
        root_logger.addHandler(stderr_handler)

    _configured = True

    root_logger.debug(
        f"Logging configured: level={level_name}, debug={_debug_mode}, daemon={_daemon_mode}"
    )


class execctlLogger:
    """Logger that mirrors selected messages to the console.

    Messages always go to the ``logging`` tree. Info, warning and error
    are also printed (rich markup for the CLI, plain stderr for the daemon).
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _echo(self, label: str, style: str, message: str) -> None:
        if _daemon_mode:
            # stderr handler already carries the record
            return
        err_console.print(f"[{style}]{label}{message}[/{style}]")

    def debug(self, message: str, console_output: bool = False) -> None:
        self.logger.debug(message)
        if console_output or (is_debug_mode() and not _daemon_mode):
            self._echo("[DEBUG] ", "dim", message)

    def info(self, message: str, console_output: bool = False) -> None:
        self.logger.info(message)
        if console_output:
            self._echo("", "blue", message)

    def warning(self, message: str, console_output: bool = True) -> None:
        self.logger.warning(message)
        if console_output:
            self._echo("⚠ ", "yellow", message)

    def error(
        self,
        message: str,
        exc: Optional[BaseException] = None,
        console_output: bool = True,
    ) -> None:
        """Log an error, optionally with the exception that caused it."""
        if exc:
            message = f"{message}: {exc}"
            self.logger.error(message, exc_info=exc)
        else:
            self.logger.error(message)
        if console_output:
            self._echo("✗ ", "red", message)


def get_logger(name: str) -> execctlLogger:
    """Get a logger under the execctl namespace.

    Example:
        logger = get_logger(__name__)
        logger.info("Operation started")
    """
    if not _configured:
        configure_logging()

    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"

    return execctlLogger(name)


def get_daemon_logger(name: str) -> execctlLogger:
    """Get a logger configured for daemon mode."""
    configure_logging(daemon=True)
    return get_logger(name)


def log_startup_info() -> None:
    """Log startup diagnostics (call from main entry points)."""
    logger = get_logger("execctl.startup")
    logger.debug(f"Python: {sys.version}")
    logger.debug(f"Platform: {sys.platform}")
    logger.debug(f"Debug mode: {is_debug_mode()}")
    logger.debug(f"Log file: {_log_file}")

    for var in ["EXECCTL_DEBUG", "EXECCTL_LOG_LEVEL", "EXECCTL_CONFIG", "EXECCTL_SOCKET"]:
        value = os.environ.get(var)
        if value:
            logger.debug(f"ENV {var}={value}")
