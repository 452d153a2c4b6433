from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "MULTIBOOT_USB_LOG_DIR",
        Path.home() / ".local" / "state" / "multiboot-usb" / "logs",
    )
)


def _should_log_command_output(record) -> bool:
    """Filter raw stdout/stderr of external tools - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    # Always log problems
    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "output" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_settle(record) -> bool:
    """Filter device settle chatter (sync, udevadm) below DEBUG."""
    message = record["message"].lower()
    tags = record["extra"].get("tags", [])

    if "settle" in tags or "settling" in message:
        return record["level"].no >= logger.level("DEBUG").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_command_output(record) and _should_log_settle(record)


def setup_logging(
    log_sink: Callable[[str, str], None] | None = None,
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Aborted provisioning runs, failed privileged commands
    - SUCCESS/INFO: Pipeline steps, device detection, boot menu results
    - DEBUG: Detailed diagnostics, command lines
    - TRACE: Raw output of external tools

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        log_sink: Optional callable receiving (level, message) for every record
            that passes the console filters
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/multiboot-usb/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "<blue>{extra[job_id]: <18}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            # Locals may hold the sudo credential
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log - Ultra-verbose (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    # SINK 6: Caller-provided sink (e.g. a prompt front-end status pane)
    if log_sink is not None:

        def _forwarding_sink(message) -> None:
            record = message.record
            log_sink(record["level"].name.lower(), record["message"])

        logger.add(
            _forwarding_sink,
            level=console_level,
            enqueue=True,
            filter=_combined_filter,
        )

    return logger


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Automatically logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "provision", "preview")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("provision", device="/dev/sdb") as log:
            log.debug("Creating partition table")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(
        job_id=job_id,
        operation=operation,
        **details,
    ):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source, tags, and context for the domain.
    """

    @staticmethod
    def for_provision(job_id: str | None = None, **details) -> Logger:
        """Logger for the provisioning pipeline."""
        if job_id is None:
            job_id = f"provision-{uuid.uuid4().hex[:8]}"
        return logger.bind(
            job_id=job_id, source="provision", tags=["provision", "storage"], **details
        )

    @staticmethod
    def for_usb() -> Logger:
        """Logger for USB device detection and enumeration."""
        return logger.bind(source="usb", tags=["usb", "hardware"])

    @staticmethod
    def for_boot() -> Logger:
        """Logger for boot menu resolution."""
        return logger.bind(source="boot", tags=["boot", "menu"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (privileged commands, mounts, config)."""
        return logger.bind(source="system", tags=["system"])


class EventLogger:
    """
    Structured event logger using standardized schemas.

    Provides type-safe methods for logging common events with
    consistent structure and fields.
    """

    @staticmethod
    def log_device_hotplug(log: Logger, action: str, device: str, **extra) -> None:
        """Log USB device hotplug event."""
        log.info(
            f"USB device {action}",
            event_type="device_hotplug",
            action=action,  # "connected" or "removed"
            device_name=device,
            **extra,
        )

    @staticmethod
    def log_provision_step(
        log: Logger, state: str, device: str, **extra
    ) -> None:
        """Log a provisioning state transition."""
        log.info(
            f"Provisioning reached {state}",
            event_type="provision_step",
            state=state,
            device_name=device,
            **extra,
        )

    @staticmethod
    def log_menu_built(log: Logger, entries: int, skipped: int, **extra) -> None:
        """Log the outcome of a boot menu scan."""
        log.info(
            f"Boot menu built with {entries} entries ({skipped} skipped)",
            event_type="menu_built",
            entries=entries,
            skipped=skipped,
            **extra,
        )
