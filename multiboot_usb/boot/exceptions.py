"""Exceptions raised while resolving the boot menu.

Exception Hierarchy:
    BootRuntimeError (base)
        ├── LoopbackError
        │   └── LoopbackBusyError
        └── NestedConfigError
"""

from __future__ import annotations


class BootRuntimeError(Exception):
    """Base exception for boot-time operations."""


class LoopbackError(BootRuntimeError):
    """An image could not be attached or detached as a loopback device."""

    def __init__(self, image_path: str, reason: str = ""):
        self.image_path = image_path
        self.reason = reason
        msg = f"Loopback operation failed for {image_path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class LoopbackBusyError(LoopbackError):
    """The loopback slot already holds an attachment."""

    def __init__(self, image_path: str, held_by: str):
        self.held_by = held_by
        super().__init__(image_path, f"loopback slot is held by {held_by}")


class NestedConfigError(BootRuntimeError):
    """The nested configuration of an image failed to load or run."""

    def __init__(self, config_path: str, reason: str = ""):
        self.config_path = config_path
        self.reason = reason
        msg = f"Nested configuration {config_path} failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
