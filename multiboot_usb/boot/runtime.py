"""Primitives the boot menu resolver needs from its runtime.

At boot these are GRUB commands (``loopback``, ``probe``, ``test -f``,
``configfile``, ``read``, ``halt``, ``reboot``). On a host they are provided by
:class:`multiboot_usb.boot.host.HostBootRuntime`, and tests use a fake.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from multiboot_usb.domain import ExecutionScope


class BootRuntime(Protocol):
    def list_directory(self, path: str) -> Optional[Sequence[str]]:
        """Entry names of a directory, or None if it does not exist."""
        ...

    def attach_loopback(self, image_path: str) -> str:
        """Attach an image and return the loop device name.

        Raises:
            LoopbackError: If the image cannot be attached
        """
        ...

    def detach_loopback(self, device: str) -> None:
        ...

    def probe_label(self, device: str) -> Optional[str]:
        ...

    def file_exists(self, device: str, path: str) -> bool:
        ...

    def acknowledge(self, message: str) -> None:
        """Block until the operator acknowledges a message."""
        ...

    def run_config(self, config_path: str, scope: ExecutionScope) -> None:
        """Hand control to a nested configuration; returns when it is left.

        Raises:
            NestedConfigError: If the configuration fails
        """
        ...

    def halt(self) -> None:
        ...

    def reboot(self) -> None:
        ...
