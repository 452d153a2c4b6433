"""The single loopback device slot.

GRUB's menu logic uses one loop device name for every image, so at most one
image may be attached at any time. Each attachment is scoped to a ``with``
block and released on every exit path.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from multiboot_usb.boot.exceptions import LoopbackBusyError
from multiboot_usb.boot.runtime import BootRuntime
from multiboot_usb.logging import LoggerFactory


log = LoggerFactory.for_boot()


class LoopbackSlot:
    def __init__(self, runtime: BootRuntime) -> None:
        self.runtime = runtime
        self.holder: Optional[str] = None
        self.device: Optional[str] = None

    @property
    def held(self) -> bool:
        return self.holder is not None

    @contextmanager
    def attached(self, image_path: str) -> Iterator[str]:
        """Attach an image for the duration of the block.

        Raises:
            LoopbackBusyError: If another image is still attached
            LoopbackError: If the runtime cannot attach the image
        """
        if self.holder is not None:
            raise LoopbackBusyError(image_path, self.holder)
        device = self.runtime.attach_loopback(image_path)
        self.holder = image_path
        self.device = device
        log.debug(f"Attached {image_path} as ({device})")
        try:
            yield device
        finally:
            self.holder = None
            self.device = None
            self.runtime.detach_loopback(device)
            log.debug(f"Detached ({device}) from {image_path}")
