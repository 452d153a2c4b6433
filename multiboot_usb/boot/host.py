"""Preview the boot menu on the host.

:class:`HostBootRuntime` runs the boot menu resolver against a real image
directory: images are loop mounted read-only, labels come from blkid, and
"running" a nested configuration means collecting the titles of the menu
entries it defines. Halt and reboot never touch the host.
"""

from __future__ import annotations

import os
import re
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from multiboot_usb.boot.exceptions import LoopbackError, NestedConfigError
from multiboot_usb.boot.resolver import BootMenuResolver, Selection
from multiboot_usb.domain import BootMenu, ExecutionScope, MenuEntry, TerminalAction
from multiboot_usb.logging import LoggerFactory
from multiboot_usb.storage.devices import run_command
from multiboot_usb.storage.exceptions import MountError, OperationCancelledError
from multiboot_usb.storage.mount import mounted_partition
from multiboot_usb.storage.privileged import PrivilegedRunner
from multiboot_usb.ui.prompts import Checkpoint, Prompter


log = LoggerFactory.for_boot()

LOOP_DEVICE = "loop"
MENUENTRY_PATTERN = re.compile(r"""^\s*menuentry\s+(["'])(.+?)\1""", re.MULTILINE)


def nested_menu_titles(text: str) -> List[str]:
    return [match.group(2) for match in MENUENTRY_PATTERN.finditer(text)]


class HostBootRuntime:
    def __init__(
        self,
        runner: PrivilegedRunner,
        prompter: Optional[Prompter] = None,
        export_variable: str = "iso_path",
    ) -> None:
        self.runner = runner
        self.prompter = prompter
        self.export_variable = export_variable
        self.nested_menus: Dict[str, List[str]] = {}
        self._mount: Optional[ExitStack] = None
        self._mount_point: Optional[Path] = None
        self._image_path: Optional[str] = None

    def list_directory(self, path: str) -> Optional[Sequence[str]]:
        """Names in directory order, unsorted, the order GRUB's ls walks them."""
        if not os.path.isdir(path):
            return None
        return os.listdir(path)

    def attach_loopback(self, image_path: str) -> str:
        stack = ExitStack()
        try:
            mount_point = stack.enter_context(
                mounted_partition(
                    self.runner, image_path, suffix="-loop", options=("loop", "ro")
                )
            )
        except MountError as error:
            raise LoopbackError(image_path, str(error)) from error
        self._mount = stack
        self._mount_point = mount_point
        self._image_path = image_path
        return LOOP_DEVICE

    def detach_loopback(self, device: str) -> None:
        stack = self._mount
        image_path = self._image_path or device
        self._mount = self._mount_point = self._image_path = None
        if stack is None:
            return
        try:
            stack.close()
        except MountError as error:
            raise LoopbackError(image_path, str(error)) from error

    def _resolve(self, device: str, path: str) -> Path:
        if device != LOOP_DEVICE or self._mount_point is None:
            raise LoopbackError(device, "not attached")
        return self._mount_point / path.lstrip("/")

    def probe_label(self, device: str) -> Optional[str]:
        if device != LOOP_DEVICE or self._image_path is None:
            return None
        try:
            result = run_command(
                ["blkid", "-o", "value", "-s", "LABEL", self._image_path], check=False
            )
        except OSError as error:
            log.warning(f"Cannot read label of {self._image_path}: {error}")
            return None
        return result.stdout.strip() or None

    def file_exists(self, device: str, path: str) -> bool:
        return self._resolve(device, path).is_file()

    def acknowledge(self, message: str) -> None:
        if self.prompter is None:
            log.info(message)
            return
        if not self.prompter.acknowledge(Checkpoint.PROBE_ACKNOWLEDGEMENT, message):
            raise OperationCancelledError(Checkpoint.PROBE_ACKNOWLEDGEMENT.value)

    def run_config(self, config_path: str, scope: ExecutionScope) -> None:
        try:
            text = self._resolve(scope.root.strip("()"), config_path).read_text(
                encoding="utf-8", errors="replace"
            )
        except OSError as error:
            raise NestedConfigError(config_path, str(error)) from error
        image_path = scope.exported_dict().get(self.export_variable, scope.root)
        self.nested_menus[image_path] = nested_menu_titles(text)

    def halt(self) -> None:
        log.info("Preview: halt selected")

    def reboot(self) -> None:
        log.info("Preview: reboot selected")


def _walk_entries(entries: Sequence[MenuEntry]) -> Iterator[Selection]:
    yield from entries
    yield TerminalAction.HALT


def preview_menu(resolver: BootMenuResolver) -> BootMenu:
    """Build the menu, then open every entry once before halting."""
    selections: Optional[Iterator[Selection]] = None

    def select(menu: BootMenu) -> Selection:
        nonlocal selections
        if selections is None:
            selections = _walk_entries(menu.entries)
        return next(selections)

    resolver.run(select)
    return resolver.menu
