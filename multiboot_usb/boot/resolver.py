"""Boot menu resolution.

Runs once per boot, over whatever image files the image directory holds at
that moment:

    IDLE -> SCANNING -> PROBING (per image) -> MENU_BUILT -> SELECTED
         -> CHAIN_LOADING -> RETURNED_TO_MENU -> SELECTED ...
         -> HALTED | REBOOTED

An image becomes a menu entry only if it attaches as a loopback device and
ships one of the known nested configurations. Everything else is skipped,
after an acknowledgment when ``acknowledge_failures`` is set. A missing image
directory yields a menu holding only the halt and reboot entries.

Example:
    >>> resolver = BootMenuResolver(runtime)
    >>> menu = resolver.build_menu()
    >>> menu.titles
    ['/isos/debian-live.iso (/boot/grub/loopback.cfg)', 'halt', 'reboot']
"""

from __future__ import annotations

import posixpath
import re
from typing import Callable, List, Optional, Sequence, Union

from multiboot_usb.boot.exceptions import (
    LoopbackBusyError,
    LoopbackError,
    NestedConfigError,
)
from multiboot_usb.boot.grub_config import DEFAULT_CONFIG_CANDIDATES, EXPORT_VARIABLE
from multiboot_usb.boot.loopback import LoopbackSlot
from multiboot_usb.boot.runtime import BootRuntime
from multiboot_usb.boot.scope import BootEnvironment
from multiboot_usb.domain import (
    BootMenu,
    BootState,
    ImageCandidate,
    MenuEntry,
    TerminalAction,
)
from multiboot_usb.logging import EventLogger, LoggerFactory


log = LoggerFactory.for_boot()

IMAGE_NAME_PATTERN = re.compile(r"([^/]+)\.iso$", re.IGNORECASE)

Selection = Union[MenuEntry, TerminalAction]


def is_image_name(name: str) -> bool:
    return IMAGE_NAME_PATTERN.search(name) is not None


class BootMenuResolver:
    def __init__(
        self,
        runtime: BootRuntime,
        environment: Optional[BootEnvironment] = None,
        *,
        image_directory: str = "/isos",
        config_candidates: Sequence[str] = DEFAULT_CONFIG_CANDIDATES,
        export_variable: str = EXPORT_VARIABLE,
        acknowledge_failures: bool = True,
    ) -> None:
        self.runtime = runtime
        self.environment = environment or BootEnvironment()
        self.image_directory = image_directory
        self.config_candidates = tuple(config_candidates)
        self.export_variable = export_variable
        self.acknowledge_failures = acknowledge_failures
        self.slot = LoopbackSlot(runtime)
        self.state = BootState.IDLE
        self.history: List[BootState] = [BootState.IDLE]
        self.menu: Optional[BootMenu] = None
        self.skipped: List[ImageCandidate] = []

    def _transition(self, state: BootState) -> None:
        self.state = state
        self.history.append(state)

    def scan(self) -> List[ImageCandidate]:
        """List image files of the image directory, in directory order."""
        self._transition(BootState.SCANNING)
        names = self.runtime.list_directory(self.image_directory)
        if names is None:
            log.warning(f"Image directory {self.image_directory} not found")
            return []
        candidates = []
        for name in names:
            path = posixpath.join(self.image_directory, name)
            if is_image_name(name):
                candidates.append(ImageCandidate(path=path))
            else:
                log.debug(f"Skipping {path}")
        return candidates

    def _report_probe_failure(self, candidate: ImageCandidate, reason: str) -> None:
        message = f"{candidate.path}: {reason}, skipping"
        log.warning(message)
        if self.acknowledge_failures:
            self.runtime.acknowledge(message)

    def probe(self, candidate: ImageCandidate) -> ImageCandidate:
        """Find the nested configuration of one image.

        The returned candidate has ``config_path`` set when the image is
        bootable from the menu. The loopback slot is free again on return.
        """
        self._transition(BootState.PROBING)
        label = config_path = None
        stage = "attach"
        try:
            with self.slot.attached(candidate.path) as device:
                stage = "inspect"
                label = self.runtime.probe_label(device)
                log.debug(f"{candidate.path} label is {label}")
                config_path = next(
                    (
                        path
                        for path in self.config_candidates
                        if self.runtime.file_exists(device, path)
                    ),
                    None,
                )
                stage = "detach"
        except LoopbackBusyError:
            raise
        except LoopbackError as error:
            if stage != "detach":
                self._report_probe_failure(candidate, f"cannot {stage} ({error.reason})")
                return candidate
            # The slot is already free, only the host-side cleanup failed
            log.warning(f"{candidate.path}: detach failed ({error.reason})")
        if config_path is None:
            self._report_probe_failure(candidate, "no loopback configuration found")
            return ImageCandidate(path=candidate.path, label=label)
        log.info(f"{candidate.path}: {config_path} detected")
        return ImageCandidate(path=candidate.path, label=label, config_path=config_path)

    def build_menu(self) -> BootMenu:
        entries = []
        self.skipped = []
        for candidate in self.scan():
            probed = self.probe(candidate)
            if probed.attachable:
                entries.append(MenuEntry.for_candidate(probed))
            else:
                self.skipped.append(probed)
        self.menu = BootMenu(entries=tuple(entries))
        self._transition(BootState.MENU_BUILT)
        EventLogger.log_menu_built(log, len(entries), len(self.skipped))
        return self.menu

    def chain_load(self, entry: MenuEntry) -> BootState:
        """Hand control to the nested configuration of an entry.

        The loopback attachment and the previous scope are restored however
        the nested configuration returns. A failing nested configuration or
        image returns to the menu; anything else propagates after cleanup.
        """
        self._transition(BootState.CHAIN_LOADING)
        try:
            with self.slot.attached(entry.image_path) as device:
                with self.environment.chain_scope(
                    f"({device})", **{self.export_variable: entry.image_path}
                ) as scope:
                    self.runtime.run_config(entry.config_path, scope)
        except LoopbackBusyError:
            raise
        except (LoopbackError, NestedConfigError) as error:
            log.error(f"{entry.title}: {error}")
        self._transition(BootState.RETURNED_TO_MENU)
        return self.state

    def select(self, choice: Selection) -> BootState:
        self._transition(BootState.SELECTED)
        if choice is TerminalAction.HALT:
            self.runtime.halt()
            self._transition(BootState.HALTED)
        elif choice is TerminalAction.REBOOT:
            self.runtime.reboot()
            self._transition(BootState.REBOOTED)
        else:
            self.chain_load(choice)
        return self.state

    def run(self, selector: Callable[[BootMenu], Selection]) -> BootState:
        """Build the menu and serve selections until halt or reboot."""
        menu = self.build_menu()
        while True:
            state = self.select(selector(menu))
            if state in (BootState.HALTED, BootState.REBOOTED):
                return state
