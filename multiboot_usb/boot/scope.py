"""Execution scope of the boot menu and of chain-loaded configurations."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from multiboot_usb.domain import ExecutionScope
from multiboot_usb.logging import LoggerFactory


log = LoggerFactory.for_boot()


class BootEnvironment:
    """Holds the active :class:`ExecutionScope`.

    A chain-load applies a disposable scope on top of the current one and the
    previous scope comes back when the nested configuration returns, however
    it returns.
    """

    def __init__(self, root: str = "", **variables: str) -> None:
        self.scope = ExecutionScope(root=root, exported=tuple(sorted(variables.items())))

    @property
    def root(self) -> str:
        return self.scope.root

    @property
    def variables(self) -> dict[str, str]:
        return self.scope.exported_dict()

    def snapshot(self) -> ExecutionScope:
        return self.scope

    def bind(self, scope: ExecutionScope) -> None:
        self.scope = scope

    @contextmanager
    def chain_scope(self, root: str, **exports: str) -> Iterator[ExecutionScope]:
        previous = self.snapshot()
        self.bind(previous.with_exports(root, **exports))
        log.debug(f"Scope root {previous.root or '-'} -> {root}")
        try:
            yield self.scope
        finally:
            self.bind(previous)
            log.debug(f"Scope root restored to {previous.root or '-'}")
