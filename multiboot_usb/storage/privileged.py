"""Privileged command execution through a single captured credential.

Every destructive step of a provisioning run (parted, mkfs, grub-install,
mount, umount, cp, mkdir) goes through one :class:`PrivilegedRunner`. When the
process already runs as root the commands are executed directly; otherwise the
operator's password is captured once, validated, and piped to
``sudo --stdin`` for each call. The credential is never logged.

A runner created with ``dry_run=True`` records the commands it would run and
reports success without executing anything.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from multiboot_usb.logging import LoggerFactory
from multiboot_usb.storage.exceptions import CredentialError, PrivilegedCommandError


log = LoggerFactory.for_system()

SUDO_COMMAND = "sudo"


@dataclass(frozen=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stderr.strip() or self.stdout.strip()


def _is_root() -> bool:
    return os.geteuid() == 0


@dataclass
class PrivilegedRunner:
    """Run commands with root privileges, reusing one credential per run."""

    credential: Optional[str] = None
    dry_run: bool = False
    run_process: Callable[..., subprocess.CompletedProcess] = field(
        default=subprocess.run, repr=False
    )
    check_root: Callable[[], bool] = field(default=_is_root, repr=False)
    history: List[tuple[str, ...]] = field(default_factory=list, repr=False)

    def __repr__(self) -> str:
        return f"PrivilegedRunner(dry_run={self.dry_run}, credential={'set' if self.credential else 'unset'})"

    @property
    def needs_credential(self) -> bool:
        return not self.dry_run and not self.check_root()

    def _wrap(self, command: Sequence[str]) -> tuple[list[str], Optional[str]]:
        if not self.needs_credential:
            return list(command), None
        if self.credential is None:
            raise CredentialError("No credential captured for privileged commands")
        # Empty prompt keeps sudo from writing to the captured stderr
        return [SUDO_COMMAND, "--stdin", "--prompt=", *command], f"{self.credential}\n"

    def validate_credential(self, credential: str) -> bool:
        """Check a credential against sudo without touching the cached timestamp.

        ``-k`` ignores any cached sudo session so a wrong password is never
        accepted just because a previous sudo call is still fresh.
        """
        if self.dry_run or self.check_root():
            return True
        result = self.run_process(
            [SUDO_COMMAND, "--stdin", "--prompt=", "-k", "true"],
            input=f"{credential}\n",
            text=True,
            capture_output=True,
        )
        if result.returncode != 0:
            log.warning("sudo rejected the supplied credential")
            return False
        return True

    def accept_credential(self, credential: str) -> bool:
        if not self.validate_credential(credential):
            return False
        self.credential = credential
        return True

    def execute(self, command: Sequence[str], *, check: bool = True) -> CommandResult:
        """Run a command as root.

        Raises:
            PrivilegedCommandError: If check is set and the command exits non-zero
            CredentialError: If a credential is required but was never captured
        """
        command = tuple(str(part) for part in command)
        self.history.append(command)
        log.debug(f"Running privileged command: {' '.join(command)}")
        if self.dry_run:
            log.info(f"[dry-run] {' '.join(command)}")
            return CommandResult(command=command, returncode=0)

        argv, stdin_text = self._wrap(command)
        try:
            completed = self.run_process(
                argv,
                input=stdin_text,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as error:
            raise PrivilegedCommandError(command, 127, str(error)) from error

        result = CommandResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if result.stdout:
            log.bind(tags=["output"]).trace(f"stdout: {result.stdout.strip()}")
        if not result.ok:
            log.error(
                f"{command[0]} failed with exit status {result.returncode}: {result.output}"
            )
            if check:
                raise PrivilegedCommandError(command, result.returncode, result.output)
        else:
            log.debug(f"Command completed with return code {result.returncode}")
        return result
