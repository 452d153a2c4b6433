"""
Pytest configuration and shared fixtures for multiboot-usb tests.

This module provides common fixtures and fakes used across all test modules.
"""

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from multiboot_usb.boot.exceptions import LoopbackError
from multiboot_usb.domain import ExecutionScope
from multiboot_usb.storage.privileged import PrivilegedRunner
from multiboot_usb.ui.prompts import Checkpoint


# ==============================================================================
# Device Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_usb_device() -> Dict[str, Any]:
    """
    Fixture providing a hotplug USB disk as returned by lsblk -J -b -d.

    Returns:
        Dict representing a typical USB flash drive.
    """
    return {
        "path": "/dev/sdb",
        "name": "sdb",
        "type": "disk",
        "size": 16106127360,
        "hotplug": True,
        "rm": True,
        "tran": "usb",
        "model": "Cruzer Blade ",
        "vendor": "SanDisk ",
    }


@pytest.fixture
def mock_system_disk() -> Dict[str, Any]:
    """Fixture providing a fixed system disk that is never a candidate."""
    return {
        "path": "/dev/nvme0n1",
        "name": "nvme0n1",
        "type": "disk",
        "size": 512110190592,
        "hotplug": False,
        "rm": False,
        "tran": "nvme",
        "model": "Samsung SSD 970",
        "vendor": None,
    }


@pytest.fixture
def mock_optical_drive() -> Dict[str, Any]:
    """Fixture providing a hotplug optical drive (type rom)."""
    return {
        "path": "/dev/sr0",
        "name": "sr0",
        "type": "rom",
        "size": 1073741312,
        "hotplug": True,
        "rm": True,
        "tran": "sata",
        "model": "DVD-RW",
        "vendor": "HL-DT-ST",
    }


@pytest.fixture
def mock_lsblk_output(mock_usb_device, mock_system_disk, mock_optical_drive) -> str:
    """Fixture providing lsblk JSON output with three devices."""
    return json.dumps(
        {"blockdevices": [mock_system_disk, mock_usb_device, mock_optical_drive]}
    )


# ==============================================================================
# Privileged Runner Fakes
# ==============================================================================


class FakeProcess:
    """Stand-in for subprocess.run recording every invocation.

    Args:
        failures: command name -> (returncode, stderr) for failing commands
        outputs: command name -> stdout
        valid_secret: Password accepted by the sudo credential check
    """

    def __init__(
        self,
        failures: Optional[Dict[str, tuple]] = None,
        outputs: Optional[Dict[str, str]] = None,
        valid_secret: str = "hunter2",
    ) -> None:
        self.failures = failures or {}
        self.outputs = outputs or {}
        self.valid_secret = valid_secret
        self.calls: List[tuple] = []

    @staticmethod
    def unwrap(argv: List[str]) -> List[str]:
        if argv[0] != "sudo":
            return list(argv)
        command = list(argv[3:])
        if command and command[0] == "-k":
            command = command[1:]
        return command

    @property
    def commands(self) -> List[List[str]]:
        return [self.unwrap(argv) for argv, _ in self.calls]

    def __call__(self, argv, input=None, text=True, capture_output=True):
        argv = list(argv)
        self.calls.append((argv, input))
        if argv[:4] == ["sudo", "--stdin", "--prompt=", "-k"]:
            ok = input == f"{self.valid_secret}\n"
            return subprocess.CompletedProcess(
                argv, 0 if ok else 1, "", "" if ok else "Sorry, try again."
            )
        name = self.unwrap(argv)[0]
        if name in self.failures:
            returncode, stderr = self.failures[name]
            return subprocess.CompletedProcess(argv, returncode, "", stderr)
        return subprocess.CompletedProcess(argv, 0, self.outputs.get(name, ""), "")


@pytest.fixture
def fake_process() -> FakeProcess:
    return FakeProcess()


@pytest.fixture
def root_runner(fake_process) -> PrivilegedRunner:
    """Runner that believes it runs as root and records commands."""
    return PrivilegedRunner(run_process=fake_process, check_root=lambda: True)


@pytest.fixture
def dry_runner() -> PrivilegedRunner:
    return PrivilegedRunner(dry_run=True)


@pytest.fixture
def fake_mount_dirs(tmp_path, mocker) -> List[Path]:
    """Make mkdtemp hand out directories that look like a finished grub-install."""
    created: List[Path] = []

    def make_dir(suffix="", **kwargs):
        path = tmp_path / f"mnt{len(created)}{suffix}"
        (path / "boot" / "grub").mkdir(parents=True)
        created.append(path)
        return str(path)

    mocker.patch(
        "multiboot_usb.storage.mount.mkdtemp", side_effect=make_dir
    )
    return created


@pytest.fixture
def grub_cfg_file(tmp_path) -> Path:
    path = tmp_path / "grub.cfg"
    path.write_text("# test grub.cfg\n", encoding="utf-8")
    return path


# ==============================================================================
# Prompter Fakes
# ==============================================================================


class ScriptedPrompter:
    """Prompter answering from per-checkpoint scripts.

    Unscripted confirmations and acknowledgments answer yes, unscripted size
    prompts take the suggested size.
    """

    def __init__(self, answers: Optional[Dict[Checkpoint, list]] = None) -> None:
        self.answers = {key: list(value) for key, value in (answers or {}).items()}
        self.visited: List[Checkpoint] = []
        self.informed: Dict[Checkpoint, List[str]] = {}
        self.tables: List[tuple] = []
        self.warnings: List[str] = []
        self.errors: List[str] = []
        self.acknowledged: List[str] = []

    def _next(self, checkpoint: Checkpoint, default):
        self.visited.append(checkpoint)
        script = self.answers.get(checkpoint)
        if script:
            return script.pop(0)
        return default

    def inform(self, checkpoint, title, lines):
        self.informed[checkpoint] = list(lines)

    def confirm(self, checkpoint, message, *, default=False):
        return self._next(checkpoint, True)

    def acknowledge(self, checkpoint, message):
        self.acknowledged.append(message)
        return self._next(checkpoint, True)

    def ask_size(self, checkpoint, message, bounds):
        return self._next(checkpoint, bounds.suggested)

    def ask_secret(self, checkpoint, message):
        return self._next(checkpoint, "hunter2")

    def show_table(self, title, columns, rows):
        self.tables.append((title, list(columns), [list(row) for row in rows]))

    def warn(self, message):
        self.warnings.append(message)

    def error(self, message):
        self.errors.append(message)


@pytest.fixture
def scripted_prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def prompter_factory():
    """Build a ScriptedPrompter from per-checkpoint answers."""
    return ScriptedPrompter


# ==============================================================================
# Boot Runtime Fake
# ==============================================================================


class FakeBootRuntime:
    """In-memory boot runtime.

    Args:
        directory: Names in the image directory, or None if it is missing
        images: image path -> {"label": str, "files": set of paths}
        fail_attach: Image paths whose attachment fails
        fail_detach: Image paths whose detachment fails after releasing
        config_error: Exception raised by run_config
    """

    def __init__(
        self,
        directory: Optional[List[str]] = None,
        images: Optional[Dict[str, Dict[str, Any]]] = None,
        fail_attach=(),
        fail_detach=(),
        config_error: Optional[BaseException] = None,
    ) -> None:
        self.directory = directory
        self.images = images or {}
        self.fail_attach = set(fail_attach)
        self.fail_detach = set(fail_detach)
        self.config_error = config_error
        self.active = 0
        self.max_active = 0
        self.current: Optional[str] = None
        self.events: List[tuple] = []
        self.acknowledged: List[str] = []
        self.ran: List[tuple] = []
        self.halted = False
        self.rebooted = False

    def list_directory(self, path):
        return self.directory

    def attach_loopback(self, image_path):
        if image_path in self.fail_attach:
            raise LoopbackError(image_path, "not an ISO-9660 filesystem")
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.current = image_path
        self.events.append(("attach", image_path))
        return "loop"

    def detach_loopback(self, device):
        self.active -= 1
        image_path = self.current
        self.events.append(("detach", image_path))
        self.current = None
        if image_path in self.fail_detach:
            raise LoopbackError(image_path, "umount: target is busy")

    def probe_label(self, device):
        return self.images.get(self.current, {}).get("label")

    def file_exists(self, device, path):
        return path in self.images.get(self.current, {}).get("files", set())

    def acknowledge(self, message):
        self.acknowledged.append(message)

    def run_config(self, config_path, scope: ExecutionScope):
        self.ran.append((config_path, scope, self.active))
        if self.config_error is not None:
            raise self.config_error

    def halt(self):
        self.halted = True

    def reboot(self):
        self.rebooted = True


@pytest.fixture
def two_image_runtime() -> FakeBootRuntime:
    """Runtime whose /isos holds x.iso, y.ISO and z.txt."""
    return FakeBootRuntime(
        directory=["x.iso", "y.ISO", "z.txt"],
        images={
            "/isos/x.iso": {"label": "X_LIVE", "files": {"/boot/grub/loopback.cfg"}},
            "/isos/y.ISO": {"label": "Y_LIVE", "files": {"/boot/loopback.cfg"}},
        },
    )


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    """
    Fixture providing a temporary settings file path.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        Path to a settings.json file inside a temporary directory.
    """
    settings_dir = tmp_path / "config"
    settings_dir.mkdir()
    return settings_dir / "settings.json"


@pytest.fixture
def sample_settings_data() -> Dict[str, Any]:
    """Fixture providing sample settings data."""
    return {
        "esp_mib": 200,
        "image_directory": "images",
        "settle_delay_seconds": 0,
        "probe_failure_prompt": False,
    }
