"""Block device enumeration using lsblk.

This module snapshots the hotplug-capable whole disks attached to the host.
Two snapshots, one taken before and one after the operator plugs the target
drive in, are diffed by :mod:`multiboot_usb.storage.detection`.

Device Detection:
    Uses lsblk with JSON output and byte sizes to enumerate block devices:
    - Device path (e.g., /dev/sdb)
    - Size in bytes
    - Device type (disk, part, rom, loop)
    - Hotplug flag
    - Vendor and model strings

Filtering Logic:
    Only whole disks (type "disk") with the hotplug flag set are candidates.
    Partitions, optical drives and loop devices never are.

Example:
    >>> from multiboot_usb.storage.devices import list_hotplug_disks
    >>> [device.path for device in list_hotplug_disks()]
    ['/dev/sdb']
"""

from __future__ import annotations

import json
import subprocess
from typing import Any, Callable, Sequence

from multiboot_usb.domain import BlockDevice
from multiboot_usb.logging import LoggerFactory
from multiboot_usb.storage.exceptions import DeviceNotFoundError


log = LoggerFactory.for_usb()

LSBLK_COLUMNS = "PATH,NAME,TYPE,SIZE,HOTPLUG,RM,TRAN,MODEL,VENDOR"


def run_command(
    command: Sequence[str], check: bool = True, log_output: bool = True, log_command: bool = True
) -> subprocess.CompletedProcess:
    """Run an unprivileged command and capture its output."""
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(list(command), check=check, text=True, capture_output=True)
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            log.bind(tags=["output"]).trace(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and log_output:
        log.bind(tags=["output"]).trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    return result


def group_digits(size_bytes: int) -> str:
    """Capacity with thousands separators, e.g. 16,106,127,360."""
    return f"{size_bytes:,}"


def get_block_devices(
    runner: Callable[..., subprocess.CompletedProcess] = run_command,
) -> list[dict[str, Any]]:
    """Return whole-device records from lsblk.

    Raises:
        subprocess.CalledProcessError: If lsblk fails
        json.JSONDecodeError: If lsblk returns invalid JSON
    """
    result = runner(
        ["lsblk", "-J", "-b", "-d", "-o", LSBLK_COLUMNS],
        log_output=False,
        log_command=False,
    )
    data = json.loads(result.stdout)
    return data.get("blockdevices", []) or []


def is_hotplug_disk(record: dict[str, Any]) -> bool:
    if record.get("type") != "disk":
        return False
    hotplug = record.get("hotplug")
    if isinstance(hotplug, str):
        return hotplug.strip() in {"1", "true"}
    return bool(hotplug)


def list_hotplug_disks(
    runner: Callable[..., subprocess.CompletedProcess] = run_command,
) -> list[BlockDevice]:
    """Snapshot the hotplug-capable whole disks, sorted by path."""
    disks = [
        BlockDevice.from_lsblk_dict(record)
        for record in get_block_devices(runner)
        if is_hotplug_disk(record)
    ]
    disks.sort()
    if disks:
        log.debug(
            f"lsblk found {len(disks)} hotplug disks: {', '.join(d.path for d in disks)}"
        )
    else:
        log.debug("lsblk found no hotplug disks")
    return disks


def get_device_capacity(
    device_path: str,
    runner: Callable[..., subprocess.CompletedProcess] = run_command,
) -> int:
    """Return the capacity of a whole disk in bytes.

    Raises:
        DeviceNotFoundError: If lsblk cannot report a disk size for the path
    """
    try:
        result = runner(
            ["lsblk", "-n", "-b", "-d", "-o", "TYPE,SIZE", device_path],
            log_output=False,
        )
    except (subprocess.CalledProcessError, OSError) as error:
        raise DeviceNotFoundError(device_path) from error
    for line in result.stdout.splitlines():
        words = line.split()
        if len(words) == 2 and words[0] == "disk" and words[1].isdigit():
            return int(words[1])
    raise DeviceNotFoundError(device_path)
