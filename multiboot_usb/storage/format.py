"""GPT partitioning and filesystem creation.

This module turns a :class:`~multiboot_usb.domain.PartitionPlan` into the
parted and mkfs invocations that lay it out on the target drive.

Partitioning:
    - A new GPT label is created on every run, discarding any previous layout,
      so re-running a failed provisioning from scratch is always safe
    - One ``parted --script`` call creates all partitions and sets their flags
    - Offsets are passed in MiB with optimal alignment

Supported Filesystems:
    fat32:  EFI system partition (mkfs.vfat -F 32)
    ext2:   Image partition (mkfs.ext2), no journal to spare the flash memory

Operations:
    - partition_path(): Device node of partition N (handles nvme/mmcblk "p")
    - build_parted_command(): parted argument vector for a plan
    - check_label() / check_plan_labels(): Volume label limits (FAT32 11, ext2 16)
    - build_mkfs_command(): mkfs argument vector for a filesystem
    - create_partition_table(): Run parted through the privileged runner
    - format_partition(): Run mkfs through the privileged runner
    - settle_device(): Let udev and slow drives catch up after changes

Example:
    >>> from multiboot_usb.storage.format import build_mkfs_command
    >>> build_mkfs_command("/dev/sdb2", "fat32", "ISO-BOOT")
    ['mkfs.vfat', '-F', '32', '-n', 'ISO-BOOT', '/dev/sdb2']
"""

from __future__ import annotations

import contextlib
import shutil
import subprocess
import time

from multiboot_usb.domain import PartitionPlan
from multiboot_usb.logging import LoggerFactory
from multiboot_usb.storage.devices import run_command
from multiboot_usb.storage.exceptions import FormatOperationError
from multiboot_usb.storage.privileged import CommandResult, PrivilegedRunner


log = LoggerFactory.for_system()

# Longest volume label each filesystem accepts
LABEL_LIMITS = {"fat32": 11, "ext2": 16}


def _validate_device_path(device_path: str) -> bool:
    """Validate that device path starts with /dev/."""
    return device_path.startswith("/dev/")


def partition_path(device_path: str, number: int) -> str:
    """Device node of a partition, e.g. /dev/sdb2 or /dev/nvme0n1p2."""
    partition_suffix = "p" if device_path[-1].isdigit() else ""
    return f"{device_path}{partition_suffix}{number}"


def build_parted_command(device_path: str, plan: PartitionPlan) -> list[str]:
    """parted arguments creating a GPT label and every partition of the plan."""
    command = ["parted", device_path, "--align", "optimal", "--script", "mklabel", "gpt"]
    for spec in plan.partitions:
        command.append("mkpart")
        command.append(spec.name)
        if spec.filesystem:
            command.append(spec.filesystem)
        command.extend([f"{spec.start_mib}MiB", f"{spec.end_mib}MiB"])
        for flag in spec.flags:
            command.extend(["set", str(spec.number), flag, "on"])
    return command


def check_label(filesystem: str, label: str, device: str | None = None) -> None:
    """Reject a volume label the filesystem cannot store.

    Raises:
        FormatOperationError: If the label is longer than the filesystem allows
    """
    limit = LABEL_LIMITS.get(filesystem.lower())
    if limit is not None and len(label) > limit:
        raise FormatOperationError(
            f"{filesystem.upper()} label {label!r} exceeds {limit} characters",
            device=device,
        )


def check_plan_labels(plan: PartitionPlan) -> None:
    """Validate every filesystem label of a plan before anything is written."""
    for spec in plan.partitions:
        if spec.filesystem:
            check_label(spec.filesystem, spec.name)


def build_mkfs_command(partition: str, filesystem: str, label: str) -> list[str]:
    """mkfs arguments for one partition.

    Raises:
        FormatOperationError: If the filesystem is unsupported or the label invalid
    """
    filesystem = filesystem.lower()
    check_label(filesystem, label, device=partition)
    if filesystem == "fat32":
        return ["mkfs.vfat", "-F", "32", "-n", label, partition]
    if filesystem == "ext2":
        # -F: do not stop to ask when a previous filesystem is found
        return ["mkfs.ext2", "-F", "-L", label, partition]
    raise FormatOperationError(
        f"Unsupported filesystem type: {filesystem}", device=partition
    )


def settle_device(device_path: str, delay_seconds: float) -> None:
    """Flush pending writes, wait for udev, then give the drive some time.

    Failures are logged and ignored: settling only improves the odds that the
    next command finds the new partition nodes.
    """
    for command in (["sync"], ["udevadm", "settle", "--timeout=10"]):
        if not shutil.which(command[0]):
            log.bind(tags=["settle"]).debug(f"Skipping {command[0]}: command not found")
            continue
        with contextlib.suppress(subprocess.CalledProcessError, OSError):
            run_command(command, log_command=False)
    if delay_seconds > 0:
        log.bind(tags=["settle"]).debug(
            f"Settling {device_path} for {delay_seconds:.1f}s"
        )
        time.sleep(delay_seconds)


def create_partition_table(
    runner: PrivilegedRunner, device_path: str, plan: PartitionPlan
) -> CommandResult:
    """Erase the partition table and create the planned partitions.

    Raises:
        ValueError: If device_path is not a /dev node
        PrivilegedCommandError: If parted fails
    """
    if not _validate_device_path(device_path):
        raise ValueError(f"Invalid device path: {device_path}")
    log.info(f"Creating GPT partition table on {device_path}")
    for row in plan.describe():
        log.debug(row)
    return runner.execute(build_parted_command(device_path, plan))


def format_partition(
    runner: PrivilegedRunner, partition: str, filesystem: str, label: str
) -> CommandResult:
    """Create a labelled filesystem on a partition.

    Raises:
        FormatOperationError: If the filesystem is unsupported
        PrivilegedCommandError: If mkfs fails
    """
    command = build_mkfs_command(partition, filesystem, label)
    log.info(f"Formatting {partition} as {filesystem} (label {label})")
    return runner.execute(command)
