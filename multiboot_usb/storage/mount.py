"""Temporary privileged mounts with guaranteed release.

Partitions of the target drive are mounted on fresh ``mkdtemp`` directories
only for as long as files are written to them. :func:`mounted_partition`
unmounts on every exit path, including a failed write, so a stale mount never
blocks a later step or the next run.
"""

from __future__ import annotations

import contextlib
from pathlib import Path
from tempfile import mkdtemp
from typing import Iterator, Sequence

from multiboot_usb.logging import LoggerFactory
from multiboot_usb.storage.exceptions import (
    MountFailedError,
    PrivilegedCommandError,
    UnmountFailedError,
)
from multiboot_usb.storage.privileged import PrivilegedRunner


log = LoggerFactory.for_system()

INVALID_PATH_CHARACTERS = (";", "&", "|", "$", "`", "\n", "\r", " ")


def _validate_partition(partition: str) -> None:
    if not isinstance(partition, str) or not partition.startswith("/dev/"):
        raise ValueError(f"Invalid partition path: {partition}")
    if any(char in partition for char in INVALID_PATH_CHARACTERS):
        raise ValueError(f"Partition path contains invalid characters: {partition}")


def _release(
    runner: PrivilegedRunner, partition: str, mount_point: Path, *, strict: bool
) -> None:
    try:
        runner.execute(["umount", str(mount_point)])
        log.debug(f"Unmounted {partition} from {mount_point}")
    except PrivilegedCommandError as error:
        if strict:
            raise UnmountFailedError(partition, str(mount_point), error.output) from error
        # Another error is already propagating; it is the one to report
        log.error(f"Failed to unmount {partition} from {mount_point}: {error.output}")
        return
    with contextlib.suppress(OSError):
        mount_point.rmdir()


@contextlib.contextmanager
def mounted_partition(
    runner: PrivilegedRunner,
    partition: str,
    *,
    suffix: str = "-multiboot",
    options: Sequence[str] = (),
) -> Iterator[Path]:
    """Mount a partition on a temporary directory for the duration of a block.

    Args:
        runner: Privileged runner used for mount and umount
        partition: Device node (e.g., '/dev/sdb2'), or an image file for loop mounts
        suffix: Suffix of the temporary mount directory name
        options: Extra ``mount -o`` options (e.g., ["loop", "ro"])

    Raises:
        ValueError: If the partition path is invalid
        MountFailedError: If mount fails
        UnmountFailedError: If umount fails after the block completed normally
    """
    if "loop" not in options:
        # Loop mounts take an image file instead of a device node
        _validate_partition(partition)
    mount_point = Path(mkdtemp(suffix=suffix))
    command = ["mount"]
    if options:
        command.extend(["-o", ",".join(options)])
    command.extend([partition, str(mount_point)])
    try:
        runner.execute(command)
    except PrivilegedCommandError as error:
        with contextlib.suppress(OSError):
            mount_point.rmdir()
        raise MountFailedError(partition, str(mount_point), error.output) from error
    log.debug(f"Mounted {partition} at {mount_point}")

    try:
        yield mount_point
    except BaseException:
        _release(runner, partition, mount_point, strict=False)
        raise
    else:
        _release(runner, partition, mount_point, strict=True)
