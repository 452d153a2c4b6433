"""Identify the newly attached target drive from two enumeration snapshots.

The operator is asked to unplug the target drive, a snapshot is taken, the
operator plugs it in, and a second snapshot is taken. The target is the one
device that appears only in the second snapshot. Anything other than exactly
one new device is an error: this tool is about to erase the device, so it
never guesses.
"""

from __future__ import annotations

from typing import Iterable, Union

from multiboot_usb.domain import BlockDevice
from multiboot_usb.logging import EventLogger, LoggerFactory
from multiboot_usb.storage.exceptions import AmbiguousDeviceError, NoDeviceDetectedError


log = LoggerFactory.for_usb()

DeviceLike = Union[BlockDevice, str]


def _as_device(item: DeviceLike) -> BlockDevice:
    if isinstance(item, BlockDevice):
        return item
    return BlockDevice(path=str(item))


def _snapshot(items: Iterable[DeviceLike]) -> frozenset[BlockDevice]:
    return frozenset(_as_device(item) for item in items)


def new_devices(
    before: Iterable[DeviceLike], after: Iterable[DeviceLike]
) -> list[BlockDevice]:
    """Return the devices present in ``after`` but not in ``before``, sorted.

    Devices that disappeared between the snapshots are logged and ignored.
    """
    before_set = _snapshot(before)
    after_set = _snapshot(after)
    for removed in sorted(before_set - after_set):
        EventLogger.log_device_hotplug(log, "removed", removed.path)
    # Keep the richer "after" records for the result
    added = sorted(device for device in after_set if device not in before_set)
    for device in added:
        EventLogger.log_device_hotplug(log, "connected", device.path)
    return added


def resolve_new_device(
    before: Iterable[DeviceLike], after: Iterable[DeviceLike]
) -> BlockDevice:
    """Return the single device that appeared between the snapshots.

    Raises:
        NoDeviceDetectedError: If no device appeared
        AmbiguousDeviceError: If more than one device appeared
    """
    added = new_devices(before, after)
    if not added:
        raise NoDeviceDetectedError()
    if len(added) > 1:
        raise AmbiguousDeviceError([device.path for device in added])
    log.info(f"Detected a unique new device: {added[0].path}")
    return added[0]
