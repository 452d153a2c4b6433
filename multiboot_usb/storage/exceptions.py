"""Custom exceptions for provisioning operations.

This module defines a hierarchy of exceptions for build-time operations to
provide more specific error handling and better error messages.

Exception Hierarchy:
    StorageError (base)
        ├── DeviceError
        │   ├── DeviceNotFoundError
        │   ├── NoDeviceDetectedError
        │   └── AmbiguousDeviceError
        ├── PlanError
        │   ├── SizeOutOfRangeError
        │   └── DeviceTooSmallError
        ├── CommandError
        │   ├── PrivilegedCommandError
        │   └── CredentialError
        ├── MountError
        │   ├── MountFailedError
        │   └── UnmountFailedError
        ├── FormatError
        │   └── FormatOperationError
        └── ProvisionError
            ├── ConfigInstallError
            ├── ProvisionAbortedError
            └── OperationCancelledError

Usage:
    from multiboot_usb.storage.exceptions import AmbiguousDeviceError

    if len(candidates) > 1:
        raise AmbiguousDeviceError(candidates)
"""

from __future__ import annotations

from typing import Optional, Sequence


class StorageError(Exception):
    """Base exception for all provisioning operations."""


class DeviceError(StorageError):
    """Base exception for device-related errors."""


class DeviceNotFoundError(DeviceError):
    """Device was not found or does not exist."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device not found: {device_name}")


class NoDeviceDetectedError(DeviceError):
    """No new hotplug disk appeared between the two snapshots."""

    def __init__(self):
        super().__init__("No new block device was detected")


class AmbiguousDeviceError(DeviceError):
    """More than one new hotplug disk appeared; refusing to guess."""

    def __init__(self, candidates: Sequence[str]):
        self.candidates = list(candidates)
        super().__init__(
            f"More than one new block device was detected: {', '.join(self.candidates)}"
        )


class PlanError(StorageError):
    """Base exception for partition planning errors."""


class SizeOutOfRangeError(PlanError):
    """Requested image partition size lies outside the accepted bounds."""

    def __init__(self, size_mib: int, minimum: int, maximum: int):
        self.size_mib = size_mib
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Partition size {size_mib} MiB is outside {minimum}..{maximum} MiB"
        )


class DeviceTooSmallError(PlanError):
    """Device cannot hold the fixed partitions plus a minimal image partition."""

    def __init__(self, capacity_bytes: int, required_mib: int):
        self.capacity_bytes = capacity_bytes
        self.required_mib = required_mib
        super().__init__(
            f"Device capacity {capacity_bytes} bytes is too small "
            f"(needs at least {required_mib} MiB)"
        )


class CommandError(StorageError):
    """Base exception for external command errors."""


class PrivilegedCommandError(CommandError):
    """A privileged command exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        msg = f"Command failed with exit status {returncode}: {' '.join(self.command)}"
        if output:
            msg += f": {output}"
        super().__init__(msg)


class CredentialError(CommandError):
    """The privileged credential was rejected or not supplied."""


class MountError(StorageError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """Failed to mount a partition."""

    def __init__(self, partition: str, mount_point: str, reason: str = ""):
        self.partition = partition
        self.mount_point = mount_point
        self.reason = reason
        msg = f"Failed to mount {partition} at {mount_point}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnmountFailedError(MountError):
    """Failed to unmount a partition."""

    def __init__(self, partition: str, mount_point: str, reason: str = ""):
        self.partition = partition
        self.mount_point = mount_point
        self.reason = reason
        msg = f"Failed to unmount {partition} from {mount_point}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class FormatError(StorageError):
    """Base exception for format operations."""


class FormatOperationError(FormatError):
    """Generic format operation failure."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class ProvisionError(StorageError):
    """Base exception for the provisioning pipeline."""


class ConfigInstallError(ProvisionError):
    """The bootloader configuration could not be installed."""


class ProvisionAbortedError(ProvisionError):
    """The pipeline stopped at a step; re-run it from the start to recover."""

    def __init__(self, state: str, device: str, cause: Exception):
        self.state = state
        self.device = device
        self.cause = cause
        super().__init__(
            f"Provisioning of {device} aborted after state '{state}': {cause}"
        )


class OperationCancelledError(ProvisionError):
    """The operator declined a checkpoint."""

    def __init__(self, checkpoint: str):
        self.checkpoint = checkpoint
        super().__init__(f"Cancelled at {checkpoint}")
