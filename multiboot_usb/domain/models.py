"""Domain model for multi-ISO USB provisioning and boot menu resolution.

Type-safe records shared by the build-time pipeline (device detection,
partition planning, provisioning) and the boot-time menu resolver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


MIB = 1024 * 1024


# ==============================================================================
# Device Domain
# ==============================================================================


class DeviceKind(Enum):
    """Kind of block device reported by the enumerator."""

    DISK = "disk"
    PARTITION = "part"

    @classmethod
    def from_lsblk_type(cls, value: str) -> DeviceKind:
        for kind in cls:
            if kind.value == value:
                return kind
        raise ValueError(f"Unsupported block device type: {value!r}")


def _as_bool(value: Any) -> bool:
    # lsblk reports booleans as true/false or "1"/"0" depending on version
    if isinstance(value, str):
        return value.strip() in {"1", "true", "True"}
    return bool(value)


@dataclass(frozen=True, order=True)
class BlockDevice:
    """A block device snapshotted from the enumerator.

    Identity is the device path: two snapshots of the same device compare
    equal even if the other attributes were read at different times, so
    snapshots can be diffed as sets.
    """

    path: str  # e.g., "/dev/sdb"
    capacity_bytes: int = field(default=0, compare=False)
    hotplug: bool = field(default=False, compare=False)
    kind: DeviceKind = field(default=DeviceKind.DISK, compare=False)
    vendor: Optional[str] = field(default=None, compare=False)
    model: Optional[str] = field(default=None, compare=False)

    @property
    def name(self) -> str:
        """Kernel name (e.g., sdb)."""
        return self.path.rsplit("/", 1)[-1]

    @property
    def capacity_mib(self) -> int:
        return self.capacity_bytes // MIB

    def format_label(self) -> str:
        """Format a human-readable label for display.

        Returns: e.g., "/dev/sdb 7.5GB" or "/dev/sdb SanDisk Cruzer (7.5GB)"
        """
        size_str = f"{self.capacity_bytes / (1024**3):.1f}GB"
        parts = [part.strip() for part in (self.vendor, self.model) if part]
        if parts:
            return f"{self.path} {' '.join(parts)} ({size_str})"
        return f"{self.path} {size_str}"

    @classmethod
    def from_lsblk_dict(cls, device: Mapping[str, Any]) -> BlockDevice:
        """Convert an lsblk JSON record to a BlockDevice.

        Raises:
            KeyError: If neither path nor name is present
            ValueError: If the type is not disk/part or size is not numeric
        """
        path = device.get("path") or f"/dev/{device['name']}"
        size = device.get("size")
        return cls(
            path=path,
            capacity_bytes=int(size) if size is not None else 0,
            hotplug=_as_bool(device.get("hotplug")),
            kind=DeviceKind.from_lsblk_type(device.get("type", "disk")),
            vendor=(device.get("vendor") or "").strip() or None,
            model=(device.get("model") or "").strip() or None,
        )


# ==============================================================================
# Partition Layout Domain
# ==============================================================================


class PartitionRole(Enum):
    """Fixed role of each partition in the three-partition layout."""

    BIOS_BOOT = "bios_boot"  # unformatted, grub i386-pc core image
    EFI_SYSTEM = "efi_system"  # FAT32 ESP, also /boot/grub
    IMAGE_STORE = "image_store"  # ext2, holds the image directory


@dataclass(frozen=True)
class PartitionLayout:
    """Tunable constants of the layout. Roles are not configurable."""

    bios_boot_mib: int = 1
    esp_mib: int = 100
    min_image_mib: int = 2048
    suggested_image_mib: int = 8192
    bios_boot_name: str = "bios-grub"
    esp_name: str = "ISO-BOOT"
    image_name: str = "Boot-ISO"
    image_directory: str = "isos"
    esp_filesystem: str = "fat32"
    image_filesystem: str = "ext2"


@dataclass(frozen=True)
class PartitionSpec:
    """One partition of a plan, in MiB offsets from the start of the device."""

    number: int
    name: str
    role: PartitionRole
    filesystem: Optional[str]
    start_mib: int
    end_mib: int
    flags: tuple[str, ...] = ()

    @property
    def size_mib(self) -> int:
        return self.end_mib - self.start_mib

    @property
    def start_bytes(self) -> int:
        return self.start_mib * MIB

    @property
    def end_bytes(self) -> int:
        return self.end_mib * MIB


@dataclass(frozen=True)
class PartitionPlan:
    """Exactly three partitions laid out on a device of known capacity.

    Raises:
        ValueError: If the partitions overlap, are out of order, or do not fit
    """

    capacity_bytes: int
    partitions: tuple[PartitionSpec, ...]

    def __post_init__(self) -> None:
        if len(self.partitions) != 3:
            raise ValueError(
                f"A plan needs exactly 3 partitions, got {len(self.partitions)}"
            )
        previous_end = 0
        for expected_number, spec in enumerate(self.partitions, start=1):
            if spec.number != expected_number:
                raise ValueError(
                    f"Partition {spec.number} is out of order (expected {expected_number})"
                )
            if spec.start_mib < previous_end or spec.end_mib <= spec.start_mib:
                raise ValueError(
                    f"Partition {spec.number} range {spec.start_mib}-{spec.end_mib} MiB "
                    "is not strictly increasing"
                )
            previous_end = spec.end_mib
        if previous_end * MIB > self.capacity_bytes:
            raise ValueError(
                f"Plan ends at {previous_end} MiB beyond device capacity "
                f"{self.capacity_bytes} bytes"
            )

    @property
    def bios_boot(self) -> PartitionSpec:
        return self.partitions[0]

    @property
    def efi_system(self) -> PartitionSpec:
        return self.partitions[1]

    @property
    def image_store(self) -> PartitionSpec:
        return self.partitions[2]

    @property
    def end_mib(self) -> int:
        return self.partitions[-1].end_mib

    def describe(self) -> list[str]:
        """Table rows for confirmation prompts and the ``plan`` command."""
        rows = ["#  Name       F.system  Start      End        Flags"]
        for spec in self.partitions:
            rows.append(
                f"{spec.number}  {spec.name:<10} {spec.filesystem or 'none':<9} "
                f"{spec.start_mib:>6} MiB {spec.end_mib:>6} MiB "
                f"{','.join(spec.flags)}"
            )
        return rows


@dataclass(frozen=True)
class SizeBounds:
    """Accepted range for the image partition size, in MiB."""

    minimum: int
    maximum: int
    suggested: int

    def __contains__(self, size_mib: object) -> bool:
        return isinstance(size_mib, int) and self.minimum <= size_mib <= self.maximum


# ==============================================================================
# Provisioning Domain
# ==============================================================================


class ProvisionState(Enum):
    """State of a provisioning run. ABORTED is reachable from any step."""

    IDENTIFIED = "identified"
    PLANNED = "planned"
    PARTITIONED = "partitioned"
    FORMATTED = "formatted"
    BIOS_INSTALLED = "bios_installed"
    UEFI_INSTALLED = "uefi_installed"
    CONFIG_INSTALLED = "config_installed"
    DIRECTORY_READY = "directory_ready"
    DONE = "done"
    ABORTED = "aborted"


# ==============================================================================
# Boot Menu Domain
# ==============================================================================


class BootState(Enum):
    """State of the boot menu resolver for one boot."""

    IDLE = "idle"
    SCANNING = "scanning"
    PROBING = "probing"
    MENU_BUILT = "menu_built"
    SELECTED = "selected"
    CHAIN_LOADING = "chain_loading"
    RETURNED_TO_MENU = "returned_to_menu"
    HALTED = "halted"
    REBOOTED = "rebooted"


class TerminalAction(Enum):
    """Fixed entries appended to every boot menu."""

    HALT = "halt"
    REBOOT = "reboot"


@dataclass(frozen=True)
class ImageCandidate:
    """An image file found in the image directory during one boot's scan."""

    path: str  # e.g., "/isos/debian-live.iso"
    label: Optional[str] = None
    config_path: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def attachable(self) -> bool:
        return self.config_path is not None


@dataclass(frozen=True)
class MenuEntry:
    """A boot menu entry chain-loading an image's nested configuration."""

    title: str
    image_path: str
    config_path: str

    @classmethod
    def for_candidate(cls, candidate: ImageCandidate) -> MenuEntry:
        if candidate.config_path is None:
            raise ValueError(f"{candidate.path} has no nested configuration")
        return cls(
            title=f"{candidate.path} ({candidate.config_path})",
            image_path=candidate.path,
            config_path=candidate.config_path,
        )


@dataclass(frozen=True)
class BootMenu:
    """Menu shown once per boot: image entries in scan order, then terminals."""

    entries: tuple[MenuEntry, ...] = ()
    terminal: tuple[TerminalAction, ...] = (TerminalAction.HALT, TerminalAction.REBOOT)

    @property
    def titles(self) -> list[str]:
        return [entry.title for entry in self.entries] + [
            action.value for action in self.terminal
        ]


@dataclass(frozen=True)
class ExecutionScope:
    """Active root device binding plus exported variables.

    An immutable value: the boot environment applies one and restores the
    previous one when a chain-load returns.
    """

    root: str
    exported: tuple[tuple[str, str], ...] = ()

    def exported_dict(self) -> dict[str, str]:
        return dict(self.exported)

    def with_exports(self, root: str, **variables: str) -> ExecutionScope:
        merged = self.exported_dict()
        merged.update(variables)
        return ExecutionScope(root=root, exported=tuple(sorted(merged.items())))
