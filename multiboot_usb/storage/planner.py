"""Three-partition GPT layout planning.

Partition    Name       Filesystem  Flags
---------    ---------  ----------  ---------
1            bios-grub  none        bios_grub
2            ISO-BOOT   fat32       esp,boot
3            Boot-ISO   ext2

Offsets are whole MiB. The first MiB of the device is left unallocated (GPT
header and alignment) and the last MiB is kept free for the backup GPT, so
the largest accepted plan still ends inside the device. ext2 is used for the
image partition because it has no journal and keeps writes to the flash
memory low.
"""

from __future__ import annotations

from multiboot_usb.domain import (
    MIB,
    PartitionLayout,
    PartitionPlan,
    PartitionRole,
    PartitionSpec,
    SizeBounds,
)
from multiboot_usb.storage.exceptions import DeviceTooSmallError, SizeOutOfRangeError
from multiboot_usb.storage.format import check_plan_labels


LEAD_IN_MIB = 1
TAIL_RESERVE_MIB = 1

BIOS_BOOT_FLAGS = ("bios_grub",)
EFI_SYSTEM_FLAGS = ("esp", "boot")


def usable_capacity_mib(capacity_bytes: int) -> int:
    """Whole MiB available to partitions after the GPT lead-in and tail."""
    return max(0, capacity_bytes // MIB - LEAD_IN_MIB - TAIL_RESERVE_MIB)


def image_size_bounds(
    capacity_bytes: int, layout: PartitionLayout = PartitionLayout()
) -> SizeBounds:
    """Accepted sizes for the image partition on a device of this capacity.

    Raises:
        DeviceTooSmallError: If not even the minimum image partition fits
    """
    minimum = layout.min_image_mib
    maximum = usable_capacity_mib(capacity_bytes) - layout.bios_boot_mib - layout.esp_mib
    if maximum < minimum:
        raise DeviceTooSmallError(
            capacity_bytes,
            LEAD_IN_MIB + layout.bios_boot_mib + layout.esp_mib + minimum + TAIL_RESERVE_MIB,
        )
    suggested = min(max(layout.suggested_image_mib, minimum), maximum)
    return SizeBounds(minimum=minimum, maximum=maximum, suggested=suggested)


def plan_partitions(
    capacity_bytes: int,
    image_size_mib: int,
    layout: PartitionLayout = PartitionLayout(),
) -> PartitionPlan:
    """Compute the layout by cumulative MiB addition from the 1 MiB lead-in.

    Raises:
        DeviceTooSmallError: If the device cannot hold any valid plan
        SizeOutOfRangeError: If image_size_mib is outside the bounds
        FormatOperationError: If a partition name is too long for its filesystem label
    """
    bounds = image_size_bounds(capacity_bytes, layout)
    if image_size_mib not in bounds:
        raise SizeOutOfRangeError(image_size_mib, bounds.minimum, bounds.maximum)

    start1 = LEAD_IN_MIB
    end1 = start1 + layout.bios_boot_mib
    end2 = end1 + layout.esp_mib
    end3 = end2 + image_size_mib

    plan = PartitionPlan(
        capacity_bytes=capacity_bytes,
        partitions=(
            PartitionSpec(
                number=1,
                name=layout.bios_boot_name,
                role=PartitionRole.BIOS_BOOT,
                filesystem=None,
                start_mib=start1,
                end_mib=end1,
                flags=BIOS_BOOT_FLAGS,
            ),
            PartitionSpec(
                number=2,
                name=layout.esp_name,
                role=PartitionRole.EFI_SYSTEM,
                filesystem=layout.esp_filesystem,
                start_mib=end1,
                end_mib=end2,
                flags=EFI_SYSTEM_FLAGS,
            ),
            PartitionSpec(
                number=3,
                name=layout.image_name,
                role=PartitionRole.IMAGE_STORE,
                filesystem=layout.image_filesystem,
                start_mib=end2,
                end_mib=end3,
            ),
        ),
    )
    check_plan_labels(plan)
    return plan
