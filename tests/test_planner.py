"""Tests for storage/planner.py - partition layout computation."""

import pytest

from multiboot_usb.domain import MIB, PartitionLayout, PartitionRole
from multiboot_usb.storage.exceptions import (
    DeviceTooSmallError,
    FormatOperationError,
    SizeOutOfRangeError,
)
from multiboot_usb.storage.planner import (
    image_size_bounds,
    plan_partitions,
    usable_capacity_mib,
)


SIXTEEN_GB = 16106127360  # 15360 MiB


class TestImageSizeBounds:
    def test_bounds_for_16gb_drive(self):
        bounds = image_size_bounds(SIXTEEN_GB)

        assert bounds.minimum == 2048
        assert bounds.maximum == 15360 - 1 - 1 - 1 - 100
        assert bounds.suggested == 8192

    def test_suggested_is_clamped(self):
        bounds = image_size_bounds(4096 * MIB)

        assert bounds.suggested == bounds.maximum == 4096 - 2 - 101

    def test_smallest_device(self):
        bounds = image_size_bounds(2151 * MIB)

        assert bounds.minimum == bounds.maximum == 2048

    def test_device_too_small(self):
        with pytest.raises(DeviceTooSmallError) as excinfo:
            image_size_bounds(2150 * MIB)

        assert excinfo.value.required_mib == 2151

    def test_partial_mib_is_ignored(self):
        assert usable_capacity_mib(2151 * MIB + MIB - 1) == 2149

    def test_custom_layout(self):
        layout = PartitionLayout(esp_mib=200, min_image_mib=1024, suggested_image_mib=1024)

        bounds = image_size_bounds(4096 * MIB, layout)

        assert bounds.maximum == 4096 - 2 - 1 - 200
        assert bounds.suggested == 1024


class TestPlanPartitions:
    def test_cumulative_offsets(self):
        plan = plan_partitions(SIXTEEN_GB, 8192)

        assert [(p.start_mib, p.end_mib) for p in plan.partitions] == [
            (1, 2),
            (2, 102),
            (102, 8294),
        ]

    def test_roles_flags_and_filesystems(self):
        plan = plan_partitions(SIXTEEN_GB, 8192)

        assert [p.role for p in plan.partitions] == [
            PartitionRole.BIOS_BOOT,
            PartitionRole.EFI_SYSTEM,
            PartitionRole.IMAGE_STORE,
        ]
        assert [p.name for p in plan.partitions] == ["bios-grub", "ISO-BOOT", "Boot-ISO"]
        assert plan.bios_boot.flags == ("bios_grub",)
        assert plan.bios_boot.filesystem is None
        assert plan.efi_system.flags == ("esp", "boot")
        assert plan.efi_system.filesystem == "fat32"
        assert plan.image_store.filesystem == "ext2"
        assert plan.image_store.flags == ()

    @pytest.mark.parametrize("capacity_mib", [2151, 4096, 15360, 61057])
    def test_every_accepted_size_fits(self, capacity_mib):
        capacity = capacity_mib * MIB
        bounds = image_size_bounds(capacity)

        for size in (bounds.minimum, bounds.suggested, bounds.maximum):
            plan = plan_partitions(capacity, size)
            starts = [p.start_mib for p in plan.partitions]
            ends = [p.end_mib for p in plan.partitions]
            assert starts == sorted(starts)
            assert all(start < end for start, end in zip(starts, ends))
            assert plan.end_mib * MIB <= capacity
            assert plan.image_store.size_mib == size

    @pytest.mark.parametrize("size", [2047, 15258, 0, -1])
    def test_out_of_range_is_rejected(self, size):
        with pytest.raises(SizeOutOfRangeError) as excinfo:
            plan_partitions(SIXTEEN_GB, size)

        assert excinfo.value.minimum == 2048
        assert excinfo.value.maximum == 15257

    def test_not_clamped(self):
        """An oversized request is an error, never silently reduced."""
        with pytest.raises(SizeOutOfRangeError):
            plan_partitions(4096 * MIB, 4096)

    @pytest.mark.parametrize(
        "layout",
        [
            PartitionLayout(esp_name="MULTIBOOT-ESP"),
            PartitionLayout(image_name="MultiBoot-Images-1"),
        ],
    )
    def test_label_too_long_for_filesystem(self, layout):
        with pytest.raises(FormatOperationError, match="exceeds"):
            plan_partitions(SIXTEEN_GB, 8192, layout)

    def test_longest_labels_accepted(self):
        layout = PartitionLayout(esp_name="ELEVENCHARS", image_name="SixteenCharacter")

        plan = plan_partitions(SIXTEEN_GB, 8192, layout)

        assert plan.efi_system.name == "ELEVENCHARS"
