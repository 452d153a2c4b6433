"""Interactive provisioning session.

Walks the operator through every checkpoint of a provisioning run:

    guidance -> unplug -> plug -> device confirmation -> credential
    -> partition size -> destructive confirmation -> pipeline -> completion

Declining any checkpoint raises :class:`OperationCancelledError` before
anything was written to the drive (the destructive confirmation is the last
checkpoint before the pipeline starts). Device ambiguity and privileged tool
failures propagate as :class:`StorageError` subclasses.
"""

from __future__ import annotations

import tempfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from multiboot_usb.boot.grub_config import write_grub_config
from multiboot_usb.domain import BlockDevice, PartitionLayout, PartitionPlan, ProvisionState
from multiboot_usb.logging import LoggerFactory
from multiboot_usb.services.provisioning import ProvisionJob, ProvisionPipeline
from multiboot_usb.storage.detection import resolve_new_device
from multiboot_usb.storage.devices import (
    get_device_capacity,
    group_digits,
    list_hotplug_disks,
)
from multiboot_usb.storage.exceptions import (
    ConfigInstallError,
    CredentialError,
    OperationCancelledError,
    SizeOutOfRangeError,
)
from multiboot_usb.storage.planner import image_size_bounds, plan_partitions
from multiboot_usb.storage.privileged import PrivilegedRunner
from multiboot_usb.ui.prompts import Checkpoint, Prompter


log = LoggerFactory.for_system()

MAX_CREDENTIAL_ATTEMPTS = 3


def guidance_lines(layout: PartitionLayout = PartitionLayout()) -> List[str]:
    return [
        "We are going to create a UEFI/BIOS bootable USB drive in the following sequence.",
        "",
        "1. Identify the USB device to program on.",
        "2. Erase all data on the detected device and create a new GPT partition table.",
        "3. Create the following partitions on the device:",
        f"   - {layout.bios_boot_name}: a very small partition for GRUB to boot with legacy BIOS",
        f"   - {layout.esp_name}: the EFI system partition, also used as the GRUB boot partition",
        f"   - {layout.image_name}: the partition storing loopback.cfg compatible ISO-9660 images",
        "4. Install GRUB for x86_64 EFI in the EFI system partition.",
        "5. Install GRUB for i386-pc in the protective MBR and the boot partition.",
        "",
        "If you make a mistake in any step you can exit and run this again",
        "to overwrite the previous operations.",
    ]


def completion_lines(
    device_path: str, layout: PartitionLayout = PartitionLayout()
) -> List[str]:
    directory = layout.image_directory
    return [
        "GRUB is installed for UEFI and BIOS boot, and /boot/grub/grub.cfg was added",
        "to the boot partition.",
        f"You can check the partitions with 'fdisk --list {device_path}'.",
        "",
        "The only thing remaining is to add bootable ISO-9660 image files to the",
        f"directory '{directory}' of partition 3, named {layout.image_name}.",
        "",
        "Example commands (use the correct device name for sdX, see lsblk):",
        "  $ mkdir /tmp/usbmount/",
        "  $ sudo mount /dev/sdX3 /tmp/usbmount/",
        f"  $ sudo cp live-image.iso /tmp/usbmount/{directory}/",
        "  $ sudo umount /tmp/usbmount/",
        "",
        "To safely unplug the USB flash drive:",
        "  $ udisksctl power-off --block-device /dev/sdX",
    ]


@dataclass
class ProvisionSession:
    """One interactive provisioning run.

    Args:
        prompter: Front-end for every checkpoint
        runner: Privileged runner; receives the captured credential
        layout: Partition layout to apply
        settle_delay: Seconds to wait before each format step
        probe_failure_prompt: Rendered grub.cfg waits for a key on probe failures
        config_source: Ready-made grub.cfg to install instead of rendering one
        enumerate_devices: Snapshot of the attached hotplug disks
        read_capacity: Capacity in bytes of a device path
    """

    prompter: Prompter
    runner: PrivilegedRunner
    layout: PartitionLayout = PartitionLayout()
    settle_delay: float = 0.0
    probe_failure_prompt: bool = True
    config_source: Optional[Path] = None
    enumerate_devices: Callable[[], List[BlockDevice]] = field(
        default=list_hotplug_disks, repr=False
    )
    read_capacity: Callable[[str], int] = field(default=get_device_capacity, repr=False)
    pipeline: Optional[ProvisionPipeline] = field(default=None, init=False)

    def _require(self, answer: object, checkpoint: Checkpoint) -> None:
        if not answer:
            log.info(f"Operator cancelled at {checkpoint.value}")
            raise OperationCancelledError(checkpoint.value)

    def identify_device(self) -> BlockDevice:
        """Diff two hotplug snapshots around the operator plugging the drive in."""
        self._require(
            self.prompter.acknowledge(
                Checkpoint.UNPLUG,
                "Safely eject the target USB drive if it is plugged in. "
                "If you have not plugged it in yet, just continue.",
            ),
            Checkpoint.UNPLUG,
        )
        before = self.enumerate_devices()
        self._require(
            self.prompter.acknowledge(
                Checkpoint.PLUG, "Plug in your target USB drive now."
            ),
            Checkpoint.PLUG,
        )
        after = self.enumerate_devices()
        device = resolve_new_device(before, after)
        capacity = self.read_capacity(device.path)
        return BlockDevice(
            path=device.path,
            capacity_bytes=capacity,
            hotplug=device.hotplug,
            kind=device.kind,
            vendor=device.vendor,
            model=device.model,
        )

    def capture_credential(self) -> None:
        """Ask for the sudo password; at most three attempts.

        Raises:
            CredentialError: If every attempt was rejected
            OperationCancelledError: If the operator cancelled the prompt
        """
        if not self.runner.needs_credential:
            return
        self.prompter.inform(
            Checkpoint.CREDENTIAL,
            "User password for sudo",
            [
                "Your password is used only to run the privileged commands of this",
                "session and is never written to any file or log.",
            ],
        )
        for attempt in range(1, MAX_CREDENTIAL_ATTEMPTS + 1):
            secret = self.prompter.ask_secret(Checkpoint.CREDENTIAL, "Enter your password")
            self._require(secret, Checkpoint.CREDENTIAL)
            if self.runner.accept_credential(secret):
                return
            remaining = MAX_CREDENTIAL_ATTEMPTS - attempt
            if remaining:
                self.prompter.warn(
                    f"The password did not work. You can retry {remaining} more times."
                )
        raise CredentialError(
            f"sudo rejected the password {MAX_CREDENTIAL_ATTEMPTS} times"
        )

    def confirm_device(self, device: BlockDevice) -> None:
        listing = self.runner.execute(["fdisk", "--list", device.path], check=False)
        lines = [
            f"Device:   {device.format_label()}",
            f"Capacity: {group_digits(device.capacity_bytes)} bytes",
            "",
            *(listing.stdout.splitlines() or ["(no fdisk output)"]),
            "",
            f"Going forward ALL data on {device.path} will be erased.",
        ]
        self.prompter.inform(Checkpoint.DEVICE_CONFIRMATION, "Check device", lines)
        self._require(
            self.prompter.confirm(
                Checkpoint.DEVICE_CONFIRMATION,
                "Is this the device you intend to create partitions on?",
            ),
            Checkpoint.DEVICE_CONFIRMATION,
        )

    def choose_plan(self, device: BlockDevice) -> PartitionPlan:
        """Ask for the image partition size until it fits the device."""
        bounds = image_size_bounds(device.capacity_bytes, self.layout)
        self.prompter.inform(
            Checkpoint.PARTITION_SIZE,
            "ISO-9660 images partition size",
            [
                f"The total size of the device is {device.capacity_mib} MiB.",
                f"  Partition 1 will use {self.layout.bios_boot_mib} MiB",
                f"  Partition 2 will use {self.layout.esp_mib} MiB",
                f"  Partition 3 minimum size: {bounds.minimum} MiB",
                f"  Partition 3 maximum size: {bounds.maximum} MiB",
                "Space left after partition 3 can later hold other partitions.",
            ],
        )
        while True:
            size = self.prompter.ask_size(
                Checkpoint.PARTITION_SIZE, "Size of partition 3 (MiB)", bounds
            )
            self._require(size is not None, Checkpoint.PARTITION_SIZE)
            try:
                return plan_partitions(device.capacity_bytes, size, self.layout)
            except SizeOutOfRangeError as error:
                log.warning(str(error))
                self.prompter.warn(str(error))

    def confirm_plan(self, device: BlockDevice, plan: PartitionPlan) -> None:
        self.prompter.show_table(
            f"Partition plan for {device.path}",
            ["#", "Name", "Filesystem", "Start (MiB)", "End (MiB)", "Flags"],
            [
                [
                    str(spec.number),
                    spec.name,
                    spec.filesystem or "none",
                    str(spec.start_mib),
                    str(spec.end_mib),
                    ",".join(spec.flags),
                ]
                for spec in plan.partitions
            ],
        )
        self._require(
            self.prompter.confirm(
                Checkpoint.DESTRUCTIVE_CONFIRMATION,
                f"Erase {device.path} and apply this layout?",
            ),
            Checkpoint.DESTRUCTIVE_CONFIRMATION,
        )

    def _config_source(self, stack: ExitStack) -> Path:
        if self.config_source is not None:
            if not Path(self.config_source).is_file():
                raise ConfigInstallError(
                    f"GRUB configuration not found: {self.config_source}"
                )
            return Path(self.config_source)
        workdir = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="multiboot-")))
        return write_grub_config(
            workdir / "grub.cfg",
            self.layout,
            probe_failure_prompt=self.probe_failure_prompt,
        )

    def run(self) -> ProvisionState:
        """Run the whole session.

        Returns:
            ProvisionState.DONE

        Raises:
            OperationCancelledError: If the operator declined a checkpoint
            StorageError: On ambiguity, a rejected credential or a failed step
        """
        with ExitStack() as stack:
            config_source = self._config_source(stack)
            self.prompter.inform(
                Checkpoint.GUIDANCE, "Multi-ISO bootable USB drive", guidance_lines(self.layout)
            )
            self._require(
                self.prompter.confirm(Checkpoint.GUIDANCE, "Continue?", default=True),
                Checkpoint.GUIDANCE,
            )
            device = self.identify_device()
            self.capture_credential()
            self.confirm_device(device)
            plan = self.choose_plan(device)
            self.confirm_plan(device, plan)

            self.pipeline = ProvisionPipeline(
                ProvisionJob(
                    device=device,
                    plan=plan,
                    config_source=config_source,
                    layout=self.layout,
                ),
                runner=self.runner,
                settle_delay=self.settle_delay,
            )
            state = self.pipeline.run()

        self.prompter.inform(
            Checkpoint.COMPLETION, "Done", completion_lines(device.path, self.layout)
        )
        return state
