"""Provisioning pipeline: partition, format, install GRUB, prepare /isos.

The pipeline is strictly sequential and not resumable. Each step runs one or
more privileged commands; the first failure moves the pipeline to ABORTED and
raises :class:`ProvisionAbortedError`. Nothing is rolled back and nothing is
retried. Running the whole pipeline again is the recovery path: every step
rewrites its part of the drive from scratch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from multiboot_usb.domain import (
    BlockDevice,
    PartitionLayout,
    PartitionPlan,
    ProvisionState,
)
from multiboot_usb.logging import EventLogger, LoggerFactory, operation_context
from multiboot_usb.storage import bootloader
from multiboot_usb.storage.exceptions import ProvisionAbortedError, StorageError
from multiboot_usb.storage.format import (
    check_plan_labels,
    create_partition_table,
    format_partition,
    partition_path,
    settle_device,
)
from multiboot_usb.storage.mount import mounted_partition
from multiboot_usb.storage.privileged import PrivilegedRunner


log = LoggerFactory.for_provision()

ESP_MOUNT_SUFFIX = "-iso_9660_boot"
IMAGE_MOUNT_SUFFIX = "-boot_iso_9660"


@dataclass(frozen=True)
class ProvisionJob:
    """Everything the pipeline needs to know about one run."""

    device: BlockDevice
    plan: PartitionPlan
    config_source: Path
    layout: PartitionLayout = PartitionLayout()

    def __post_init__(self) -> None:
        # Labels are checked here because the first step already wipes the drive
        check_plan_labels(self.plan)

    @property
    def esp_partition(self) -> str:
        return partition_path(self.device.path, self.plan.efi_system.number)

    @property
    def image_partition(self) -> str:
        return partition_path(self.device.path, self.plan.image_store.number)


@dataclass
class ProvisionPipeline:
    """Drive one :class:`ProvisionJob` from PLANNED to DONE.

    Args:
        job: What to provision
        runner: Privileged runner shared by every step
        settle_delay: Seconds to wait before each format step
        on_transition: Optional callback receiving every new state
    """

    job: ProvisionJob
    runner: PrivilegedRunner
    settle_delay: float = 0.0
    on_transition: Optional[Callable[[ProvisionState], None]] = None
    state: ProvisionState = field(default=ProvisionState.IDENTIFIED, init=False)
    history: List[ProvisionState] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self._transition(ProvisionState.IDENTIFIED)
        self._transition(ProvisionState.PLANNED)

    @property
    def device_path(self) -> str:
        return self.job.device.path

    def _transition(self, state: ProvisionState) -> None:
        self.state = state
        self.history.append(state)
        EventLogger.log_provision_step(log, state.value, self.device_path)
        if self.on_transition is not None:
            self.on_transition(state)

    def _partition(self) -> None:
        create_partition_table(self.runner, self.device_path, self.job.plan)
        self._transition(ProvisionState.PARTITIONED)

    def _format(self) -> None:
        plan = self.job.plan
        for spec, partition in (
            (plan.efi_system, self.job.esp_partition),
            (plan.image_store, self.job.image_partition),
        ):
            settle_device(self.device_path, 0 if self.runner.dry_run else self.settle_delay)
            format_partition(self.runner, partition, spec.filesystem, spec.name)
        self._transition(ProvisionState.FORMATTED)

    def _install_boot(self) -> None:
        with mounted_partition(
            self.runner, self.job.esp_partition, suffix=ESP_MOUNT_SUFFIX
        ) as mount_point:
            bootloader.install_bios(self.runner, self.device_path, mount_point)
            self._transition(ProvisionState.BIOS_INSTALLED)
            bootloader.install_uefi(self.runner, mount_point)
            self._transition(ProvisionState.UEFI_INSTALLED)
            bootloader.install_config(self.runner, mount_point, self.job.config_source)
        self._transition(ProvisionState.CONFIG_INSTALLED)

    def _prepare_image_directory(self) -> None:
        with mounted_partition(
            self.runner, self.job.image_partition, suffix=IMAGE_MOUNT_SUFFIX
        ) as mount_point:
            bootloader.create_image_directory(
                self.runner, mount_point, self.job.layout.image_directory
            )
        self._transition(ProvisionState.DIRECTORY_READY)

    def run(self) -> ProvisionState:
        """Run every step in order.

        Returns:
            ProvisionState.DONE

        Raises:
            ProvisionAbortedError: On the first failing step
            RuntimeError: If the pipeline already ran
        """
        if self.state is not ProvisionState.PLANNED:
            raise RuntimeError(
                f"Pipeline already ran (state {self.state.value}); create a new one"
            )
        steps = (
            self._partition,
            self._format,
            self._install_boot,
            self._prepare_image_directory,
        )
        with operation_context("provision", device=self.device_path):
            for step in steps:
                try:
                    step()
                except StorageError as error:
                    failed_after = self.state
                    self._transition(ProvisionState.ABORTED)
                    raise ProvisionAbortedError(
                        failed_after.value, self.device_path, error
                    ) from error
            self._transition(ProvisionState.DONE)
        return self.state
