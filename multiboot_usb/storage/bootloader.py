"""GRUB installation onto the EFI system partition.

Both firmware targets share one ``/boot`` directory on partition 2:

- i386-pc writes its core image to the BIOS boot partition and its modules
  to ``<mnt>/boot/grub``
- x86_64-efi writes ``EFI/BOOT/BOOTX64.EFI`` (``--removable``) and its modules
  next to the i386-pc ones

The single ``grub.cfg`` copied to ``<mnt>/boot/grub`` therefore serves both.
"""

from __future__ import annotations

from pathlib import Path

from multiboot_usb.logging import LoggerFactory
from multiboot_usb.storage.exceptions import ConfigInstallError
from multiboot_usb.storage.privileged import CommandResult, PrivilegedRunner


log = LoggerFactory.for_system()

BIOS_TARGET = "i386-pc"
UEFI_TARGET = "x86_64-efi"


def build_bios_install_command(device_path: str, mount_point: Path) -> list[str]:
    return [
        "grub-install",
        f"--target={BIOS_TARGET}",
        f"--boot-directory={mount_point}/boot",
        "--removable",
        device_path,
    ]


def build_uefi_install_command(mount_point: Path) -> list[str]:
    return [
        "grub-install",
        "--no-uefi-secure-boot",
        f"--target={UEFI_TARGET}",
        f"--boot-directory={mount_point}/boot",
        f"--efi-directory={mount_point}",
        "--removable",
    ]


def install_bios(
    runner: PrivilegedRunner, device_path: str, mount_point: Path
) -> CommandResult:
    log.info(f"Installing GRUB for legacy BIOS on {device_path}")
    return runner.execute(build_bios_install_command(device_path, mount_point))


def install_uefi(runner: PrivilegedRunner, mount_point: Path) -> CommandResult:
    log.info(f"Installing GRUB for UEFI into {mount_point}")
    return runner.execute(build_uefi_install_command(mount_point))


def install_config(
    runner: PrivilegedRunner, mount_point: Path, source: Path
) -> CommandResult:
    """Copy grub.cfg into the GRUB directory created by grub-install.

    Raises:
        ConfigInstallError: If the source or the GRUB directory is missing
        PrivilegedCommandError: If cp fails
    """
    source = Path(source)
    if not source.is_file():
        raise ConfigInstallError(f"GRUB configuration not found: {source}")
    grub_dir = mount_point / "boot" / "grub"
    if not runner.dry_run and not grub_dir.is_dir():
        raise ConfigInstallError(
            f"GRUB directory {grub_dir} is missing; grub-install did not complete"
        )
    log.info(f"Installing {source} as {grub_dir / 'grub.cfg'}")
    return runner.execute(["cp", "-T", str(source), str(grub_dir / "grub.cfg")])


def create_image_directory(
    runner: PrivilegedRunner, mount_point: Path, directory: str
) -> CommandResult:
    target = mount_point / directory
    log.info(f"Creating image directory {target}")
    return runner.execute(["mkdir", "-p", str(target)])
