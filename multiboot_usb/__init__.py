"""Multi-ISO bootable USB drive builder.

Provisions a removable drive with a BIOS-boot partition, an EFI system
partition carrying GRUB, and an ext2 partition whose ``isos`` directory holds
loopback-capable live images. The GRUB menu installed on the drive discovers
those images on every boot.
"""

from .__version__ import __version__


__all__ = ["__version__"]
