"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from multiboot_usb.domain import PartitionLayout


SETTINGS_PATH = Path(
    os.environ.get(
        "MULTIBOOT_USB_SETTINGS_PATH",
        Path.home() / ".config" / "multiboot-usb" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_BIOS_BOOT_MIB = 1
DEFAULT_ESP_MIB = 100
DEFAULT_MIN_IMAGE_MIB = 2048
DEFAULT_SUGGESTED_IMAGE_MIB = 8192
# Some old USB flash drives need a pause after the partition table changes
DEFAULT_SETTLE_DELAY_SECONDS = 3.8

DEFAULT_SETTINGS: dict[str, Any] = {
    "bios_boot_mib": DEFAULT_BIOS_BOOT_MIB,
    "esp_mib": DEFAULT_ESP_MIB,
    "min_image_mib": DEFAULT_MIN_IMAGE_MIB,
    "suggested_image_mib": DEFAULT_SUGGESTED_IMAGE_MIB,
    "bios_boot_name": "bios-grub",
    "esp_name": "ISO-BOOT",
    "image_name": "Boot-ISO",
    "image_directory": "isos",
    "settle_delay_seconds": DEFAULT_SETTLE_DELAY_SECONDS,
    "probe_failure_prompt": True,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def get_layout() -> PartitionLayout:
    """Build the partition layout from the current settings."""
    return PartitionLayout(
        bios_boot_mib=int(get_setting("bios_boot_mib", DEFAULT_BIOS_BOOT_MIB)),
        esp_mib=int(get_setting("esp_mib", DEFAULT_ESP_MIB)),
        min_image_mib=int(get_setting("min_image_mib", DEFAULT_MIN_IMAGE_MIB)),
        suggested_image_mib=int(
            get_setting("suggested_image_mib", DEFAULT_SUGGESTED_IMAGE_MIB)
        ),
        bios_boot_name=str(get_setting("bios_boot_name", "bios-grub")),
        esp_name=str(get_setting("esp_name", "ISO-BOOT")),
        image_name=str(get_setting("image_name", "Boot-ISO")),
        image_directory=str(get_setting("image_directory", "isos")),
    )


load_settings()
