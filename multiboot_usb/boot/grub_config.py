"""Render the grub.cfg installed on the EFI system partition.

The configuration is a packaged template (``grub.cfg.in``) with ``@NAME@``
placeholders. GRUB script syntax uses ``${...}`` and braces heavily, so the
placeholders are substituted literally instead of through str.format.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from multiboot_usb.__version__ import __version__
from multiboot_usb.domain import PartitionLayout
from multiboot_usb.logging import LoggerFactory


log = LoggerFactory.for_boot()

TEMPLATE_PATH = Path(__file__).with_name("grub.cfg.in")

DEFAULT_CONFIG_CANDIDATES = ("/boot/grub/loopback.cfg", "/boot/loopback.cfg")
EXPORT_VARIABLE = "iso_path"
IMAGE_PARTITION_HINT = "hd0,gpt3"

_INDENT = " " * 4


def _config_checks(config_candidates: Sequence[str], probe_failure_prompt: bool) -> str:
    if not config_candidates:
        raise ValueError("At least one nested configuration path is required")
    lines = []
    for index, candidate in enumerate(config_candidates):
        keyword = "if" if index == 0 else "elif"
        lines.append(f"{_INDENT}{keyword} test -f (loop){candidate}; then")
        lines.append(f'{_INDENT * 2}add_image_entry "${{image_file}}" "{candidate}"')
    lines.append(f"{_INDENT}else")
    if probe_failure_prompt:
        lines.append(
            f'{_INDENT * 2}echo -e "\\terror: no loopback configuration found in '
            '${image_file}, press enter to skip ..."'
        )
        lines.append(f"{_INDENT * 2}read")
    else:
        lines.append(
            f'{_INDENT * 2}echo -e "\\terror: no loopback configuration found in '
            '${image_file}, skipping"'
        )
    lines.append(f"{_INDENT}fi")
    return "\n".join(lines)


def render_grub_config(
    layout: PartitionLayout = PartitionLayout(),
    *,
    probe_failure_prompt: bool = True,
    config_candidates: Sequence[str] = DEFAULT_CONFIG_CANDIDATES,
) -> str:
    """Return the grub.cfg text for a drive built with this layout."""
    template = TEMPLATE_PATH.read_text(encoding="utf-8")
    replacements = {
        "@VERSION@": __version__,
        "@IMAGE_LABEL@": layout.image_name,
        "@IMAGE_HINT@": IMAGE_PARTITION_HINT,
        "@IMAGE_DIRECTORY@": "/" + layout.image_directory.strip("/"),
        "@EXPORT_VARIABLE@": EXPORT_VARIABLE,
        "@CONFIG_CHECKS@": _config_checks(config_candidates, probe_failure_prompt),
    }
    for placeholder, value in replacements.items():
        template = template.replace(placeholder, value)
    return template


def write_grub_config(
    path: Path,
    layout: PartitionLayout = PartitionLayout(),
    *,
    probe_failure_prompt: bool = True,
    config_candidates: Sequence[str] = DEFAULT_CONFIG_CANDIDATES,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        render_grub_config(
            layout,
            probe_failure_prompt=probe_failure_prompt,
            config_candidates=config_candidates,
        ),
        encoding="utf-8",
    )
    log.debug(f"Wrote GRUB configuration to {path}")
    return path
