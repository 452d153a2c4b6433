import argparse
import json
import re
import sys
from pathlib import Path

from multiboot_usb.__version__ import __version__
from multiboot_usb.boot.exceptions import BootRuntimeError
from multiboot_usb.boot.grub_config import render_grub_config, write_grub_config
from multiboot_usb.boot.host import HostBootRuntime, preview_menu
from multiboot_usb.boot.resolver import BootMenuResolver
from multiboot_usb.config import settings
from multiboot_usb.domain import MIB
from multiboot_usb.logging import LoggerFactory, setup_logging
from multiboot_usb.services.workflow import MAX_CREDENTIAL_ATTEMPTS, ProvisionSession
from multiboot_usb.storage.exceptions import (
    CredentialError,
    OperationCancelledError,
    StorageError,
)
from multiboot_usb.storage.format import partition_path
from multiboot_usb.storage.mount import mounted_partition
from multiboot_usb.storage.planner import image_size_bounds, plan_partitions
from multiboot_usb.storage.privileged import PrivilegedRunner
from multiboot_usb.ui.prompts import Checkpoint, ConsolePrompter


EXIT_OK = 0
EXIT_CANCELLED = 1
EXIT_FAILED = 2

SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KIB": 1024,
    "M": MIB,
    "MIB": MIB,
    "G": 1024 * MIB,
    "GIB": 1024 * MIB,
    "T": 1024 * 1024 * MIB,
    "TIB": 1024 * 1024 * MIB,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
}
SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")


def parse_capacity(value: str) -> int:
    """Parse '16106127360', '8GiB', '16G' or '32GB' into bytes."""
    match = SIZE_PATTERN.match(value)
    unit = match.group(2).upper() if match else None
    if match is None or unit not in SIZE_UNITS:
        raise argparse.ArgumentTypeError(f"invalid size: {value!r}")
    return int(float(match.group(1)) * SIZE_UNITS[unit])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multiboot-usb",
        description="Create a USB drive that boots many live ISO images on BIOS and UEFI",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log raw output of external tools")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    subparsers = parser.add_subparsers(dest="command", required=True)

    provision = subparsers.add_parser("provision", help="Interactively provision a drive")
    provision.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the privileged commands instead of running them",
    )
    provision.add_argument(
        "--grub-cfg", type=Path, default=None, help="Install this grub.cfg instead of the generated one"
    )

    plan = subparsers.add_parser("plan", help="Print the partition layout for a capacity")
    plan.add_argument("--capacity", type=parse_capacity, required=True, help="Device capacity, e.g. 16G")
    plan.add_argument("--image-size", type=int, default=None, help="Partition 3 size in MiB")

    grub_cfg = subparsers.add_parser("grub-cfg", help="Write the generated grub.cfg")
    grub_cfg.add_argument("-o", "--output", type=Path, default=None, help="Output file (default stdout)")

    preview = subparsers.add_parser("preview", help="Show the boot menu a drive would display")
    source = preview.add_mutually_exclusive_group(required=True)
    source.add_argument("--directory", type=Path, help="Image directory to scan")
    source.add_argument("--device", help="Provisioned drive, e.g. /dev/sdb")

    config = subparsers.add_parser("config", help="Show or change saved settings")
    config.add_argument("key", nargs="?", help="Setting to change")
    config.add_argument("value", nargs="?", help="New value, parsed as JSON when possible")
    return parser


def _ensure_credential(runner: PrivilegedRunner, prompter: ConsolePrompter) -> None:
    if not runner.needs_credential:
        return
    for _ in range(MAX_CREDENTIAL_ATTEMPTS):
        secret = prompter.ask_secret(Checkpoint.CREDENTIAL, "Enter your password for sudo")
        if not secret:
            raise OperationCancelledError(Checkpoint.CREDENTIAL.value)
        if runner.accept_credential(secret):
            return
        prompter.warn("The password did not work.")
    raise CredentialError(f"sudo rejected the password {MAX_CREDENTIAL_ATTEMPTS} times")


def run_provision(args, prompter: ConsolePrompter) -> int:
    session = ProvisionSession(
        prompter=prompter,
        runner=PrivilegedRunner(dry_run=args.dry_run),
        layout=settings.get_layout(),
        settle_delay=float(settings.get_setting("settle_delay_seconds", 0.0)),
        probe_failure_prompt=settings.get_bool("probe_failure_prompt", True),
        config_source=args.grub_cfg,
    )
    session.run()
    return EXIT_OK


def run_plan(args, prompter: ConsolePrompter) -> int:
    layout = settings.get_layout()
    bounds = image_size_bounds(args.capacity, layout)
    image_size = args.image_size if args.image_size is not None else bounds.suggested
    plan = plan_partitions(args.capacity, image_size, layout)
    prompter.show_table(
        f"Partition plan for {args.capacity} bytes "
        f"(partition 3: {bounds.minimum}..{bounds.maximum} MiB)",
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
    return EXIT_OK


def run_grub_cfg(args, prompter: ConsolePrompter) -> int:
    layout = settings.get_layout()
    probe_failure_prompt = settings.get_bool("probe_failure_prompt", True)
    if args.output is None:
        sys.stdout.write(render_grub_config(layout, probe_failure_prompt=probe_failure_prompt))
    else:
        write_grub_config(args.output, layout, probe_failure_prompt=probe_failure_prompt)
    return EXIT_OK


def _show_preview(resolver: BootMenuResolver, runtime: HostBootRuntime, prompter) -> None:
    menu = preview_menu(resolver)
    rows = []
    for entry in menu.entries:
        nested = runtime.nested_menus.get(entry.image_path, [])
        rows.append([entry.title, "\n".join(nested) or "-"])
    rows.extend([[action.value, ""] for action in menu.terminal])
    prompter.show_table("Boot menu", ["Entry", "Nested menu"], rows)
    for candidate in resolver.skipped:
        prompter.warn(f"Skipped {candidate.path}")


def run_preview(args, prompter: ConsolePrompter) -> int:
    runner = PrivilegedRunner()
    _ensure_credential(runner, prompter)
    runtime = HostBootRuntime(runner, prompter)
    acknowledge = settings.get_bool("probe_failure_prompt", True)
    if args.directory is not None:
        resolver = BootMenuResolver(
            runtime, image_directory=str(args.directory), acknowledge_failures=acknowledge
        )
        _show_preview(resolver, runtime, prompter)
        return EXIT_OK
    layout = settings.get_layout()
    with mounted_partition(
        runner, partition_path(args.device, 3), suffix="-preview", options=("ro",)
    ) as mount_point:
        resolver = BootMenuResolver(
            runtime,
            image_directory=str(mount_point / layout.image_directory),
            acknowledge_failures=acknowledge,
        )
        _show_preview(resolver, runtime, prompter)
    return EXIT_OK


def _parse_setting_value(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def run_config(args, prompter: ConsolePrompter) -> int:
    if args.key is None:
        prompter.show_table(
            f"Settings ({settings.SETTINGS_PATH})",
            ["Key", "Value"],
            [
                [key, json.dumps(settings.get_setting(key, default))]
                for key, default in sorted(settings.DEFAULT_SETTINGS.items())
            ],
        )
        return EXIT_OK
    if args.key not in settings.DEFAULT_SETTINGS:
        prompter.error(f"Unknown setting: {args.key}")
        return EXIT_FAILED
    if args.value is None:
        prompter.show_table(
            "Setting", ["Key", "Value"], [[args.key, json.dumps(settings.get_setting(args.key))]]
        )
        return EXIT_OK
    settings.set_setting(args.key, _parse_setting_value(args.value))
    return EXIT_OK


COMMANDS = {
    "provision": run_provision,
    "plan": run_plan,
    "grub-cfg": run_grub_cfg,
    "preview": run_preview,
    "config": run_config,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()
    prompter = ConsolePrompter()
    try:
        return COMMANDS[args.command](args, prompter)
    except (OperationCancelledError, KeyboardInterrupt) as error:
        log.info(f"Cancelled: {error}")
        prompter.warn("Operation cancelled.")
        return EXIT_CANCELLED
    except (StorageError, BootRuntimeError) as error:
        log.error(str(error))
        prompter.error(str(error))
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
