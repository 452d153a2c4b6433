"""Domain models for multi-ISO USB provisioning and boot menus."""

from __future__ import annotations

from .models import (
    MIB,
    BlockDevice,
    BootMenu,
    BootState,
    DeviceKind,
    ExecutionScope,
    ImageCandidate,
    MenuEntry,
    PartitionLayout,
    PartitionPlan,
    PartitionRole,
    PartitionSpec,
    ProvisionState,
    SizeBounds,
    TerminalAction,
)


__all__ = [
    "MIB",
    "BlockDevice",
    "BootMenu",
    "BootState",
    "DeviceKind",
    "ExecutionScope",
    "ImageCandidate",
    "MenuEntry",
    "PartitionLayout",
    "PartitionPlan",
    "PartitionRole",
    "PartitionSpec",
    "ProvisionState",
    "SizeBounds",
    "TerminalAction",
]
