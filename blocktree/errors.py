"""Error and warning types raised while building the device tree."""

from __future__ import annotations

__all__ = [
    "BlocktreeError",
    "CollectionError",
    "DuplicateDeviceError",
    "StructuralWarning",
    "OrphanDeviceWarning",
    "CycleDetectedWarning",
    "ParentKindWarning",
]


class BlocktreeError(Exception):
    """Base class for blocktree errors."""


class CollectionError(BlocktreeError):
    """The device topology could not be read."""


class DuplicateDeviceError(BlocktreeError):
    """Two records in one snapshot share a device name.

    Reported as a diagnostic; the later record is dropped.
    """

    event = "duplicate"

    def __init__(self, device: str) -> None:
        super().__init__(f"duplicate device {device!r}; keeping the first record")
        self.device = device


class StructuralWarning(UserWarning):
    """An anomaly in parent references that was recovered from."""

    event = "structural"

    def __init__(self, device: str, message: str) -> None:
        super().__init__(message)
        self.device = device


class OrphanDeviceWarning(StructuralWarning):
    event = "orphan"

    def __init__(self, device: str, parent: str) -> None:
        super().__init__(
            device, f"{device}: parent {parent!r} not found; shown as a root device"
        )
        self.parent = parent


class CycleDetectedWarning(StructuralWarning):
    event = "cycle"

    def __init__(self, device: str, cycle: tuple[str, ...]) -> None:
        chain = " -> ".join(cycle + (cycle[0],))
        super().__init__(
            device, f"{device}: parent cycle {chain}; shown as a root device"
        )
        self.cycle = cycle


class ParentKindWarning(StructuralWarning):
    event = "parent_kind"

    def __init__(self, device: str, kind: str, parent: str, parent_kind: str) -> None:
        super().__init__(
            device,
            f"{device}: {kind} is not expected under {parent} ({parent_kind})",
        )
        self.parent = parent
        self.kind = kind
        self.parent_kind = parent_kind
