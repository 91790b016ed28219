"""Block device records and the tree structures built from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple

__all__ = [
    "DeviceKind",
    "DeviceRecord",
    "DeviceNode",
    "Forest",
    "KIND_PRECEDENCE",
    "VALID_PARENT_KINDS",
]


class DeviceKind(Enum):
    """Kind of block device."""

    DISK = "disk"
    PARTITION = "partition"
    LOGICAL_VOLUME = "lvm"
    OPTICAL_DRIVE = "rom"
    LOOP_DEVICE = "loop"
    OTHER = "other"


# Sibling sort order.  Whole devices come first, then the partitions carved
# out of them, then mapped volumes stacked on top.
KIND_PRECEDENCE = {
    DeviceKind.DISK: 0,
    DeviceKind.LOOP_DEVICE: 0,
    DeviceKind.OPTICAL_DRIVE: 0,
    DeviceKind.PARTITION: 1,
    DeviceKind.LOGICAL_VOLUME: 2,
    DeviceKind.OTHER: 3,
}

# Kinds missing from this mapping accept any parent.
VALID_PARENT_KINDS = {
    DeviceKind.PARTITION: frozenset(
        {DeviceKind.DISK, DeviceKind.LOOP_DEVICE, DeviceKind.OPTICAL_DRIVE}
    ),
}


@dataclass
class DeviceRecord:
    """Attributes of one block device as reported by a collector."""

    name: str
    kind: DeviceKind = DeviceKind.OTHER
    parent_name: Optional[str] = None
    size_bytes: int = 0
    mountpoint: Optional[str] = None
    fstype: Optional[str] = None
    removable: bool = False
    read_only: bool = False
    model: Optional[str] = None
    label: Optional[str] = None
    used_bytes: Optional[int] = None

    @property
    def display_label(self) -> Optional[str]:
        return self.label or self.model or None

    @property
    def sort_key(self) -> Tuple[int, str]:
        return KIND_PRECEDENCE.get(self.kind, len(KIND_PRECEDENCE)), self.name


@dataclass
class DeviceNode:
    """A record together with the nodes attached beneath it."""

    record: DeviceRecord
    children: List["DeviceNode"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.record.name

    def sort_children(self) -> None:
        """Order children by kind precedence then name, recursively."""

        self.children.sort(key=lambda child: child.record.sort_key)
        for child in self.children:
            child.sort_children()


@dataclass
class Forest:
    """Ordered root devices of one snapshot."""

    roots: List[DeviceNode] = field(default_factory=list)

    def walk(self) -> Iterator[Tuple[DeviceNode, int, Tuple[bool, ...]]]:
        """Yield ``(node, depth, lasts)`` in pre-order.

        ``lasts`` holds one flag per level from the first child level down to
        the node itself, telling whether the node on that level is the last of
        its siblings.  Roots have an empty tuple and depth zero.
        """

        stack: List[Tuple[DeviceNode, Tuple[bool, ...]]] = [
            (root, ()) for root in reversed(self.roots)
        ]
        while stack:
            node, lasts = stack.pop()
            yield node, len(lasts), lasts
            count = len(node.children)
            for index in range(count - 1, -1, -1):
                stack.append((node.children[index], lasts + (index == count - 1,)))

    def names(self) -> List[str]:
        return [node.name for node, _depth, _lasts in self.walk()]

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())

    def __bool__(self) -> bool:
        return bool(self.roots)
