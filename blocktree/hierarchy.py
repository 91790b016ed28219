"""Rebuild the device tree from flat collector records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Union

from .devices import VALID_PARENT_KINDS, DeviceNode, DeviceRecord, Forest
from .errors import (
    CycleDetectedWarning,
    DuplicateDeviceError,
    OrphanDeviceWarning,
    ParentKindWarning,
    StructuralWarning,
)
from .logging_utils import log_diagnostic

__all__ = ["BuildResult", "Diagnostic", "build_forest"]

Diagnostic = Union[DuplicateDeviceError, StructuralWarning]


def _report(warnings: List[Diagnostic], diagnostic: Diagnostic) -> None:
    warnings.append(diagnostic)
    log_diagnostic(diagnostic)


@dataclass
class BuildResult:
    """Forest built from one snapshot and the anomalies found on the way."""

    forest: Forest
    warnings: List[Diagnostic] = field(default_factory=list)


def _index_records(
    records: Iterable[DeviceRecord], warnings: List[Diagnostic]
) -> Dict[str, DeviceRecord]:
    index: Dict[str, DeviceRecord] = {}
    for record in records:
        if record.name in index:
            _report(warnings, DuplicateDeviceError(record.name))
            continue
        index[record.name] = record
    return index


def _resolve_parents(
    index: Dict[str, DeviceRecord], warnings: List[Diagnostic]
) -> Dict[str, Optional[str]]:
    """Return the effective parent of every record.

    Missing parents and cycle breakers map to ``None`` so the device becomes a
    root.  Each chain of parent references is followed at most once.
    """

    parents: Dict[str, Optional[str]] = {}
    for name in sorted(index):
        parent = index[name].parent_name
        if parent is not None and parent not in index:
            _report(warnings, OrphanDeviceWarning(name, parent))
            parent = None
        parents[name] = parent

    resolved: Set[str] = set()
    for start in sorted(index):
        path: List[str] = []
        position: Dict[str, int] = {}
        current: Optional[str] = start
        while current is not None and current not in resolved:
            if current in position:
                cycle = tuple(path[position[current]:])
                breaker = min(cycle)
                parents[breaker] = None
                _report(warnings, CycleDetectedWarning(breaker, cycle))
                break
            position[current] = len(path)
            path.append(current)
            current = parents[current]
        resolved.update(path)
    return parents


def build_forest(records: Iterable[DeviceRecord]) -> BuildResult:
    """Build a :class:`Forest` from an unordered sequence of records.

    Parents may appear after their children in *records*.  Duplicate names,
    unknown parents and parent cycles are reported in the result's
    ``warnings`` instead of aborting; the shape of the returned forest does
    not depend on the order of *records*.
    """

    warnings: List[Diagnostic] = []
    index = _index_records(records, warnings)
    parents = _resolve_parents(index, warnings)

    nodes = {name: DeviceNode(record) for name, record in index.items()}
    roots: List[DeviceNode] = []
    for name in sorted(index):
        node = nodes[name]
        parent = parents[name]
        if parent is None:
            roots.append(node)
            continue
        parent_node = nodes[parent]
        allowed = VALID_PARENT_KINDS.get(node.record.kind)
        if allowed is not None and parent_node.record.kind not in allowed:
            _report(
                warnings,
                ParentKindWarning(
                    name,
                    node.record.kind.value,
                    parent,
                    parent_node.record.kind.value,
                ),
            )
        parent_node.children.append(node)

    roots.sort(key=lambda root: root.name)
    for root in roots:
        root.sort_children()
    return BuildResult(forest=Forest(roots=roots), warnings=warnings)
