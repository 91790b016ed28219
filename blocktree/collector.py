"""Collect block device records from the Linux device model."""

from __future__ import annotations

import json
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .devices import DeviceKind, DeviceRecord
from .errors import CollectionError
from .logging_utils import log_event

__all__ = [
    "CommandOutput",
    "SysfsCollector",
    "LsblkCollector",
    "get_collector",
    "collect",
    "read_mounts",
]

StatvfsFunc = Callable[[str], os.statvfs_result]

SECTOR_SIZE = 512

_DEFAULT_SYS_BLOCK = Path("/sys/block")
_DEFAULT_PROC_MOUNTS = Path("/proc/mounts")

# Prefixes of kernel names that are hidden when they carry no media,
# mirroring ``lsblk`` which omits unused loop and ram devices.
_SKIP_WHEN_EMPTY = ("loop", "ram", "zram")

_LSBLK_COLUMNS = "NAME,TYPE,SIZE,RO,RM,FSTYPE,MOUNTPOINT,LABEL,MODEL"

_LSBLK_TYPES = {
    "disk": DeviceKind.DISK,
    "part": DeviceKind.PARTITION,
    "lvm": DeviceKind.LOGICAL_VOLUME,
    "crypt": DeviceKind.LOGICAL_VOLUME,
    "dm": DeviceKind.LOGICAL_VOLUME,
    "mpath": DeviceKind.LOGICAL_VOLUME,
    "rom": DeviceKind.OPTICAL_DRIVE,
    "loop": DeviceKind.LOOP_DEVICE,
}

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


@dataclass
class CommandOutput:
    """Minimal command result container for dependency injection."""

    stdout: str
    returncode: int = 0
    stderr: str = ""


def _default_run(cmd: Sequence[str]) -> CommandOutput:
    try:
        completed = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise CollectionError(f"cannot run {cmd[0]}: {exc}") from exc
    return CommandOutput(
        stdout=completed.stdout,
        returncode=completed.returncode,
        stderr=completed.stderr,
    )


def _read_text(path: Path) -> str:
    try:
        return path.read_text().strip()
    except (FileNotFoundError, NotADirectoryError):
        return ""


def _unescape_mount_field(value: str) -> str:
    """Decode the octal escapes (``\\040`` for space) used in ``/proc/mounts``."""

    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), value)


def read_mounts(proc_mounts: Path = _DEFAULT_PROC_MOUNTS) -> Dict[str, Tuple[str, str]]:
    """Return ``{source: (mountpoint, fstype)}`` from ``/proc/mounts``.

    Only the first mount of a source is kept.  An unreadable file yields an
    empty mapping since mountpoints are optional.
    """

    try:
        content = proc_mounts.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        log_event("blocktree.collect.mounts_unavailable", path=proc_mounts, error=str(exc))
        return {}
    mounts: Dict[str, Tuple[str, str]] = {}
    for line in content.splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        source = _unescape_mount_field(parts[0])
        if source not in mounts:
            mounts[source] = (_unescape_mount_field(parts[1]), parts[2])
    return mounts


def _used_bytes(statvfs: StatvfsFunc, mountpoint: Optional[str]) -> Optional[int]:
    if not mountpoint or not mountpoint.startswith("/"):
        return None
    try:
        stat = statvfs(mountpoint)
    except OSError:
        return None
    return (stat.f_blocks - stat.f_bfree) * stat.f_frsize


def _kind_from_kernel_name(name: str) -> DeviceKind:
    if name.startswith("loop"):
        return DeviceKind.LOOP_DEVICE
    if name.startswith("sr"):
        return DeviceKind.OPTICAL_DRIVE
    if name.startswith("dm-"):
        return DeviceKind.LOGICAL_VOLUME
    if name.startswith(("md", "ram", "zram")):
        return DeviceKind.OTHER
    return DeviceKind.DISK


def _read_sectors(path: Path) -> int:
    try:
        return int(_read_text(path / "size")) * SECTOR_SIZE
    except ValueError:
        return 0


def _read_uevent(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in _read_text(path / "uevent").splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key] = value
    return values


class SysfsCollector:
    """Read devices from ``/sys/block`` and mounts from ``/proc/mounts``.

    Both paths and ``statvfs`` are overridable for tests.
    """

    def __init__(
        self,
        *,
        sys_block: Path = _DEFAULT_SYS_BLOCK,
        proc_mounts: Path = _DEFAULT_PROC_MOUNTS,
        statvfs: Optional[StatvfsFunc] = None,
    ) -> None:
        self.sys_block = Path(sys_block)
        self.proc_mounts = Path(proc_mounts)
        self.statvfs = statvfs or os.statvfs

    def _list_block_dir(self) -> List[Path]:
        if not self.sys_block.is_dir():
            raise CollectionError(f"{self.sys_block} is not available")
        try:
            return sorted(self.sys_block.iterdir())
        except OSError as exc:
            raise CollectionError(f"cannot read {self.sys_block}: {exc}") from exc

    def _mount_for(
        self, mounts: Dict[str, Tuple[str, str]], name: str, mapper_name: str = ""
    ) -> Tuple[Optional[str], Optional[str]]:
        sources = [f"/dev/{name}"]
        if mapper_name:
            sources.append(f"/dev/mapper/{mapper_name}")
        for source in sources:
            if source in mounts:
                return mounts[source]
        return None, None

    def _record(
        self,
        path: Path,
        name: str,
        kind: DeviceKind,
        parent: Optional[str],
        mounts: Dict[str, Tuple[str, str]],
        *,
        removable: bool,
        model: str = "",
        label: str = "",
        mapper_name: str = "",
    ) -> DeviceRecord:
        mountpoint, fstype = self._mount_for(mounts, name, mapper_name)
        return DeviceRecord(
            name=name,
            kind=kind,
            parent_name=parent,
            size_bytes=_read_sectors(path),
            mountpoint=mountpoint,
            fstype=fstype,
            removable=removable,
            read_only=_read_text(path / "ro") == "1",
            model=model or None,
            label=label or None,
            used_bytes=_used_bytes(self.statvfs, mountpoint),
        )

    def _holder_parent(self, entry: Path) -> Optional[str]:
        slaves_dir = entry / "slaves"
        if not slaves_dir.is_dir():
            return None
        slaves = sorted(child.name for child in slaves_dir.iterdir())
        if len(slaves) > 1:
            log_event(
                "blocktree.collect.multiple_parents",
                device=entry.name,
                parents=slaves,
                selected=slaves[0],
            )
        return slaves[0] if slaves else None

    def _partitions(self, entry: Path) -> Iterable[Path]:
        for child in sorted(entry.iterdir()):
            if child.is_dir() and (child / "partition").exists():
                yield child

    def collect(self) -> List[DeviceRecord]:
        mounts = read_mounts(self.proc_mounts)
        records: List[DeviceRecord] = []
        for entry in self._list_block_dir():
            name = entry.name
            size = _read_sectors(entry)
            if name.startswith(_SKIP_WHEN_EMPTY) and size == 0:
                log_event("blocktree.collect.device_skipped", device=name, reason="empty")
                continue
            kind = _kind_from_kernel_name(name)
            removable = _read_text(entry / "removable") == "1"
            mapper_name = _read_text(entry / "dm" / "name")
            parent = None
            if kind in (DeviceKind.LOGICAL_VOLUME, DeviceKind.OTHER):
                parent = self._holder_parent(entry)
            records.append(
                self._record(
                    entry,
                    name,
                    kind,
                    parent,
                    mounts,
                    removable=removable,
                    model=_read_text(entry / "device" / "model"),
                    label=mapper_name,
                    mapper_name=mapper_name,
                )
            )
            for part in self._partitions(entry):
                records.append(
                    self._record(
                        part,
                        part.name,
                        DeviceKind.PARTITION,
                        name,
                        mounts,
                        removable=removable,
                        label=_read_uevent(part).get("PARTNAME", ""),
                    )
                )
        return records


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true"}


def _as_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class LsblkCollector:
    """Read devices from ``lsblk --json``.

    The command runner is injectable; it receives the argument vector and
    returns a :class:`CommandOutput`.
    """

    def __init__(
        self,
        *,
        run: Optional[Callable[[Sequence[str]], CommandOutput]] = None,
        statvfs: Optional[StatvfsFunc] = None,
    ) -> None:
        self.run = run or _default_run
        self.statvfs = statvfs or os.statvfs

    def command(self) -> List[str]:
        return ["lsblk", "--json", "--bytes", "--output", _LSBLK_COLUMNS]

    def _load(self) -> List[dict]:
        cmd = self.command()
        result = self.run(cmd)
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            message = f"command {' '.join(cmd)} exited with status {result.returncode}"
            if detail:
                message = f"{message}: {detail}"
            raise CollectionError(message)
        try:
            parsed = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise CollectionError(f"lsblk returned invalid JSON: {exc}") from exc
        devices = parsed.get("blockdevices") if isinstance(parsed, dict) else None
        if not isinstance(devices, list):
            raise CollectionError("lsblk output has no 'blockdevices' list")
        return devices

    def _flatten(self, entry: dict, parent: Optional[str]) -> Iterable[DeviceRecord]:
        name = _as_str(entry.get("name"))
        if name is None:
            return
        mountpoint = _as_str(entry.get("mountpoint"))
        if mountpoint is None:
            mountpoints = entry.get("mountpoints")
            if isinstance(mountpoints, list):
                mountpoint = next((str(item) for item in mountpoints if item), None)
        yield DeviceRecord(
            name=name,
            kind=_LSBLK_TYPES.get(str(entry.get("type") or ""), DeviceKind.OTHER),
            parent_name=parent,
            size_bytes=_as_int(entry.get("size") or 0),
            mountpoint=mountpoint,
            fstype=_as_str(entry.get("fstype")),
            removable=_as_bool(entry.get("rm")),
            read_only=_as_bool(entry.get("ro")),
            model=_as_str(entry.get("model")),
            label=_as_str(entry.get("label")),
            used_bytes=_used_bytes(self.statvfs, mountpoint),
        )
        for child in entry.get("children") or []:
            if isinstance(child, dict):
                yield from self._flatten(child, name)

    def collect(self) -> List[DeviceRecord]:
        records: List[DeviceRecord] = []
        for entry in self._load():
            if isinstance(entry, dict):
                records.extend(self._flatten(entry, None))
        return records


def get_collector(
    source: str,
    *,
    sys_block: Optional[Path] = None,
    proc_mounts: Optional[Path] = None,
) -> SysfsCollector | LsblkCollector:
    """Return the collector registered under *source*."""

    if source == "sysfs":
        return SysfsCollector(
            sys_block=sys_block or _DEFAULT_SYS_BLOCK,
            proc_mounts=proc_mounts or _DEFAULT_PROC_MOUNTS,
        )
    if source == "lsblk":
        return LsblkCollector()
    raise ValueError(f"unknown device source: {source!r}")


def collect(collector: SysfsCollector | LsblkCollector) -> List[DeviceRecord]:
    """Run *collector* once, logging the outcome.

    Raises:
        CollectionError: If the device topology could not be read.
    """

    log_event("blocktree.collect.start", collector=type(collector).__name__)
    try:
        records = collector.collect()
    except CollectionError as exc:
        log_event("blocktree.collect.failed", error=str(exc))
        raise
    except OSError as exc:
        log_event("blocktree.collect.failed", error=str(exc))
        raise CollectionError(str(exc)) from exc
    log_event("blocktree.collect.done", devices=len(records))
    return records
