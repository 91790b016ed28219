"""Tests for the CLI entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from blocktree import cli
from blocktree.devices import DeviceKind, DeviceRecord
from blocktree.errors import CollectionError

GIB = 1024 ** 3


class StaticCollector:
    def __init__(self, records):
        self.records = records

    def collect(self):
        return list(self.records)


def use_records(monkeypatch, records) -> list[tuple]:
    requested: list[tuple] = []

    def fake_get_collector(source, *, sys_block=None, proc_mounts=None):
        requested.append((source, sys_block, proc_mounts))
        return StaticCollector(records)

    monkeypatch.setattr(cli.collector, "get_collector", fake_get_collector)
    return requested


@pytest.fixture(autouse=True)
def plain_environment(monkeypatch):
    for name in ("BLOCKTREE_SOURCE", "BLOCKTREE_COLOR", "NO_COLOR", "BLOCKTREE_LOG_EVENTS"):
        monkeypatch.delenv(name, raising=False)


def test_cli_renders_tree(monkeypatch, capsys) -> None:
    requested = use_records(
        monkeypatch,
        [
            DeviceRecord(
                name="sda1",
                kind=DeviceKind.PARTITION,
                parent_name="sda",
                size_bytes=256 * GIB,
                mountpoint="/",
            ),
            DeviceRecord(name="sda", kind=DeviceKind.DISK, size_bytes=256 * GIB),
        ],
    )

    assert cli.main(["--color", "never"]) == 0

    captured = capsys.readouterr()
    lines = captured.out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("sda ")
    assert lines[1].startswith("└── sda1")
    assert "/" in lines[1].split()
    assert captured.err == ""
    assert requested == [("sysfs", None, None)]


def test_cli_empty_system(monkeypatch, capsys) -> None:
    use_records(monkeypatch, [])

    assert cli.main(["--color", "never"]) == 0

    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == ""


def test_cli_warnings_go_to_stderr(monkeypatch, capsys) -> None:
    use_records(
        monkeypatch,
        [DeviceRecord(name="sdz1", kind=DeviceKind.PARTITION, parent_name="sdz")],
    )

    assert cli.main(["--color", "never"]) == 0

    captured = capsys.readouterr()
    assert captured.out.startswith("sdz1")
    assert captured.err.startswith("warning: sdz1: parent 'sdz' not found")


def test_cli_collection_error(monkeypatch, capsys) -> None:
    class Failing:
        def collect(self):
            raise CollectionError("/sys/block is not available")

    monkeypatch.setattr(cli.collector, "get_collector", lambda *a, **k: Failing())

    assert cli.main([]) == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err.strip() == "blocktree: /sys/block is not available"


def test_cli_color_always(monkeypatch, capsys) -> None:
    use_records(monkeypatch, [DeviceRecord(name="sda", kind=DeviceKind.DISK)])

    cli.main(["--color", "always"])

    assert "\033[1;34msda\033[0m" in capsys.readouterr().out


def test_cli_optional_columns_and_header(monkeypatch, capsys) -> None:
    use_records(
        monkeypatch,
        [
            DeviceRecord(
                name="sr0",
                kind=DeviceKind.OPTICAL_DRIVE,
                removable=True,
                read_only=True,
            )
        ],
    )

    cli.main(["--color", "never", "--header", "--flags", "--usage"])

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["NAME", "SIZE", "FSTYPE", "MOUNTPOINT", "LABEL", "FLAGS", "USAGE"]
    assert lines[1].split() == ["sr0", "0B", "-", "-", "-", "ro,rm", "-"]


def test_cli_source_from_environment(monkeypatch, capsys) -> None:
    monkeypatch.setenv("BLOCKTREE_SOURCE", "lsblk")
    requested = use_records(monkeypatch, [])

    cli.main(["--color", "never"])

    assert requested == [("lsblk", None, None)]


def test_cli_passes_sysfs_paths(monkeypatch, tmp_path: Path) -> None:
    requested = use_records(monkeypatch, [])

    cli.main(["--sys-block", str(tmp_path / "block"), "--proc-mounts", str(tmp_path / "mounts")])

    assert requested == [("sysfs", tmp_path / "block", tmp_path / "mounts")]


def test_cli_rejects_unknown_source(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--source", "udev"])

    assert excinfo.value.code == 2


def test_cli_against_fake_sysfs(tmp_path: Path, capsys) -> None:
    sys_block = tmp_path / "block"
    disk = sys_block / "vda"
    (disk / "vda1").mkdir(parents=True)
    (disk / "size").write_text("41943040")
    (disk / "vda1" / "partition").write_text("1")
    (disk / "vda1" / "size").write_text("41940992")
    mounts = tmp_path / "mounts"
    mounts.write_text("")

    code = cli.main(
        ["--color", "never", "--sys-block", str(sys_block), "--proc-mounts", str(mounts)]
    )

    assert code == 0
    assert capsys.readouterr().out.splitlines() == [
        "vda       20.0G  -  -  -",
        "└── vda1  20.0G  -  -  -",
    ]
