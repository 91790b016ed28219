import json
from pathlib import Path

from blocktree.devices import DeviceKind, DeviceRecord
from blocktree.errors import DuplicateDeviceError
from blocktree.hierarchy import build_forest
from blocktree.logging_utils import log_diagnostic, log_event


def test_log_event_disabled_by_default(capsys, monkeypatch) -> None:
    monkeypatch.delenv("BLOCKTREE_LOG_EVENTS", raising=False)

    log_event("blocktree.test", value=1)

    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == ""


def test_log_event_emits_json_to_stderr(capsys, monkeypatch) -> None:
    monkeypatch.setenv("BLOCKTREE_LOG_EVENTS", "1")
    monkeypatch.delenv("BLOCKTREE_LOG_FILE", raising=False)

    log_event("blocktree.test", path=Path("/tmp/demo"), value=5, names=("sda", "sdb"))

    captured = capsys.readouterr()
    assert captured.out == ""
    lines = [line for line in captured.err.splitlines() if line.strip()]
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "blocktree.test"
    assert record["path"] == "/tmp/demo"
    assert record["value"] == 5
    assert record["names"] == ["sda", "sdb"]
    assert "timestamp" in record


def test_log_event_appends_to_file(tmp_path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("BLOCKTREE_LOG_EVENTS", "yes")
    log_path = tmp_path / "logs" / "blocktree.log"
    monkeypatch.setenv("BLOCKTREE_LOG_FILE", str(log_path))

    log_event("blocktree.test.file", payload={"key": "value"})

    captured = capsys.readouterr()
    stderr_lines = [line for line in captured.err.splitlines() if line.strip()]
    assert len(stderr_lines) == 1
    stderr_record = json.loads(stderr_lines[0])

    file_lines = log_path.read_text(encoding="utf-8").splitlines()
    assert len(file_lines) == 1
    file_record = json.loads(file_lines[0])

    assert file_record == stderr_record
    assert file_record["payload"] == {"key": "value"}


def test_hierarchy_diagnostics_are_logged(capsys, monkeypatch) -> None:
    monkeypatch.setenv("BLOCKTREE_LOG_EVENTS", "1")
    monkeypatch.delenv("BLOCKTREE_LOG_FILE", raising=False)

    build_forest(
        [
            DeviceRecord(name="sdz1", kind=DeviceKind.PARTITION, parent_name="sdz"),
            DeviceRecord(name="A", parent_name="B"),
            DeviceRecord(name="B", parent_name="A"),
        ]
    )

    records = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.strip()]
    by_event = {record["event"]: record for record in records}
    orphan = by_event["blocktree.hierarchy.orphan"]
    assert orphan["device"] == "sdz1"
    assert orphan["parent"] == "sdz"
    assert "not found" in orphan["message"]
    cycle = by_event["blocktree.hierarchy.cycle"]
    assert cycle["device"] == "A"
    assert sorted(cycle["cycle"]) == ["A", "B"]


def test_log_diagnostic_uses_event_attribute(capsys, monkeypatch) -> None:
    monkeypatch.setenv("BLOCKTREE_LOG_EVENTS", "1")
    monkeypatch.delenv("BLOCKTREE_LOG_FILE", raising=False)

    log_diagnostic(DuplicateDeviceError("sda"))

    record = json.loads(capsys.readouterr().err)
    assert record["event"] == "blocktree.hierarchy.duplicate"
    assert record["device"] == "sda"
