"""Structured event logging for blocktree."""

from __future__ import annotations

import datetime as _dt
import json
import os
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence


def _serialise(value: Any) -> Any:
    """Return a JSON-friendly representation of *value*."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _serialise(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_serialise(item) for item in value]
    return repr(value)


def _logs_enabled() -> bool:
    """Return ``True`` when structured logging is enabled via the environment."""

    value = os.environ.get("BLOCKTREE_LOG_EVENTS")
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "no"}


def log_event(event: str, **fields: Any) -> None:
    """Emit a structured log entry to ``stderr`` when logging is enabled.

    Each entry is a single JSON object carrying an ISO-8601 UTC timestamp and
    the event name.  Values that are not JSON-serialisable are converted via
    ``repr``.
    """

    if not _logs_enabled():
        return

    record = {
        "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
        "event": event,
    }
    for key, value in fields.items():
        record[str(key)] = _serialise(value)

    message = json.dumps(record, sort_keys=True)

    sys.stderr.write(message + "\n")
    sys.stderr.flush()
    _append_to_log_file(message)


def _log_file_path() -> Path | None:
    """Return the log file configured through ``BLOCKTREE_LOG_FILE``, if any."""

    value = os.environ.get("BLOCKTREE_LOG_FILE")
    if value is None or value.strip() == "":
        return None
    return Path(value)


def _append_to_log_file(message: str) -> None:
    """Append the given JSON *message* to the configured log file."""

    log_file = _log_file_path()
    if log_file is None:
        return
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("a", encoding="utf-8") as handle:
            handle.write(message + "\n")
    except OSError as exc:  # pragma: no cover - logging must not abort a run
        sys.stderr.write(f"blocktree: failed to write log to {log_file}: {exc}\n")
        sys.stderr.flush()


def log_diagnostic(diagnostic: Exception, *, scope: str = "hierarchy") -> None:
    """Log a recovered anomaly as ``blocktree.<scope>.<event>``.

    The diagnostic's ``event`` class attribute names the event; its instance
    attributes (``device`` and any details) become the fields together with
    the human-readable message.
    """

    event = getattr(diagnostic, "event", type(diagnostic).__name__.lower())
    fields = dict(vars(diagnostic))
    log_event(f"blocktree.{scope}.{event}", message=str(diagnostic), **fields)
