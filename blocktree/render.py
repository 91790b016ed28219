"""Turn a device forest into aligned, style-tagged tree lines."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .devices import DeviceKind, DeviceNode, DeviceRecord, Forest
from .logging_utils import log_event

__all__ = [
    "Segment",
    "Line",
    "Column",
    "COLUMNS",
    "DEFAULT_COLUMNS",
    "PLACEHOLDER",
    "display_width",
    "printable",
    "usage_bar",
    "format_size",
    "parse_size",
    "branch_prefix",
    "render_forest",
]

PLACEHOLDER = "-"
SEPARATOR = "  "

TEE = "├── "
ELBOW = "└── "
PIPE = "│   "
BLANK = "    "

USAGE_BAR_WIDTH = 10
BAR_FULL = "█"
BAR_EMPTY = "░"

_UNITS = ("B", "K", "M", "G", "T", "P")

KIND_STYLES = {
    DeviceKind.DISK: "disk",
    DeviceKind.PARTITION: "partition",
    DeviceKind.LOGICAL_VOLUME: "lvm",
    DeviceKind.OPTICAL_DRIVE: "rom",
    DeviceKind.LOOP_DEVICE: "loop",
    DeviceKind.OTHER: "other",
}


@dataclass(frozen=True)
class Segment:
    """A run of text with a symbolic style tag (``None`` for plain)."""

    text: str
    style: Optional[str] = None


@dataclass(frozen=True)
class Line:
    segments: Tuple[Segment, ...]

    @property
    def text(self) -> str:
        """Visible text of the line without any styling."""

        return "".join(segment.text for segment in self.segments)

    def __len__(self) -> int:
        return display_width(self.text)


def printable(text: str) -> str:
    """Replace control characters with ``\\xNN`` escapes, as ``lsblk`` does.

    Mount paths may contain decoded newlines or tabs and labels may carry raw
    escape bytes; neither may leak into a rendered line.
    """

    if text.isprintable():
        return text
    return "".join(
        char if char.isprintable() or char == " " else f"\\x{ord(char):02x}"
        for char in text
    )


def display_width(text: str) -> int:
    """Return the number of terminal cells *text* occupies.

    Wide and fullwidth East Asian characters take two cells, combining marks
    take none.
    """

    width = 0
    for char in text:
        if unicodedata.combining(char):
            continue
        width += 2 if unicodedata.east_asian_width(char) in ("W", "F") else 1
    return width


def format_size(size: int) -> str:
    """Format ``size`` in bytes using base-1024 units.

    The largest unit keeping the magnitude at or above one is used and the
    value is shown with one decimal, e.g. ``1.5G``.  Byte counts below 1024
    are shown without a decimal (``0B``, ``512B``).
    """

    if size < 1024:
        return f"{max(size, 0)}B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.1f}"
    # Rounding can carry the magnitude up to 1024.0; move to the next unit.
    if text == "1024.0" and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
        text = f"{value:.1f}"
    return f"{text}{_UNITS[unit]}"


_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([BKMGTP])\s*$", re.IGNORECASE)


def parse_size(text: str) -> int:
    """Parse a string produced by :func:`format_size` back into bytes."""

    match = _SIZE_PATTERN.match(text)
    if not match:
        raise ValueError(f"invalid size: {text!r}")
    exponent = _UNITS.index(match.group(2).upper())
    return int(round(float(match.group(1)) * 1024 ** exponent))


def usage_bar(used: int, total: int, width: int = USAGE_BAR_WIDTH) -> str:
    """Return a bar of *width* cells filled in proportion to ``used / total``."""

    ratio = min(max(used / total, 0.0), 1.0) if total > 0 else 0.0
    filled = round(ratio * width)
    return BAR_FULL * filled + BAR_EMPTY * (width - filled)


def _usage_text(record: DeviceRecord) -> Optional[str]:
    if record.used_bytes is None or record.size_bytes <= 0:
        return None
    bar = usage_bar(record.used_bytes, record.size_bytes)
    return f"{bar} {format_size(record.used_bytes)}/{format_size(record.size_bytes)}"


def _flags_text(record: DeviceRecord) -> Optional[str]:
    flags = []
    if record.read_only:
        flags.append("ro")
    if record.removable:
        flags.append("rm")
    return ",".join(flags) or None


@dataclass(frozen=True)
class Column:
    """A displayed field: header, value extractor, alignment and style."""

    key: str
    header: str
    value: Callable[[DeviceRecord], Optional[str]]
    align_right: bool = False
    style: Optional[str] = None


COLUMNS: Dict[str, Column] = {
    column.key: column
    for column in (
        Column("name", "NAME", lambda record: record.name),
        Column(
            "size",
            "SIZE",
            lambda record: format_size(record.size_bytes),
            align_right=True,
        ),
        Column("fstype", "FSTYPE", lambda record: record.fstype),
        Column("mountpoint", "MOUNTPOINT", lambda record: record.mountpoint, style="mounted"),
        Column("label", "LABEL", lambda record: record.display_label, style="label"),
        Column("flags", "FLAGS", _flags_text, style="flags"),
        Column("usage", "USAGE", _usage_text, style="usage"),
    )
}

DEFAULT_COLUMNS: Tuple[str, ...] = ("name", "size", "fstype", "mountpoint", "label")


def branch_prefix(lasts: Sequence[bool]) -> str:
    """Return the connector glyphs drawn before a node.

    ``lasts`` is the node's :meth:`Forest.walk` flag tuple.  Ancestor levels
    draw a vertical continuation unless that ancestor was a last child; the
    node's own level draws an elbow for the last child and a tee otherwise.
    """

    if not lasts:
        return ""
    parts = [BLANK if last else PIPE for last in lasts[:-1]]
    parts.append(ELBOW if lasts[-1] else TEE)
    return "".join(parts)


def _cell_text(column: Column, record: DeviceRecord) -> Optional[str]:
    value = column.value(record)
    if value is None or value == "":
        return None
    return printable(str(value))


def _name_style(record: DeviceRecord) -> str:
    return KIND_STYLES.get(record.kind, "other")


def _measure(
    forest: Forest, columns: Sequence[Column], header: bool
) -> List[int]:
    widths = [display_width(column.header) if header else 0 for column in columns]
    for node, _depth, lasts in forest.walk():
        prefix = branch_prefix(lasts)
        for position, column in enumerate(columns):
            text = _cell_text(column, node.record) or PLACEHOLDER
            if column.key == "name":
                text = prefix + text
            widths[position] = max(widths[position], display_width(text))
    return widths


def _emit_row(
    cells: List[List[Segment]],
    texts: List[str],
    columns: Sequence[Column],
    widths: Sequence[int],
) -> Line:
    """Join pre-styled cells into a line, padding on visible width only."""

    segments: List[Segment] = []
    last = len(columns) - 1
    for position, column in enumerate(columns):
        if position:
            segments.append(Segment(SEPARATOR))
        fill = " " * max(widths[position] - display_width(texts[position]), 0)
        if position == last and not column.align_right:
            fill = ""
        if column.align_right and fill:
            segments.append(Segment(fill))
        segments.extend(cells[position])
        if not column.align_right and fill:
            segments.append(Segment(fill))
    return Line(tuple(segments))


def _node_line(
    node: DeviceNode,
    lasts: Sequence[bool],
    columns: Sequence[Column],
    widths: Sequence[int],
) -> Line:
    record = node.record
    cells: List[List[Segment]] = []
    texts: List[str] = []
    for column in columns:
        value = _cell_text(column, record)
        if column.key == "name":
            prefix = branch_prefix(lasts)
            style = _name_style(record)
            if record.read_only:
                style += ",readonly"
            cell = [Segment(prefix, "branch")] if prefix else []
            name = value or PLACEHOLDER
            cell.append(Segment(name, style))
            cells.append(cell)
            texts.append(prefix + name)
        elif value is None:
            cells.append([Segment(PLACEHOLDER, "placeholder")])
            texts.append(PLACEHOLDER)
        else:
            cells.append([Segment(value, column.style)])
            texts.append(value)
    return _emit_row(cells, texts, columns, widths)


def _header_line(columns: Sequence[Column], widths: Sequence[int]) -> Line:
    cells = [[Segment(column.header, "header")] for column in columns]
    texts = [column.header for column in columns]
    return _emit_row(cells, texts, columns, widths)


def render_forest(
    forest: Forest,
    *,
    columns: Sequence[str] = DEFAULT_COLUMNS,
    header: bool = False,
) -> List[Line]:
    """Render *forest* as one :class:`Line` per device in pre-order.

    Column widths are measured across the whole forest first, so every field
    starts at the same offset on every line.  Missing values are shown as
    :data:`PLACEHOLDER`.

    Raises:
        KeyError: If *columns* names an unknown column.
    """

    selected = [COLUMNS[key] for key in columns]
    widths = _measure(forest, selected, header)
    lines: List[Line] = []
    if header and selected:
        lines.append(_header_line(selected, widths))
    for node, _depth, lasts in forest.walk():
        lines.append(_node_line(node, lasts, selected, widths))
    log_event("blocktree.render.done", lines=len(lines), columns=list(columns))
    return lines
