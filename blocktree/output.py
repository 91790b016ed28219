"""Write rendered lines and warnings to the terminal."""

from __future__ import annotations

import sys
from typing import Iterable, Optional, Sequence, TextIO

from . import config
from .render import Line

__all__ = [
    "STYLE_CODES",
    "color_enabled",
    "encode_line",
    "format_warning",
    "write_lines",
    "write_warnings",
]

RESET = "\033[0m"

# SGR parameters per style tag.
STYLE_CODES = {
    "disk": "1;34",
    "partition": "32",
    "lvm": "35",
    "rom": "36",
    "loop": "33",
    "other": "37",
    "readonly": "2",
    "mounted": "1;32",
    "label": "2",
    "flags": "33",
    "usage": "36",
    "branch": "2",
    "placeholder": "2",
    "header": "1",
    "warning": "1;33",
}


def color_enabled(mode: str, stream: Optional[TextIO] = None) -> bool:
    """Decide whether to emit color for *mode* (``auto``/``always``/``never``)."""

    if mode == "always":
        return True
    if mode == "never":
        return False
    if config.no_color_requested():
        return False
    stream = stream if stream is not None else sys.stdout
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


def _sgr(style: Optional[str]) -> str:
    if not style:
        return ""
    codes = [STYLE_CODES[tag] for tag in style.split(",") if tag in STYLE_CODES]
    if not codes:
        return ""
    return f"\033[{';'.join(codes)}m"


def encode_line(line: Line, *, color: bool) -> str:
    """Return the text of *line*, wrapping styled segments in ANSI codes."""

    if not color:
        return line.text
    parts = []
    for segment in line.segments:
        start = _sgr(segment.style)
        if start:
            parts.append(f"{start}{segment.text}{RESET}")
        else:
            parts.append(segment.text)
    return "".join(parts)


def format_warning(message: str, *, color: bool) -> str:
    prefix = "warning:"
    if color:
        prefix = f"{_sgr('warning')}{prefix}{RESET}"
    return f"{prefix} {message}"


def write_lines(
    lines: Sequence[Line], *, color: bool, stream: Optional[TextIO] = None
) -> None:
    """Write *lines* in order, one per line."""

    stream = stream if stream is not None else sys.stdout
    for line in lines:
        stream.write(encode_line(line, color=color) + "\n")
    stream.flush()


def write_warnings(
    warnings: Iterable[object], *, color: bool, stream: Optional[TextIO] = None
) -> None:
    """Write each structural warning on its own ``warning:`` prefixed line."""

    stream = stream if stream is not None else sys.stderr
    for warning in warnings:
        stream.write(format_warning(str(warning), color=color) + "\n")
    stream.flush()
