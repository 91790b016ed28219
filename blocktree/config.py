"""Environment-driven defaults for the command line."""

from __future__ import annotations

import os

SOURCES = ("sysfs", "lsblk")
COLOR_MODES = ("auto", "always", "never")


def _env_choice(name: str, choices: tuple[str, ...], default: str) -> str:
    value = os.environ.get(name, "").strip().lower()
    if value in choices:
        return value
    return default


def default_source() -> str:
    """Return the collector named by ``BLOCKTREE_SOURCE`` (``sysfs`` otherwise)."""

    return _env_choice("BLOCKTREE_SOURCE", SOURCES, "sysfs")


def default_color_mode() -> str:
    """Return the color mode named by ``BLOCKTREE_COLOR`` (``auto`` otherwise)."""

    return _env_choice("BLOCKTREE_COLOR", COLOR_MODES, "auto")


def no_color_requested() -> bool:
    """Return ``True`` when the ``NO_COLOR`` convention asks for plain output."""

    return bool(os.environ.get("NO_COLOR", ""))
