"""Render block devices as a colorized tree."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as pkg_version

__all__ = ["collector", "devices", "hierarchy", "render", "output", "cli"]


def _discover_version() -> str:
    try:
        return pkg_version("blocktree")
    except PackageNotFoundError:
        return "unknown"


__version__ = _discover_version()
