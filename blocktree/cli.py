"""CLI entry point for blocktree."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__, collector, config, hierarchy, output, render
from .errors import CollectionError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blocktree",
        description="Show block devices as a tree",
    )
    parser.add_argument(
        "--source",
        choices=config.SOURCES,
        default=config.default_source(),
        help="Where to read the device topology from (default: %(default)s)",
    )
    parser.add_argument(
        "--color",
        choices=config.COLOR_MODES,
        default=config.default_color_mode(),
        help="Colorize the output (default: %(default)s)",
    )
    parser.add_argument(
        "--header", action="store_true", help="Print a header row above the tree"
    )
    parser.add_argument(
        "--flags",
        action="store_true",
        help="Add a column with read-only and removable flags",
    )
    parser.add_argument(
        "--usage",
        action="store_true",
        help="Add a column with the used share of mounted filesystems",
    )
    parser.add_argument(
        "--sys-block",
        type=Path,
        metavar="PATH",
        help="Alternative /sys/block directory (sysfs source only)",
    )
    parser.add_argument(
        "--proc-mounts",
        type=Path,
        metavar="PATH",
        help="Alternative /proc/mounts file (sysfs source only)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _columns(args: argparse.Namespace) -> List[str]:
    columns = list(render.DEFAULT_COLUMNS)
    if args.flags:
        columns.append("flags")
    if args.usage:
        columns.append("usage")
    return columns


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run blocktree and return the process exit code."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    source = collector.get_collector(
        args.source, sys_block=args.sys_block, proc_mounts=args.proc_mounts
    )
    try:
        records = collector.collect(source)
    except CollectionError as exc:
        print(f"blocktree: {exc}", file=sys.stderr)
        return 1

    result = hierarchy.build_forest(records)
    lines = render.render_forest(result.forest, columns=_columns(args), header=args.header)

    output.write_lines(lines, color=output.color_enabled(args.color, sys.stdout))
    output.write_warnings(
        result.warnings, color=output.color_enabled(args.color, sys.stderr)
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
