#!/usr/bin/env python3
# kiln/cli.py
"""
kiln CLI

Usage:
  kiln build <stone.yml> [-j N] [-o DIR] [-c CONFIG]

Exit status: 0 build succeeded, 1 a build step failed, 2 fatal setup error
(bad config, unreadable recipe, missing macros).
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from kiln import __version__
from kiln import config as kiln_config
from kiln.errors import KilnError
from kiln.logging import get_logger, reload_config

logger = get_logger("cli")
console = Console(stderr=True)


def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")


def _summary_table(result: Dict[str, Any]) -> Table:
    detail = result.get("detail") or {}
    table = Table(title="Emitted packages")
    table.add_column("package")
    table.add_column("files", justify="right")
    table.add_column("size", justify="right")
    table.add_column("path")
    for pkg in detail.get("packages", []):
        table.add_row(pkg["package"], str(pkg["files"]), str(pkg["size"]), pkg["path"])
    return table


def _print_failure(result: Dict[str, Any]):
    print_err(f"Build failed at step '{result.get('stage')}'")
    detail = result.get("detail")
    if isinstance(detail, dict):
        for key, val in detail.items():
            console.print(f"  {key}: {val}")
    elif isinstance(detail, list):
        for item in detail:
            if isinstance(item, dict) and not item.get("ok", True):
                console.print(f"  {item}")


def cmd_build(args) -> int:
    from kiln.builder import Builder

    builder = Builder(args.recipe, config=kiln_config.get_config(), jobs=args.jobs, output_dir=args.output)
    result = builder.build()
    if not result["ok"]:
        _print_failure(result)
        return 1
    console.print(_summary_table(result))
    print_ok(f"Built {builder.recipe.name} {builder.recipe.version}-{builder.recipe.release}")
    return 0


def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="kiln", description="kiln package build orchestrator")
    ap.add_argument("--version", action="version", version=f"kiln {__version__}")
    ap.add_argument("-c", "--config", help="path to a kiln config file")
    sub = ap.add_subparsers(dest="cmd")

    p_build = sub.add_parser("build", help="build a stone.yml recipe")
    p_build.add_argument("recipe", help="path to stone.yml")
    p_build.add_argument("-j", "--jobs", type=int, default=None, help="parallel jobs (<1 autodetects)")
    p_build.add_argument("-o", "--output", default=None, help="directory for emitted packages")
    p_build.add_argument("-c", "--config", dest="build_config", help="path to a kiln config file")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2

    try:
        cfg_path = getattr(args, "build_config", None) or args.config
        kiln_config.load(cfg_path, fatal=bool(cfg_path))
        reload_config()
        if args.cmd == "build":
            return cmd_build(args)
        parser.print_help()
        return 2
    except (KilnError, OSError) as e:
        logger.error("%s", e)
        print_err(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
