# kiln/populate.py
"""
populate.py - install the build dependencies into the build root

The package set is the fixed base plus toolchain packages plus whatever the
recipe lists in builddeps/checkdeps, followed by the dependencies of the macro
actions its scripts use. The install itself is delegated to the system
package manager binary (populate.binary) run with PATH only.
"""

from __future__ import annotations

import os
from typing import List, Optional

from kiln.logging import get_logger
from kiln.process import ExecutionResult, execute_command, minimal_env
from kiln.recipe import Recipe

logger = get_logger("populate")

BASE_PACKAGES = [
    "bash",
    "boulder",
    "coreutils",
    "dash",
    "diffutils",
    "gawk",
    "glibc-devel",
    "grep",
    "fakeroot",
    "findutils",
    "libarchive",
    "linux-headers",
    "pkgconf",
    "sed",
    "util-linux",
]

TOOLCHAIN_PACKAGES = {
    "gnu": (["binutils", "gcc-devel"], ["gcc-32bit-devel"]),
    "llvm": (["clang"], ["clang-32bit", "libcxx-32bit-devel"]),
}


def required_packages(recipe: Recipe, extra: Optional[List[str]] = None) -> List[str]:
    """Base set, toolchain, recipe builddeps/checkdeps, then extra (macro action deps)."""
    pkgs = list(BASE_PACKAGES)
    if recipe.emul32:
        pkgs.append("glibc-32bit-devel")
    native, emul32 = TOOLCHAIN_PACKAGES.get(recipe.toolchain, ([], []))
    pkgs.extend(native)
    if recipe.emul32:
        pkgs.extend(emul32)
    for dep in recipe.build_dependencies + recipe.check_dependencies + list(extra or []):
        if dep not in pkgs:
            pkgs.append(dep)
    return pkgs


def populate_root(context, extra: Optional[List[str]] = None) -> ExecutionResult:
    """Install required_packages() into <root>/root."""
    cfg = context.config
    binary = cfg.get("populate.binary", "/usr/bin/moss")
    target = os.path.join(context.root_dir, "root")
    pkgs = required_packages(context.recipe, extra)
    logger.info("Populating %s with %d packages", target, len(pkgs))
    result = execute_command(binary, ["install", "-D", target] + pkgs,
                             env=minimal_env(cfg.get("populate.path", "/usr/bin")),
                             on_line=lambda line: logger.debug("%s", line))
    if not result.ok:
        logger.error("Root population failed: %s", result.describe())
    return result
