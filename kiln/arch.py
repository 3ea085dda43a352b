# kiln/arch.py
"""Current platform detection: architecture name and emul32 capability."""

from __future__ import annotations

import platform as _platform
from dataclasses import dataclass

_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "i486": "i686",
    "i586": "i686",
}

# 64-bit platforms able to run a 32-bit compatibility build
_EMUL32 = {"x86_64"}


@dataclass(frozen=True)
class Platform:
    name: str
    emul32: bool = False

    @property
    def emul32_name(self) -> str:
        return f"emul32/{self.name}"


def platform() -> Platform:
    machine = _platform.machine().lower()
    name = _ALIASES.get(machine, machine)
    return Platform(name=name, emul32=name in _EMUL32)


def is_emul32(architecture: str) -> bool:
    return architecture.startswith("emul32/") or architecture == "emul32"
