# kiln/stage.py
"""
stage.py - stage types and the ExecutionStage

A StageType pairs exactly one StageKind with an optional PGOPhase, so a
stage can never carry two functional kinds. StageType.from_flags() decodes
the historical bit-flag values and rejects ambiguous combinations.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from kiln.errors import StageError

if TYPE_CHECKING:
    from kiln.profile import BuildProfile

SCRIPT_PREAMBLE = "%scriptBase"


class StageKind(enum.Enum):
    PREPARE = "prepare"
    SETUP = "setup"
    BUILD = "build"
    INSTALL = "install"
    CHECK = "check"
    WORKLOAD = "workload"


class PGOPhase(enum.Enum):
    STAGE1 = "stage1"
    STAGE2 = "stage2"
    USE = "use"


# name resolution order
KIND_ORDER = (StageKind.SETUP, StageKind.BUILD, StageKind.INSTALL,
              StageKind.CHECK, StageKind.WORKLOAD, StageKind.PREPARE)
PHASE_ORDER = (PGOPhase.STAGE1, PGOPhase.STAGE2, PGOPhase.USE)

# historical bit values
KIND_FLAGS = {
    StageKind.PREPARE: 1 << 0,
    StageKind.SETUP: 1 << 1,
    StageKind.BUILD: 1 << 2,
    StageKind.INSTALL: 1 << 3,
    StageKind.CHECK: 1 << 4,
    StageKind.WORKLOAD: 1 << 5,
}
PHASE_FLAGS = {
    PGOPhase.STAGE1: 1 << 6,
    PGOPhase.STAGE2: 1 << 7,
    PGOPhase.USE: 1 << 8,
}


@dataclass(frozen=True)
class StageType:
    kind: StageKind
    pgo: Optional[PGOPhase] = None

    @property
    def name(self) -> str:
        base = self.kind.value
        if self.pgo is None:
            return base
        return f"{base}-pgo-{self.pgo.value}"

    @property
    def flags(self) -> int:
        bits = KIND_FLAGS[self.kind]
        if self.pgo is not None:
            bits |= PHASE_FLAGS[self.pgo]
        return bits

    @classmethod
    def from_flags(cls, bits: int) -> "StageType":
        kinds = [k for k in KIND_ORDER if bits & KIND_FLAGS[k]]
        phases = [p for p in PHASE_ORDER if bits & PHASE_FLAGS[p]]
        unknown = bits & ~(sum(KIND_FLAGS.values()) | sum(PHASE_FLAGS.values()))
        if unknown:
            raise StageError(f"Unknown stage type bits: {unknown:#x}")
        if len(kinds) != 1:
            raise StageError(f"Stage type {bits:#x} must have exactly one functional kind, has {len(kinds)}")
        if len(phases) > 1:
            raise StageError(f"Stage type {bits:#x} has more than one PGO phase")
        return cls(kinds[0], phases[0] if phases else None)


class ExecutionStage:
    """
    A single step within a profile's build: a name, a type and the script
    to run. The parent profile owns the stage.
    """

    def __init__(self, parent: "BuildProfile", stage_type: StageType):
        if not isinstance(stage_type, StageType):
            raise StageError(f"Expected StageType, got {stage_type!r}")
        self._parent = parent
        self._type = stage_type
        self._name = stage_type.name
        self._script: Optional[str] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> "BuildProfile":
        return self._parent

    @property
    def type(self) -> StageType:
        return self._type

    @property
    def script(self) -> Optional[str]:
        return self._script

    @script.setter
    def script(self, text: str):
        body = (text or "").strip()
        # already wrapped text must not gain a second preamble
        while body.startswith(SCRIPT_PREAMBLE) and body[len(SCRIPT_PREAMBLE):len(SCRIPT_PREAMBLE) + 1] in ("", "\n"):
            body = body[len(SCRIPT_PREAMBLE):].strip()
        self._script = f"{SCRIPT_PREAMBLE}\n{body}"

    def __repr__(self) -> str:
        return f"<ExecutionStage {self._name}>"
