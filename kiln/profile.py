# kiln/profile.py
"""
profile.py - BuildProfile: one architecture's ordered stage pipeline

Stage plan (fixed, linear):
  without a workload:  prepare, setup, build, install, check
  with a workload:     for each PGO phase (stage1, plus stage2 for LLVM with
                       cspgo): prepare, setup, build, workload
                       then prepare, setup, build, install, check as "use"
Stages whose recipe script is empty are left out; prepare is always present.
Later stages rely on the filesystem state left by earlier ones, so the
first failing stage ends the profile.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from kiln.errors import MacroError
from kiln.logging import get_logger, stream_build_output
from kiln.macros import ScriptRenderer
from kiln.process import ExecutionResult, execute_command, inherited_env
from kiln.stage import ExecutionStage, PGOPhase, StageKind, StageType

logger = get_logger("profile")


class BuildProfile:
    def __init__(self, context, architecture: str):
        self.context = context
        self.architecture = architecture
        self._safe_arch = architecture.replace("/", "-")
        self.stages: List[ExecutionStage] = []
        self._plan_stages()

    # ----------------------
    # paths
    # ----------------------
    @property
    def build_dir(self) -> str:
        return os.path.join(self.context.root_dir, "build", self._safe_arch)

    @property
    def work_dir(self) -> str:
        recipe = self.context.recipe
        return os.path.join(self.build_dir, recipe.workdir or f"{recipe.name}-{recipe.version}")

    @property
    def pgo_dir(self) -> str:
        return f"{self.build_dir}-pgo"

    @property
    def install_root(self) -> str:
        # shared by every profile of the build
        return os.path.join(self.context.root_dir, "install")

    @property
    def script_dir(self) -> str:
        return os.path.join(self.context.root_dir, "scripts")

    # ----------------------
    # planning
    # ----------------------
    def _plan_stages(self):
        recipe = self.context.recipe
        build = recipe.build_for(self.architecture)

        final_phase: Optional[PGOPhase] = None
        if build.workload:
            phases = [PGOPhase.STAGE1]
            if recipe.toolchain == "llvm" and recipe.cspgo:
                phases.append(PGOPhase.STAGE2)
            for phase in phases:
                self._add_stage(StageKind.PREPARE, phase, self._prepare_script())
                self._add_stage(StageKind.SETUP, phase, build.setup)
                self._add_stage(StageKind.BUILD, phase, build.build)
                self._add_stage(StageKind.WORKLOAD, phase, build.workload)
            final_phase = PGOPhase.USE

        self._add_stage(StageKind.PREPARE, final_phase, self._prepare_script())
        self._add_stage(StageKind.SETUP, final_phase, build.setup)
        self._add_stage(StageKind.BUILD, final_phase, build.build)
        self._add_stage(StageKind.INSTALL, final_phase, build.install)
        self._add_stage(StageKind.CHECK, final_phase, build.check)

    def _add_stage(self, kind: StageKind, phase: Optional[PGOPhase], script: Optional[str]):
        if not script or not script.strip():
            return
        stage = ExecutionStage(self, StageType(kind, phase))
        environment = self.context.recipe.build_for(self.architecture).environment
        if environment and kind is not StageKind.PREPARE:
            script = f"{environment.strip()}\n{script.strip()}"
        stage.script = script
        self.stages.append(stage)

    def _prepare_script(self) -> str:
        lines = [
            'rm -rf "%(workdir)"',
            'mkdir -p "%(workdir)"',
            'cd "%(workdir)"',
        ]
        for upstream in self.context.recipe.plain_upstreams():
            if not upstream.unpack:
                continue
            target = upstream.unpackdir or "."
            lines.append(f'mkdir -p "{target}"')
            lines.append(f'tar xf "%(sourcedir)/{upstream.filename}" -C "{target}" '
                         f'--strip-components=1 --no-same-owner')
        return "\n".join(lines)

    # ----------------------
    # rendering
    # ----------------------
    def renderer_for(self, stage: ExecutionStage) -> ScriptRenderer:
        renderer = ScriptRenderer()
        self.context.prepare_scripts(renderer, self.architecture)
        renderer.add_definition("architecture", self.architecture)
        renderer.add_definition("builddir", self.build_dir)
        renderer.add_definition("workdir", self.work_dir)
        renderer.add_definition("installroot", self.install_root)
        renderer.add_definition("pgo_dir", self.pgo_dir)
        renderer.add_definition("pgo_stage", stage.type.pgo.value if stage.type.pgo else "")
        return renderer

    def render(self, stage: ExecutionStage) -> str:
        return self.renderer_for(stage).process(stage.script)

    def dependencies(self) -> List[str]:
        """Packages declared by the macro actions this profile's stages use."""
        deps: List[str] = []
        for stage in self.stages:
            for dep in self.renderer_for(stage).dependencies(stage.script):
                if dep not in deps:
                    deps.append(dep)
        return deps

    def validate(self) -> Dict[str, Any]:
        """Render every stage without running anything."""
        errors: Dict[str, str] = {}
        for stage in self.stages:
            try:
                self.render(stage)
            except MacroError as e:
                errors[stage.name] = str(e)
                logger.error("Stage %s (%s) does not render: %s", stage.name, self.architecture, e)
        return {"ok": not errors, "architecture": self.architecture, "errors": errors}

    # ----------------------
    # execution
    # ----------------------
    def run_stage(self, stage: ExecutionStage) -> ExecutionResult:
        try:
            script = self.render(stage)
        except MacroError as e:
            return ExecutionResult(command=[stage.name], error=str(e))

        script_path = Path(self.script_dir) / f"{self._safe_arch}-{stage.name}.sh"
        script_path.parent.mkdir(parents=True, exist_ok=True)
        script_path.write_text(script + "\n", encoding="utf-8")

        cwd = self.build_dir
        if stage.type.kind is not StageKind.PREPARE and os.path.isdir(self.work_dir):
            cwd = self.work_dir

        cfg = self.context.config
        shell = cfg.get("build.shell", "/bin/sh")
        shell_args = list(cfg.get("build.shell_args", ["-e", "-x"]) or [])
        env = inherited_env({"JOBS": str(self.context.jobs)})
        module = f"{self._safe_arch}/{stage.name}"
        logger.info("Running stage %s (%s)", stage.name, self.architecture)
        return execute_command(shell, shell_args + [str(script_path)], env=env, cwd=cwd,
                               timeout=cfg.get("build.timeout"),
                               on_line=lambda line: stream_build_output(module, line))

    def build(self) -> Dict[str, Any]:
        for d in (self.build_dir, self.install_root, self.pgo_dir):
            os.makedirs(d, exist_ok=True)
        completed: List[str] = []
        for stage in self.stages:
            result = self.run_stage(stage)
            if not result.ok:
                logger.error("Stage %s (%s) failed: %s", stage.name, self.architecture, result.describe())
                return {"ok": False, "stage": stage.name, "architecture": self.architecture,
                        "completed": completed, "detail": result.to_dict()}
            completed.append(stage.name)
        logger.info("Profile %s complete (%d stages)", self.architecture, len(completed))
        return {"ok": True, "architecture": self.architecture, "completed": completed}

    def __repr__(self) -> str:
        return f"<BuildProfile {self.architecture} stages={[s.name for s in self.stages]}>"
