# kiln/context.py
"""
context.py - BuildContext holding the configuration shared by one build

The Builder constructs exactly one BuildContext per build invocation and
passes it to every profile. load_macros() must run before any profile
renders a script. Once build() starts the context is sealed and its
setters raise ContextError.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Dict, List, Optional

from kiln.arch import Platform, is_emul32
from kiln.config import Config, get_config
from kiln.errors import ContextError
from kiln.logging import get_logger
from kiln.macros import MacroFile, ScriptRenderer
from kiln.recipe import Recipe

logger = get_logger("context")

# directory shipped beside the program, preferred over the system location
LOCAL_MACRO_DIR = Path(__file__).resolve().parent / "data" / "macros"


class BuildContext:
    def __init__(self, recipe: Recipe, root_dir: str, platform: Platform,
                 spec_dir: Optional[str] = None, config: Optional[Config] = None):
        self._lock = threading.RLock()
        self._sealed = False
        self._config = config or get_config()
        self._recipe = recipe
        self._root_dir = str(root_dir)
        self._platform = platform
        self._spec_dir = spec_dir or (os.path.dirname(recipe.path) if recipe.path else ".")
        self._output_directory = str(self._config.get("build.output_dir", "."))
        self._jobs = 0
        self.jobs = int(self._config.get("build.jobs", 0) or 0)

        self.macro_dir: Optional[Path] = None
        self.definition_files: Dict[str, MacroFile] = {}
        self.action_files: Dict[str, MacroFile] = {}

    # ----------------------
    # sealing
    # ----------------------
    def seal(self):
        with self._lock:
            self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _check_mutable(self, what: str):
        if self._sealed:
            raise ContextError(f"BuildContext is sealed, cannot change {what}")

    # ----------------------
    # paths
    # ----------------------
    @property
    def spec_dir(self) -> str:
        return self._spec_dir

    @spec_dir.setter
    def spec_dir(self, p: str):
        with self._lock:
            self._check_mutable("spec_dir")
            self._spec_dir = str(p)

    @property
    def root_dir(self) -> str:
        return self._root_dir

    @root_dir.setter
    def root_dir(self, p: str):
        with self._lock:
            self._check_mutable("root_dir")
            self._root_dir = str(p)

    @property
    def pkg_dir(self) -> str:
        return os.path.join(self._root_dir, "pkgdir")

    @property
    def source_dir(self) -> str:
        return os.path.join(self._root_dir, "sourcedir")

    @property
    def output_directory(self) -> str:
        return self._output_directory

    @output_directory.setter
    def output_directory(self, p: str):
        with self._lock:
            self._check_mutable("output_directory")
            self._output_directory = str(p)

    # ----------------------
    # recipe / jobs / platform
    # ----------------------
    @property
    def recipe(self) -> Recipe:
        return self._recipe

    @recipe.setter
    def recipe(self, r: Recipe):
        with self._lock:
            self._check_mutable("recipe")
            self._recipe = r

    @property
    def jobs(self) -> int:
        return self._jobs

    @jobs.setter
    def jobs(self, j: int):
        with self._lock:
            self._check_mutable("jobs")
            self._jobs = j if j >= 1 else (os.cpu_count() or 1)

    @property
    def platform(self) -> Platform:
        return self._platform

    @property
    def config(self) -> Config:
        return self._config

    # ----------------------
    # macros
    # ----------------------
    def _resolve_macro_dir(self) -> Path:
        configured = self._config.get("macros.directory")
        if configured:
            return Path(configured)
        if LOCAL_MACRO_DIR.is_dir():
            return LOCAL_MACRO_DIR
        return Path(self._config.get("macros.system_dir", "/usr/share/moss/macros"))

    def load_macros(self):
        """Load base, architecture and action macro files."""
        with self._lock:
            self._check_mutable("macros")
            resource_dir = self._resolve_macro_dir()
            plat = self._platform

            base_yml = resource_dir / "base.yml"
            native_yml = resource_dir / f"{plat.name}.yml"
            emul_yml = resource_dir / "emul32" / f"{plat.name}.yml"

            if not base_yml.is_file():
                raise ContextError(f"{base_yml} file cannot be found")
            if not native_yml.is_file():
                raise ContextError(f"{native_yml} cannot be found")
            if plat.emul32 and not emul_yml.is_file():
                raise ContextError(f"{emul_yml} cannot be found")

            definitions = {
                "base": MacroFile(str(base_yml)).parse(),
                plat.name: MacroFile(str(native_yml)).parse(),
            }
            if plat.emul32:
                definitions[plat.emul32_name] = MacroFile(str(emul_yml)).parse()

            actions: Dict[str, MacroFile] = {}
            action_dir = resource_dir / "actions"
            if action_dir.is_dir():
                for entry in sorted(action_dir.glob("*.yml")):
                    if entry.is_file():
                        actions[entry.stem] = MacroFile(str(entry)).parse()

            self.macro_dir = resource_dir
            self.definition_files = definitions
            self.action_files = actions
            logger.debug("Loaded macros from %s (%d action files)", resource_dir, len(actions))

    def macro_layers(self, architecture: str) -> List[str]:
        """Definition file keys fed to the renderer for architecture, in order."""
        layers = ["base", self._platform.name]
        if is_emul32(architecture):
            layers.append(self._platform.emul32_name)
        return layers

    def prepare_scripts(self, renderer: ScriptRenderer, architecture: str) -> ScriptRenderer:
        """Seed renderer with the fixed keys and the layered definition set."""
        if not self.definition_files:
            raise ContextError("prepare_scripts() called before load_macros()")
        recipe = self._recipe
        renderer.add_definition("name", recipe.name)
        renderer.add_definition("version", recipe.version)
        renderer.add_definition("release", str(recipe.release))
        renderer.add_definition("jobs", str(self.jobs))
        renderer.add_definition("pkgdir", self.pkg_dir)
        renderer.add_definition("sourcedir", self.source_dir)

        for key in self.macro_layers(architecture):
            macro_file = self.definition_files.get(key)
            if macro_file is None:
                raise ContextError(f"No macro definitions loaded for '{key}'")
            renderer.add_from(macro_file)

        for action_file in self.action_files.values():
            renderer.add_from(action_file, additive=True)
        return renderer
