# kiln/builder.py
"""
builder.py - top-level build orchestration for one stone.yml

Features:
- Recipe loading, build root layout and BuildContext construction
- Profile registration per supported architecture (native, emul32)
- Collection rules from sub-packages plus the main package fallback
- Strictly ordered pipeline: prepare-root, populate-root, validate, fetch,
  build, collect, emit. The first failing step ends the build.

Each step returns a result dict {"ok", "stage", "detail"}; build() returns
the failing step's result, or an ok summary of the whole run.
"""

from __future__ import annotations

import os
import shutil
import time
from typing import Any, Callable, Dict, List, Optional

from kiln.arch import Platform, platform as detect_platform
from kiln.collector import BuildCollector
from kiln.config import Config, get_config
from kiln.context import BuildContext
from kiln.errors import BuildError, KilnError
from kiln.fetcher import Fetcher
from kiln.logging import get_logger
from kiln.packager import emit_packages
from kiln.populate import populate_root
from kiln.profile import BuildProfile
from kiln.recipe import Recipe
from kiln.upstream import UpstreamCache, fetch_upstreams

logger = get_logger("builder")


def _result(ok: bool, stage: str, detail: Any = None) -> Dict[str, Any]:
    return {"ok": ok, "stage": stage, "detail": detail}


class Builder:
    def __init__(self, filename: str, *, config: Optional[Config] = None, home: Optional[str] = None,
                 platform: Optional[Platform] = None, cache: Optional[UpstreamCache] = None,
                 fetcher: Optional[Fetcher] = None, jobs: Optional[int] = None,
                 output_dir: Optional[str] = None):
        self.config = config or get_config()
        self.recipe = Recipe.from_file(filename)

        if home is None:
            home = os.path.expanduser("~")
            base = self.config.get("build.root") or os.path.join(home, "moss", "buildRoot")
        else:
            base = os.path.join(home, "moss", "buildRoot")
        if not os.path.isdir(home):
            raise BuildError(f"Home directory {home} does not exist")
        root_dir = os.path.join(base, f"{self.recipe.name}-{self.recipe.release}")

        self.platform = platform or detect_platform()
        self.context = BuildContext(self.recipe, root_dir, self.platform,
                                    spec_dir=os.path.dirname(os.path.abspath(filename)),
                                    config=self.config)
        if jobs is not None:
            self.context.jobs = jobs
        if output_dir is not None:
            self.context.output_directory = os.path.abspath(output_dir)
        self.context.load_macros()

        self.cache = cache or UpstreamCache(config=self.config)
        self.fetcher = fetcher or Fetcher(config=self.config)
        self.collector = BuildCollector()
        self.profiles: List[BuildProfile] = []

        plat = self.platform
        if plat.emul32:
            if self.recipe.supported_architecture(plat.emul32_name) or self.recipe.supported_architecture("emul32"):
                self.add_architecture(plat.emul32_name)
        if self.recipe.supported_architecture(plat.name) or self.recipe.supported_architecture("native"):
            self.add_architecture(plat.name)

        for sub in self.recipe.packages:
            for path in sub.paths:
                self.collector.add_rule(path, sub.name)
        self.collector.add_rule("*", self.recipe.name)

        self.results: List[Dict[str, Any]] = []
        logger.info("Builder for %s-%s-%d at %s (profiles: %s)", self.recipe.name, self.recipe.version,
                    self.recipe.release, root_dir, ", ".join(p.architecture for p in self.profiles) or "none")

    def add_architecture(self, architecture: str) -> BuildProfile:
        profile = BuildProfile(self.context, architecture)
        self.profiles.append(profile)
        logger.debug("Registered profile %s", profile)
        return profile

    # ----------------------
    # steps
    # ----------------------
    def prepare_root(self) -> Dict[str, Any]:
        root = self.context.root_dir
        if os.path.exists(root):
            logger.info("Removing old build tree %s", root)
            shutil.rmtree(root)
        os.makedirs(root)
        for sub in (self.context.pkg_dir, self.context.source_dir):
            os.makedirs(sub, exist_ok=True)
        return _result(True, "prepare-root", {"root": root})

    def populate_root(self) -> Dict[str, Any]:
        if not self.config.get("populate.enabled", False):
            logger.debug("Root population disabled")
            return _result(True, "populate-root", {"skipped": True})
        deps: List[str] = []
        for profile in self.profiles:
            deps.extend(d for d in profile.dependencies() if d not in deps)
        res = populate_root(self.context, deps)
        return _result(res.ok, "populate-root", res.to_dict())

    def validate(self) -> Dict[str, Any]:
        if not self.profiles:
            logger.error("No buildable architecture for %s on %s", self.recipe.name, self.platform.name)
            return _result(False, "validate", {"error": "no supported architecture"})
        reports = [p.validate() for p in self.profiles]
        return _result(all(r["ok"] for r in reports), "validate", reports)

    def fetch(self) -> Dict[str, Any]:
        res = fetch_upstreams(self.context, self.cache, self.fetcher)
        return _result(True, "fetch", res)

    def build_profiles(self) -> Dict[str, Any]:
        reports: List[Dict[str, Any]] = []
        for profile in self.profiles:
            report = profile.build()
            reports.append(report)
            if not report["ok"]:
                return _result(False, "build", reports)
        return _result(True, "build", reports)

    def collect(self) -> Dict[str, Any]:
        roots: List[str] = []
        for profile in self.profiles:
            if profile.install_root not in roots:
                roots.append(profile.install_root)
        counts = {root: len(self.collector.collect(root)) for root in roots}
        return _result(True, "collect", counts)

    def emit(self) -> Dict[str, Any]:
        return _result(True, "emit", emit_packages(self.context, self.collector))

    # ----------------------
    # pipeline
    # ----------------------
    def _run_step(self, name: str, fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        start = time.time()
        logger.info("==> %s", name)
        try:
            res = fn()
        except (KilnError, OSError, LookupError) as e:
            logger.error("Step %s failed: %s", name, e)
            detail: Dict[str, Any] = {"error": str(e)}
            failures = getattr(e, "failures", None)
            if failures:
                detail["failures"] = dict(failures)
            res = _result(False, name, detail)
        if not res["ok"]:
            logger.error("Step %s failed", name)
        res["duration"] = round(time.time() - start, 3)
        self.results.append(res)
        return res

    def build(self) -> Dict[str, Any]:
        """Run every step in order; stop at the first failure."""
        self.context.seal()
        self.results = []
        steps = [
            ("prepare-root", self.prepare_root),
            ("populate-root", self.populate_root),
            ("validate", self.validate),
            ("fetch", self.fetch),
            ("build", self.build_profiles),
            ("collect", self.collect),
            ("emit", self.emit),
        ]
        for name, fn in steps:
            res = self._run_step(name, fn)
            if not res["ok"]:
                return res
        emitted = self.results[-1]["detail"]["packages"]
        logger.info("Build of %s complete, %d package(s) emitted", self.recipe.name, len(emitted))
        return _result(True, "emit", {"packages": emitted, "steps": [r["stage"] for r in self.results]})
