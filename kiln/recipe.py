# kiln/recipe.py
"""
recipe.py - loader for stone.yml recipe files

Features:
- Parse stone.yml (YAML) into a Recipe object
- Upstream entries in short form ("uri : hash") or long form (hash/rename/unpack/unpackdir)
- Root build definition plus per-architecture profile overrides
- Sub-package definitions whose paths become collection rules
- Architecture support predicate (native / emul32 markers)

No schema validation beyond the fields kiln needs to build.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from kiln.arch import is_emul32
from kiln.errors import RecipeError

BUILD_KEYS = ("setup", "build", "install", "check", "workload")

# -----------------------
# Data models
# -----------------------
@dataclass
class Upstream:
    uri: str
    hash: str
    type: str = "plain"
    rename: Optional[str] = None
    unpack: bool = True
    unpackdir: str = "."

    @property
    def filename(self) -> str:
        """Name of the source inside sourcedir."""
        if self.rename:
            return self.rename
        return os.path.basename(self.uri.split("?", 1)[0].rstrip("/"))


@dataclass
class BuildDefinition:
    setup: Optional[str] = None
    build: Optional[str] = None
    install: Optional[str] = None
    check: Optional[str] = None
    workload: Optional[str] = None
    environment: Optional[str] = None

    def merged_over(self, parent: "BuildDefinition") -> "BuildDefinition":
        """Fields set here win, unset ones come from parent."""
        return BuildDefinition(**{
            k: getattr(self, k) if getattr(self, k) is not None else getattr(parent, k)
            for k in BUILD_KEYS + ("environment",)
        })


@dataclass
class SubPackage:
    name: str
    summary: str = ""
    description: str = ""
    paths: List[str] = field(default_factory=list)


def _single_key_items(value: Any, what: str) -> List[tuple]:
    """Accept either a mapping or a list of single-key mappings, keep order."""
    if value is None:
        return []
    if isinstance(value, dict):
        return list(value.items())
    if isinstance(value, list):
        out = []
        for item in value:
            if not isinstance(item, dict) or len(item) != 1:
                raise RecipeError(f"{what}: expected single-key mapping, got {item!r}")
            out.extend(item.items())
        return out
    raise RecipeError(f"{what}: expected a list or mapping")


def _parse_build(data: Dict[str, Any]) -> BuildDefinition:
    kwargs = {}
    for key in BUILD_KEYS + ("environment",):
        val = data.get(key)
        if val is not None:
            kwargs[key] = str(val)
    return BuildDefinition(**kwargs)


def _parse_upstream(uri: str, value: Any) -> Upstream:
    kind = "plain"
    if uri.startswith("git|"):
        kind = "git"
        uri = uri[4:]
    if isinstance(value, dict):
        h = value.get("hash") or value.get("ref")
        if not h:
            raise RecipeError(f"upstream {uri}: missing hash")
        return Upstream(uri=uri, hash=str(h), type=kind,
                        rename=value.get("rename"),
                        unpack=bool(value.get("unpack", True)),
                        unpackdir=str(value.get("unpackdir", ".")))
    if not value:
        raise RecipeError(f"upstream {uri}: missing hash")
    return Upstream(uri=uri, hash=str(value), type=kind)

# -----------------------
# Recipe
# -----------------------
class Recipe:
    """
    High-level representation of a parsed stone.yml
    """
    def __init__(self, data: Dict[str, Any], path: Optional[str] = None):
        if not isinstance(data, dict):
            raise RecipeError("recipe must be a mapping")
        for key in ("name", "version", "release"):
            if data.get(key) in (None, ""):
                raise RecipeError(f"recipe is missing required field '{key}'")
        self.path = os.path.abspath(path) if path else None
        self.raw = data
        self.name: str = str(data["name"])
        self.version: str = str(data["version"])
        try:
            self.release: int = int(data["release"])
        except (TypeError, ValueError) as e:
            raise RecipeError(f"release must be an integer, got {data['release']!r}") from e
        self.summary: str = data.get("summary") or ""
        self.description: str = data.get("description") or ""
        self.homepage: str = data.get("homepage") or ""
        lic = data.get("license") or []
        self.license: List[str] = [lic] if isinstance(lic, str) else list(lic)
        self.toolchain: str = str(data.get("toolchain") or "gnu")
        self.emul32: bool = bool(data.get("emul32", False))
        self.cspgo: bool = bool(data.get("cspgo", False))
        self.build_dependencies: List[str] = list(data.get("builddeps") or [])
        self.check_dependencies: List[str] = list(data.get("checkdeps") or [])
        self.workdir: Optional[str] = data.get("workdir")

        arches = data.get("architectures") or ["native"]
        self.architectures: List[str] = [arches] if isinstance(arches, str) else list(arches)
        if self.emul32 and "emul32" not in self.architectures:
            self.architectures.append("emul32")

        self.upstreams: List[Upstream] = [
            _parse_upstream(str(uri), val) for uri, val in _single_key_items(data.get("upstreams"), "upstreams")
        ]
        self.root_build: BuildDefinition = _parse_build(data)
        self.profiles: Dict[str, BuildDefinition] = {}
        for arch, body in _single_key_items(data.get("profiles"), "profiles"):
            if not isinstance(body, dict):
                raise RecipeError(f"profile {arch}: expected a mapping")
            self.profiles[str(arch)] = _parse_build(body)

        self.packages: List[SubPackage] = []
        for name, body in _single_key_items(data.get("packages"), "packages"):
            body = body or {}
            paths = body.get("paths") or []
            self.packages.append(SubPackage(
                name=self.expand_name(str(name)),
                summary=body.get("summary") or "",
                description=body.get("description") or "",
                paths=[str(p) for p in paths],
            ))

    @classmethod
    def from_file(cls, path: str) -> "Recipe":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise RecipeError(f"Cannot read recipe file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise RecipeError(f"Invalid YAML in recipe file {path}: {e}") from e
        return cls(data, path=path)

    def expand_name(self, s: str) -> str:
        return s.replace("%(name)", self.name).replace("%(version)", self.version)

    def supported_architecture(self, name: str) -> bool:
        return name in self.architectures

    def build_for(self, architecture: str) -> BuildDefinition:
        """Root build with the matching profile override (exact arch, then emul32 marker)."""
        override = self.profiles.get(architecture)
        if override is None and is_emul32(architecture):
            override = self.profiles.get("emul32")
        if override is None:
            return self.root_build
        return override.merged_over(self.root_build)

    def plain_upstreams(self) -> List[Upstream]:
        return [u for u in self.upstreams if u.type == "plain"]

    def package_summary(self, package: str) -> str:
        for sub in self.packages:
            if sub.name == package:
                return sub.summary
        return self.summary
