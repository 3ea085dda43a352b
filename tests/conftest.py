"""
Shared fixtures for the kiln tests.

Everything runs inside tmp_path: a small macro tree, a fake home, an
upstream cache and an output directory. No config file is read from the
machine running the tests.
"""
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import yaml

from kiln.arch import Platform
from kiln.config import DEFAULTS, Config, _deep_merge, _normalize_and_coerce
from kiln.context import BuildContext
from kiln.recipe import Recipe


# ── macro tree ────────────────────────────────────────────────────────

BASE_MACROS = {
    "definitions": [
        {"A": "1"},
        {"prefix": "/usr"},
        {"bindir": "%(prefix)/bin"},
        {"libdir": "%(prefix)/lib"},
        {"datadir": "%(prefix)/share"},
    ],
    "actions": [
        {"scriptBase": {"command": 'export KILN_WORKDIR="%(workdir)"', "description": "stage preamble"}},
        {"greet": "echo hello from %(name)"},
    ],
}

NATIVE_MACROS = {"definitions": [{"A": "2"}, {"B": "3"}]}

EMUL32_MACROS = {"definitions": [{"libdir": "%(prefix)/lib32"}, {"B": "32"}]}

ACTION_MACROS = {
    "actions": [
        {"C": {"command": "echo C", "dependencies": ["c-tools"]}},
        {"greet": "echo overridden"},
    ],
}


def _dump(path: Path, data: Dict[str, Any]):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


@pytest.fixture
def macro_dir(tmp_path) -> Path:
    root = tmp_path / "macros"
    _dump(root / "base.yml", BASE_MACROS)
    _dump(root / "x86_64.yml", NATIVE_MACROS)
    _dump(root / "emul32" / "x86_64.yml", EMUL32_MACROS)
    _dump(root / "actions" / "extra.yml", ACTION_MACROS)
    return root


# ── config / platform / home ──────────────────────────────────────────

@pytest.fixture
def make_config(tmp_path, macro_dir):
    def _make(overrides: Optional[Dict[str, Any]] = None) -> Config:
        base = {
            "build": {"output_dir": str(tmp_path / "out"), "jobs": 2},
            "macros": {"directory": str(macro_dir)},
            "upstreams": {"cache_dir": str(tmp_path / "cache")},
            "fetcher": {"workers": 2, "retries": 0},
            "packaging": {"compression": "gz"},
        }
        merged = _deep_merge(_deep_merge(DEFAULTS, base), overrides or {})
        return Config(raw={}, merged=_normalize_and_coerce(merged), path=None)
    return _make


@pytest.fixture
def config(make_config) -> Config:
    return make_config()


@pytest.fixture
def native_platform() -> Platform:
    return Platform("x86_64", emul32=False)


@pytest.fixture
def emul32_platform() -> Platform:
    return Platform("x86_64", emul32=True)


@pytest.fixture
def home(tmp_path) -> Path:
    h = tmp_path / "home"
    h.mkdir()
    return h


# ── recipes and sources ───────────────────────────────────────────────

def make_recipe_data(**overrides) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": "hello",
        "version": "1.0",
        "release": 1,
        "summary": "Hello world",
        "description": "Prints a greeting",
        "license": "MIT",
    }
    data.update(overrides)
    return data


@pytest.fixture
def write_recipe(tmp_path):
    def _write(**overrides) -> Path:
        path = tmp_path / "recipe" / "stone.yml"
        _dump(path, make_recipe_data(**overrides))
        return path
    return _write


@pytest.fixture
def make_context(tmp_path, config, native_platform):
    def _make(recipe: Optional[Recipe] = None, platform: Optional[Platform] = None,
              cfg: Optional[Config] = None) -> BuildContext:
        recipe = recipe or Recipe(make_recipe_data())
        return BuildContext(recipe, str(tmp_path / "root"), platform or native_platform,
                            config=cfg or config)
    return _make


@pytest.fixture
def make_source(tmp_path):
    """Write a local source file and return (file:// uri, sha256)."""
    def _make(name: str, content: bytes):
        path = tmp_path / "sources" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return f"file://{path}", hashlib.sha256(content).hexdigest()
    return _make
