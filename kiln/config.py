# kiln/config.py
# -*- coding: utf-8 -*-
"""
kiln central configuration loader

Features:
- Read YAML config from multiple locations (env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (expand paths, ints)
- Validate structure and types, warn or raise ConfigError (fatal optional)
- Typed access via Config dataclass (get_config(), Config.section(), dotted get())
- Thread-safe load/reload
"""

from __future__ import annotations
import os
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple

import yaml

from kiln.errors import ConfigError

logger = logging.getLogger("kiln.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "file_level": "DEBUG",
        "color": True,
        "max_size": "10M",
        "backups": 5,
        "module_levels": {},
        "jsonl": {"enabled": False, "path": "~/.kiln/transparency.jsonl"},
    },
    "build": {
        "jobs": 0,  # <1 means autodetect
        "root": "~/moss/buildRoot",
        "output_dir": ".",
        "shell": "/bin/sh",
        "shell_args": ["-e", "-x"],
        "timeout": None,
    },
    "macros": {
        "directory": None,
        "system_dir": "/usr/share/moss/macros",
    },
    "upstreams": {
        "cache_dir": "~/moss/cache/upstreams",
    },
    "fetcher": {
        "workers": 4,
        "retries": 3,
        "timeout": 300,
    },
    "populate": {
        "enabled": False,
        "binary": "/usr/bin/moss",
        "path": "/usr/bin",
    },
    "packaging": {
        "compression": "zst",
        "level": 3,
    },
}

COMPRESSIONS = ("zst", "gz", "xz")

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def section(self, name: str) -> Dict[str, Any]:
        val = self.merged.get(name)
        return deepcopy(val) if isinstance(val, dict) else {}

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("KILN_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "kiln.yaml",
        Path.cwd() / "kiln.yml",
        Path.home() / ".config" / "kiln" / "config.yaml",
        Path("/etc") / "kiln" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
        data = yaml.safe_load(txt)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot load config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    path_keys = [
        ("build", "root"),
        ("build", "output_dir"),
        ("macros", "directory"),
        ("upstreams", "cache_dir"),
        ("logging", "file"),
    ]
    for section, key in path_keys:
        ref = out.get(section)
        if isinstance(ref, dict) and isinstance(ref.get(key), str) and ref[key]:
            ref[key] = _expand_path(ref[key])
    jsonl = out.get("logging", {}).get("jsonl")
    if isinstance(jsonl, dict) and isinstance(jsonl.get("path"), str):
        jsonl["path"] = _expand_path(jsonl["path"])

    int_keys = [
        ("build", "jobs"),
        ("fetcher", "workers"),
        ("fetcher", "retries"),
        ("fetcher", "timeout"),
        ("packaging", "level"),
    ]
    for section, key in int_keys:
        ref = out.get(section)
        if isinstance(ref, dict) and key in ref and ref[key] is not None:
            try:
                ref[key] = int(ref[key])
            except (TypeError, ValueError):
                logger.debug("config: cannot coerce %s.%s=%r to int", section, key, ref[key])
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    jobs = cfg.get("build", {}).get("jobs")
    if not isinstance(jobs, int):
        warnings.append("build.jobs must be an integer (<1 means autodetect)")
    if not isinstance(cfg.get("build", {}).get("shell_args"), list):
        warnings.append("build.shell_args must be a list")
    for key in ("workers", "retries"):
        val = cfg.get("fetcher", {}).get(key)
        if not isinstance(val, int) or val < (1 if key == "workers" else 0):
            warnings.append(f"fetcher.{key} has an invalid value: {val!r}")
    comp = cfg.get("packaging", {}).get("compression")
    if comp not in COMPRESSIONS:
        warnings.append(f"packaging.compression must be one of {COMPRESSIONS}")
    return (len(warnings) == 0, warnings)

# ----------------------------
# Loading / reloading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config file not found: {explicit}")
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def load(explicit_path: Optional[str] = None, fatal: bool = False,
         overrides: Optional[Dict[str, Any]] = None) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object and caches it for get_config().
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
        merged = _deep_merge(DEFAULTS, raw)
        if overrides:
            merged = _deep_merge(merged, overrides)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ConfigError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def reload(explicit_path: Optional[str] = None) -> Config:
    return load(explicit_path)

def validate_config(cfg: Optional[Config] = None) -> Tuple[bool, List[str]]:
    return _validate_structure((cfg or get_config()).merged)
