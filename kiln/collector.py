# kiln/collector.py
"""
collector.py - assign installed files to output packages

Rules are (pattern, target) pairs evaluated in registration order; the
first match wins. Patterns are globs (fnmatch, "*" also crosses "/") or
directory paths, which match everything below them. Paths are matched as
absolute paths relative to the install root ("/usr/bin/nano"). Only regular
files and symlinks are collected; other file types are skipped with a warning.

Assignments are kept per install root: collecting a root replaces what was
recorded for that root before, so collect() is idempotent, and two distinct
roots never share or overwrite each other's entries.
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from kiln.logging import get_logger

logger = get_logger("collector")


@dataclass(frozen=True)
class CollectionRule:
    pattern: str
    target: str

    def match(self, path: str) -> bool:
        if fnmatch.fnmatchcase(path, self.pattern):
            return True
        prefix = self.pattern.rstrip("/")
        return bool(prefix) and path.startswith(prefix + "/")


@dataclass(frozen=True)
class CollectedFile:
    root: str
    path: str
    target: str

    @property
    def full_path(self) -> str:
        return os.path.join(self.root, self.path.lstrip("/"))


class BuildCollector:
    def __init__(self):
        self._rules: List[CollectionRule] = []
        self._assignments: Dict[str, Dict[str, str]] = {}

    @property
    def rules(self) -> List[CollectionRule]:
        return list(self._rules)

    def add_rule(self, pattern: str, target: str):
        self._rules.append(CollectionRule(pattern, target))

    def match(self, path: str) -> Optional[str]:
        for rule in self._rules:
            if rule.match(path):
                return rule.target
        return None

    def _walk(self, root: str) -> List[str]:
        found: List[str] = []
        for dirpath, dirs, files in os.walk(root):
            dirs.sort()
            names = sorted(files)
            # symlinked directories are payload, not something to descend into
            names.extend(d for d in dirs if os.path.islink(os.path.join(dirpath, d)))
            for name in names:
                full = os.path.join(dirpath, name)
                rel = "/" + os.path.relpath(full, root).replace(os.sep, "/")
                if not (os.path.islink(full) or os.path.isfile(full)):
                    logger.warning("Skipping %s: not a regular file or symlink", rel)
                    continue
                found.append(rel)
        return sorted(found)

    def collect(self, root: str) -> Dict[str, str]:
        """Assign every file below root; returns the path -> package mapping."""
        key = os.path.realpath(root)
        mapping: Dict[str, str] = {}
        if os.path.isdir(key):
            for path in self._walk(key):
                target = self.match(path)
                if target is None:
                    raise LookupError(f"No collection rule matches {path}")
                mapping[path] = target
        else:
            logger.warning("Install root %s does not exist, nothing to collect", root)
        self._assignments[key] = mapping
        logger.info("Collected %d files from %s", len(mapping), root)
        return dict(mapping)

    def assignments(self, root: str) -> Dict[str, str]:
        return dict(self._assignments.get(os.path.realpath(root), {}))

    def files(self) -> List[CollectedFile]:
        out: List[CollectedFile] = []
        for root, mapping in self._assignments.items():
            out.extend(CollectedFile(root, path, target) for path, target in mapping.items())
        return out

    def packages(self) -> Dict[str, List[CollectedFile]]:
        grouped: Dict[str, List[CollectedFile]] = {}
        for f in self.files():
            grouped.setdefault(f.target, []).append(f)
        return grouped
