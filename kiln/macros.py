# kiln/macros.py
"""
macros.py - the macro layer used to render stage scripts

A macro file is YAML with two optional sections:

    definitions:
        - prefix: /usr
        - bindir: "%(prefix)/bin"
    actions:
        - configure:
            command: ./configure --prefix=%(prefix)
            description: Run autotools configure
            dependencies: [autoconf]

Both sections may also be written as plain mappings. In script text
"%(key)" expands a definition, "%name" expands an action and "%%" is a
literal percent sign. Expansion is recursive; unknown names and cycles
raise MacroError.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from kiln.errors import MacroError

MACRO_RE = re.compile(r"%(?:(%)|\(([A-Za-z_][A-Za-z0-9_]*)\)|([A-Za-z_][A-Za-z0-9_]*))")


@dataclass
class MacroAction:
    name: str
    command: str
    description: str = ""
    dependencies: List[str] = field(default_factory=list)


def _items(section: Any, what: str, path: str) -> List[Tuple[str, Any]]:
    if section is None:
        return []
    if isinstance(section, dict):
        return [(str(k), v) for k, v in section.items()]
    if isinstance(section, list):
        out = []
        for item in section:
            if not isinstance(item, dict) or len(item) != 1:
                raise MacroError(f"{path}: {what} entries must be single-key mappings, got {item!r}")
            out.extend((str(k), v) for k, v in item.items())
        return out
    raise MacroError(f"{path}: '{what}' must be a list or mapping")


class MacroFile:
    """One parsed definitions (or actions) file."""

    def __init__(self, path: str):
        self.path = str(path)
        self.definitions: Dict[str, str] = {}
        self.actions: Dict[str, MacroAction] = {}
        self._parsed = False

    def parse(self) -> "MacroFile":
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise MacroError(f"Cannot read macro file {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise MacroError(f"Invalid YAML in macro file {self.path}: {e}") from e
        data = data or {}
        if not isinstance(data, dict):
            raise MacroError(f"{self.path}: macro file must contain a mapping")

        for key, value in _items(data.get("definitions"), "definitions", self.path):
            self.definitions[key] = "" if value is None else str(value)

        for name, value in _items(data.get("actions"), "actions", self.path):
            if isinstance(value, dict):
                if "command" not in value:
                    raise MacroError(f"{self.path}: action '{name}' has no command")
                action = MacroAction(
                    name=name,
                    command=str(value["command"]).rstrip("\n"),
                    description=str(value.get("description") or ""),
                    dependencies=list(value.get("dependencies") or []),
                )
            else:
                action = MacroAction(name=name, command=str(value or "").rstrip("\n"))
            self.actions[name] = action
        self._parsed = True
        return self

    @property
    def parsed(self) -> bool:
        return self._parsed


class ScriptRenderer:
    """
    Layered substitution set. Layers are fed in order with add_from(); later
    layers replace earlier keys unless fed with additive=True, in which case
    they only contribute keys not yet present.
    """

    def __init__(self):
        self._definitions: Dict[str, str] = {}
        self._actions: Dict[str, MacroAction] = {}

    def add_definition(self, key: str, value: Any):
        self._definitions[key] = str(value)

    def add_action(self, name: str, command: str, description: str = ""):
        self._actions[name] = MacroAction(name=name, command=command, description=description)

    def add_from(self, macro_file: MacroFile, additive: bool = False):
        if not macro_file.parsed:
            macro_file.parse()
        for key, value in macro_file.definitions.items():
            if additive and key in self._definitions:
                continue
            self._definitions[key] = value
        for name, action in macro_file.actions.items():
            if additive and name in self._actions:
                continue
            self._actions[name] = action

    def definition(self, key: str) -> Optional[str]:
        return self._definitions.get(key)

    def action(self, name: str) -> Optional[MacroAction]:
        return self._actions.get(name)

    @property
    def definitions(self) -> Dict[str, str]:
        return dict(self._definitions)

    @property
    def actions(self) -> Dict[str, MacroAction]:
        return dict(self._actions)

    def dependencies(self, text: str) -> List[str]:
        """Packages required by the actions referenced in text, nested actions included."""
        deps: List[str] = []
        seen = set()
        pending = [text or ""]
        while pending:
            for m in MACRO_RE.finditer(pending.pop()):
                name = m.group(3)
                action = self._actions.get(name) if name else None
                if action is None or name in seen:
                    continue
                seen.add(name)
                pending.append(action.command)
                for dep in action.dependencies:
                    if dep not in deps:
                        deps.append(dep)
        return deps

    def process(self, text: str) -> str:
        """Expand every macro in text."""
        return self._expand(text or "", ())

    def _expand(self, text: str, stack: Tuple[Tuple[str, str], ...]) -> str:
        def repl(m):
            if m.group(1):
                return "%"
            if m.group(2):
                kind, key = "definition", m.group(2)
                if key not in self._definitions:
                    raise MacroError(f"Unknown definition '%({key})'")
                value = self._definitions[key]
            else:
                kind, key = "action", m.group(3)
                if key not in self._actions:
                    raise MacroError(f"Unknown action '%{key}'")
                value = self._actions[key].command
            ref = (kind, key)
            if ref in stack:
                chain = " -> ".join(k for _, k in stack + (ref,))
                raise MacroError(f"Recursive macro expansion: {chain}")
            return self._expand(value, stack + (ref,))

        return MACRO_RE.sub(repl, text)
