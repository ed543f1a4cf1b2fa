"""Shared variable store handed to every block during a run."""

from __future__ import annotations

import getpass
import json
import logging
import re
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")
_MISSING = object()

# Variables every context starts with, as (name, meaning).
BUILTIN_VARIABLES = (
    ("project.root", "project path"),
    ("project.name", "project directory name"),
    ("project_root", "project path"),
    ("project_name", "project directory name"),
    ("current_date", "ISO date at start"),
    ("current_datetime", "ISO datetime at start"),
    ("user.home", "home directory"),
    ("user.name", "system user name"),
)


def to_text(value: Any) -> str:
    """String form of a variable value as it appears in substituted templates."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list | tuple | set):
        return ", ".join(to_text(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


class MigrationContext:
    """Mutable, ordered variable bag plus the run-mode flags.

    The context is shared by reference across an entire plan run: blocks read
    it through ``substitute``/``get_variable`` and the task executor merges
    each block's output variables back in. Only the engine thread touches it.
    """

    def __init__(
        self,
        project_root: Path | str,
        *,
        dry_run: bool = False,
        step_by_step: bool = False,
        variables: Mapping[str, Any] | None = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.dry_run = dry_run
        self.step_by_step = step_by_step
        self._variables: dict[str, Any] = {}
        self._init_builtins()
        if variables:
            self.set_variables(variables)

    def _init_builtins(self) -> None:
        now = datetime.now()
        root = str(self.project_root)
        name = self.project_root.resolve().name
        self._variables["project"] = {"root": root, "name": name}
        self._variables["project_root"] = root
        self._variables["project_name"] = name
        self._variables["current_date"] = now.date().isoformat()
        self._variables["current_datetime"] = now.isoformat(timespec="seconds")
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = ""
        self._variables["user"] = {"home": str(Path.home()), "name": user}

    # -- variable access ---------------------------------------------------

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self._variables.get(key, default)

    def has_variable(self, key: str) -> bool:
        return key in self._variables

    def set_variable(self, key: str, value: Any, *, resolve: bool = True) -> None:
        # With ``resolve``, strings referencing already-known variables are
        # resolved on write, so later variables can build on earlier ones.
        if resolve and isinstance(value, str) and "${" in value:
            value = self.substitute(value)
        self._variables[key] = value

    def set_variables(self, variables: Mapping[str, Any], *, resolve: bool = True) -> None:
        """Merge ``variables`` in iteration order; existing keys are overwritten."""
        for key, value in variables.items():
            self.set_variable(key, value, resolve=resolve)

    def remove_variable(self, key: str) -> None:
        self._variables.pop(key, None)

    def all_variables(self) -> dict[str, Any]:
        return dict(self._variables)

    def lookup(self, path: str) -> Any:
        """Resolve ``a.b.c`` by descending into mappings. Raises KeyError if unresolved."""
        value = self._lookup(path)
        if value is _MISSING:
            raise KeyError(path)
        return value

    def _lookup(self, path: str) -> Any:
        path = path.strip()
        if path in self._variables:
            return self._variables[path]
        head, *rest = path.split(".")
        value = self._variables.get(head, _MISSING)
        for part in rest:
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                return _MISSING
        return value

    # -- templates ---------------------------------------------------------

    def substitute(self, template: str | None) -> str | None:
        """Replace ``${name}`` / ``${a.b}`` placeholders with current values.

        Placeholders that do not resolve are left untouched.
        """
        if not template:
            return template

        def _replacer(m: re.Match) -> str:
            value = self._lookup(m.group(1))
            if value is _MISSING:
                logger.debug("Unresolved template variable: %s", m.group(1))
                return m.group(0)
            return to_text(value)

        return _PLACEHOLDER.sub(_replacer, template)

    def resolve_variable_name(self, reference: str) -> str:
        """Turn ``"${beans}"`` or ``"beans"`` into the variable name ``"beans"``.

        A bare ``${name}`` reference yields the name itself; anything else
        containing placeholders is substituted.
        """
        ref = reference.strip()
        m = _PLACEHOLDER.fullmatch(ref)
        if m:
            return m.group(1).strip()
        if "${" in ref:
            return self.substitute(ref) or ""
        return ref

    def __repr__(self) -> str:
        return (
            f"MigrationContext(project_root={str(self.project_root)!r}, "
            f"dry_run={self.dry_run}, step_by_step={self.step_by_step}, "
            f"variables={len(self._variables)})"
        )
