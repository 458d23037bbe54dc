"""Layered configuration for githooks.

Configuration is read once per invocation from ``git config --list`` and an
optional YAML override file. Values are kept as ordered lists so multi-valued
options (``githooks.plugin``, ``checkreference.acl``...) keep the order in
which git reports them: system, global, local, worktree, command line and
finally the override file.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

import yaml

from .errors import ConfigError, GitCommandError

if TYPE_CHECKING:
    from .git import GitRunner


logger = logging.getLogger(__name__)

GIT_SCOPES = ("system", "global", "local", "worktree", "command")
OVERRIDE_SCOPE = "override"
DEFAULT_SCOPE = "default"
UNKNOWN_SCOPE = "unknown"

# Options injected with set_default() at the start of every invocation.
DEFAULT_OPTIONS: tuple[tuple[str, str, str], ...] = (
    ("githooks", "externals", "true"),
    ("githooks", "abort-commit", "true"),
    ("githooks.gerrit", "enabled", "true"),
    ("githooks", "timeout", "60"),
)

# Plugin sections used to live under "githooks.<plugin>". The canonical
# section is consulted first and the legacy one only when the canonical key
# has no value at all.
LEGACY_SECTIONS: dict[str, str] = {
    "checkreference": "githooks.checkreference",
    "checkcommit": "githooks.checkcommit",
    "checklog": "githooks.checklog",
    "checkfile": "githooks.checkfile",
    "checkfile.basename": "githooks.checkfile.basename",
    "checkfile.path": "githooks.checkfile.path",
    "checkrewrite": "githooks.checkrewrite",
    "preparelog": "githooks.preparelog",
}

_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0", ""})
_INT_RE = re.compile(r"^\s*([-+]?\d+)\s*([kmg]?)\s*$", re.IGNORECASE)
_INT_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3}


@dataclass(frozen=True)
class ConfigEntry:
    scope: str
    section: str
    key: str
    value: str


def split_option(name: str) -> tuple[str, str]:
    """Split ``a.b.c`` into section ``a.b`` and key ``c``."""
    section, dot, key = name.rpartition(".")
    if not dot or not section or not key:
        raise ConfigError(f"cannot grok config variable name '{name}'", option=name)
    # Subsections are folded too, unlike git: [githooks "CheckLog"] and
    # [githooks "checklog"] name the same legacy plugin section.
    return section.lower(), key.lower()


def option_name(section: str, key: str) -> str:
    return f"{section}.{key}"


def parse_git_config_list(output: str, *, with_scope: bool = True) -> list[ConfigEntry]:
    """Parse the output of ``git config --null --list [--show-scope]``."""
    tokens = output.split("\0")
    if tokens and tokens[-1] == "":
        tokens.pop()
    entries: list[ConfigEntry] = []
    index = 0
    while index < len(tokens):
        if with_scope:
            scope = tokens[index]
            index += 1
            if index >= len(tokens):
                raise ConfigError(f"truncated git config output after scope '{scope}'")
        else:
            scope = UNKNOWN_SCOPE
        name, newline, value = tokens[index].partition("\n")
        index += 1
        section, key = split_option(name)
        # A variable without "=" is a boolean true in git.
        entries.append(ConfigEntry(scope, section, key, value if newline else "true"))
    return entries


def read_git_config(runner: "GitRunner") -> list[ConfigEntry]:
    try:
        output = runner.run("config", "--null", "--list", "--show-scope", strip=False)
    except GitCommandError:
        # git < 2.26 has no --show-scope
        logger.debug("git config --show-scope unsupported, reading without scopes")
        output = runner.run("config", "--null", "--list", strip=False)
        return parse_git_config_list(output, with_scope=False)
    return parse_git_config_list(output)


def _flatten_mapping(prefix: str, payload: Mapping[str, Any], scope: str) -> Iterable[ConfigEntry]:
    for name, value in payload.items():
        full = f"{prefix}.{name}" if prefix else str(name)
        if isinstance(value, Mapping):
            yield from _flatten_mapping(full, value, scope)
            continue
        section, key = split_option(full)
        values = value if isinstance(value, list) else [value]
        for item in values:
            if isinstance(item, bool):
                text = "true" if item else "false"
            elif item is None:
                text = "true"
            else:
                text = str(item)
            yield ConfigEntry(scope, section, key, text)


def entries_from_mapping(payload: Mapping[str, Any], scope: str = OVERRIDE_SCOPE) -> list[ConfigEntry]:
    """Turn ``{"githooks": {"plugin": [...]}}`` into config entries."""
    if not isinstance(payload, Mapping):
        raise ConfigError("configuration overrides must be a mapping")
    return list(_flatten_mapping("", payload, scope))


def load_yaml_overrides(path: Path) -> list[ConfigEntry]:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read configuration file {path}", details=str(exc)) from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"configuration file {path} must contain a mapping")
    return entries_from_mapping(payload)


class ConfigStore:
    """In-memory view of the layered configuration of one invocation."""

    def __init__(self, entries: Iterable[ConfigEntry] = ()) -> None:
        self._values: dict[tuple[str, str], list[str]] = {}
        self._sources: dict[tuple[str, str], list[str]] = {}
        self.deprecations: list[tuple[str, str]] = []
        for entry in entries:
            self.add(entry.section, entry.key, entry.value, scope=entry.scope)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ConfigStore":
        return cls(entries_from_mapping(payload))

    @classmethod
    def load(cls, runner: "GitRunner", overrides: Path | None = None) -> "ConfigStore":
        entries = read_git_config(runner)
        if overrides is not None:
            entries.extend(load_yaml_overrides(overrides))
        store = cls(entries)
        for section, key, value in DEFAULT_OPTIONS:
            store.set_default(section, key, value)
        return store

    def add(self, section: str, key: str, value: str, *, scope: str = OVERRIDE_SCOPE) -> None:
        slot = (section.lower(), key.lower())
        self._values.setdefault(slot, []).append(value)
        self._sources.setdefault(slot, []).append(scope)

    def set_default(self, section: str, key: str, value: str) -> None:
        # A legacy value counts as present, otherwise the default would shadow it.
        if not any(slot in self._values for slot in self.resolution_order(section, key)):
            self.add(section, key, value, scope=DEFAULT_SCOPE)

    def resolution_order(self, section: str, key: str) -> list[tuple[str, str]]:
        """Return the (section, key) slots consulted for an option, in order."""
        section, key = section.lower(), key.lower()
        order = [(section, key)]
        legacy = LEGACY_SECTIONS.get(section)
        if legacy:
            order.append((legacy, key))
        return order

    def _resolve(self, section: str, key: str) -> tuple[tuple[str, str], list[str]] | None:
        order = self.resolution_order(section, key)
        for slot in order:
            values = self._values.get(slot)
            if values:
                if slot != order[0] and order[0] not in self.deprecations:
                    self.deprecations.append(order[0])
                    logger.warning(
                        "option %s is deprecated, please rename it to %s",
                        option_name(*slot),
                        option_name(*order[0]),
                    )
                return slot, values
        return None

    def has(self, section: str, key: str) -> bool:
        return self._resolve(section, key) is not None

    def get_all(self, section: str, key: str) -> list[str]:
        resolved = self._resolve(section, key)
        return list(resolved[1]) if resolved else []

    def get(self, section: str, key: str, default: str | None = None) -> str | None:
        values = self.get_all(section, key)
        return values[-1] if values else default

    def get_bool(self, section: str, key: str, default: bool = False) -> bool:
        value = self.get(section, key)
        if value is None:
            return default
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise ConfigError(f"invalid boolean value '{value}'", option=option_name(section, key))

    def get_int(self, section: str, key: str, default: int = 0) -> int:
        value = self.get(section, key)
        if value is None:
            return default
        match = _INT_RE.match(value)
        if not match:
            raise ConfigError(f"invalid integer value '{value}'", option=option_name(section, key))
        return int(match.group(1)) * _INT_UNITS[match.group(2).lower()]

    def sources(self, section: str, key: str) -> list[str]:
        resolved = self._resolve(section, key)
        return list(self._sources[resolved[0]]) if resolved else []

    def section(self, section: str) -> dict[str, list[str]]:
        section = section.lower()
        return {key: list(values) for (name, key), values in self._values.items() if name == section}

    def copy(self) -> "ConfigStore":
        clone = ConfigStore()
        clone._values = {slot: list(values) for slot, values in self._values.items()}
        clone._sources = {slot: list(scopes) for slot, scopes in self._sources.items()}
        return clone
