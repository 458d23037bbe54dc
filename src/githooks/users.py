"""User specs, groups and administrator checks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .config import ConfigStore
from .errors import ConfigError, GroupCycleError


logger = logging.getLogger(__name__)

GROUPS_OPTION = "githooks.groups"
ADMIN_OPTION = "githooks.admin"

_GROUP_LINE_RE = re.compile(r"^\s*(\w+)\s*=\s*(.+?)\s*$")


def compile_regex(pattern: str, *, option: str | None = None) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"invalid regular expression '{pattern}'", option=option, details=str(exc)) from exc


def validate_user_spec(spec: str, *, option: str | None = None) -> str:
    """Check a user spec eagerly so bad regexes surface as configuration errors."""
    if spec.startswith("^"):
        compile_regex(spec, option=option)
    elif spec.startswith("@") and len(spec) == 1:
        raise ConfigError("empty group name in user spec", option=option)
    elif not spec:
        raise ConfigError("empty user spec", option=option)
    return spec


@dataclass(frozen=True)
class GroupTable:
    """Named groups with their members fully expanded.

    Nested ``@group`` members are resolved when the table is built so that a
    membership query never recurses. Cyclic definitions are refused here.
    """

    members: dict[str, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def parse(cls, lines: Iterable[str], source: str = GROUPS_OPTION) -> "GroupTable":
        return cls.from_definitions(_parse_group_lines(lines, source), source)

    @classmethod
    def from_definitions(cls, definitions: dict[str, list[str]], source: str = GROUPS_OPTION) -> "GroupTable":
        for name, members in definitions.items():
            for member in members:
                if member.startswith("@") and member not in definitions:
                    raise ConfigError(
                        f"unknown group ({member}) cited in the definition of {name}",
                        option=GROUPS_OPTION,
                        details=f"source: {source}",
                    )
        expanded: dict[str, frozenset[str]] = {}
        for name in definitions:
            expanded[name] = frozenset(_expand(name, definitions, expanded, ()))
        return cls(members=expanded)

    @classmethod
    def from_config(cls, config: ConfigStore) -> "GroupTable | None":
        specs = config.get_all("githooks", "groups")
        if not specs:
            return None
        definitions: dict[str, list[str]] = {}
        for spec in specs:
            if spec.startswith("file:"):
                path = Path(spec[len("file:") :]).expanduser()
                try:
                    lines = path.read_text(encoding="utf-8").splitlines()
                except OSError as exc:
                    raise ConfigError(
                        f"can't open groups file ({path})", option=GROUPS_OPTION, details=str(exc)
                    ) from exc
                source = str(path)
            else:
                lines = spec.split("\n")
                source = GROUPS_OPTION
            for name, members in _parse_group_lines(lines, source).items():
                if name in definitions:
                    raise ConfigError(f"redefinition of group ({name[1:]}) in '{source}'", option=GROUPS_OPTION)
                definitions[name] = members
        table = cls.from_definitions(definitions)
        logger.debug("loaded %d groups", len(table.members))
        return table

    def is_member(self, user: str, group: str) -> bool:
        name = group if group.startswith("@") else f"@{group}"
        if name not in self.members:
            raise ConfigError(f"group {name} is not defined", option=GROUPS_OPTION)
        return user in self.members[name]


def _parse_group_lines(lines: Iterable[str], source: str) -> dict[str, list[str]]:
    definitions: dict[str, list[str]] = {}
    for raw in lines:
        line = raw.split("#", 1)[0]
        if not line.strip():
            continue
        match = _GROUP_LINE_RE.match(line)
        if not match:
            raise ConfigError(f"invalid line in '{source}': {raw.strip()}", option=GROUPS_OPTION)
        name = f"@{match.group(1)}"
        if name in definitions:
            raise ConfigError(f"redefinition of group ({match.group(1)}) in '{source}'", option=GROUPS_OPTION)
        definitions[name] = match.group(2).split()
    return definitions


def _expand(
    name: str,
    definitions: dict[str, list[str]],
    done: dict[str, frozenset[str]],
    path: tuple[str, ...],
) -> set[str]:
    if name in path:
        cycle = " -> ".join((*path[path.index(name) :], name))
        raise GroupCycleError(f"cyclic group definition: {cycle}", option=GROUPS_OPTION)
    if name in done:
        return set(done[name])
    users: set[str] = set()
    for member in definitions[name]:
        if member.startswith("@"):
            users |= _expand(member, definitions, done, (*path, name))
        else:
            users.add(member)
    return users


class UserMatcher:
    """Matches an authenticated user against user specs.

    A spec is either ``^regex``, ``@group`` or a literal user name.
    """

    def __init__(self, groups: GroupTable | None = None, admins: Iterable[str] = ()) -> None:
        self.groups = groups
        self.admins = [validate_user_spec(spec, option=ADMIN_OPTION) for spec in admins]
        self._regexes: dict[str, re.Pattern[str]] = {}

    @classmethod
    def from_config(cls, config: ConfigStore) -> "UserMatcher":
        return cls(GroupTable.from_config(config), config.get_all("githooks", "admin"))

    def matches(self, user: str | None, spec: str) -> bool:
        if not user:
            return False
        if spec.startswith("^"):
            regex = self._regexes.get(spec)
            if regex is None:
                regex = self._regexes[spec] = compile_regex(spec)
            return regex.search(user) is not None
        if spec.startswith("@"):
            return self.is_member(user, spec)
        return user == spec

    def matches_any(self, user: str | None, specs: Iterable[str]) -> bool:
        return any(self.matches(user, spec) for spec in specs)

    def is_member(self, user: str, group: str) -> bool:
        if self.groups is None:
            raise ConfigError("you have to define the githooks.groups option to use groups", option=GROUPS_OPTION)
        return self.groups.is_member(user, group)

    def is_admin(self, user: str | None) -> bool:
        return self.matches_any(user, self.admins)
