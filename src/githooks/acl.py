"""Access control rules for references and file paths.

An ACL line has the form ``allow|deny ACTIONS TARGET [by WHO]``. ``ACTIONS``
is a set of letters from the domain of the table (``CRUD`` for references,
``AMD`` for files), ``TARGET`` is a literal name, a ``^regex`` or a negated
``!regex`` and ``WHO`` is a user spec as understood by ``UserMatcher``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

from .errors import ConfigError
from .users import UserMatcher, compile_regex, validate_user_spec


logger = logging.getLogger(__name__)

Decision = Literal["allow", "deny"]

REF_ACTIONS = "CRUD"
FILE_ACTIONS = "AMD"

_ACL_RE = re.compile(r"^\s*(allow|deny)\s+(\S+)\s+(\S+)(?:\s+by\s+(\S+))?\s*$")


@dataclass(frozen=True)
class TargetSpec:
    """A literal name or a compiled regular expression."""

    pattern: str
    regex: re.Pattern[str] | None = None
    negated: bool = False

    @classmethod
    def parse(cls, text: str, *, option: str | None = None) -> "TargetSpec":
        if text.startswith("^"):
            return cls(text, compile_regex(text, option=option))
        if text.startswith("!"):
            return cls(text, compile_regex(text[1:], option=option), negated=True)
        return cls(text)

    @property
    def is_regex(self) -> bool:
        return self.regex is not None

    def matches(self, target: str) -> bool:
        if self.regex is None:
            return target == self.pattern
        found = self.regex.search(target) is not None
        return not found if self.negated else found


@dataclass(frozen=True)
class AclRule:
    allow: bool
    actions: frozenset[str]
    target: TargetSpec
    who: str | None = None
    text: str = ""

    @property
    def decision(self) -> Decision:
        return "allow" if self.allow else "deny"

    def applies_to(self, user: str | None, action: str, target: str, users: UserMatcher) -> bool:
        if action not in self.actions:
            return False
        if not self.target.matches(target):
            return False
        if self.who is None:
            return True
        return users.matches(user, self.who)


@dataclass(frozen=True)
class Verdict:
    decision: Decision
    rule: AclRule | None = None
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.decision == "allow"


def parse_action_mask(letters: str, domain: str, *, option: str | None = None) -> frozenset[str]:
    unknown = sorted(set(letters) - set(domain))
    if not letters or unknown:
        raise ConfigError(
            f"invalid action letters '{letters}', they must be a subset of '{domain}'",
            option=option,
        )
    return frozenset(letters)


def parse_acl(text: str, domain: str = REF_ACTIONS, *, option: str | None = None) -> AclRule:
    match = _ACL_RE.match(text)
    if not match:
        raise ConfigError(f"invalid acl syntax: '{text}'", option=option,
                          details="expected 'allow|deny ACTIONS TARGET [by WHO]'")
    verb, letters, target, who = match.groups()
    return AclRule(
        allow=verb == "allow",
        actions=parse_action_mask(letters, domain, option=option),
        target=TargetSpec.parse(target, option=option),
        who=validate_user_spec(who, option=option) if who else None,
        text=text.strip(),
    )


def evaluate(
    rules: Sequence[AclRule],
    user: str | None,
    action: str,
    target: str,
    users: UserMatcher,
) -> Verdict:
    """Return the decision of the first rule matching (user, action, target).

    Administrators are allowed before any rule is looked at. When no rule
    matches the request is denied, including when ``rules`` is empty.
    """
    if users.is_admin(user):
        return Verdict("allow", reason="administrator")
    for rule in rules:
        if rule.applies_to(user, action, target, users):
            return Verdict(rule.decision, rule, reason=f"matched rule '{rule.text}'")
    return Verdict("deny", reason="no rule matched, denied by default")


@dataclass(frozen=True)
class AclTable:
    """One independent ACL table of a plugin.

    Rules are kept in evaluation order: the last configured line comes first
    so that a later configuration layer overrides an earlier one.
    """

    option: str
    domain: str
    rules: tuple[AclRule, ...] = ()

    @classmethod
    def from_config(cls, values: Iterable[str], domain: str, option: str) -> "AclTable":
        parsed = [parse_acl(value, domain, option=option) for value in values]
        logger.debug("parsed %d rules for %s", len(parsed), option)
        return cls(option=option, domain=domain, rules=tuple(reversed(parsed)))

    def __bool__(self) -> bool:
        return bool(self.rules)

    def evaluate(self, user: str | None, action: str, target: str, users: UserMatcher) -> Verdict:
        if action not in self.domain:
            raise ValueError(f"action {action!r} is not one of {self.domain!r}")
        return evaluate(self.rules, user, action, target, users)
