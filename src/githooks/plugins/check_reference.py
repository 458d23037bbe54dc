"""Access control on reference creation, update, rewind and deletion."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable

from ..acl import REF_ACTIONS, AclTable
from ..types import Fault, HookPoint, Operation
from ..users import compile_regex
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"\{(\w+)\}")


class CheckReference(Plugin):
    name = "CheckReference"
    section = "checkreference"
    hooks = {
        HookPoint.UPDATE: "check_affected_refs",
        HookPoint.PRE_RECEIVE: "check_affected_refs",
        HookPoint.REF_UPDATE: "check_affected_refs",
    }

    def acl_table(self, context: "RepositoryContext") -> AclTable:
        cache = context.cache(self.name)
        if "acl" not in cache:
            # "{VAR}" in a rule is replaced by the value of the environment variable VAR.
            lines = [
                _ENV_REF_RE.sub(lambda match: context.env.get(match.group(1), ""), value)
                for value in context.config.get_all(self.section, "acl")
            ]
            cache["acl"] = AclTable.from_config(lines, REF_ACTIONS, self.option("acl"))
        return cache["acl"]

    def check_ref(self, context: "RepositoryContext", ref: str) -> Iterable[Fault]:
        yield from self._name_faults(context, ref)
        table = self.acl_table(context)
        if not table:
            return
        operation = context.refs.operation(ref)
        user = context.authenticated_user()
        if user is None:
            yield self.fault("cannot grok authenticated username", ref=ref, option="acl")
            return
        verdict = table.evaluate(user, operation.value, ref, context.users)
        logger.info("%s: %s %s by %s: %s (%s)", self.name, operation.verb, ref, user, verdict.decision, verdict.reason)
        if not verdict.allowed:
            yield self.fault(
                f"you ({user}) cannot {operation.verb} ref {ref}",
                ref=ref,
                option="acl",
                details=verdict.reason,
            )

    def _name_faults(self, context: "RepositoryContext", ref: str) -> Iterable[Fault]:
        """Deprecated deny/allow lists of regexes, applied to created refs only."""
        config = context.config
        deny = config.get_all(self.section, "deny")
        if not deny or context.refs.operation(ref) is not Operation.CREATE:
            return
        allow = config.get_all(self.section, "allow")
        denied = any(compile_regex(spec, option=self.option("deny")).search(ref) for spec in deny)
        allowed = any(compile_regex(spec, option=self.option("allow")).search(ref) for spec in allow)
        if denied and not allowed:
            yield self.fault(
                f"The reference name '{ref}' is not allowed.\n"
                f"Please, check the {self.option('deny')} options in your configuration.",
                ref=ref,
                option="deny",
            )
