"""Base class of the built-in plugins."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Iterable, Iterator

from ..config import ConfigStore, option_name
from ..context import is_ref_enabled
from ..refs import BRANCH_PREFIX
from ..types import CommitRecord, Fault, HookPoint

if TYPE_CHECKING:
    from ..context import RepositoryContext
    from ..registry import HookRegistry


logger = logging.getLogger(__name__)


class Plugin:
    """A policy plugin: a named set of handlers plus its configuration section.

    Subclasses map hook points to method names in ``hooks`` and may declare
    ``defaults`` for options of their own section.
    """

    name: ClassVar[str] = "Plugin"
    section: ClassVar[str] = "plugin"
    hooks: ClassVar[dict[HookPoint, str]] = {}
    defaults: ClassVar[tuple[tuple[str, str], ...]] = ()
    admin_bypass: ClassVar[bool] = True

    def apply_defaults(self, config: ConfigStore) -> None:
        for key, value in self.defaults:
            config.set_default(self.section, key, value)

    def register(self, registry: "HookRegistry") -> None:
        for hook, method in self.hooks.items():
            registry.add(self.name, hook, self._handler(getattr(self, method)))

    def _handler(self, method: Callable[["RepositoryContext"], Iterable[Fault]]) -> Callable[["RepositoryContext"], Iterator[Fault]]:
        def handler(context: "RepositoryContext") -> Iterator[Fault]:
            if self.admin_bypass and context.is_admin():
                logger.info("%s: %s is an administrator, skipping checks", self.name, context.authenticated_user())
                return
            yield from method(context)

        return handler

    def option(self, key: str) -> str:
        return option_name(self.section, key)

    def fault(self, message: str, **context: Any) -> Fault:
        option = context.pop("option", None)
        if option is not None and not option.startswith("githooks."):
            option = self.option(option)
        return Fault(message.rstrip("\n"), plugin=self.name, option=option, **context)

    def ref_enabled(self, context: "RepositoryContext", ref: str | None) -> bool:
        config = context.config
        if ref is not None:
            noref = [*config.get_all("githooks", "noref"), *config.get_all(self.section, "noref")]
            if noref and is_ref_enabled(ref, noref):
                return False
        refs = [*config.get_all("githooks", "ref"), *config.get_all(self.section, "ref")]
        return is_ref_enabled(ref, refs)

    def check_affected_refs(self, context: "RepositoryContext") -> Iterable[Fault]:
        for ref in context.refs.affected_refs():
            if not self.ref_enabled(context, ref):
                logger.debug("%s: ref %s is not enabled", self.name, ref)
                continue
            for fault in self.check_ref(context, ref):
                yield fault if fault.ref else replace(fault, ref=ref)

    def check_ref(self, context: "RepositoryContext", ref: str) -> Iterable[Fault]:
        return ()

    def check_gerrit_patchset(self, context: "RepositoryContext") -> Iterable[Fault]:
        options = context.gerrit_options
        branch = options.get("--branch", "")
        ref = branch if branch.startswith("refs/") else BRANCH_PREFIX + branch
        if not self.ref_enabled(context, ref):
            return ()
        commit = context.walker.commit(options["--commit"])
        return self.check_patchset(context, ref, commit)

    def check_patchset(self, context: "RepositoryContext", ref: str, commit: CommitRecord) -> Iterable[Fault]:
        return ()
