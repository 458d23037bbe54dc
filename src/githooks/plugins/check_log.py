"""Commit log message policies."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import TYPE_CHECKING, Iterable

from ..errors import ConfigError, GitCommandError, GitHooksError
from ..message import CommitMessage, read_message_file
from ..types import CommitRecord, Fault, HookPoint
from ..users import compile_regex
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

_REVERT_RE = re.compile(r"This reverts commit ([0-9a-f]{40})")


class CheckLog(Plugin):
    name = "CheckLog"
    section = "checklog"
    hooks = {
        HookPoint.APPLYPATCH_MSG: "check_message_file",
        HookPoint.COMMIT_MSG: "check_message_file",
        HookPoint.UPDATE: "check_affected_refs",
        HookPoint.PRE_RECEIVE: "check_affected_refs",
        HookPoint.REF_UPDATE: "check_affected_refs",
        HookPoint.PATCHSET_CREATED: "check_gerrit_patchset",
        HookPoint.DRAFT_PUBLISHED: "check_gerrit_patchset",
    }
    defaults = (
        ("title-required", "true"),
        ("title-max-width", "50"),
        ("title-period", "deny"),
        ("body-max-width", "72"),
    )

    def _pattern_fault(self, text: str, spec: str, what: str, commit: str | None, option: str) -> Fault | None:
        negate = spec.startswith("!")
        pattern = spec[1:].lstrip() if negate else spec
        found = compile_regex(pattern, option=self.option(option)).search(text) is not None
        if negate and found:
            return self.fault(f"The commit log {what} SHOULD NOT match '{pattern}'", commit=commit, option=option)
        if not negate and not found:
            return self.fault(f"The commit log {what} SHOULD match '{pattern}'", commit=commit, option=option)
        return None

    def pattern_faults(self, context: "RepositoryContext", commit: str | None, text: str) -> Iterable[Fault]:
        for spec in context.config.get_all(self.section, "match"):
            fault = self._pattern_fault(text, spec, "message", commit, "match")
            if fault:
                yield fault

    def revert_faults(self, context: "RepositoryContext", commit: str | None, text: str) -> Iterable[Fault]:
        if not context.config.get_bool(self.section, "deny-merge-revert"):
            return
        match = _REVERT_RE.search(text)
        if not match:
            return
        try:
            reverted = context.walker.commit(match.group(1))
        except (LookupError, GitCommandError):
            # The reverted commit may be unreachable by now.
            return
        if reverted.is_merge:
            yield self.fault("This commit reverts a merge commit, which is not allowed.",
                             commit=commit, option="deny-merge-revert")

    def title_faults(self, context: "RepositoryContext", commit: str | None, title: str | None) -> Iterable[Fault]:
        config = context.config
        if not title:
            if config.get_bool(self.section, "title-required"):
                yield self.fault(
                    "This commit log message needs a title line.\nPlease, amend your commit to add one.",
                    commit=commit,
                    option="title-required",
                )
            return
        max_width = config.get_int(self.section, "title-max-width")
        if max_width and len(title) > max_width:
            yield self.fault(
                "This commit log message title is too long.\n"
                f"It is {len(title)} characters wide but should be at most {max_width}.",
                commit=commit,
                option="title-max-width",
            )
        period = config.get(self.section, "title-period")
        if period == "deny" and title.endswith("."):
            yield self.fault("This commit log message title SHOULD NOT end in a period.",
                             commit=commit, option="title-period")
        elif period == "require" and not title.endswith("."):
            yield self.fault("This commit log message title SHOULD end in a period.",
                             commit=commit, option="title-period")
        elif period not in (None, "deny", "require", "allow"):
            raise ConfigError(
                f"invalid value '{period}', the valid values are 'deny', 'allow' and 'require'",
                option=self.option("title-period"),
            )
        for spec in config.get_all(self.section, "title-match"):
            fault = self._pattern_fault(title, spec, "title", commit, "title-match")
            if fault:
                yield fault

    def body_faults(self, context: "RepositoryContext", commit: str | None, body: str | None) -> Iterable[Fault]:
        if not body:
            return
        max_width = context.config.get_int(self.section, "body-max-width")
        if not max_width:
            return
        # Indented lines are usually quoted code or logs, leave them alone.
        long_lines = [line for line in body.split("\n") if len(line) > max_width and line[:1].strip()]
        if long_lines:
            yield self.fault(
                "This commit log body has lines that are too long.\n"
                f"The configuration option limits body lines to {max_width} characters.",
                commit=commit,
                option="body-max-width",
                details="\n".join(long_lines),
            )

    def footer_faults(self, context: "RepositoryContext", commit: str | None, message: CommitMessage) -> Iterable[Fault]:
        signers = message.footer_values("signed-off-by")
        if signers:
            duplicates = sorted(signer for signer, count in Counter(signers).items() if count > 1)
            if duplicates:
                yield self.fault("This commit has duplicate Signed-off-by footers.",
                                 commit=commit, details="\n".join(duplicates))
        elif context.config.get_bool(self.section, "signed-off-by"):
            yield self.fault("This commit must have a Signed-off-by footer.", commit=commit, option="signed-off-by")

    def message_faults(self, context: "RepositoryContext", commit: str | None, text: str) -> Iterable[Fault]:
        message = CommitMessage.parse(text)
        yield from self.pattern_faults(context, commit, text)
        yield from self.revert_faults(context, commit, text)
        yield from self.title_faults(context, commit, message.title)
        yield from self.body_faults(context, commit, message.body)
        yield from self.footer_faults(context, commit, message)

    def check_message_file(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not context.args:
            raise GitHooksError(f"the {context.hook.value} hook needs the message file argument")
        if not self.ref_enabled(context, context.current_branch()):
            return ()
        text = read_message_file(context.args[0], context.message_encoding())
        return self.message_faults(context, None, text)

    def check_ref(self, context: "RepositoryContext", ref: str) -> Iterable[Fault]:
        old, new = context.refs.range_for(ref)
        for commit in context.walker.commits_in_range(old, new):
            yield from self.message_faults(context, commit.commit, commit.message)

    def check_patchset(self, context: "RepositoryContext", ref: str, commit: CommitRecord) -> Iterable[Fault]:
        return self.message_faults(context, commit.commit, commit.message)
