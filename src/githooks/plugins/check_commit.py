"""Policies on commit identities, merges and push sizes."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable

from ..commits import pending_commit
from ..types import CommitRecord, Fault, HookPoint
from ..users import compile_regex
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

_AMEND_HELP = {
    "author": "Please, amend your commit using the --author option to fix the author name/email.",
    "committer": "Please, amend your commit after fixing your user.name and/or user.email configuration options.",
}

_SIGNATURE_POLICIES = ("nocheck", "optional", "good", "trusted")


class CheckCommit(Plugin):
    name = "CheckCommit"
    section = "checkcommit"
    hooks = {
        HookPoint.PRE_APPLYPATCH: "check_pre_commit",
        HookPoint.PRE_COMMIT: "check_pre_commit",
        HookPoint.POST_APPLYPATCH: "check_post_commit",
        HookPoint.POST_COMMIT: "check_post_commit",
        HookPoint.UPDATE: "check_affected_refs",
        HookPoint.PRE_RECEIVE: "check_affected_refs",
        HookPoint.REF_UPDATE: "check_affected_refs",
        HookPoint.PATCHSET_CREATED: "check_gerrit_patchset",
        HookPoint.DRAFT_PUBLISHED: "check_gerrit_patchset",
    }
    defaults = (("push-limit", "0"),)

    def identity_rules(self, context: "RepositoryContext") -> dict[str, tuple[list[re.Pattern[str]], list[re.Pattern[str]]]]:
        """Positive and negative regexes per identity field, compiled once."""
        cache = context.cache(self.name)
        if "identity" not in cache:
            rules: dict[str, tuple[list[re.Pattern[str]], list[re.Pattern[str]]]] = {}
            for info in ("name", "email"):
                positive: list[re.Pattern[str]] = []
                negative: list[re.Pattern[str]] = []
                for spec in context.config.get_all(self.section, info):
                    if spec.startswith("!"):
                        negative.append(compile_regex(spec[1:], option=self.option(info)))
                    else:
                        positive.append(compile_regex(spec, option=self.option(info)))
                if positive or negative:
                    rules[info] = (positive, negative)
            cache["identity"] = rules
        return cache["identity"]

    def match_faults(self, context: "RepositoryContext", commit: CommitRecord) -> Iterable[Fault]:
        for info, (positive, negative) in self.identity_rules(context).items():
            for who in ("author", "committer"):
                data = getattr(getattr(commit, who), info)
                if positive and not any(regex.search(data) for regex in positive):
                    yield self.fault(
                        f"The commit {who} {info} ({data}) is invalid.\n"
                        f"It must match at least one positive option.\n{_AMEND_HELP[who]}",
                        commit=commit.commit,
                        option=info,
                    )
                if any(regex.search(data) for regex in negative):
                    yield self.fault(
                        f"The commit {who} {info} ({data}) is invalid.\n"
                        f"It matches some negative option.\n{_AMEND_HELP[who]}",
                        commit=commit.commit,
                        option=info,
                    )

    def merge_faults(self, context: "RepositoryContext", commit: CommitRecord) -> Iterable[Fault]:
        if not commit.is_merge:
            return
        mergers = context.config.get_all(self.section, "merger")
        if mergers and not context.users.matches_any(context.authenticated_user(), mergers):
            yield self.fault(
                "Authorization error: you cannot push this commit.\n"
                f"You ({context.authenticated_user()}) are not authorized to push merge commits.",
                commit=commit.commit,
                option="merger",
            )

    def canonical_faults(self, context: "RepositoryContext", commit: CommitRecord) -> Iterable[Fault]:
        mailmap = context.config.get(self.section, "canonical")
        if not mailmap:
            return
        cache = context.cache(self.name).setdefault("canonical", {})
        for who in ("author", "committer"):
            identity = str(getattr(commit, who))
            if identity not in cache:
                cache[identity] = context.git.run("-c", f"mailmap.file={mailmap}", "check-mailmap", identity)
            if cache[identity] != identity:
                yield self.fault(
                    f"The commit {who} identity isn't canonical.\n"
                    f"It's '{identity}' but its canonical form is '{cache[identity]}'.\n{_AMEND_HELP[who]}",
                    commit=commit.commit,
                    option="canonical",
                )

    def signature_faults(self, context: "RepositoryContext", commit: str) -> Iterable[Fault]:
        policy = context.config.get(self.section, "signature")
        if policy is None or policy == "nocheck":
            return
        if policy not in _SIGNATURE_POLICIES:
            yield self.fault(
                f"invalid value '{policy}', it must be one of {', '.join(_SIGNATURE_POLICIES)}",
                option="signature",
            )
            return
        status = context.git.run("log", "-1", "--format=%G?", commit)
        if status == "B":
            yield self.fault("The commit has a BAD GPG signature.", commit=commit, option="signature")
        elif status == "N" and policy != "optional":
            yield self.fault("The commit has NO GPG signature.", commit=commit, option="signature")
        elif status == "U" and policy == "trusted":
            yield self.fault("The commit has an UNTRUSTED GPG signature.", commit=commit, option="signature")

    def commit_faults(self, context: "RepositoryContext", commit: CommitRecord) -> Iterable[Fault]:
        yield from self.match_faults(context, commit)
        yield from self.merge_faults(context, commit)
        yield from self.canonical_faults(context, commit)
        yield from self.signature_faults(context, commit.commit)

    def check_ref(self, context: "RepositoryContext", ref: str) -> Iterable[Fault]:
        old, new = context.refs.range_for(ref)
        commits = list(context.walker.commits_in_range(old, new))
        limit = context.config.get_int(self.section, "push-limit")
        if limit and len(commits) > limit:
            yield self.fault(
                f"Are you sure you want to push {len(commits)} commits to this reference at once?\n"
                f"The configuration option currently allows one to push at most {limit} commits at once.",
                ref=ref,
                option="push-limit",
            )
        for commit in commits:
            yield from self.commit_faults(context, commit)

    def check_patchset(self, context: "RepositoryContext", ref: str, commit: CommitRecord) -> Iterable[Fault]:
        return self.commit_faults(context, commit)

    def check_pre_commit(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not self.ref_enabled(context, context.current_branch()):
            return
        commit = pending_commit(context.env)
        yield from self.match_faults(context, commit)
        yield from self.canonical_faults(context, commit)

    def check_post_commit(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not self.ref_enabled(context, context.current_branch()):
            return
        yield from self.signature_faults(context, context.git.run("rev-parse", "--verify", "HEAD", cache=False))
