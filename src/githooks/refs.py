"""Affected references of a hook invocation and their classification."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from .errors import GitCommandError, GitHooksError
from .git import GitRunner
from .types import UNDEF_COMMIT, HookPoint, Operation, RefUpdate


logger = logging.getLogger(__name__)

BRANCH_PREFIX = "refs/heads/"


def parse_update_args(args: Sequence[str]) -> list[RefUpdate]:
    """``update REF OLD NEW``"""
    if len(args) != 3:
        raise GitHooksError(f"the update hook expects 3 arguments, got {len(args)}")
    ref, old, new = args
    return [RefUpdate(ref, old, new)]


def parse_receive_lines(lines: Iterable[str]) -> list[RefUpdate]:
    """``OLD NEW REF`` lines of pre-receive and post-receive."""
    updates: list[RefUpdate] = []
    for line in lines:
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 3:
            raise GitHooksError(f"malformed receive line: {line.strip()!r}")
        old, new, ref = fields
        updates.append(RefUpdate(ref, old, new))
    return updates


def parse_push_lines(lines: Iterable[str]) -> list[RefUpdate]:
    """``LOCAL_REF LOCAL_SHA REMOTE_REF REMOTE_SHA`` lines of pre-push."""
    updates: list[RefUpdate] = []
    for line in lines:
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 4:
            raise GitHooksError(f"malformed pre-push line: {line.strip()!r}")
        _local_ref, local_sha, remote_ref, remote_sha = fields
        updates.append(RefUpdate(remote_ref, remote_sha, local_sha))
    return updates


def parse_gerrit_ref_update(options: Mapping[str, str]) -> list[RefUpdate]:
    try:
        refname = options["--refname"]
        old = options["--oldrev"]
        new = options["--newrev"]
    except KeyError as exc:
        raise GitHooksError(f"missing {exc.args[0]} argument to the ref-update hook") from exc
    if not refname.startswith("refs/"):
        refname = BRANCH_PREFIX + refname
    return [RefUpdate(refname, old, new)]


class RefRangeResolver:
    """Normalised view of the references touched by one hook invocation.

    Every hook flavour is reduced to an ordered mapping ``ref -> (old, new)``.
    Hooks that do not carry reference input have ``has_refs`` false and
    asking them for affected refs is an error.
    """

    def __init__(self, git: GitRunner, updates: Iterable[RefUpdate] | None = None) -> None:
        self.git = git
        self._updates: dict[str, RefUpdate] | None = None
        if updates is not None:
            self._updates = {}
            for update in updates:
                self._updates[update.ref] = update
        self._operations: dict[tuple[str, str, str], Operation] = {}

    @classmethod
    def for_hook(
        cls,
        git: GitRunner,
        hook: HookPoint,
        args: Sequence[str] = (),
        input_lines: Sequence[str] = (),
        gerrit_options: Mapping[str, str] | None = None,
    ) -> "RefRangeResolver":
        if hook is HookPoint.UPDATE:
            return cls(git, parse_update_args(args))
        if hook in (HookPoint.PRE_RECEIVE, HookPoint.POST_RECEIVE):
            return cls(git, parse_receive_lines(input_lines))
        if hook is HookPoint.PRE_PUSH:
            return cls(git, parse_push_lines(input_lines))
        if hook is HookPoint.REF_UPDATE:
            return cls(git, parse_gerrit_ref_update(gerrit_options or {}))
        return cls(git)

    @property
    def has_refs(self) -> bool:
        return self._updates is not None

    def _table(self) -> dict[str, RefUpdate]:
        if self._updates is None:
            raise GitHooksError("no affected refs set for this hook")
        return self._updates

    def affected_refs(self) -> list[str]:
        return list(self._table())

    def updates(self) -> list[RefUpdate]:
        return list(self._table().values())

    def range_for(self, ref: str) -> tuple[str, str]:
        table = self._table()
        if ref not in table:
            raise GitHooksError(f"no such affected ref: {ref}")
        update = table[ref]
        return update.old, update.new

    def operation(self, ref: str) -> Operation:
        old, new = self.range_for(ref)
        return self.classify(ref, old, new)

    def classify(self, ref: str, old: str, new: str) -> Operation:
        if new == UNDEF_COMMIT:
            return Operation.DELETE
        if old == UNDEF_COMMIT:
            return Operation.CREATE
        if not ref.startswith(BRANCH_PREFIX):
            return Operation.REWIND
        key = (ref, old, new)
        if key not in self._operations:
            self._operations[key] = self._fast_forward(old, new)
        return self._operations[key]

    def _fast_forward(self, old: str, new: str) -> Operation:
        try:
            merge_base = self.git.run("merge-base", old, new)
        except GitCommandError as exc:
            logger.info("merge-base %s %s failed (%s), assuming a rewind", old, new, exc.describe_status())
            return Operation.REWIND
        return Operation.UPDATE if merge_base == old else Operation.REWIND
