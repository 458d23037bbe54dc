"""Detects unsafe amends and rebases of commits shared with other branches."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ..errors import GitCommandError
from ..types import Fault, HookPoint
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

RECORD_FILENAME = "GITHOOKS_CHECKREWRITE"


def read_record(path: Path) -> tuple[str, str] | None:
    """Return (commit, parents) saved by pre-commit, or None when there is nothing usable."""
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    if not lines or not lines[0].strip():
        return None
    commit = lines[0].strip()
    if commit.startswith("commit "):
        commit = commit[len("commit ") :].strip()
    parents = lines[1].strip() if len(lines) > 1 else ""
    return commit, parents


class CheckRewrite(Plugin):
    name = "CheckRewrite"
    section = "checkrewrite"
    hooks = {
        HookPoint.PRE_COMMIT: "record_commit_parents",
        HookPoint.POST_COMMIT: "check_commit_amend",
        HookPoint.PRE_REBASE: "check_rebase",
    }
    admin_bypass = False

    def record_path(self, context: "RepositoryContext") -> Path:
        return context.git_dir() / RECORD_FILENAME

    def _head_record(self, context: "RepositoryContext") -> str:
        try:
            return context.git.run("rev-list", "--pretty=format:%P", "-n", "1", "HEAD", cache=False)
        except GitCommandError:
            # No HEAD yet in a brand new repository.
            return ""

    def _branches_containing(self, context: "RepositoryContext", commit: str) -> list[str]:
        return context.git.lines("branch", "-a", "--format=%(refname:short)", "--contains", commit)

    def record_commit_parents(self, context: "RepositoryContext") -> Iterable[Fault]:
        self.record_path(context).write_text(self._head_record(context), encoding="utf-8")
        return ()

    def check_commit_amend(self, context: "RepositoryContext") -> Iterable[Fault]:
        record = read_record(self.record_path(context))
        if record is None:
            logger.info("%s: no usable %s, nothing to check", self.name, RECORD_FILENAME)
            return
        old_commit, old_parents = record
        head = self._head_record(context).split("\n")
        new_parents = head[1].strip() if len(head) > 1 else ""
        if new_parents != old_parents:
            return
        branches = self._branches_containing(context, old_commit)
        if branches:
            yield self.fault(
                'You just performed an unsafe "git commit --amend" because your\n'
                f"original HEAD ({old_commit}) is still reachable by the following branch(es):\n"
                "Consider amending it again with: git commit --amend",
                commit=old_commit,
                details="\n".join(branches),
            )

    def check_rebase(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not context.args:
            return
        upstream = context.args[0]
        if len(context.args) > 1:
            branch = context.args[1]
        else:
            branch = context.current_branch()
            if branch is None:
                return
        sequence = context.git.lines("rev-list", "--topo-order", "--reverse", f"{upstream}..{branch}")
        if not sequence:
            return
        short = branch[len("refs/heads/") :] if branch.startswith("refs/heads/") else branch
        branches = self._branches_containing(context, sequence[0])
        if len(branches) > 1:
            others = [name for name in branches if name != short]
            yield self.fault(
                f"You just performed an unsafe rebase because it would rewrite commits shared\n"
                f"by {short} and the following other branch(es):",
                ref=branch if branch.startswith("refs/") else f"refs/heads/{branch}",
                details="\n".join(others),
            )
