"""Prepares new commit messages before the editor opens."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ..errors import ConfigError, GitHooksError
from ..types import Fault, HookPoint
from ..users import compile_regex
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

_TRAILER_PLACE_RE = re.compile(r"^trailer\s+([A-Za-z]+)\b")
_TITLE_PLACE_RE = re.compile(r"^title\s+(.+?)\s*$")


def issue_from_branch(branch: str, regex: re.Pattern[str]) -> str | None:
    """The issue id in ``branch``: the first group of the issue regex, or all it matched."""
    match = regex.search(branch)
    if not match:
        return None
    issue = match.group(2) if regex.groups > 1 and match.group(2) else match.group(1)
    return issue or None


def insert_in_title(text: str, issue: str, template: str) -> str:
    """Rewrite the first non-comment line with ``%T`` (the title) and ``%I`` (the issue)."""
    lines = text.splitlines(keepends=True)
    for index, line in enumerate(lines):
        if line.lstrip().startswith("#"):
            continue
        lines[index] = template.replace("%T", line.rstrip("\n"), 1).replace("%I", issue, 1) + "\n"
        break
    return "".join(lines)


class PrepareLog(Plugin):
    name = "PrepareLog"
    section = "preparelog"
    hooks = {HookPoint.PREPARE_COMMIT_MSG: "prepare_message"}
    defaults = (("issue-place", "title [%I] %T"),)
    admin_bypass = False

    def prepare_message(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not context.args:
            raise GitHooksError(f"the {context.hook.value} hook needs the message file argument")
        # Amends, merges, -m and -F come with a message source; those are left as they are.
        if len(context.args) > 1 and context.args[1]:
            return ()
        self.insert_issue(context, Path(context.args[0]))
        return ()

    def insert_issue(self, context: "RepositoryContext", path: Path) -> None:
        config = context.config
        spec = config.get(self.section, "issue-branch-regex")
        if not spec:
            return
        regex = compile_regex(rf"\brefs/heads/({spec})\b", option=self.option("issue-branch-regex"))
        branch = context.current_branch()
        if branch is None:
            return
        issue = issue_from_branch(branch, regex)
        if issue is None:
            return
        place = config.get(self.section, "issue-place") or ""
        trailer = _TRAILER_PLACE_RE.match(place)
        title = _TITLE_PLACE_RE.match(place)
        if trailer:
            key = trailer.group(1).capitalize()
            context.git.run("interpret-trailers", "--in-place", "--trailer", f"{key}:{issue}", str(path), cache=False)
        elif title:
            encoding = context.message_encoding()
            text = path.read_text(encoding=encoding)
            path.write_text(insert_in_title(text, issue, title.group(1)), encoding=encoding)
        else:
            raise ConfigError(f"invalid value '{place}'", option=self.option("issue-place"))
        logger.info("%s: inserted issue %s from %s", self.name, issue, branch)
