"""Inserts Gerrit Change-Id footers in new commit messages."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ..errors import GitHooksError
from ..message import CommitMessage, read_message_file
from ..types import Fault, HookPoint
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

_CHANGE_ID_RE = re.compile(r"^Change-Id:", re.IGNORECASE | re.MULTILINE)

# Inputs hashed into a new Change-Id; any of them may be missing in a fresh repository.
_ID_SOURCES = (
    ("tree", ("write-tree",)),
    ("parent", ("rev-parse", "HEAD^0")),
    ("author", ("var", "GIT_AUTHOR_IDENT")),
    ("committer", ("var", "GIT_COMMITTER_IDENT")),
)


def needs_change_id(message: CommitMessage, text: str) -> bool:
    """Messages that already carry a Change-Id or say nothing at all are left alone."""
    if _CHANGE_ID_RE.search(text):
        return False
    if (message.title or "").strip() or (message.body or "").strip():
        return True
    keys = message.footer_keys()
    return bool(keys) and keys != ["signed-off-by"]


class GerritChangeId(Plugin):
    name = "GerritChangeId"
    section = "gerritchangeid"
    hooks = {
        HookPoint.APPLYPATCH_MSG: "rewrite_message",
        HookPoint.COMMIT_MSG: "rewrite_message",
    }
    admin_bypass = False

    def change_id(self, context: "RepositoryContext", text: str) -> str:
        lines = []
        for label, args in _ID_SOURCES:
            value = context.git.try_run(*args)
            if value is not None:
                lines.append(f"{label} {value}\n")
        payload = "".join(lines) + "\n" + text
        digest = context.git.run_bytes("hash-object", "-t", "blob", "--stdin", input_data=payload.encode("utf-8"))
        return "I" + digest.decode("ascii").strip()

    def rewrite_message(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not context.args:
            raise GitHooksError(f"the {context.hook.value} hook needs the message file argument")
        path = Path(context.args[0])
        encoding = context.message_encoding()
        text = read_message_file(path, encoding)
        message = CommitMessage.parse(text)
        if not needs_change_id(message, text):
            return ()
        # Gerrit expects the Change-Id above Signed-off-by and friends.
        message.footer = {"change-id": [("Change-Id", self.change_id(context, message.as_string()))], **message.footer}
        path.write_text(message.as_string(), encoding=encoding)
        logger.info("%s: inserted %s", self.name, message.footer_values("change-id")[0])
        return ()
