"""Hook data models for githooks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


UNDEF_COMMIT = "0" * 40
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


class HookPoint(str, Enum):
    APPLYPATCH_MSG = "applypatch-msg"
    PRE_APPLYPATCH = "pre-applypatch"
    POST_APPLYPATCH = "post-applypatch"
    PRE_COMMIT = "pre-commit"
    PREPARE_COMMIT_MSG = "prepare-commit-msg"
    COMMIT_MSG = "commit-msg"
    POST_COMMIT = "post-commit"
    PRE_REBASE = "pre-rebase"
    POST_CHECKOUT = "post-checkout"
    POST_MERGE = "post-merge"
    PRE_PUSH = "pre-push"
    PRE_RECEIVE = "pre-receive"
    UPDATE = "update"
    POST_RECEIVE = "post-receive"
    POST_UPDATE = "post-update"
    PRE_AUTO_GC = "pre-auto-gc"
    POST_REWRITE = "post-rewrite"
    REF_UPDATE = "ref-update"
    PATCHSET_CREATED = "patchset-created"
    DRAFT_PUBLISHED = "draft-published"

    @classmethod
    def from_name(cls, name: str) -> "HookPoint":
        try:
            return cls(name)
        except ValueError as exc:
            raise ValueError(f"unknown hook: {name}") from exc

    @property
    def reads_stdin(self) -> bool:
        return self in _STDIN_HOOKS

    @property
    def is_gerrit(self) -> bool:
        return self in _GERRIT_HOOKS


_STDIN_HOOKS = frozenset(
    {HookPoint.PRE_RECEIVE, HookPoint.POST_RECEIVE, HookPoint.PRE_PUSH, HookPoint.POST_REWRITE}
)
_GERRIT_HOOKS = frozenset({HookPoint.REF_UPDATE, HookPoint.PATCHSET_CREATED, HookPoint.DRAFT_PUBLISHED})


class Operation(str, Enum):
    """What a ref update does, keyed by its ACL letter."""

    CREATE = "C"
    REWIND = "R"
    UPDATE = "U"
    DELETE = "D"

    @property
    def verb(self) -> str:
        return _OPERATION_VERBS[self]


_OPERATION_VERBS = {
    Operation.CREATE: "create",
    Operation.REWIND: "rewind/rebase",
    Operation.UPDATE: "update",
    Operation.DELETE: "delete",
}


@dataclass(frozen=True)
class RefUpdate:
    ref: str
    old: str
    new: str

    @property
    def is_create(self) -> bool:
        return self.old == UNDEF_COMMIT

    @property
    def is_delete(self) -> bool:
        return self.new == UNDEF_COMMIT


@dataclass(frozen=True)
class Identity:
    name: str
    email: str
    timestamp: int | None = None

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class CommitRecord:
    commit: str
    author: Identity
    committer: Identity
    message: str
    parents: tuple[str, ...] = ()
    files: tuple[tuple[str, str], ...] = ()

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @property
    def short_id(self) -> str:
        return self.commit[:10] if len(self.commit) == 40 else self.commit

    def file_statuses(self) -> dict[str, str]:
        return dict(self.files)


@dataclass(frozen=True)
class Fault:
    """A single policy violation or error reported back to the user."""

    message: str
    plugin: str = "githooks"
    ref: str | None = None
    commit: str | None = None
    option: str | None = None
    details: str | None = None

    def context(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("ref", self.ref),
                ("commit", self.commit),
                ("option", self.option),
            )
            if value
        }


@dataclass
class HookResult:
    handler: str
    faults: list[Fault] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.faults
