"""Commit enumeration and file filters backed by git plumbing commands."""

from __future__ import annotations

import logging
import re
from typing import Iterator, Mapping, Sequence

from .git import GitRunner
from .types import EMPTY_TREE, UNDEF_COMMIT, CommitRecord, HookPoint, Identity


logger = logging.getLogger(__name__)

_RECORD = "\x1e"
_FIELD = "\x1f"
# commit, parents, author name/email/time, committer name/email/time, raw body
LOG_FORMAT = _RECORD + _FIELD.join(("%H", "%P", "%an", "%ae", "%at", "%cn", "%ce", "%ct", "%B")) + _FIELD
_LOG_FIELDS = 10

_SHA_RE = re.compile(r"^[0-9a-f]{40}$")

PENDING_COMMIT = "pending"


def _timestamp(value: str) -> int | None:
    return int(value) if value.strip().isdigit() else None


def parse_log(output: str) -> Iterator[CommitRecord]:
    """Yield commit records from ``git log --format=LOG_FORMAT --name-status`` output."""
    for chunk in output.split(_RECORD):
        if not chunk.strip():
            continue
        fields = chunk.split(_FIELD, _LOG_FIELDS - 1)
        if len(fields) != _LOG_FIELDS:
            logger.warning("skipping malformed log record %r", chunk[:80])
            continue
        commit, parents, an, ae, at, cn, ce, ct, message, changes = fields
        files: list[tuple[str, str]] = []
        for line in changes.splitlines():
            status, tab, path = line.partition("\t")
            if tab:
                files.append((path, status[:1]))
        yield CommitRecord(
            commit=commit,
            author=Identity(an, ae, _timestamp(at)),
            committer=Identity(cn, ce, _timestamp(ct)),
            message=message.rstrip("\n"),
            parents=tuple(parents.split()),
            files=tuple(files),
        )


def parse_name_status(output: str) -> list[tuple[str, str]]:
    """Parse ``--name-status -z`` output into (path, status) pairs."""
    tokens = [token for token in output.split("\0") if token]
    pairs: list[tuple[str, str]] = []
    for status, path in zip(tokens[::2], tokens[1::2]):
        pairs.append((path, status[:1]))
    return pairs


def pending_commit(env: Mapping[str, str]) -> CommitRecord:
    """Build the record of the commit about to be created by ``git commit``.

    At pre-commit time the commit does not exist yet, so the identities come
    from the ``GIT_AUTHOR_*`` and ``GIT_COMMITTER_*`` variables.
    """
    author = Identity(
        env.get("GIT_AUTHOR_NAME") or "nobody",
        env.get("GIT_AUTHOR_EMAIL") or "nobody@example.net",
    )
    committer = Identity(
        env.get("GIT_COMMITTER_NAME") or author.name,
        env.get("GIT_COMMITTER_EMAIL") or author.email,
    )
    return CommitRecord(commit=PENDING_COMMIT, author=author, committer=committer, message="")


class CommitWalker:
    """Enumerates the commits and files introduced by a hook invocation."""

    def __init__(self, git: GitRunner, hook: HookPoint | None = None) -> None:
        self.git = git
        self.hook = hook
        self._commits: dict[str, CommitRecord] = {}

    def log(self, *args: str) -> Iterator[CommitRecord]:
        output = self.git.run(
            "-c", "core.quotePath=false", "log", "--no-color", "--no-renames",
            f"--format={LOG_FORMAT}", "--name-status", *args,
            strip=False,
        )
        for record in parse_log(output):
            self._commits.setdefault(record.commit, record)
            yield record

    def commit(self, rev: str) -> CommitRecord:
        if _SHA_RE.match(rev) and rev in self._commits:
            return self._commits[rev]
        for record in self.log("-1", rev):
            return record
        raise LookupError(f"no commit for revision {rev}")

    def range_arguments(
        self,
        old: str,
        new: str,
        options: Sequence[str] = (),
        paths: Sequence[str] | None = None,
    ) -> list[str]:
        excludes = self.git.lines("rev-parse", "--not", "--all")
        if self.hook in (HookPoint.POST_RECEIVE, HookPoint.POST_UPDATE):
            # The pushed ref already points at new; keep new unless another ref does too.
            pointing = self.git.lines("for-each-ref", "--format", "%(refname)", "--count", "2", "--points-at", new)
            if len(pointing) == 1:
                excludes = [exclude for exclude in excludes if exclude != f"^{new}"]
        if old != UNDEF_COMMIT:
            excludes.append(f"^{old}")
        arguments = [*options, new, *excludes]
        if paths is not None:
            arguments.extend(["--", *paths])
        return arguments

    def commits_in_range(
        self,
        old: str,
        new: str,
        options: Sequence[str] = (),
        paths: Sequence[str] | None = None,
    ) -> Iterator[CommitRecord]:
        """Yield the commits reachable from ``new`` and from no existing ref.

        Nothing is yielded when ``new`` is the null commit. The underlying
        ``git log`` output is memoized by the runner, so walking the same
        range twice in one invocation does not run git again.
        """
        if new == UNDEF_COMMIT:
            return iter(())
        return self.log(*self.range_arguments(old, new, options, paths))

    def synthetic_base(self, old: str, new: str, options: Sequence[str] = ()) -> str | None:
        """Return the commit to diff ``new`` against.

        For an existing ref that is simply ``old``. For a created ref the
        oldest new commit decides: a root commit is compared with the empty
        tree, a merge with itself and anything else with its parent. None
        means nothing new was pushed.
        """
        if new == UNDEF_COMMIT:
            return None
        if old != UNDEF_COMMIT:
            return old
        oldest: CommitRecord | None = None
        for oldest in self.commits_in_range(old, new, options):
            pass
        if oldest is None:
            return None
        if not oldest.parents:
            return EMPTY_TREE
        if len(oldest.parents) == 1:
            return oldest.parents[0]
        return oldest.commit

    def file_changes_in_range(self, diff_filter: str, old: str, new: str) -> list[tuple[str, str]]:
        base = self.synthetic_base(old, new)
        if base is None:
            return []
        output = self.git.run(
            "-c", "core.quotePath=false", "diff-tree", "--name-status", "--ignore-submodules",
            "--no-commit-id", "--no-renames", "-r", "-z", f"--diff-filter={diff_filter}", base, new, "--",
            strip=False,
        )
        return parse_name_status(output)

    def files_in_range(self, diff_filter: str, old: str, new: str) -> list[str]:
        return [path for path, _status in self.file_changes_in_range(diff_filter, old, new)]

    def head_or_empty_tree(self) -> str:
        return self.git.try_run("rev-parse", "--verify", "HEAD") or EMPTY_TREE

    def file_changes_in_index(self, diff_filter: str) -> list[tuple[str, str]]:
        output = self.git.run(
            "-c", "core.quotePath=false", "diff-index", "--name-status", "--ignore-submodules",
            "--no-commit-id", "--no-renames", "--cached", "-r", "-z", f"--diff-filter={diff_filter}",
            self.head_or_empty_tree(),
            strip=False, cache=False,
        )
        return parse_name_status(output)

    def files_in_index(self, diff_filter: str) -> list[str]:
        return [path for path, _status in self.file_changes_in_index(diff_filter)]

    def file_changes_in_commit(self, diff_filter: str, commit: str) -> list[tuple[str, str]]:
        """Files changed by ``commit``; for a merge only those changed against every parent."""
        output = self.git.run(
            "-c", "core.quotePath=false", "diff-tree", "--name-status", "--ignore-submodules",
            "--no-renames", "--root", "-m", "-r", "-z", f"--diff-filter={diff_filter}", commit,
            strip=False,
        )
        tokens = [token for token in output.split("\0") if token]
        parents = 0
        counts: dict[str, int] = {}
        statuses: dict[str, str] = {}
        index = 0
        while index < len(tokens):
            token = tokens[index]
            if _SHA_RE.match(token):
                parents += 1
                index += 1
                continue
            if index + 1 >= len(tokens):
                break
            path = tokens[index + 1]
            counts[path] = counts.get(path, 0) + 1
            statuses[path] = token[:1]
            index += 2
        return [(path, statuses[path]) for path, count in counts.items() if count == max(parents, 1)]

    def files_in_commit(self, diff_filter: str, commit: str) -> list[str]:
        return [path for path, _status in self.file_changes_in_commit(diff_filter, commit)]

    def file_size(self, rev: str, path: str) -> int:
        return int(self.git.run("cat-file", "-s", f"{rev}:{path}"))

    def file_mode(self, rev: str, path: str) -> int | None:
        if rev == ":0":
            output = self.git.run("ls-files", "-s", "--", path, cache=False)
        else:
            output = self.git.run("ls-tree", rev, "--", path)
        if not output:
            return None
        return int(output.split(None, 1)[0], 8)

    def blob(self, rev: str, path: str) -> bytes:
        """Contents of ``path`` at ``rev``; ``:0`` reads the index."""
        return self.git.run_bytes("cat-file", "blob", f"{rev}:{path}")
