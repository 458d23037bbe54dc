"""Per-invocation repository context shared by all handlers."""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from .commits import CommitWalker
from .config import ConfigStore
from .errors import ConfigError, GitCommandError, GitHooksError
from .git import GitRunner
from .refs import RefRangeResolver
from .types import Fault, HookPoint
from .users import UserMatcher, compile_regex


logger = logging.getLogger(__name__)

_GERRIT_USER_OPTIONS = ("--uploader", "--author", "--submitter", "--abandoner", "--restorer", "--reviewer")
_GERRIT_USER_RE = re.compile(r"([^(]+)\s+\(([^)]+)\)")

PostHook = Callable[["RepositoryContext", "list[Fault]", "str | None"], None]


def parse_gerrit_options(args: Sequence[str]) -> dict[str, str]:
    """Gerrit hooks receive ``--option value`` pairs."""
    if len(args) % 2:
        raise GitHooksError(f"odd number of arguments to a Gerrit hook: {' '.join(args)}")
    return {args[index]: args[index + 1] for index in range(0, len(args), 2)}


def gerrit_user(options: Mapping[str, str]) -> tuple[str, str] | None:
    for name in _GERRIT_USER_OPTIONS:
        value = options.get(name)
        if value:
            match = _GERRIT_USER_RE.search(value)
            if match:
                return match.group(1).strip(), match.group(2).strip()
            return None
    return None


def is_ref_enabled(ref: str | None, specs: Iterable[str]) -> bool:
    specs = list(specs)
    if ref is None or not specs:
        return True
    for spec in specs:
        if spec.startswith("^"):
            if compile_regex(spec).search(ref):
                return True
        elif ref == spec:
            return True
    return False


class RepositoryContext:
    """Everything one hook invocation knows about the repository.

    The context owns the git runner (and therefore the command cache), the
    configuration view, the affected references and per-plugin caches. It is
    created by the dispatcher for a single invocation and thrown away after.
    """

    def __init__(
        self,
        *,
        git: GitRunner,
        config: ConfigStore,
        hook: HookPoint,
        args: Sequence[str] = (),
        input_lines: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.git = git
        self.config = config
        self.hook = hook
        self.args = list(args)
        self.input_lines = list(input_lines)
        self.env = dict(env) if env is not None else dict(os.environ)
        self.gerrit_options: dict[str, str] = {}
        if hook.is_gerrit:
            self.gerrit_options = parse_gerrit_options(self.args)
            user = gerrit_user(self.gerrit_options)
            if user:
                self.env["GERRIT_USER_NAME"], self.env["GERRIT_USER_EMAIL"] = user
        self.refs = RefRangeResolver.for_hook(git, hook, self.args, self.input_lines, self.gerrit_options)
        self.walker = CommitWalker(git, hook)
        self.post_hooks: list[PostHook] = []
        self._users: UserMatcher | None = None
        self._caches: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._user_resolved = False
        self._user: str | None = None

    @property
    def users(self) -> UserMatcher:
        if self._users is None:
            self._users = UserMatcher.from_config(self.config)
        return self._users

    def cache(self, section: str) -> dict[str, Any]:
        with self._lock:
            return self._caches.setdefault(section, {})

    def authenticated_user(self) -> str | None:
        if not self._user_resolved:
            userenv = self.config.get("githooks", "userenv")
            if userenv:
                if userenv not in self.env:
                    raise ConfigError(
                        f"the environment variable named by githooks.userenv ({userenv}) is not defined",
                        option="githooks.userenv",
                    )
                self._user = self.env[userenv]
            else:
                self._user = self.env.get("GERRIT_USER_EMAIL") or self.env.get("USER") or None
            self._user_resolved = True
        return self._user

    def is_admin(self) -> bool:
        return self.users.is_admin(self.authenticated_user())

    def repository_name(self) -> str:
        project = self.gerrit_options.get("--project")
        if project:
            return project
        if "STASH_REPO_NAME" in self.env:
            return f"{self.env.get('STASH_PROJECT_KEY', '')}/{self.env['STASH_REPO_NAME']}"
        git_dir = self.git_dir()
        return git_dir.parent.name if git_dir.name == ".git" else git_dir.name

    def git_dir(self) -> Path:
        return self.git.git_dir()

    def current_branch(self) -> str | None:
        try:
            return self.git.run("symbolic-ref", "HEAD")
        except GitCommandError:
            return None

    def message_encoding(self) -> str:
        return self.config.get("i18n", "commitencoding") or "utf-8"

    def is_ref_enabled(self, ref: str | None, specs: Iterable[str]) -> bool:
        return is_ref_enabled(ref, specs)

    def post_hook(self, callback: PostHook) -> None:
        self.post_hooks.append(callback)
