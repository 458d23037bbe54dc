"""Policies on the files added, modified or deleted by commits."""

from __future__ import annotations

import fnmatch
import logging
import re
import shlex
import tempfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Iterable

from ..acl import FILE_ACTIONS, AclTable
from ..errors import CommandTimeout, ConfigError, GitCommandError
from ..git import run_command
from ..types import CommitRecord, Fault, HookPoint, UNDEF_COMMIT
from ..users import compile_regex
from .base import Plugin

if TYPE_CHECKING:
    from ..context import RepositoryContext


logger = logging.getLogger(__name__)

INDEX_REV = ":0"

_CLOSING = {"(": ")", "[": "]", "{": "}", "<": ">"}
_FILE_VERBS = {"A": "add", "M": "modify", "D": "delete"}


def compile_name_pattern(pattern: str, *, option: str | None = None) -> re.Pattern[str]:
    """``qr/regex/`` style patterns are regexes, anything else is a glob."""
    if pattern.startswith("qr") and len(pattern) > 3:
        opener = pattern[2]
        closer = _CLOSING.get(opener, opener)
        if pattern.endswith(closer):
            return compile_regex(pattern[3:-1], option=option)
    return re.compile(fnmatch.translate(pattern))


class CheckFile(Plugin):
    name = "CheckFile"
    section = "checkfile"
    hooks = {
        HookPoint.PRE_APPLYPATCH: "check_commit",
        HookPoint.PRE_COMMIT: "check_commit",
        HookPoint.UPDATE: "check_affected_refs",
        HookPoint.PRE_RECEIVE: "check_affected_refs",
        HookPoint.REF_UPDATE: "check_affected_refs",
        HookPoint.PATCHSET_CREATED: "check_gerrit_patchset",
        HookPoint.DRAFT_PUBLISHED: "check_gerrit_patchset",
    }
    defaults = (("sizelimit", "0"),)

    def acl_table(self, context: "RepositoryContext") -> AclTable:
        cache = context.cache(self.name)
        if "acl" not in cache:
            cache["acl"] = AclTable.from_config(context.config.get_all(self.section, "acl"), FILE_ACTIONS, self.option("acl"))
        return cache["acl"]

    def acl_faults(self, context: "RepositoryContext", rev: str, changes: Iterable[tuple[str, str]]) -> Iterable[Fault]:
        table = self.acl_table(context)
        if not table:
            return
        user = context.authenticated_user()
        if user is None:
            yield self.fault("cannot grok authenticated username", commit=None if rev == INDEX_REV else rev, option="acl")
            return
        for path, status in changes:
            action = status if status in FILE_ACTIONS else "M"
            verdict = table.evaluate(user, action, path, context.users)
            if not verdict.allowed:
                yield self.fault(
                    f"you ({user}) cannot {_FILE_VERBS[action]} file {path}",
                    commit=None if rev == INDEX_REV else rev,
                    option="acl",
                    details=verdict.reason,
                )

    def name_checks(self, context: "RepositoryContext") -> list[tuple[re.Pattern[str], str]]:
        checks: list[tuple[re.Pattern[str], str]] = []
        for spec in context.config.get_all(self.section, "name"):
            pattern, _sep, command = spec.strip().partition(" ")
            if not command.strip():
                raise ConfigError(f"invalid name check '{spec}', expected 'PATTERN COMMAND'", option=self.option("name"))
            checks.append((compile_name_pattern(pattern, option=self.option("name")), command.strip()))
        return checks

    def run_checker(self, context: "RepositoryContext", rev: str, path: str, command: str) -> Fault | None:
        try:
            argv = shlex.split(command)
        except ValueError as exc:
            raise ConfigError(f"cannot parse command '{command}'", option=self.option("name"), details=str(exc)) from exc
        if not any("{}" in arg for arg in argv):
            argv.append("{}")
        timeout = context.config.get_int("githooks", "timeout", 60) or None
        with tempfile.TemporaryDirectory(prefix="githooks-") as tmp:
            tmpfile = Path(tmp) / PurePosixPath(path).name
            tmpfile.write_bytes(context.walker.blob(rev, path))
            real_argv = [arg.replace("{}", str(tmpfile)) for arg in argv]
            shown = " ".join(arg.replace("{}", path) for arg in argv)
            env = dict(context.env, GIT_COMMIT=rev)
            commit = None if rev == INDEX_REV else rev
            try:
                result = run_command(real_argv, cwd=context.git.cwd, env=env, timeout=timeout)
            except CommandTimeout as exc:
                return self.fault(f"Command '{shown}' {exc.describe_status()}", commit=commit,
                                  details=(exc.stdout + exc.stderr).replace(str(tmpfile), path).strip() or None)
            except GitCommandError as exc:
                return self.fault(f"Command '{shown}' could not be executed", commit=commit, details=exc.stderr)
            if result.returncode == 0:
                return None
            output = (result.stdout + result.stderr).decode("utf-8", errors="replace").replace(str(tmpfile), path)
            if result.returncode < 0:
                message = f"Command '{shown}' was killed by signal {-result.returncode}"
            else:
                message = f"Command '{shown}' failed with exit code {result.returncode}"
            return self.fault(message, commit=commit, details=output.strip() or None)

    def new_file_faults(self, context: "RepositoryContext", rev: str, files: list[str]) -> Iterable[Fault]:
        if not files:
            return
        config = context.config
        commit = None if rev == INDEX_REV else rev
        name_checks = self.name_checks(context)
        sizelimit = config.get_int(self.section, "sizelimit")
        lists = {
            (kind, verdict): [
                compile_regex(spec, option=self.option(f"{kind}.{verdict}"))
                for spec in config.get_all(f"{self.section}.{kind}", verdict)
            ]
            for kind in ("basename", "path")
            for verdict in ("deny", "allow")
        }
        size_specs: list[tuple[re.Pattern[str], int]] = []
        for spec in config.get_all(f"{self.section}.basename", "sizelimit"):
            parts = spec.split(None, 1)
            if len(parts) != 2 or not parts[0].isdigit():
                raise ConfigError(f"invalid basename.sizelimit '{spec}', expected 'BYTES REGEX'",
                                  option=self.option("basename.sizelimit"))
            size_specs.insert(0, (compile_regex(parts[1], option=self.option("basename.sizelimit")), int(parts[0])))
        executable = [compile_name_pattern(spec) for spec in config.get_all(self.section, "executable")]
        not_executable = [compile_name_pattern(spec) for spec in config.get_all(self.section, "not-executable")]

        for path in files:
            basename = PurePosixPath(path).name
            for kind, target in (("basename", basename), ("path", path)):
                if any(regex.search(target) for regex in lists[(kind, "deny")]) and not any(
                    regex.search(target) for regex in lists[(kind, "allow")]
                ):
                    yield self.fault(f"The file '{path}' {kind} is not allowed.",
                                     commit=commit, option=f"{kind}.{{allow,deny}}")
                    break
            else:
                limit = next((bytes_ for regex, bytes_ in size_specs if regex.search(basename)), sizelimit)
                if limit:
                    size = context.walker.file_size(rev, path)
                    if size > limit:
                        yield self.fault(
                            f"The file '{path}' is too big.\nIt has {size} bytes but the current limit is {limit} bytes.",
                            commit=commit,
                            option="[basename.]sizelimit",
                        )
                        continue
                for regex, command in name_checks:
                    if regex.search(basename):
                        fault = self.run_checker(context, rev, path, command)
                        if fault:
                            yield fault
                yield from self._mode_faults(context, rev, path, basename, executable, not_executable)

    def _mode_faults(
        self,
        context: "RepositoryContext",
        rev: str,
        path: str,
        basename: str,
        executable: list[re.Pattern[str]],
        not_executable: list[re.Pattern[str]],
    ) -> Iterable[Fault]:
        want_x = any(regex.search(basename) for regex in executable)
        want_not_x = any(regex.search(basename) for regex in not_executable)
        if not (want_x or want_not_x):
            return
        commit = None if rev == INDEX_REV else rev
        if want_x and want_not_x:
            yield self.fault(f"The file '{path}' matches both an executable and a not-executable option.",
                             commit=commit, option="[not-]executable")
            return
        mode = context.walker.file_mode(rev, path) or 0
        if want_x and not mode & 0o1:
            yield self.fault(f"The file '{path}' is not executable but should be.", commit=commit, option="executable")
        if want_not_x and mode & 0o1:
            yield self.fault(f"The file '{path}' is executable but should not be.", commit=commit, option="not-executable")

    def check_commit(self, context: "RepositoryContext") -> Iterable[Fault]:
        if not self.ref_enabled(context, context.current_branch()):
            return
        walker = context.walker
        yield from self.acl_faults(context, INDEX_REV, walker.file_changes_in_index("AMD"))
        yield from self.new_file_faults(context, INDEX_REV, walker.files_in_index("AM"))

    def check_ref(self, context: "RepositoryContext", ref: str) -> Iterable[Fault]:
        old, new = context.refs.range_for(ref)
        if new == UNDEF_COMMIT:
            return
        walker = context.walker
        yield from self.acl_faults(context, new, walker.file_changes_in_range("AMD", old, new))
        yield from self.new_file_faults(context, new, walker.files_in_range("AM", old, new))

    def check_patchset(self, context: "RepositoryContext", ref: str, commit: CommitRecord) -> Iterable[Fault]:
        walker = context.walker
        yield from self.acl_faults(context, commit.commit, walker.file_changes_in_commit("AMD", commit.commit))
        yield from self.new_file_faults(context, commit.commit, walker.files_in_commit("AM", commit.commit))
