"""Bounded subprocess helpers and the memoizing git command runner."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Mapping, Sequence

from .errors import CommandTimeout, GitCommandError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 60.0


def run_command(
    argv: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    input_data: bytes | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_S,
) -> subprocess.CompletedProcess[bytes]:
    """Run ``argv`` without a shell, capturing stdout and stderr.

    Raises ``CommandTimeout`` when the command outlives ``timeout`` and
    ``GitCommandError`` when it cannot be started at all. A non-zero exit
    status is returned to the caller untouched.
    """
    try:
        return subprocess.run(
            list(argv),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            input=input_data,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(argv, timeout or 0, stdout=_decode(exc.stdout), stderr=_decode(exc.stderr)) from exc
    except OSError as exc:
        raise GitCommandError(argv, None, stderr=str(exc)) from exc


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


class GitRunner:
    """Runs git commands for one invocation and memoizes their output.

    The cache is keyed by the argument vector and guarded by a lock so that
    handlers running on worker threads may share one runner.
    """

    def __init__(
        self,
        cwd: str | Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT_S,
        git: str = "git",
    ) -> None:
        self.cwd = Path(cwd) if cwd else None
        self.env = dict(env) if env is not None else dict(os.environ)
        self.timeout = timeout
        self.git = git
        self._cache: dict[tuple[str, ...], str] = {}
        self._lock = threading.Lock()

    def run_bytes(self, *args: str, input_data: bytes | None = None) -> bytes:
        argv = [self.git, *args]
        logger.debug("running %s", argv)
        result = run_command(argv, cwd=self.cwd, env=self.env, input_data=input_data, timeout=self.timeout)
        if result.returncode != 0:
            raise GitCommandError(argv, result.returncode, stderr=_decode(result.stderr), stdout=_decode(result.stdout))
        return result.stdout

    def run(self, *args: str, strip: bool = True, cache: bool = True) -> str:
        key = (*args, "strip" if strip else "raw")
        if cache:
            with self._lock:
                if key in self._cache:
                    return self._cache[key]
        output = _decode(self.run_bytes(*args))
        if strip:
            output = output.rstrip("\n")
        if cache:
            with self._lock:
                self._cache.setdefault(key, output)
        return output

    def lines(self, *args: str) -> list[str]:
        output = self.run(*args)
        return output.split("\n") if output else []

    def try_run(self, *args: str) -> str | None:
        try:
            return self.run(*args)
        except GitCommandError:
            return None

    def git_dir(self) -> Path:
        path = Path(self.run("rev-parse", "--git-dir"))
        if not path.is_absolute() and self.cwd is not None:
            path = self.cwd / path
        return path.resolve()

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)
