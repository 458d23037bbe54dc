"""External hook scripts run after the built-in plugins."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import CommandTimeout, GitCommandError
from .git import run_command
from .types import Fault

if TYPE_CHECKING:
    from .context import RepositoryContext


logger = logging.getLogger(__name__)

EXTERNALS_PLUGIN = "githooks.externals"


def external_hook_dirs(context: "RepositoryContext") -> list[Path]:
    """``<dir>/<hook>`` for every ``githooks.hooks`` directory and ``<git-dir>/hooks.d``."""
    bases = [Path(value).expanduser() for value in context.config.get_all("githooks", "hooks")]
    bases.append(context.git_dir() / "hooks.d")
    return [base / context.hook.value for base in bases if (base / context.hook.value).is_dir()]


def external_hooks(context: "RepositoryContext") -> list[Path]:
    scripts: list[Path] = []
    for directory in external_hook_dirs(context):
        for path in sorted(directory.iterdir()):
            if path.is_file() and os.access(path, os.X_OK):
                scripts.append(path)
    return scripts


def run_external_hook(context: "RepositoryContext", script: Path, timeout: float | None) -> Fault | None:
    stdin = None
    if context.hook.reads_stdin:
        stdin = "".join(f"{line}\n" for line in context.input_lines).encode("utf-8")
    try:
        result = run_command([str(script), *context.args], cwd=context.git.cwd, env=context.env,
                             input_data=stdin, timeout=timeout)
    except CommandTimeout as exc:
        return Fault(f"external hook '{script}' {exc.describe_status()}", plugin=EXTERNALS_PLUGIN,
                     details=(exc.stdout + exc.stderr).strip() or None)
    except GitCommandError as exc:
        return Fault(f"failed to execute external hook '{script}'", plugin=EXTERNALS_PLUGIN,
                     details=exc.stderr or None)
    output = (result.stdout + result.stderr).decode("utf-8", errors="replace").strip()
    if result.returncode == 0:
        if output:
            logger.info("external hook %s: %s", script, output)
        return None
    if result.returncode < 0:
        message = f"external hook '{script}' died with signal {-result.returncode}"
    else:
        message = f"external hook '{script}' exited abnormally with value {result.returncode}"
    return Fault(message, plugin=EXTERNALS_PLUGIN, details=output or None)


def invoke_external_hooks(context: "RepositoryContext") -> list[Fault]:
    if os.name == "nt" or not context.config.get_bool("githooks", "externals", True):
        return []
    timeout = context.config.get_int("githooks", "timeout", 60) or None
    faults: list[Fault] = []
    for script in external_hooks(context):
        logger.debug("running external hook %s", script)
        fault = run_external_hook(context, script, timeout)
        if fault:
            faults.append(fault)
    return faults
