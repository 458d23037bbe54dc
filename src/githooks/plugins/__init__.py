"""Built-in policy plugins."""

from __future__ import annotations

from typing import Mapping

from .base import Plugin
from .check_commit import CheckCommit
from .check_file import CheckFile
from .check_log import CheckLog
from .check_reference import CheckReference
from .check_rewrite import CheckRewrite
from .gerrit_change_id import GerritChangeId
from .prepare_log import PrepareLog


BUILTIN_PLUGINS: dict[str, type[Plugin]] = {
    plugin.name: plugin
    for plugin in (CheckReference, CheckCommit, CheckLog, CheckFile, CheckRewrite, GerritChangeId, PrepareLog)
}


def plugin_basename(name: str) -> str:
    """``Git::Hooks::CheckLog`` and ``CheckLog`` both name the CheckLog plugin."""
    return name.rsplit("::", 1)[-1].strip()


def find_plugin(name: str, catalog: Mapping[str, type[Plugin]] | None = None) -> type[Plugin] | None:
    basename = plugin_basename(name)
    for plugin_name, plugin in (BUILTIN_PLUGINS if catalog is None else catalog).items():
        if plugin_name.lower() == basename.lower():
            return plugin
    return None


__all__ = [
    "BUILTIN_PLUGINS",
    "CheckCommit",
    "CheckFile",
    "CheckLog",
    "CheckReference",
    "CheckRewrite",
    "GerritChangeId",
    "Plugin",
    "PrepareLog",
    "find_plugin",
    "plugin_basename",
]
