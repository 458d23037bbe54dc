"""Plugin framework for Git and Gerrit hooks."""

from .acl import AclRule, AclTable, TargetSpec, evaluate
from .config import ConfigStore
from .context import RepositoryContext
from .dispatcher import DispatchResult, DispatchState, HookDispatcher, render_report
from .errors import CommandTimeout, ConfigError, FatalHookError, GitCommandError, GitHooksError, GroupCycleError
from .refs import RefRangeResolver
from .types import CommitRecord, Fault, HookPoint, Operation, RefUpdate
from .users import GroupTable, UserMatcher

__all__ = [
    "AclRule",
    "AclTable",
    "CommandTimeout",
    "CommitRecord",
    "ConfigError",
    "ConfigStore",
    "DispatchResult",
    "DispatchState",
    "FatalHookError",
    "Fault",
    "GitCommandError",
    "GitHooksError",
    "GroupCycleError",
    "GroupTable",
    "HookDispatcher",
    "HookPoint",
    "Operation",
    "RefRangeResolver",
    "RefUpdate",
    "RepositoryContext",
    "TargetSpec",
    "UserMatcher",
    "evaluate",
    "render_report",
]
