"""Hook dispatch: plugin loading, handler execution and the final decision."""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .config import DEFAULT_OPTIONS, ConfigStore
from .context import RepositoryContext, parse_gerrit_options
from .errors import ConfigError, FatalHookError, GitCommandError, GitHooksError
from .externals import invoke_external_hooks
from .gerrit import PatchsetVoter
from .git import GitRunner, run_command
from .plugins import BUILTIN_PLUGINS, Plugin, find_plugin, plugin_basename
from .registry import HookRegistry
from .types import Fault, HookPoint, HookResult
from .users import UserMatcher


logger = logging.getLogger(__name__)

DISPATCHER_PLUGIN = "githooks"
AMEND_HINT = "ATTENTION: To fix the problems in this commit, please consider amending it:\n\n        git commit --amend"
_COMMIT_HOOKS = frozenset({HookPoint.PRE_COMMIT, HookPoint.COMMIT_MSG})
_PATCHSET_HOOKS = frozenset({HookPoint.PATCHSET_CREATED, HookPoint.DRAFT_PUBLISHED})


class DispatchState(str, Enum):
    IDLE = "idle"
    CONFIG_RESOLVED = "config-resolved"
    HANDLERS_RUNNING = "handlers-running"
    DECIDED = "decided"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class DispatchResult:
    hook: HookPoint
    state: DispatchState = DispatchState.IDLE
    faults: list[Fault] = field(default_factory=list)
    results: list[HookResult] = field(default_factory=list)
    plugins: list[str] = field(default_factory=list)
    report: str = ""
    abort: bool = True

    @property
    def accepted(self) -> bool:
        return self.state is DispatchState.ACCEPTED

    @property
    def exit_code(self) -> int:
        return 0 if self.accepted or not self.abort else 1


def sort_faults(faults: Sequence[Fault]) -> list[Fault]:
    """Order faults by ref, then commit, then plugin; ties keep their order."""
    return sorted(faults, key=lambda fault: (fault.ref or "", fault.commit or "", fault.plugin))


def render_fault(fault: Fault) -> str:
    lines = [f"[{fault.plugin}] {fault.message}"]
    for key, value in fault.context().items():
        lines.append(f"  {key}: {value}")
    if fault.details:
        lines.append("  details:")
        lines.extend(f"    {line}" if line else "" for line in fault.details.rstrip("\n").split("\n"))
    return "\n".join(lines)


def render_report(
    faults: Sequence[Fault],
    header: str | None = None,
    footer: str | None = None,
    amend_hint: bool = False,
) -> str:
    """One block per fault, framed by the optional header and footer."""
    if not faults:
        return ""
    parts: list[str] = []
    if header:
        parts.append(header.rstrip("\n"))
    parts.append("\n\n".join(render_fault(fault) for fault in faults))
    if amend_hint:
        parts.append(AMEND_HINT)
    if footer:
        parts.append(footer.rstrip("\n"))
    return "\n\n".join(parts) + "\n"


def run_frame_command(command: str | None, *, cwd: Path | None, env: Mapping[str, str], timeout: float | None) -> str | None:
    """Output of the error-header/error-footer command, or None when unusable."""
    if not command:
        return None
    try:
        result = run_command(shlex.split(command), cwd=cwd, env=env, timeout=timeout)
    except (GitCommandError, ValueError) as exc:
        logger.warning("cannot run %r: %s", command, exc)
        return None
    if result.returncode != 0:
        logger.warning("%r exited with code %s", command, result.returncode)
    return result.stdout.decode("utf-8", errors="replace")


class HookDispatcher:
    """Runs one hook invocation from configuration to decision.

    The dispatcher holds no state between invocations: every call of
    ``dispatch`` builds its own configuration view, registry and
    RepositoryContext and throws them away when it returns.
    """

    def __init__(
        self,
        catalog: Mapping[str, type[Plugin]] | None = None,
        *,
        runner_factory: Callable[..., GitRunner] = GitRunner,
    ) -> None:
        self._catalog = dict(catalog if catalog is not None else BUILTIN_PLUGINS)
        self._runner_factory = runner_factory

    def enabled_plugins(self, config: ConfigStore, env: Mapping[str, str]) -> list[str]:
        """Names listed in ``githooks.plugin`` minus the disabled ones, in order."""
        disabled = {plugin_basename(name) for value in config.get_all("githooks", "disable") for name in value.split()}
        names: list[str] = []
        for value in config.get_all("githooks", "plugin"):
            for name in value.split():
                basename = plugin_basename(name)
                if name in names:
                    continue
                if basename in disabled:
                    logger.info("plugin %s disabled by githooks.disable", name)
                    continue
                if basename in env and env[basename] in ("", "0"):
                    logger.info("plugin %s disabled by environment variable %s", name, basename)
                    continue
                names.append(name)
        return names

    def load_plugins(self, config: ConfigStore, env: Mapping[str, str]) -> tuple[HookRegistry, list[str]]:
        registry = HookRegistry()
        loaded: list[str] = []
        for name in self.enabled_plugins(config, env):
            plugin_cls = find_plugin(name, self._catalog)
            if plugin_cls is None:
                raise FatalHookError(f"can't find enabled plugin {name}")
            if plugin_cls.name in loaded:
                continue
            plugin = plugin_cls()
            plugin.apply_defaults(config)
            plugin.register(registry)
            loaded.append(plugin_cls.name)
        registry.freeze()
        logger.info("loaded plugins: %s", ", ".join(loaded) or "(none)")
        return registry, loaded

    def dispatch(
        self,
        hook: HookPoint | str,
        args: Sequence[str] = (),
        input_lines: Sequence[str] = (),
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        config: ConfigStore | None = None,
        overrides: Path | None = None,
    ) -> DispatchResult:
        hook = hook if isinstance(hook, HookPoint) else HookPoint.from_name(hook)
        env = dict(env) if env is not None else dict(os.environ)
        result = DispatchResult(hook=hook)
        git = self._runner_factory(cwd, env=env)
        try:
            config = ConfigStore.load(git, overrides) if config is None else config.copy()
            for section, key, value in DEFAULT_OPTIONS:
                config.set_default(section, key, value)
            git.timeout = config.get_int("githooks", "timeout", 60) or None
            if hook in _PATCHSET_HOOKS and parse_gerrit_options(args).get("--is-draft") == "true":
                logger.info("skipping draft change")
                result.state = DispatchState.ACCEPTED
                return result
            registry, result.plugins = self.load_plugins(config, env)
            self._check_groups(config)
            result.state = DispatchState.CONFIG_RESOLVED
            context = RepositoryContext(git=git, config=config, hook=hook, args=args, input_lines=input_lines, env=env)
            if hook in _PATCHSET_HOOKS and result.plugins:
                context.post_hook(PatchsetVoter())
            result.state = DispatchState.HANDLERS_RUNNING
            self._run_handlers(context, registry, result)
            result.state = DispatchState.DECIDED
            self._finish(context, result)
        except GitHooksError as exc:
            expected = isinstance(exc, (FatalHookError, ConfigError))
            logger.error("rejecting %s hook: %s", hook.value, exc, exc_info=not expected)
            result.faults = [Fault(str(exc), plugin=DISPATCHER_PLUGIN, option=getattr(exc, "option", None))]
            result.state = DispatchState.REJECTED
            result.report = render_report(result.faults)
        return result

    def _check_groups(self, config: ConfigStore) -> None:
        # A broken group table rejects the invocation before any handler runs.
        UserMatcher.from_config(config)

    def _run_handlers(self, context: RepositoryContext, registry: HookRegistry, result: DispatchResult) -> None:
        fail_fast = context.config.get_bool("githooks", "fail-fast")
        for handler in registry.handlers(context.hook):
            outcome = handler.run(context)
            result.results.append(outcome)
            if not outcome.ok and fail_fast:
                logger.info("stopping after %s because githooks.fail-fast is set", handler.name)
                break
        else:
            external = invoke_external_hooks(context)
            if external:
                result.results.append(HookResult(handler="githooks.externals", faults=external))
        faults = [fault for outcome in result.results for fault in outcome.faults]
        result.faults = sort_faults(faults)

    def _finish(self, context: RepositoryContext, result: DispatchResult) -> None:
        config = context.config
        hook = context.hook
        if hook in _COMMIT_HOOKS:
            result.abort = config.get_bool("githooks", "abort-commit", True)
        result.report = self._render(context, result)
        for post_hook in context.post_hooks:
            try:
                post_hook(context, list(result.faults), result.report or None)
            except FatalHookError:
                raise
            except GitHooksError as exc:
                logger.error("post-hook of %s failed: %s", hook.value, exc)
                result.faults.append(Fault(str(exc), plugin=DISPATCHER_PLUGIN))
                result.report = self._render(context, result)
        result.state = DispatchState.REJECTED if result.faults else DispatchState.ACCEPTED
        logger.info("%s hook %s with %d fault(s)", hook.value, result.state.value, len(result.faults))

    def _render(self, context: RepositoryContext, result: DispatchResult) -> str:
        if not result.faults:
            return ""
        config = context.config
        frame = {"cwd": context.git.cwd, "env": context.env, "timeout": context.git.timeout}
        return render_report(
            result.faults,
            header=run_frame_command(config.get("githooks", "error-header"), **frame),
            footer=run_frame_command(config.get("githooks", "error-footer"), **frame),
            amend_hint=context.hook in _COMMIT_HOOKS and not result.abort,
        )
