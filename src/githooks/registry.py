"""Hook handler registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable

from .errors import ConfigError, FatalHookError, GitCommandError, GroupCycleError
from .types import Fault, HookPoint, HookResult

if TYPE_CHECKING:
    from .context import RepositoryContext


logger = logging.getLogger(__name__)

HandlerCallback = Callable[["RepositoryContext"], "Iterable[Fault] | None"]


@dataclass(frozen=True)
class CallbackHandler:
    """One registered callback of a plugin for one hook point."""

    plugin: str
    name: str
    callback: HandlerCallback

    def run(self, context: "RepositoryContext") -> HookResult:
        """Run the callback and turn whatever it raises into Faults.

        Faults a generator yielded before raising are kept. Only fatal
        errors escape: they abort the whole invocation.
        """
        logger.debug("running handler %s", self.name)
        faults: list[Fault] = []
        try:
            for fault in self.callback(context) or ():
                faults.append(fault)
        except FatalHookError:
            raise
        except GroupCycleError as exc:
            raise FatalHookError(str(exc)) from exc
        except ConfigError as exc:
            faults.append(Fault(str(exc), plugin=self.plugin, option=exc.option, details=exc.details))
        except GitCommandError as exc:
            faults.append(Fault(str(exc), plugin=self.plugin, details=exc.stderr.strip() or None))
        except Exception as exc:  # noqa: BLE001
            logger.error("handler %s crashed: %s", self.name, exc, exc_info=True)
            faults.append(Fault(f"internal error in plugin {self.plugin}: {exc}", plugin=self.plugin))
        return HookResult(handler=self.name, faults=faults)


@dataclass
class HookRegistry:
    """Ordered handlers per hook point.

    Handlers are registered while plugins are loaded. Once ``freeze`` is
    called the registry is read-only for the rest of the invocation.
    """

    _handlers: dict[HookPoint, list[CallbackHandler]] = field(default_factory=dict, init=False)
    _frozen: bool = field(default=False, init=False)

    def register(self, hook: HookPoint, handler: CallbackHandler) -> None:
        if self._frozen:
            raise RuntimeError("cannot register handlers after plugin loading")
        self._handlers.setdefault(hook, []).append(handler)

    def add(self, plugin: str, hook: HookPoint, callback: HandlerCallback) -> CallbackHandler:
        handler = CallbackHandler(plugin=plugin, name=f"{plugin}.{hook.value}", callback=callback)
        self.register(hook, handler)
        return handler

    def freeze(self) -> None:
        self._frozen = True

    def handlers(self, hook: HookPoint) -> list[CallbackHandler]:
        return list(self._handlers.get(hook, ()))

    def hooks(self) -> list[HookPoint]:
        return [hook for hook, handlers in self._handlers.items() if handlers]
