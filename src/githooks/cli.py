"""Command line interface for githooks.

Install it either as ``githooks HOOK [ARGS...]`` called from a hook script or
as a symlink named after the hook (``.git/hooks/pre-receive -> githooks``).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence, TextIO

from .dispatcher import HookDispatcher
from .git import GitRunner
from .logging_utils import setup_logger
from .plugins import BUILTIN_PLUGINS
from .types import HookPoint


logger = logging.getLogger(__name__)

CONFIG_ENV = "GITHOOKS_CONFIG"
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="githooks", description="Run Git and Gerrit hook policies")
    parser.add_argument("--config", default=None, help=f"YAML file with configuration overrides (default ${CONFIG_ENV})")
    parser.add_argument("--log-dir", default=None, help="write JSON logs to DIR/githooks.log (default githooks.log-dir)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="log more on stderr (repeatable)")
    parser.add_argument("--list-plugins", action="store_true", help="list the built-in plugins and exit")
    parser.add_argument("hook", nargs="?", help="hook name, e.g. pre-receive")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="arguments git passed to the hook")
    return parser


def _hook_from_program(argv0: str) -> HookPoint | None:
    try:
        return HookPoint.from_name(Path(argv0).name)
    except ValueError:
        return None


def _print_plugins(out: TextIO) -> None:
    for name, plugin in BUILTIN_PLUGINS.items():
        hooks = ", ".join(hook.value for hook in plugin.hooks)
        print(f"{name} [{plugin.section}]: {hooks}", file=out)


def _log_dir(option: str | None) -> Path | None:
    if option:
        return Path(option).expanduser()
    configured = GitRunner().try_run("config", "--get", "githooks.log-dir")
    return Path(configured).expanduser() if configured else None


def main(argv: Sequence[str] | None = None, *, stdin: TextIO | None = None, program: str | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    program = program if program is not None else sys.argv[0]
    stdin = stdin if stdin is not None else sys.stdin

    hook = _hook_from_program(program)
    if hook is not None:
        # Called through a hook symlink: every argument belongs to git.
        config_path, log_option, verbose, hook_args = None, None, 0, argv
    else:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.list_plugins:
            _print_plugins(sys.stdout)
            return 0
        if not args.hook:
            parser.print_help(sys.stderr)
            return EXIT_USAGE
        try:
            hook = HookPoint.from_name(args.hook)
        except ValueError as exc:
            print(f"githooks: {exc}", file=sys.stderr)
            return EXIT_USAGE
        config_path, log_option, verbose, hook_args = args.config, args.log_dir, args.verbose, args.args

    level = logging.DEBUG if verbose > 1 else logging.INFO if verbose else logging.WARNING
    setup_logger("githooks", _log_dir(log_option), level)

    config_path = config_path or os.environ.get(CONFIG_ENV)
    input_lines = [line.rstrip("\n") for line in stdin] if hook.reads_stdin else []
    logger.debug("invoked as %s with %d argument(s)", hook.value, len(hook_args))

    result = HookDispatcher().dispatch(
        hook,
        hook_args,
        input_lines,
        overrides=Path(config_path).expanduser() if config_path else None,
    )
    if result.report:
        sys.stderr.write(result.report)
        sys.stderr.flush()
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
