import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import FakeGit
from githooks.config import ConfigStore
from githooks.dispatcher import AMEND_HINT, DispatchState, HookDispatcher, render_report, sort_faults
from githooks.plugins import BUILTIN_PLUGINS
from githooks.plugins.base import Plugin
from githooks.types import Fault, HookPoint

A = "a" * 40
B = "b" * 40


class Recorder(Plugin):
    name = "Recorder"
    section = "recorder"
    hooks = {HookPoint.PRE_COMMIT: "check", HookPoint.PRE_RECEIVE: "check_affected_refs"}
    calls: list[str] = []

    def check(self, context):
        Recorder.calls.append(self.name)
        yield self.fault("recorder found a problem", option="rule")

    def check_ref(self, context, ref):
        yield self.fault(f"{self.name} rejects {ref}")


class Second(Recorder):
    name = "Second"
    section = "second"

    def check(self, context):
        Second.calls.append(self.name)
        return []


class Crasher(Plugin):
    name = "Crasher"
    section = "crasher"
    hooks = {HookPoint.PRE_COMMIT: "check"}

    def check(self, context):
        raise ZeroDivisionError("division by zero")


CATALOG = {plugin.name: plugin for plugin in (Recorder, Second, Crasher)}


def config_for(plugins, **githooks) -> ConfigStore:
    return ConfigStore.from_mapping({"githooks": {"plugin": plugins, "externals": False, **githooks}})


class HookDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        Recorder.calls = []
        self.dispatcher = HookDispatcher(CATALOG, runner_factory=lambda cwd, env: FakeGit())

    def dispatch(self, hook, config, *, args=(), input_lines=(), env=None):
        return self.dispatcher.dispatch(hook, args, input_lines, env=env or {"USER": "alice"}, config=config)

    def test_accepts_without_faults(self) -> None:
        result = self.dispatch(HookPoint.PRE_COMMIT, config_for("Second"))

        self.assertIs(result.state, DispatchState.ACCEPTED)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.report, "")

    def test_handlers_run_in_order_and_all_run(self) -> None:
        result = self.dispatch(HookPoint.PRE_COMMIT, config_for("Crasher Recorder Second"))

        self.assertEqual([outcome.handler for outcome in result.results],
                         ["Crasher.pre-commit", "Recorder.pre-commit", "Second.pre-commit"])
        self.assertEqual(Recorder.calls, ["Recorder", "Second"])
        self.assertIs(result.state, DispatchState.REJECTED)
        self.assertEqual(result.exit_code, 1)
        messages = [fault.message for fault in result.faults]
        self.assertIn("internal error in plugin Crasher: division by zero", messages)
        self.assertIn("recorder found a problem", messages)

    def test_fail_fast_stops_after_first_faulty_handler(self) -> None:
        result = self.dispatch(HookPoint.PRE_COMMIT, config_for(["Recorder", "Second"], **{"fail-fast": True}))

        self.assertEqual(Recorder.calls, ["Recorder"])
        self.assertEqual(len(result.results), 1)

    def test_same_inputs_give_same_faults(self) -> None:
        lines = [f"{A} {B} refs/heads/zeta", f"{A} {B} refs/heads/alpha"]
        config = config_for("Second Recorder")

        first = self.dispatch(HookPoint.PRE_RECEIVE, config, input_lines=lines)
        second = self.dispatch(HookPoint.PRE_RECEIVE, config, input_lines=lines)

        self.assertEqual(first.faults, second.faults)
        self.assertEqual(first.report, second.report)
        self.assertEqual([fault.ref for fault in first.faults],
                         ["refs/heads/alpha", "refs/heads/alpha", "refs/heads/zeta", "refs/heads/zeta"])
        self.assertEqual([fault.plugin for fault in first.faults], ["Recorder", "Second", "Recorder", "Second"])

    def test_dispatch_does_not_modify_the_given_config(self) -> None:
        config = config_for("Recorder")

        self.dispatch(HookPoint.PRE_COMMIT, config)

        self.assertFalse(config.has("githooks", "timeout"))

    def test_unknown_plugin_is_fatal(self) -> None:
        result = self.dispatch(HookPoint.PRE_COMMIT, config_for("Recorder Nope"))

        self.assertIs(result.state, DispatchState.REJECTED)
        self.assertEqual(Recorder.calls, [])
        self.assertEqual(result.faults[0].message, "can't find enabled plugin Nope")

    def test_cyclic_groups_reject_before_handlers_run(self) -> None:
        result = self.dispatch(HookPoint.PRE_COMMIT, config_for("Recorder", groups="devs = @devs"))

        self.assertIs(result.state, DispatchState.REJECTED)
        self.assertEqual(Recorder.calls, [])
        self.assertEqual(result.faults[0].option, "githooks.groups")

    def test_disable_option_and_environment_override(self) -> None:
        disabled = self.dispatch(HookPoint.PRE_COMMIT, config_for("Recorder", disable="Git::Hooks::Recorder"))
        by_env = self.dispatch(HookPoint.PRE_COMMIT, config_for("Git::Hooks::Recorder"), env={"Recorder": "0"})
        kept = self.dispatch(HookPoint.PRE_COMMIT, config_for("Recorder"), env={"Recorder": "1"})

        self.assertEqual(disabled.plugins, [])
        self.assertEqual(by_env.plugins, [])
        self.assertEqual(kept.plugins, ["Recorder"])

    def test_abort_commit_false_accepts_with_amend_hint(self) -> None:
        result = self.dispatch(HookPoint.PRE_COMMIT, config_for("Recorder", **{"abort-commit": False}))

        self.assertIs(result.state, DispatchState.REJECTED)
        self.assertEqual(result.exit_code, 0)
        self.assertIn(AMEND_HINT, result.report)

    def test_abort_commit_does_not_apply_to_server_hooks(self) -> None:
        result = self.dispatch(
            HookPoint.PRE_RECEIVE,
            config_for("Recorder", **{"abort-commit": False}),
            input_lines=[f"{A} {B} refs/heads/master"],
        )

        self.assertEqual(result.exit_code, 1)


class BuiltinPluginDispatchTests(unittest.TestCase):
    def test_pre_commit_rejects_bad_author_email(self) -> None:
        config = ConfigStore.from_mapping(
            {
                "githooks": {"plugin": "CheckCommit", "externals": False},
                "checkcommit": {"email": r"^[\w.+-]+@[\w-]+(\.[\w-]+)+$"},
            }
        )
        dispatcher = HookDispatcher(BUILTIN_PLUGINS, runner_factory=lambda cwd, env: FakeGit())

        result = dispatcher.dispatch(
            HookPoint.PRE_COMMIT,
            env={"USER": "jane", "GIT_AUTHOR_NAME": "Jane", "GIT_AUTHOR_EMAIL": "bad@??"},
            config=config,
        )

        self.assertIs(result.state, DispatchState.REJECTED)
        author = [fault for fault in result.faults if "author email" in fault.message]
        self.assertEqual(len(author), 1)
        self.assertEqual(author[0].plugin, "CheckCommit")
        self.assertEqual(author[0].option, "checkcommit.email")
        self.assertIn("[CheckCommit] The commit author email (bad@??) is invalid.", result.report)
        self.assertIn("option: checkcommit.email", result.report)


class ReportTests(unittest.TestCase):
    def test_one_block_per_fault_with_context(self) -> None:
        faults = [
            Fault("you (carol) cannot create ref refs/heads/x", plugin="CheckReference",
                  ref="refs/heads/x", option="checkreference.acl", details="no rule matched, denied by default"),
            Fault("title too long", plugin="CheckLog", commit=A),
        ]

        report = render_report(faults, header="Policy violations:", footer="See the wiki.")

        self.assertEqual(
            report,
            "Policy violations:\n\n"
            "[CheckReference] you (carol) cannot create ref refs/heads/x\n"
            "  ref: refs/heads/x\n"
            "  option: checkreference.acl\n"
            "  details:\n"
            "    no rule matched, denied by default\n\n"
            "[CheckLog] title too long\n"
            f"  commit: {A}\n\n"
            "See the wiki.\n",
        )

    def test_sort_is_stable_by_ref_commit_plugin(self) -> None:
        faults = [
            Fault("2", plugin="B", ref="refs/heads/a"),
            Fault("1", plugin="A", ref="refs/heads/b"),
            Fault("3", plugin="A", ref="refs/heads/a"),
            Fault("4", plugin="A", ref="refs/heads/a"),
        ]

        self.assertEqual([fault.message for fault in sort_faults(faults)], ["3", "4", "2", "1"])

    def test_empty_report(self) -> None:
        self.assertEqual(render_report([]), "")


if __name__ == "__main__":
    unittest.main()
