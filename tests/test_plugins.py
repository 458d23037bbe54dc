import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import FakeGit, make_context
from githooks.commits import LOG_FORMAT
from githooks.config import ConfigStore
from githooks.errors import ConfigError
from githooks.plugins import (
    CheckCommit,
    CheckFile,
    CheckLog,
    CheckReference,
    CheckRewrite,
    GerritChangeId,
    PrepareLog,
    find_plugin,
)
from githooks.plugins.check_file import compile_name_pattern
from githooks.plugins.check_rewrite import RECORD_FILENAME, read_record
from githooks.registry import HookRegistry
from githooks.types import UNDEF_COMMIT, HookPoint

A = "a" * 40
B = "b" * 40
C = "c" * 40
P = "f" * 40

ACL = {"checkreference": {"acl": ["deny CRUD ^refs/", "allow U ^refs/heads/master"]}}


def index_key(diff_filter: str) -> tuple[str, ...]:
    return ("-c", "core.quotePath=false", "diff-index", "--name-status", "--ignore-submodules",
            "--no-commit-id", "--no-renames", "--cached", "-r", "-z", f"--diff-filter={diff_filter}",
            "4b825dc642cb6eb9a060e54bf8d69288fbee4904")


class CheckReferenceTests(unittest.TestCase):
    def check(self, args, config=ACL, user="carol"):
        git = FakeGit({("merge-base", A, B): A})
        context = make_context(HookPoint.UPDATE, config, git=git, args=args,
                               env={"USER": user} if user else {})
        plugin = CheckReference()
        registry = HookRegistry()
        plugin.register(registry)
        return registry.handlers(HookPoint.UPDATE)[0].run(context).faults

    def test_fast_forward_of_master_is_allowed(self) -> None:
        self.assertEqual(self.check(["refs/heads/master", A, B]), [])

    def test_branch_creation_is_denied(self) -> None:
        faults = self.check(["refs/heads/feature/x", UNDEF_COMMIT, B])

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].option, "checkreference.acl")
        self.assertEqual(faults[0].ref, "refs/heads/feature/x")
        self.assertIn("cannot create ref refs/heads/feature/x", faults[0].message)

    def test_administrators_bypass_the_acl(self) -> None:
        config = {**ACL, "githooks": {"admin": "^car"}}

        self.assertEqual(self.check(["refs/heads/feature/x", UNDEF_COMMIT, B], config), [])

    def test_no_acl_lines_means_no_acl_check(self) -> None:
        self.assertEqual(self.check(["refs/heads/feature/x", UNDEF_COMMIT, B], {}), [])

    def test_deprecated_lists_and_acl_are_both_evaluated(self) -> None:
        config = {"checkreference": {"deny": "^refs/heads/feature/", "acl": ["deny C ^refs/heads/feature/"]}}

        faults = self.check(["refs/heads/feature/x", UNDEF_COMMIT, B], config)

        self.assertEqual(sorted(fault.option for fault in faults), ["checkreference.acl", "checkreference.deny"])

    def test_environment_variables_in_acl_targets(self) -> None:
        config = {"checkreference": {"acl": ["allow CRUD ^refs/heads/user/{USER}/"]}}

        self.assertEqual(self.check(["refs/heads/user/carol/topic", UNDEF_COMMIT, B], config), [])
        self.assertEqual(len(self.check(["refs/heads/user/dave/topic", UNDEF_COMMIT, B], config)), 1)

    def test_invalid_acl_is_a_fault_of_this_plugin(self) -> None:
        faults = self.check(["refs/heads/master", A, B], {"checkreference": {"acl": "allow X ^refs/"}})

        self.assertEqual(faults[0].plugin, "CheckReference")
        self.assertEqual(faults[0].option, "checkreference.acl")

    def test_unknown_user_is_reported(self) -> None:
        faults = self.check(["refs/heads/master", A, B], user=None)

        self.assertEqual([fault.message for fault in faults], ["cannot grok authenticated username"])
        self.assertEqual(faults[0].ref, "refs/heads/master")

    def test_noref_skips_references(self) -> None:
        config = {**ACL, "checkreference": {**ACL["checkreference"], "noref": "^refs/heads/feature/"}}

        self.assertEqual(self.check(["refs/heads/feature/x", UNDEF_COMMIT, B], config), [])


class CheckCommitTests(unittest.TestCase):
    def check(self, config, responses=None):
        merge = "\x1e" + "\x1f".join(
            [B, f"{P} {C}", "Carol", "carol@example.com", "1700000000",
             "Carol", "carol@example.com", "1700000000", "Merge branch 'topic'\n"]
        ) + "\x1f"
        side = "\x1e" + "\x1f".join(
            [C, A, "Eve", "eve@example", "1700000000", "Eve", "eve@example", "1700000000", "Fix\n"]
        ) + "\x1f"
        git = FakeGit(
            {
                ("merge-base", A, B): A,
                ("rev-parse", "--not", "--all"): "",
                ("-c", "core.quotePath=false", "log", "--no-color", "--no-renames",
                 f"--format={LOG_FORMAT}", "--name-status", B, f"^{A}"): merge + side,
                **(responses or {}),
            }
        )
        context = make_context(HookPoint.UPDATE, config, git=git, args=["refs/heads/master", A, B],
                               env={"USER": "carol"})
        return list(CheckCommit().check_affected_refs(context))

    def test_push_limit_and_mergers(self) -> None:
        faults = self.check(
            {
                "githooks": {"groups": "leads = dave"},
                "checkcommit": {"push-limit": "1", "merger": "@leads"},
            }
        )

        self.assertEqual([fault.option for fault in faults], ["checkcommit.push-limit", "checkcommit.merger"])
        self.assertEqual(faults[1].commit, B)
        self.assertTrue(all(fault.ref == "refs/heads/master" for fault in faults))

    def test_negative_email_rule(self) -> None:
        faults = self.check({"checkcommit": {"email": ["@", "!@example$"]}})

        self.assertEqual({fault.commit for fault in faults}, {C})
        self.assertEqual(len(faults), 2)

    def test_signature_policies(self) -> None:
        statuses = {("log", "-1", "--format=%G?", B): "U", ("log", "-1", "--format=%G?", C): "N"}

        good = self.check({"checkcommit": {"signature": "good"}}, statuses)
        trusted = self.check({"checkcommit": {"signature": "trusted"}}, statuses)
        optional = self.check({"checkcommit": {"signature": "optional"}}, statuses)

        self.assertEqual([(fault.commit, fault.message) for fault in good], [(C, "The commit has NO GPG signature.")])
        self.assertEqual([fault.commit for fault in trusted], [B, C])
        self.assertIn("UNTRUSTED", trusted[0].message)
        self.assertEqual(optional, [])

    def test_invalid_signature_policy(self) -> None:
        faults = self.check({"checkcommit": {"signature": "always"}})

        self.assertTrue(faults)
        self.assertTrue(all(fault.option == "checkcommit.signature" for fault in faults))
        self.assertIn("invalid value 'always'", faults[0].message)

    def test_canonical_identities(self) -> None:
        mailmap = ("-c", "mailmap.file=.mailmap", "check-mailmap")
        responses = {
            (*mailmap, "Carol <carol@example.com>"): "Carol <carol@example.com>",
            (*mailmap, "Eve <eve@example>"): "Eve Doe <eve@example.com>",
        }

        faults = self.check({"checkcommit": {"canonical": ".mailmap"}}, responses)

        self.assertEqual([(fault.commit, fault.option) for fault in faults],
                         [(C, "checkcommit.canonical"), (C, "checkcommit.canonical")])
        self.assertIn("its canonical form is 'Eve Doe <eve@example.com>'", faults[0].message)


class CheckLogTests(unittest.TestCase):
    def check_message(self, text: str, options=None, git=None):
        config = ConfigStore.from_mapping({"checklog": options or {}})
        plugin = CheckLog()
        plugin.apply_defaults(config)
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "COMMIT_EDITMSG"
            path.write_text(text, encoding="utf-8")
            context = make_context(HookPoint.COMMIT_MSG, config, git=git, args=[str(path)])
            return list(plugin.check_message_file(context))

    def test_good_message(self) -> None:
        self.assertEqual(self.check_message("Add parser\n\nIt parses things.\n"), [])

    def test_title_rules(self) -> None:
        faults = self.check_message("This title is far too long to fit in fifty characters.\n")

        self.assertEqual(sorted(fault.option for fault in faults), ["checklog.title-max-width", "checklog.title-period"])

    def test_missing_title(self) -> None:
        faults = self.check_message("first line\nsecond line\n")

        self.assertEqual([fault.option for fault in faults], ["checklog.title-required"])

    def test_body_width_ignores_indented_lines(self) -> None:
        long_line = "x" * 80
        faults = self.check_message(f"Title\n\n{long_line}\n    {long_line}\n")

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].details, long_line)

    def test_match_and_signed_off_by(self) -> None:
        faults = self.check_message(
            "Title\n\nBody text.\n",
            {"match": ["JIRA-\\d+", "!WIP"], "signed-off-by": "true"},
        )

        self.assertEqual(sorted(fault.option for fault in faults), ["checklog.match", "checklog.signed-off-by"])

    def test_duplicate_sign_offs(self) -> None:
        faults = self.check_message("Title\n\nSigned-off-by: J <j@x>\nSigned-off-by: J <j@x>\n")

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].details, "J <j@x>")

    def test_invalid_title_period_value_is_a_config_error(self) -> None:
        registry = HookRegistry()
        plugin = CheckLog()
        config = ConfigStore.from_mapping({"checklog": {"title-period": "sometimes"}})
        plugin.apply_defaults(config)
        plugin.register(registry)
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "msg"
            path.write_text("Title\n", encoding="utf-8")
            context = make_context(HookPoint.COMMIT_MSG, config, args=[str(path)])
            faults = registry.handlers(HookPoint.COMMIT_MSG)[0].run(context).faults

        self.assertEqual(faults[0].option, "checklog.title-period")

    def test_reverting_a_merge_is_denied(self) -> None:
        record = "\x1e" + "\x1f".join(
            [B, f"{P} {C}", "Carol", "carol@example.com", "1700000000",
             "Carol", "carol@example.com", "1700000000", "Merge branch 'topic'\n"]
        ) + "\x1f"
        git = FakeGit({("-c", "core.quotePath=false", "log", "--no-color", "--no-renames",
                        f"--format={LOG_FORMAT}", "--name-status", "-1", B): record})
        text = f"Revert the topic merge\n\nThis reverts commit {B}.\n"

        faults = self.check_message(text, {"deny-merge-revert": "true"}, git=git)

        self.assertEqual([fault.option for fault in faults], ["checklog.deny-merge-revert"])
        self.assertEqual(self.check_message(text, git=git), [])

    def test_reverting_an_unknown_commit_is_accepted(self) -> None:
        text = f"Revert an old change\n\nThis reverts commit {'ab' * 20}.\n"

        self.assertEqual(self.check_message(text, {"deny-merge-revert": "true"}), [])

    def test_faults_found_before_a_config_error_are_reported(self) -> None:
        registry = HookRegistry()
        plugin = CheckLog()
        config = ConfigStore.from_mapping({"checklog": {"title-period": "sometimes"}})
        plugin.apply_defaults(config)
        plugin.register(registry)
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "msg"
            path.write_text("x" * 80 + "\n", encoding="utf-8")
            context = make_context(HookPoint.COMMIT_MSG, config, args=[str(path)])
            faults = registry.handlers(HookPoint.COMMIT_MSG)[0].run(context).faults

        self.assertEqual([fault.option for fault in faults], ["checklog.title-max-width", "checklog.title-period"])


class CheckFileTests(unittest.TestCase):
    def context(self, config, blobs=None, extra=None, user="carol"):
        responses = {
            index_key("AMD"): "A\0secret/key.pem\0A\0src/app.py\0A\0tools/setup.exe\0",
            index_key("AM"): "A\0secret/key.pem\0A\0src/app.py\0A\0tools/setup.exe\0",
            **(extra or {}),
        }
        for path, content in (blobs or {}).items():
            responses[("cat-file", "blob", f":0:{path}")] = content
        store = ConfigStore.from_mapping(config)
        CheckFile().apply_defaults(store)
        env = {"PATH": os.environ.get("PATH", os.defpath)}
        if user:
            env["USER"] = user
        return make_context(HookPoint.PRE_COMMIT, store, git=FakeGit(responses), env=env)

    def test_name_patterns(self) -> None:
        self.assertTrue(compile_name_pattern("*.py").match("app.py"))
        self.assertFalse(compile_name_pattern("*.py").match("app.pyc"))
        self.assertTrue(compile_name_pattern("qr{\\.(c|h)$}").search("main.c"))
        self.assertTrue(compile_name_pattern("qr/^Makefile/").search("Makefile.am"))

    def test_file_acl_and_basename_deny(self) -> None:
        context = self.context(
            {
                "checkfile": {"acl": ["allow AMD ^.", "deny AM ^secret/"]},
                "checkfile.basename": {"deny": "\\.exe$"},
            }
        )

        faults = list(CheckFile().check_commit(context))

        messages = [fault.message for fault in faults]
        self.assertIn("you (carol) cannot add file secret/key.pem", messages)
        self.assertIn("The file 'tools/setup.exe' basename is not allowed.", messages)
        self.assertEqual(len(faults), 2)
        self.assertIsNone(faults[0].commit)

    def test_size_limits(self) -> None:
        sizes = {("cat-file", "-s", f":0:{path}"): size
                 for path, size in (("secret/key.pem", "500"), ("src/app.py", "500"), ("tools/setup.exe", "50"))}
        context = self.context(
            {
                "checkfile": {"sizelimit": "100"},
                "checkfile.basename": {"sizelimit": ["10 \\.py$", "1000 \\.py$"]},
            },
            extra=sizes,
        )

        faults = list(CheckFile().check_commit(context))

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].option, "checkfile.[basename.]sizelimit")
        self.assertEqual(
            faults[0].message,
            "The file 'secret/key.pem' is too big.\nIt has 500 bytes but the current limit is 100 bytes.",
        )

    def test_executable_modes(self) -> None:
        modes = {("ls-files", "-s", "--", "src/app.py"): f"100755 {A} 0\tsrc/app.py"}
        context = self.context(
            {"checkfile": {"executable": "*.exe", "not-executable": ["*.py", "*.exe"]}},
            extra=modes,
        )

        faults = list(CheckFile().check_commit(context))

        self.assertEqual([fault.option for fault in faults],
                         ["checkfile.not-executable", "checkfile.[not-]executable"])
        self.assertEqual(faults[0].message, "The file 'src/app.py' is executable but should not be.")
        self.assertIn("tools/setup.exe", faults[1].message)

    def test_unknown_user_cannot_pass_the_acl(self) -> None:
        context = self.context({"checkfile": {"acl": "allow AMD ^."}}, user=None)

        faults = list(CheckFile().check_commit(context))

        self.assertEqual([fault.message for fault in faults], ["cannot grok authenticated username"])
        self.assertEqual(faults[0].option, "checkfile.acl")

    @unittest.skipUnless(shutil.which("sh") and shutil.which("sleep"), "requires sh and sleep")
    def test_checker_command_is_bounded_by_the_timeout(self) -> None:
        context = self.context(
            {"githooks": {"timeout": "1"}, "checkfile": {"name": "*.py sh -c 'exec sleep 5' {}"}},
            blobs={"src/app.py": "print(1)\n"},
        )

        faults = list(CheckFile().check_commit(context))

        self.assertEqual([fault.message for fault in faults],
                         ["Command 'sh -c exec sleep 5 src/app.py' timed out after 1 seconds"])

    @unittest.skipUnless(shutil.which("false"), "requires the false command")
    def test_failing_checker_command(self) -> None:
        context = self.context({"checkfile": {"name": "*.py false"}}, blobs={"src/app.py": "print(1)\n"})

        faults = list(CheckFile().check_commit(context))

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].message, "Command 'false src/app.py' failed with exit code 1")


class CheckRewriteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.git_dir = Path(self.temp_dir.name).resolve()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def context(self, hook, responses, args=()):
        git = FakeGit(responses, git_dir=str(self.git_dir))
        return make_context(hook, {}, git=git, args=args)

    def test_missing_record_means_nothing_to_check(self) -> None:
        context = self.context(HookPoint.POST_COMMIT, {})

        self.assertEqual(list(CheckRewrite().check_commit_amend(context)), [])
        self.assertIsNone(read_record(self.git_dir / RECORD_FILENAME))

    def test_empty_record_is_ignored(self) -> None:
        (self.git_dir / RECORD_FILENAME).write_text("", encoding="utf-8")

        self.assertIsNone(read_record(self.git_dir / RECORD_FILENAME))

    def test_pre_commit_records_head_and_parents(self) -> None:
        head = ("rev-list", "--pretty=format:%P", "-n", "1", "HEAD")
        context = self.context(HookPoint.PRE_COMMIT, {head: f"commit {A}\n{P}\n"})

        list(CheckRewrite().record_commit_parents(context))

        self.assertEqual(read_record(self.git_dir / RECORD_FILENAME), (A, P))

    def test_unsafe_amend_is_reported(self) -> None:
        (self.git_dir / RECORD_FILENAME).write_text(f"commit {A}\n{P}\n", encoding="utf-8")
        responses = {
            ("rev-list", "--pretty=format:%P", "-n", "1", "HEAD"): f"commit {B}\n{P}\n",
            ("branch", "-a", "--format=%(refname:short)", "--contains", A): "release\nmaster",
        }
        context = self.context(HookPoint.POST_COMMIT, responses)

        faults = list(CheckRewrite().check_commit_amend(context))

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].commit, A)
        self.assertEqual(faults[0].details, "release\nmaster")

    def test_rebase_of_shared_commits_is_reported(self) -> None:
        responses = {
            ("rev-list", "--topo-order", "--reverse", "master..topic"): f"{A}\n{B}",
            ("branch", "-a", "--format=%(refname:short)", "--contains", A): "release\ntopic",
        }
        context = self.context(HookPoint.PRE_REBASE, responses, args=["master", "topic"])

        faults = list(CheckRewrite().check_rebase(context))

        self.assertEqual(len(faults), 1)
        self.assertEqual(faults[0].ref, "refs/heads/topic")
        self.assertEqual(faults[0].details, "release")

    def test_rebase_of_the_current_branch_alone_is_safe(self) -> None:
        responses = {
            ("symbolic-ref", "HEAD"): "refs/heads/topic",
            ("rev-list", "--topo-order", "--reverse", "master..refs/heads/topic"): A,
            ("branch", "-a", "--format=%(refname:short)", "--contains", A): "topic",
        }
        context = self.context(HookPoint.PRE_REBASE, responses, args=["master"])

        self.assertEqual(list(CheckRewrite().check_rebase(context)), [])


class GerritChangeIdTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "COMMIT_EDITMSG"
        self.git = FakeGit(
            {
                ("write-tree",): "d" * 40,
                ("var", "GIT_AUTHOR_IDENT"): "Carol <carol@example.com> 1700000000 +0000",
                ("var", "GIT_COMMITTER_IDENT"): "Carol <carol@example.com> 1700000000 +0000",
                ("hash-object", "-t", "blob", "--stdin"): "1234abcd" * 5 + "\n",
            }
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def rewrite(self, text: str) -> str:
        self.path.write_text(text, encoding="utf-8")
        context = make_context(HookPoint.COMMIT_MSG, {}, git=self.git, args=[str(self.path)])
        list(GerritChangeId().rewrite_message(context))
        return self.path.read_text(encoding="utf-8")

    def test_change_id_goes_above_the_sign_offs(self) -> None:
        text = self.rewrite("Add parser\n\nIt parses things.\n\nSigned-off-by: Carol <carol@example.com>\n")

        self.assertEqual(
            text,
            "Add parser\n\nIt parses things.\n\n"
            f"Change-Id: I{'1234abcd' * 5}\nSigned-off-by: Carol <carol@example.com>\n",
        )

    def test_existing_change_id_is_kept(self) -> None:
        original = "Add parser\n\nChange-Id: I0123\n"

        self.assertEqual(self.rewrite(original), original)
        self.assertNotIn(("hash-object", "-t", "blob", "--stdin"), self.git.calls)

    def test_empty_message_is_left_alone(self) -> None:
        original = "\n# Please enter the commit message for your changes.\n"

        self.assertEqual(self.rewrite(original), original)


class PrepareLogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "COMMIT_EDITMSG"
        self.path.write_text("Fix parser\n# Please enter the commit message.\n", encoding="utf-8")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def prepare(self, options, branch="refs/heads/PRJ-123-fix-parser", source=None, git=None):
        config = ConfigStore.from_mapping({"preparelog": options})
        plugin = PrepareLog()
        plugin.apply_defaults(config)
        git = git or FakeGit()
        git.responses[("symbolic-ref", "HEAD")] = branch
        args = [str(self.path)] if source is None else [str(self.path), source]
        list(plugin.prepare_message(make_context(HookPoint.PREPARE_COMMIT_MSG, config, git=git, args=args)))
        return self.path.read_text(encoding="utf-8")

    def test_issue_goes_into_the_title(self) -> None:
        text = self.prepare({"issue-branch-regex": "[A-Z]+-\\d+"})

        self.assertEqual(text, "[PRJ-123] Fix parser\n# Please enter the commit message.\n")

    def test_messages_with_a_source_are_not_touched(self) -> None:
        text = self.prepare({"issue-branch-regex": "[A-Z]+-\\d+"}, source="message")

        self.assertEqual(text, "Fix parser\n# Please enter the commit message.\n")

    def test_branch_without_an_issue(self) -> None:
        text = self.prepare({"issue-branch-regex": "[A-Z]+-\\d+"}, branch="refs/heads/master")

        self.assertEqual(text, "Fix parser\n# Please enter the commit message.\n")

    def test_issue_as_trailer(self) -> None:
        trailer = ("interpret-trailers", "--in-place", "--trailer", "Jira:PRJ-123", str(self.path))
        git = FakeGit({trailer: ""})

        self.prepare({"issue-branch-regex": "[A-Z]+-\\d+", "issue-place": "trailer JIRA"}, git=git)

        self.assertIn(trailer, git.calls)

    def test_invalid_issue_place(self) -> None:
        with self.assertRaises(ConfigError) as caught:
            self.prepare({"issue-branch-regex": "[A-Z]+-\\d+", "issue-place": "footer"})

        self.assertEqual(caught.exception.option, "preparelog.issue-place")


class CatalogTests(unittest.TestCase):
    def test_find_plugin_accepts_module_style_names(self) -> None:
        self.assertIs(find_plugin("Git::Hooks::CheckReference"), CheckReference)
        self.assertIs(find_plugin("checklog"), CheckLog)
        self.assertIs(find_plugin("Git::Hooks::PrepareLog"), PrepareLog)
        self.assertIsNone(find_plugin("CheckJira"))


if __name__ == "__main__":
    unittest.main()
