"""End-to-end mirror tests: snapshot -> planner -> executor through a local ssh stub."""

from __future__ import annotations

import os
import shlex
import shutil
import stat
import tempfile
import time
import unittest
from pathlib import Path

from sitepush import types
from sitepush.engine import mirror
from ssh_stub import install_stubs, make_transport, require_gnu_find

EXCLUDES = (".git", "node_modules")


def make_policy(*, force: bool = False, dry_run: bool = False) -> types.SyncPolicy:
    mode = types.ConflictMode.FORCE if force else types.ConflictMode.UPDATE
    return types.SyncPolicy(excludes=EXCLUDES, mode=mode, dry_run=dry_run)


def tree(root: Path) -> dict:
    """Map of relative path -> file bytes (None for directories, link target for symlinks)."""
    result = {}
    for current, dirs, files in os.walk(root):
        for name in dirs + files:
            path = Path(current) / name
            rel = path.relative_to(root).as_posix()
            if path.is_symlink():
                result[rel] = ("link", os.readlink(path))
            elif path.is_dir():
                result[rel] = None
            else:
                result[rel] = path.read_bytes()
    return result


def backdate(path: Path, seconds: int = 3600) -> None:
    old = time.time() - seconds
    os.utime(path, (old, old), follow_symlinks=False)


class MirrorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        require_gnu_find()
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.local = base / "local"
        self.remote = base / "remote"
        self.local.mkdir()
        self.remote.mkdir()
        self.ssh = install_stubs(base / "bin")
        self.transport = make_transport(self.ssh, self.remote)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def sync(self, **policy_kwargs) -> types.SyncResult:
        return mirror.sync(self.local, self.transport, make_policy(**policy_kwargs))


class TestMirrorProperty(MirrorTestCase):
    def test_remote_matches_local_minus_excludes(self):
        (self.local / "index.html").write_text("<h1>home</h1>")
        (self.local / "css").mkdir()
        (self.local / "css" / "site.css").write_text("body {}")
        (self.local / ".git").mkdir()
        (self.local / ".git" / "config").write_text("[core]")
        (self.local / "latest").symlink_to("index.html")
        (self.remote / "stale.html").write_text("old")
        (self.remote / "css").mkdir()
        (self.remote / "css" / "old.css").write_text("old")

        result = self.sync()

        self.assertEqual(result.exit_class, types.ExitClass.SUCCESS)
        expected = tree(self.local)
        del expected[".git"]
        del expected[".git/config"]
        self.assertEqual(tree(self.remote), expected)

    def test_excluded_remote_paths_are_not_deleted(self):
        (self.local / "a.txt").write_text("a")
        (self.remote / "node_modules").mkdir()
        (self.remote / "node_modules" / "pkg.js").write_text("keep")
        result = self.sync()
        self.assertTrue(result.ok)
        self.assertTrue((self.remote / "node_modules" / "pkg.js").exists())

    def test_type_change_replaces_remote_entry(self):
        (self.local / "thing").write_text("now a file")
        (self.remote / "thing").mkdir()
        (self.remote / "thing" / "inner.txt").write_text("x")
        result = self.sync()
        self.assertTrue(result.ok)
        self.assertEqual((self.remote / "thing").read_text(), "now a file")


class TestDryRun(MirrorTestCase):
    def _prepare_example(self) -> None:
        (self.local / "a.txt").write_text("fresh a")
        (self.local / "b.txt").write_text("b")
        (self.local / ".git").mkdir()
        (self.local / ".git" / "HEAD").write_text("ref")
        stale = self.remote / "a.txt"
        stale.write_text("stale a")
        backdate(stale)
        (self.remote / "c.txt").write_text("c")

    def test_report_matches_expected_decisions(self):
        self._prepare_example()
        before = tree(self.remote)
        result = self.sync(dry_run=True)
        report = [op.describe() for op in result.operations if op.reason != "uptodate"]
        self.assertEqual(report, ["delete c.txt", "transfer a.txt", "transfer b.txt", "skip .git/"])
        self.assertTrue(result.dry_run)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(tree(self.remote), before)

    def test_two_dry_runs_are_identical(self):
        self._prepare_example()
        first = self.sync(dry_run=True)
        second = self.sync(dry_run=True)
        self.assertEqual(
            [op.describe() for op in first.operations],
            [op.describe() for op in second.operations],
        )
        self.assertEqual(first.exit_code, second.exit_code)

    def test_dry_run_does_not_create_missing_remote_root(self):
        (self.local / "a.txt").write_text("a")
        self.transport = make_transport(self.ssh, self.remote / "site")
        result = self.sync(dry_run=True)
        self.assertTrue(result.ok)
        self.assertFalse((self.remote / "site").exists())


class TestConflictModes(MirrorTestCase):
    def _seed(self) -> None:
        (self.local / "one.txt").write_text("1")
        (self.local / "sub").mkdir()
        (self.local / "sub" / "two.txt").write_text("2")

    def test_update_only_converges_to_zero_transfers(self):
        self._seed()
        first = self.sync()
        self.assertEqual(first.transferred, 2)
        second = self.sync()
        self.assertTrue(second.ok)
        self.assertEqual(second.transferred, 0)
        self.assertEqual([op for op in second.operations if op.type == types.OperationType.COPY], [])

    def test_update_only_keeps_newer_remote_file(self):
        (self.local / "page.html").write_text("local")
        backdate(self.local / "page.html")
        (self.remote / "page.html").write_text("remote is newer")
        result = self.sync()
        self.assertTrue(result.ok)
        self.assertEqual((self.remote / "page.html").read_text(), "remote is newer")

    def test_force_retransfers_every_file(self):
        self._seed()
        self.sync()
        result = self.sync(force=True)
        self.assertTrue(result.ok)
        self.assertEqual(result.transferred, 2)
        self.assertEqual(tree(self.remote), tree(self.local))

    def test_force_rewrites_in_place_and_update_replaces(self):
        (self.local / "page.html").write_text("v1")
        self.sync()
        remote_file = self.remote / "page.html"
        inode = remote_file.stat().st_ino

        (self.local / "page.html").write_text("v2")
        self.sync(force=True)
        self.assertEqual(remote_file.read_text(), "v2")
        self.assertEqual(remote_file.stat().st_ino, inode)

        backdate(remote_file)
        (self.local / "page.html").write_text("v3")
        self.sync()
        self.assertEqual(remote_file.read_text(), "v3")
        self.assertNotEqual(remote_file.stat().st_ino, inode)


class TestRemoteRoot(MirrorTestCase):
    def test_missing_remote_root_is_created(self):
        (self.local / "a.txt").write_text("a")
        self.transport = make_transport(self.ssh, self.remote / "site")
        result = self.sync()
        self.assertTrue(result.ok)
        self.assertEqual((self.remote / "site" / "a.txt").read_text(), "a")

    def test_missing_remote_parent_is_a_hard_failure(self):
        (self.local / "a.txt").write_text("a")
        self.transport = make_transport(self.ssh, self.remote / "missing" / "site")
        result = self.sync()
        self.assertEqual(result.exit_class, types.ExitClass.FAILED)
        self.assertNotEqual(result.exit_code, 0)

    def test_symlinked_remote_root_is_followed(self):
        (self.local / "a.txt").write_text("a")
        (self.remote / "c.txt").write_text("stale")
        link = self.remote.parent / "remote_link"
        link.symlink_to(self.remote, target_is_directory=True)
        self.transport = make_transport(self.ssh, link)

        result = self.sync()

        self.assertTrue(result.ok)
        self.assertTrue(link.is_symlink())
        self.assertEqual(tree(self.remote), {"a.txt": b"a"})
        self.assertEqual(self.sync().transferred, 0)


FAILING_FIND = """#!/bin/sh
{find} "$@"
echo "find: '{root}/locked': Permission denied" >&2
exit 1
"""


class TestPartialRemoteListing(MirrorTestCase):
    """find lists the tree but reports a directory it could not read."""

    def setUp(self) -> None:
        super().setUp()
        fake_find = self.ssh.parent / "find"
        fake_find.write_text(FAILING_FIND.format(find=shlex.quote(shutil.which("find")), root=self.remote))
        fake_find.chmod(fake_find.stat().st_mode | stat.S_IXUSR)
        (self.local / "a.txt").write_text("a")
        (self.remote / "c.txt").write_text("stale")

    def test_dry_run_reports_partial(self):
        result = self.sync(dry_run=True)
        self.assertEqual(result.exit_class, types.ExitClass.PARTIAL)
        self.assertEqual(result.exit_code, types.EXIT_PARTIAL)
        self.assertIn("delete c.txt", [op.describe() for op in result.operations])
        self.assertIn("locked", result.errors[0])

    def test_listed_entries_are_still_mirrored(self):
        result = self.sync()
        self.assertEqual(result.exit_class, types.ExitClass.PARTIAL)
        self.assertEqual(result.exit_code, types.EXIT_PARTIAL)
        self.assertEqual(tree(self.remote), {"a.txt": b"a"})


if __name__ == "__main__":
    unittest.main()
