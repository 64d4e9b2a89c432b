"""Tests for snapshot builders and exclude matching."""

from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from sitepush import types
from sitepush.engine import snapshot
from sitepush.ssh.listing import RemoteListing


class TestExcludeMatching(unittest.TestCase):
    def test_bare_name_matches_at_any_depth(self):
        self.assertTrue(snapshot.matches_pattern(".git", ".git", is_dir=True))
        self.assertTrue(snapshot.matches_pattern("themes/child/.git", ".git", is_dir=True))
        self.assertFalse(snapshot.matches_pattern(".github", ".git", is_dir=True))

    def test_anchored_pattern_only_matches_root(self):
        self.assertTrue(snapshot.matches_pattern("README.md", "/README.md", is_dir=False))
        self.assertFalse(snapshot.matches_pattern("docs/README.md", "/README.md", is_dir=False))

    def test_trailing_slash_limits_to_directories(self):
        self.assertTrue(snapshot.matches_pattern("cache", "cache/", is_dir=True))
        self.assertFalse(snapshot.matches_pattern("cache", "cache/", is_dir=False))

    def test_globs_and_paths(self):
        self.assertTrue(snapshot.matches_pattern("logs/app.log", "*.log", is_dir=False))
        self.assertTrue(snapshot.matches_pattern("site/build/out.js", "build/*.js", is_dir=False))

    def test_within_excluded_checks_parents(self):
        self.assertTrue(snapshot.is_within_excluded("node_modules/pkg/index.js", ["node_modules"], is_dir=False))
        self.assertFalse(snapshot.is_within_excluded("src/index.js", ["node_modules"], is_dir=False))


class TestBuildSnapshot(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_collects_entries_and_excluded(self):
        (self.root / "index.html").write_text("hi")
        (self.root / "css").mkdir()
        (self.root / "css" / "site.css").write_text("body{}")
        (self.root / ".git").mkdir()
        (self.root / ".git" / "HEAD").write_text("ref")
        (self.root / ".env").write_text("SECRET=1")

        result = snapshot.build_snapshot(self.root, excludes=[".git", ".env"])

        self.assertEqual(sorted(result.entries), ["css", "css/site.css", "index.html"])
        self.assertEqual(result.entries["index.html"].size, 2)
        self.assertTrue(result.entries["css"].is_dir)
        self.assertEqual(
            sorted(result.excluded, key=lambda item: item.path),
            [snapshot.ExcludedEntry(".env", False), snapshot.ExcludedEntry(".git", True)],
        )

    def test_symlinks_are_recorded_not_followed(self):
        outside = self.root / "outside"
        outside.mkdir()
        (outside / "big.bin").write_text("data")
        site = self.root / "site"
        site.mkdir()
        (site / "shared").symlink_to(outside, target_is_directory=True)
        (site / "dangling").symlink_to("missing.txt")

        result = snapshot.build_snapshot(site)

        self.assertTrue(result.entries["shared"].is_symlink)
        self.assertEqual(result.entries["shared"].link_target, str(outside))
        self.assertNotIn("shared/big.bin", result.entries)
        self.assertEqual(result.entries["dangling"].link_target, "missing.txt")

    def test_vanished_entries_are_collected(self):
        (self.root / "temp.txt").write_text("x")
        real_lstat = Path.lstat

        def flaky_lstat(path):
            if path.name == "temp.txt":
                raise FileNotFoundError(path)
            return real_lstat(path)

        with mock.patch.object(Path, "lstat", flaky_lstat):
            result = snapshot.build_snapshot(self.root)
        self.assertEqual(result.vanished, ["temp.txt"])
        self.assertNotIn("temp.txt", result.entries)

    def test_missing_root_raises(self):
        with self.assertRaises(snapshot.SnapshotError):
            snapshot.build_snapshot(self.root / "nope")

    def test_file_root_raises(self):
        path = self.root / "file.txt"
        path.write_text("x")
        with self.assertRaises(snapshot.SnapshotError):
            snapshot.build_snapshot(path)


class TestBuildRemoteSnapshot(unittest.TestCase):
    def test_drops_root_and_excluded_paths(self):
        listed = {
            ".": types.FileEntry(path=".", is_dir=True, size=0, mtime=1.0),
            "a.txt": types.FileEntry(path="a.txt", is_dir=False, size=1, mtime=1.0),
            ".git": types.FileEntry(path=".git", is_dir=True, size=0, mtime=1.0),
            ".git/HEAD": types.FileEntry(path=".git/HEAD", is_dir=False, size=3, mtime=1.0),
        }
        remote_listing = RemoteListing(entries=listed)
        with mock.patch("sitepush.engine.snapshot.listing.list_remote_entries", return_value=remote_listing):
            result = snapshot.build_remote_snapshot(mock.Mock(), "/srv/www", excludes=[".git"])
        self.assertEqual(list(result.entries), ["a.txt"])
        self.assertEqual(result.root, "/srv/www")

    def test_listing_errors_are_kept(self):
        listed = RemoteListing(
            entries={".": types.FileEntry(path=".", is_dir=True, size=0, mtime=1.0)},
            errors=["find: '/srv/www/locked': Permission denied"],
        )
        with mock.patch("sitepush.engine.snapshot.listing.list_remote_entries", return_value=listed):
            result = snapshot.build_remote_snapshot(mock.Mock(), "/srv/www")
        self.assertEqual(result.entries, {})
        self.assertEqual(result.errors, ["find: '/srv/www/locked': Permission denied"])


if __name__ == "__main__":
    unittest.main()
