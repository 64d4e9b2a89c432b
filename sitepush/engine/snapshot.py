"""Snapshot builders for the local source tree and the remote destination."""

from __future__ import annotations

import fnmatch
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Dict, List, Sequence

from sitepush import types
from sitepush.ssh import listing

if TYPE_CHECKING:
    from sitepush.ssh.selector import Transport


class SnapshotError(RuntimeError):
    """Raised when building a snapshot fails."""


@dataclass(frozen=True)
class ExcludedEntry:
    path: str
    is_dir: bool


@dataclass(frozen=True)
class SnapshotResult:
    root: str
    entries: Dict[str, types.FileEntry]
    excluded: List[ExcludedEntry] = field(default_factory=list)
    vanished: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def matches_pattern(rel_path: str, pattern: str, *, is_dir: bool) -> bool:
    """rsync-style exclude matching.

    A pattern without a slash matches the last path component, a leading
    slash anchors it at the root, and a trailing slash limits it to
    directories.
    """
    if not pattern:
        return False
    dir_only = pattern.endswith("/")
    body = pattern.rstrip("/")
    if dir_only and not is_dir:
        return False
    if body.startswith("/"):
        return fnmatch.fnmatchcase(rel_path, body.lstrip("/"))
    if "/" in body:
        return fnmatch.fnmatchcase(rel_path, body) or fnmatch.fnmatchcase(rel_path, f"*/{body}")
    return fnmatch.fnmatchcase(PurePosixPath(rel_path).name, body)


def is_excluded(rel_path: str, patterns: Sequence[str], *, is_dir: bool) -> bool:
    return any(matches_pattern(rel_path, pattern, is_dir=is_dir) for pattern in patterns)


def is_within_excluded(rel_path: str, patterns: Sequence[str], *, is_dir: bool) -> bool:
    """True if the entry or any of its parent directories is excluded."""
    if not patterns:
        return False
    parents = PurePosixPath(rel_path).parents
    for parent in parents:
        parent_str = parent.as_posix()
        if parent_str != "." and is_excluded(parent_str, patterns, is_dir=True):
            return True
    return is_excluded(rel_path, patterns, is_dir=is_dir)


def build_snapshot(
    root: Path | str,
    *,
    excludes: Sequence[str] | None = None,
) -> SnapshotResult:
    """Walk the local source tree without following symlinks."""
    base = Path(root).expanduser().resolve()
    if not base.exists():
        raise SnapshotError(f"Source directory {base} does not exist.")
    if not base.is_dir():
        raise SnapshotError(f"Source path {base} is not a directory.")

    patterns = tuple(excludes or ())
    entries: Dict[str, types.FileEntry] = {}
    excluded: List[ExcludedEntry] = []
    vanished: List[str] = []

    for current_root, dirs, files in os.walk(base):
        current_path = Path(current_root)
        rel_dir = current_path.relative_to(base)

        kept_dirs = []
        for name in sorted(dirs):
            rel = _join_rel(rel_dir, name)
            if is_excluded(rel, patterns, is_dir=True):
                excluded.append(ExcludedEntry(rel, True))
                continue
            entry = _make_entry(current_path / name, rel, vanished)
            if entry is None:
                continue
            entries[rel] = entry
            if not entry.is_symlink:
                kept_dirs.append(name)
        dirs[:] = kept_dirs

        for name in sorted(files):
            rel = _join_rel(rel_dir, name)
            if is_excluded(rel, patterns, is_dir=False):
                excluded.append(ExcludedEntry(rel, False))
                continue
            entry = _make_entry(current_path / name, rel, vanished)
            if entry is not None:
                entries[rel] = entry

    return SnapshotResult(root=str(base), entries=entries, excluded=excluded, vanished=vanished)


def build_remote_snapshot(
    transport: "Transport",
    root: str,
    *,
    excludes: Sequence[str] | None = None,
) -> SnapshotResult:
    """List the remote tree, dropping excluded paths so they are never deleted."""
    patterns = tuple(excludes or ())
    remote_listing = listing.list_remote_entries(transport, root)
    filtered: Dict[str, types.FileEntry] = {}
    for rel_path, entry in remote_listing.entries.items():
        if rel_path == ".":
            continue
        if is_within_excluded(rel_path, patterns, is_dir=entry.is_dir):
            continue
        filtered[rel_path] = entry
    return SnapshotResult(root=root, entries=filtered, errors=list(remote_listing.errors))


def _join_rel(base: Path, child: str) -> str:
    if str(base) == ".":
        return child
    return Path(base, child).as_posix()


def _make_entry(path: Path, rel_path: str, vanished: List[str]) -> types.FileEntry | None:
    try:
        info = path.lstat()  # never follow links; works for dangling symlinks
        is_symlink = stat.S_ISLNK(info.st_mode)
        link_target = os.readlink(path) if is_symlink else None
    except FileNotFoundError:
        vanished.append(rel_path)
        return None
    is_dir = stat.S_ISDIR(info.st_mode)
    size = 0 if (is_dir or is_symlink) else info.st_size
    return types.FileEntry(
        path=rel_path,
        is_dir=is_dir,
        size=size,
        mtime=info.st_mtime,
        is_symlink=is_symlink,
        link_target=link_target,
    )


__all__ = [
    "ExcludedEntry",
    "SnapshotError",
    "SnapshotResult",
    "build_remote_snapshot",
    "build_snapshot",
    "is_excluded",
    "is_within_excluded",
    "matches_pattern",
]
