"""Remote directory listing helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List

from sitepush import types
from .commands import run_with_markers

if TYPE_CHECKING:
    from .selector import Transport

# type|size|mtime|path<US>link-target; paths go last because they may contain '|'.
FIND_FORMAT = "%y|%s|%T@|%P\\037%l\\n"
_LINK_SEPARATOR = "\x1f"


class RemoteListingError(RuntimeError):
    """Raised when remote listing fails."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code or 1


class RemoteRootMissing(RemoteListingError):
    """Raised when the remote root directory does not exist."""


@dataclass
class RemoteListing:
    """Entries found under the remote root, plus errors for unreadable parts."""

    entries: Dict[str, types.FileEntry] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


def list_remote_entries(transport: "Transport", root: str) -> RemoteListing:
    """List files under root on a remote host.

    ``-H`` makes find descend into root when root itself is a symlink to a
    directory. When find could read the root but not everything below it,
    the partial listing is returned together with find's diagnostics.
    """
    result = run_with_markers(transport, ["find", "-H", root, "-printf", FIND_FORMAT])
    if result.exit_code == 0:
        return RemoteListing(entries=parse_find_output(result.body))
    stderr = result.stderr.strip()
    if not result.transport_failed:
        if "no such file or directory" in stderr.lower() and not result.body:
            raise RemoteRootMissing(f"Remote path {root} does not exist.", exit_code=result.exit_code)
        entries = parse_find_output(result.body)
        if "." in entries:
            errors = [line.strip() for line in stderr.splitlines() if line.strip()]
            return RemoteListing(entries=entries, errors=errors or [f"find exited with {result.exit_code}"])
    raise RemoteListingError(f"Remote find failed: {stderr or 'no diagnostic'}", exit_code=result.exit_code)


def parse_find_output(body: str) -> Dict[str, types.FileEntry]:
    entries: Dict[str, types.FileEntry] = {}
    for line in body.splitlines():
        if not line.strip():
            continue
        parts = line.split("|", 3)
        if len(parts) < 4:
            continue
        type_char, size_str, mtime_str, rest = parts
        rel_path, _, link_target = rest.partition(_LINK_SEPARATOR)
        rel_path = rel_path or "."
        is_dir = type_char == "d"
        is_symlink = type_char == "l"
        size = 0 if (is_dir or is_symlink) else int(size_str)
        entry = types.FileEntry(
            path=rel_path,
            is_dir=is_dir,
            size=size,
            mtime=float(mtime_str),
            is_symlink=is_symlink,
            link_target=link_target or None,
        )
        entries[entry.path] = entry
    return entries


__all__ = [
    "FIND_FORMAT",
    "RemoteListing",
    "RemoteListingError",
    "RemoteRootMissing",
    "list_remote_entries",
    "parse_find_output",
]
