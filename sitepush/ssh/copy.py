"""Push local files to the remote host over an SSH stdin stream."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .selector import Transport

TEMP_SUFFIX = ".sitepush-tmp"

_IN_PLACE_SCRIPT = 'cat > "$1"'
_ATOMIC_SCRIPT = 'cat > "$2" && mv -f "$2" "$1" || { status=$?; rm -f "$2"; exit $status; }'


class RemoteCopyError(RuntimeError):
    """Raised when pushing a file to the remote fails."""

    def __init__(self, message: str, *, exit_code: int = 1, transport_failed: bool = False) -> None:
        super().__init__(message)
        self.exit_code = exit_code or 1
        self.transport_failed = transport_failed


class SourceVanishedError(RemoteCopyError):
    """Raised when the local source disappeared before it could be sent."""


def temp_path_for(remote_path: str) -> str:
    target = PurePosixPath(remote_path)
    return str(target.parent / f".{target.name}{TEMP_SUFFIX}")


def push_file(
    transport: "Transport",
    *,
    local_path: Path | str,
    remote_path: str,
    in_place: bool = False,
) -> None:
    """Write the contents of local_path to remote_path.

    With ``in_place`` the destination is truncated and rewritten directly;
    otherwise the data lands in a hidden sibling that is renamed over the
    destination once complete.
    """
    if in_place:
        remote_command = ["sh", "-c", _IN_PLACE_SCRIPT, "sh", remote_path]
    else:
        remote_command = ["sh", "-c", _ATOMIC_SCRIPT, "sh", remote_path, temp_path_for(remote_path)]
    try:
        handle = open(local_path, "rb")
    except FileNotFoundError as exc:
        raise SourceVanishedError(f"file has vanished: {local_path}") from exc
    except OSError as exc:
        raise RemoteCopyError(f"Unable to read {local_path}: {exc}") from exc
    with handle:
        result = transport.run(remote_command, stdin=handle)
    if result.exit_code != 0:
        if result.prompt_detected and result.transport_failed:
            raise RemoteCopyError(
                "SSH authentication prompt detected; refusing to continue.",
                exit_code=result.exit_code,
                transport_failed=True,
            )
        raise RemoteCopyError(
            result.diagnostic("remote write failed"),
            exit_code=result.exit_code,
            transport_failed=result.transport_failed,
        )


__all__ = ["RemoteCopyError", "SourceVanishedError", "TEMP_SUFFIX", "push_file", "temp_path_for"]
