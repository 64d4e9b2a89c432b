"""Helpers for executing remote commands with magic markers."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:
    from .selector import Transport

BEGIN_MARKER = "__SITEPUSH_BEGIN__"
END_MARKER = "__SITEPUSH_END__"


@dataclass
class MarkerResult:
    exit_code: int
    body: str
    stderr: str
    transport_failed: bool = False


def wrap_remote_command(command: Sequence[str]) -> List[str]:
    """Print markers around a command so login banners can be discarded.

    The wrapped command keeps the exit status of ``command``.
    """
    inner = " ".join(shlex.quote(part) for part in command)
    script = f"printf '%s\\n' {BEGIN_MARKER}; {inner}; status=$?; printf '%s\\n' {END_MARKER}; exit $status"
    return ["sh", "-c", script]


def run_with_markers(transport: "Transport", remote_command: Sequence[str]) -> MarkerResult:
    ssh_result = transport.run(wrap_remote_command(remote_command))
    return MarkerResult(
        exit_code=ssh_result.exit_code,
        body=_extract_between_markers(ssh_result.stdout),
        stderr=ssh_result.stderr,
        transport_failed=ssh_result.transport_failed,
    )


def _extract_between_markers(stdout: str) -> str:
    lines = stdout.splitlines()
    capturing = False
    body_lines: List[str] = []
    for line in lines:
        if not capturing:
            if line.strip() == BEGIN_MARKER:
                capturing = True
            continue
        if line.strip() == END_MARKER:
            break
        body_lines.append(line)
    return "\n".join(body_lines).strip()


__all__ = ["MarkerResult", "wrap_remote_command", "run_with_markers", "BEGIN_MARKER", "END_MARKER"]
