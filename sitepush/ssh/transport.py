"""Utilities for executing SSH commands."""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Iterable, List, Mapping, Optional, Sequence

if TYPE_CHECKING:
    from sitepush.credentials import Secret

SSH_FAILURE_EXIT = 255
# sshpass reports its own failures through these codes before ssh runs.
SSHPASS_FAILURE_EXITS = {3: "sshpass runtime error", 5: "incorrect password", 6: "host public key unknown"}


class SSHCommandError(RuntimeError):
    """Raised when an SSH command cannot be executed."""


@dataclass
class SSHResult:
    exit_code: int
    stdout: str
    stderr: str
    auth_failed: bool = False
    prompt_detected: bool = False
    transport_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def diagnostic(self, default: str = "remote command failed") -> str:
        return self.stderr.strip() or self.stdout.strip() or default


def run_ssh_command(
    *,
    host: str,
    remote_command: Sequence[str],
    ssh_command: Sequence[str] | str = "ssh",
    extra_args: Iterable[str] | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    secret: Optional["Secret"] = None,
    sshpass_command: str = "sshpass",
    input_data: bytes | None = None,
    stdin: IO[bytes] | None = None,
) -> SSHResult:
    """Execute a remote command via SSH and capture its output.

    When ``secret`` is given the login password is handed to ``sshpass``
    through an inherited pipe descriptor, so it never shows up in argv or the
    child's environment.
    """
    if input_data is not None and stdin is not None:
        raise SSHCommandError("Pass either input_data or stdin, not both.")
    cmd = _base_command(ssh_command) + list(extra_args or []) + [host, _quote_remote_command(remote_command)]
    cmd, read_fd = _with_password(cmd, secret, sshpass_command)
    pass_fds = (read_fd,) if read_fd is not None else ()
    try:
        completed = subprocess.run(
            cmd,
            input=input_data,
            stdin=stdin if input_data is None else None,
            capture_output=True,
            env=env,
            timeout=timeout,
            check=False,
            pass_fds=pass_fds,
        )
    except OSError as exc:
        raise SSHCommandError(f"Failed to execute SSH command: {exc}") from exc
    finally:
        if read_fd is not None:
            os.close(read_fd)
    stdout = _decode(completed.stdout)
    stderr = _decode(completed.stderr)
    transport_failed = completed.returncode == SSH_FAILURE_EXIT or (
        secret is not None and completed.returncode in SSHPASS_FAILURE_EXITS
    )
    return SSHResult(
        exit_code=completed.returncode,
        stdout=stdout,
        stderr=stderr,
        auth_failed=transport_failed and _contains_auth_failure(stderr, completed.returncode, secret is not None),
        prompt_detected=_contains_prompt(stderr),
        transport_failed=transport_failed,
    )


def run_ssh_control(
    *,
    host: str,
    control_args: Sequence[str],
    ssh_command: Sequence[str] | str = "ssh",
    extra_args: Iterable[str] | None = None,
    secret: Optional["Secret"] = None,
    sshpass_command: str = "sshpass",
    timeout: float | None = None,
) -> int:
    """Run ssh without a remote command, for master connection control.

    The standard streams go to /dev/null because a master that forks into
    the background keeps them open; captured pipes would never reach EOF.
    """
    cmd = _base_command(ssh_command) + list(control_args) + list(extra_args or []) + [host]
    cmd, read_fd = _with_password(cmd, secret, sshpass_command)
    try:
        completed = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
            pass_fds=(read_fd,) if read_fd is not None else (),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise SSHCommandError(f"Failed to execute SSH command: {exc}") from exc
    finally:
        if read_fd is not None:
            os.close(read_fd)
    return completed.returncode


def _base_command(ssh_command: Sequence[str] | str) -> List[str]:
    base_cmd = [ssh_command] if isinstance(ssh_command, str) else list(ssh_command)
    if not base_cmd:
        raise SSHCommandError("ssh_command must not be empty.")
    return base_cmd


def _with_password(
    cmd: List[str], secret: Optional["Secret"], sshpass_command: str
) -> tuple[List[str], Optional[int]]:
    """Prefix cmd with sshpass reading the password from an inherited pipe."""
    if secret is None:
        return cmd, None
    read_fd = _password_pipe(secret)
    return [sshpass_command, "-d", str(read_fd)] + cmd, read_fd


def _password_pipe(secret: "Secret") -> int:
    read_fd, write_fd = os.pipe()
    try:
        os.write(write_fd, secret.reveal() + b"\n")
    except BaseException:
        os.close(read_fd)
        raise
    finally:
        os.close(write_fd)
    return read_fd


def _decode(raw: bytes | None) -> str:
    return raw.decode("utf-8", errors="replace") if raw else ""


def _contains_auth_failure(stderr: str, exit_code: int, injected: bool) -> bool:
    if injected and exit_code == 5:
        return True
    lowered = stderr.lower()
    return "permission denied" in lowered or "authentication failed" in lowered


def _contains_prompt(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in ["password:", "passphrase", "enter pin", "enter passcode"])


def _quote_remote_command(parts: Sequence[str]) -> str:
    if not parts:
        return ""
    return " ".join(shlex.quote(part) for part in parts)


__all__ = ["SSHCommandError", "SSHResult", "SSH_FAILURE_EXIT", "run_ssh_command", "run_ssh_control"]
