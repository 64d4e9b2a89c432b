"""Choose how outbound SSH connections authenticate."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, List, Optional, Sequence

from sitepush import types
from sitepush.credentials import Secret
from .transport import SSHCommandError, SSHResult, run_ssh_command, run_ssh_control

logger = logging.getLogger(__name__)

# Idle lifetime of the master if close() never runs.
CONTROL_PERSIST_SECONDS = 300


class TransportMode(str, Enum):
    AMBIENT = "ambient"
    SECRET_INJECTED = "secret-injected"


@dataclass
class Transport:
    """SSH settings shared by every remote interaction of a run."""

    target: types.DeploymentTarget
    mode: TransportMode = TransportMode.AMBIENT
    ssh_command: List[str] = field(default_factory=lambda: ["ssh"])
    secret: Optional[Secret] = None
    sshpass_command: str = "sshpass"
    control_dir: Optional[str] = None

    @property
    def injected(self) -> bool:
        return self.mode == TransportMode.SECRET_INJECTED and self.secret is not None

    @property
    def control_path(self) -> Optional[str]:
        # Unix socket paths are short; keep the name inside the temp dir tiny.
        return os.path.join(self.control_dir, "mux") if self.control_dir else None

    def extra_args(self) -> List[str]:
        args = ["-p", str(self.target.port)]
        if self.control_path:
            args += ["-o", f"ControlPath={self.control_path}"]
        return args

    def share_connection(self) -> bool:
        """Start a master connection that every later command reuses.

        Returns False when the master cannot be started; commands then open
        their own connections as before.
        """
        self.control_dir = tempfile.mkdtemp(prefix="sitepush-ssh-")
        try:
            exit_code = self._control(
                ["-M", "-N", "-f", "-o", f"ControlPersist={CONTROL_PERSIST_SECONDS}"],
                secret=self.secret if self.injected else None,
            )
        except SSHCommandError as exc:
            logger.debug("SSH connection sharing unavailable: %s", exc)
            self._remove_control_dir()
            return False
        if exit_code != 0:
            logger.debug("SSH master exited with %d; connecting per command.", exit_code)
            self._remove_control_dir()
            return False
        logger.debug("Sharing one SSH connection through %s.", self.control_path)
        return True

    def close(self) -> None:
        """Stop the shared master connection, if any."""
        if not self.control_dir:
            return
        try:
            self._control(["-O", "exit"])
        except SSHCommandError as exc:
            logger.debug("Could not stop SSH master: %s", exc)
        finally:
            self._remove_control_dir()

    def _control(self, control_args: List[str], *, secret: Optional[Secret] = None) -> int:
        return run_ssh_control(
            host=self.target.destination,
            control_args=control_args,
            ssh_command=self.ssh_command,
            extra_args=self.extra_args(),
            secret=secret,
            sshpass_command=self.sshpass_command,
        )

    def _remove_control_dir(self) -> None:
        if self.control_dir:
            shutil.rmtree(self.control_dir, ignore_errors=True)
        self.control_dir = None

    def run(
        self,
        remote_command: Sequence[str],
        *,
        input_data: bytes | None = None,
        stdin: IO[bytes] | None = None,
    ) -> SSHResult:
        return run_ssh_command(
            host=self.target.destination,
            remote_command=remote_command,
            ssh_command=self.ssh_command,
            extra_args=self.extra_args(),
            secret=self.secret if self.injected else None,
            sshpass_command=self.sshpass_command,
            input_data=input_data,
            stdin=stdin,
        )


def select_transport(
    target: types.DeploymentTarget,
    secret: Optional[Secret],
    *,
    ssh_command: Sequence[str] | str = "ssh",
    sshpass_command: str = "sshpass",
) -> Transport:
    """Inject the secret when sshpass is available, otherwise rely on ambient auth."""
    base = shlex.split(ssh_command) if isinstance(ssh_command, str) else list(ssh_command)
    if secret is None or secret.cleared:
        return Transport(target=target, ssh_command=base, sshpass_command=sshpass_command)
    if shutil.which(sshpass_command) is None:
        logger.warning(
            "Decrypted password available but '%s' is not installed; falling back to keys or interactive login.",
            sshpass_command,
        )
        return Transport(target=target, ssh_command=base, sshpass_command=sshpass_command)
    logger.info("Using %s to supply the SSH password.", sshpass_command)
    return Transport(
        target=target,
        mode=TransportMode.SECRET_INJECTED,
        ssh_command=base,
        secret=secret,
        sshpass_command=sshpass_command,
    )


__all__ = ["Transport", "TransportMode", "select_transport"]
