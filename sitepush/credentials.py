"""Credential resolution and in-memory secret handling."""

from __future__ import annotations

import getpass
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Optional

from .logging import redaction_filter

logger = logging.getLogger(__name__)

DEFAULT_SECRET_FILE = "ssh_password.gpg"
DEFAULT_SUDO_PASSWORD_ENV = "SUDO_PASSWORD"
SUDO_PROMPT_ATTEMPTS = 3


class CredentialError(RuntimeError):
    """Raised when a usable credential cannot be obtained."""


class SecretClearedError(CredentialError):
    """Raised when a cleared secret is read."""


class Secret:
    """Plaintext secret held in a mutable buffer that can be wiped.

    The value is only handed out as bytes for the duration of a subprocess
    call and never appears in ``repr``.
    """

    __slots__ = ("_buffer",)

    def __init__(self, value: bytes | bytearray) -> None:
        self._buffer = bytearray(value)
        redaction_filter.register(self.value_or_empty)

    @property
    def cleared(self) -> bool:
        return not self._buffer

    def reveal(self) -> bytes:
        if self.cleared:
            raise SecretClearedError("Secret has already been cleared.")
        return bytes(self._buffer)

    def value_or_empty(self) -> bytes:
        return bytes(self._buffer)

    def clear(self) -> None:
        for index in range(len(self._buffer)):
            self._buffer[index] = 0
        del self._buffer[:]
        redaction_filter.unregister(self.value_or_empty)

    def __enter__(self) -> "Secret":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.clear()

    def __repr__(self) -> str:
        state = "cleared" if self.cleared else "set"
        return f"<Secret {state}>"

    __str__ = __repr__


def resolve_credential(
    secret_file: Path | str | None,
    *,
    gpg_command: str = "gpg",
) -> Optional[Secret]:
    """Decrypt the SSH password stored in ``secret_file``.

    Returns None when the file does not exist, gpg is missing, or decryption
    fails; the caller then falls back to ambient SSH authentication.
    """
    if secret_file is None:
        return None
    path = Path(secret_file).expanduser()
    if not path.is_file():
        logger.debug("No encrypted secret at %s; using ambient SSH authentication.", path)
        return None
    if shutil.which(gpg_command) is None:
        logger.warning("%s found but '%s' is not installed. Install gpg or remove the file.", path.name, gpg_command)
        return None

    logger.info("Found %s; decrypting (gpg may prompt for a passphrase).", path.name)
    try:
        completed = subprocess.run(
            [gpg_command, "--quiet", "--decrypt", str(path)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except OSError as exc:
        logger.warning("Failed to run %s: %s", gpg_command, exc)
        return None
    if completed.returncode != 0:
        logger.warning("Could not decrypt %s (wrong passphrase or other error).", path.name)
        logger.debug("gpg stderr: %s", completed.stderr.decode("utf-8", errors="replace").strip())
        return None

    raw = bytearray(completed.stdout)
    del completed
    while raw and raw[-1] in (0x0A, 0x0D):
        raw.pop()
    if not raw:
        logger.warning("Decrypted %s is empty; ignoring it.", path.name)
        return None
    secret = Secret(raw)
    for index in range(len(raw)):
        raw[index] = 0
    return secret


class SudoPasswordCache:
    """Privileged password for the ambient path, asked for at most once per run."""

    def __init__(
        self,
        label: str,
        *,
        env_var: str = DEFAULT_SUDO_PASSWORD_ENV,
        environ: Mapping[str, str] | None = None,
        prompt: Callable[[str], str] | None = None,
    ) -> None:
        self._label = label
        self._env_var = env_var
        self._environ = environ if environ is not None else os.environ
        self._prompt = prompt or getpass.getpass
        self._secret: Optional[Secret] = None

    def get(self) -> Secret:
        if self._secret is not None and not self._secret.cleared:
            return self._secret
        preset = self._environ.get(self._env_var) if self._env_var else None
        if preset:
            logger.debug("Using privileged password from $%s.", self._env_var)
            self._secret = Secret(preset.encode("utf-8"))
        else:
            self._secret = Secret(self._ask().encode("utf-8"))
        return self._secret

    def _ask(self) -> str:
        for _ in range(SUDO_PROMPT_ATTEMPTS):
            answer = self._prompt(f"Enter sudo password for {self._label}: ")
            if answer:
                return answer
            logger.warning("Empty password entered.")
        raise CredentialError("No sudo password entered.")

    @property
    def cached(self) -> bool:
        return self._secret is not None and not self._secret.cleared

    def clear(self) -> None:
        if self._secret is not None:
            self._secret.clear()
            self._secret = None


__all__ = [
    "DEFAULT_SECRET_FILE",
    "DEFAULT_SUDO_PASSWORD_ENV",
    "CredentialError",
    "Secret",
    "SecretClearedError",
    "SudoPasswordCache",
    "resolve_credential",
]
