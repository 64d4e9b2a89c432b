"""Privileged ownership and permission remediation on the remote host."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from sitepush import types
from sitepush.credentials import Secret, SudoPasswordCache
from .transport import SSHCommandError

if TYPE_CHECKING:
    from .selector import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemediationResult:
    ok: bool
    exit_code: int = 0
    reason: str = ""


def build_remediation_script(profile: types.RemediationProfile, root: str, *, skip_missing: bool = False) -> str:
    """Chain chown and the two chmod passes so each runs only if the previous succeeded.

    With ``skip_missing`` a root that does not exist yet (first deployment)
    is left alone instead of failing the chain.
    """
    quoted_root = shlex.quote(root)
    steps = [
        f"chown -R -H {shlex.quote(profile.owner)} {quoted_root}",
        f"find -H {quoted_root} -type d -exec chmod {profile.dir_mode} {{}} +",
        f"find -H {quoted_root} -type f -exec chmod {profile.file_mode} {{}} +",
    ]
    chain = " && ".join(steps)
    if skip_missing:
        return f"if [ -e {quoted_root} ]; then {chain}; fi"
    return chain


def build_remote_command(profile: types.RemediationProfile, root: str, *, skip_missing: bool = False) -> List[str]:
    # sudo reads the password from stdin; an empty prompt keeps stderr clean.
    return ["sudo", "-S", "-p", "", "sh", "-c", build_remediation_script(profile, root, skip_missing=skip_missing)]


def sudo_password_for(transport: "Transport", cache: SudoPasswordCache) -> Secret:
    if transport.injected and transport.secret is not None:
        return transport.secret
    return cache.get()


def run_privileged(
    transport: "Transport",
    *,
    profile: types.RemediationProfile,
    root: str,
    sudo_password: Secret,
    skip_missing: bool = False,
) -> RemediationResult:
    """Apply ``profile`` recursively to ``root`` through sudo on the remote host."""
    logger.debug(
        "Remediating %s on %s: owner=%s dirs=%s files=%s",
        root,
        transport.target.host,
        profile.owner,
        profile.dir_mode,
        profile.file_mode,
    )
    try:
        result = transport.run(
            build_remote_command(profile, root, skip_missing=skip_missing),
            input_data=sudo_password.reveal() + b"\n",
        )
    except SSHCommandError as exc:
        return RemediationResult(ok=False, exit_code=1, reason=str(exc))
    if result.exit_code != 0:
        return RemediationResult(
            ok=False,
            exit_code=result.exit_code,
            reason=result.diagnostic(f"{profile.label} remediation failed"),
        )
    return RemediationResult(ok=True)


__all__ = [
    "RemediationResult",
    "build_remediation_script",
    "build_remote_command",
    "run_privileged",
    "sudo_password_for",
]
