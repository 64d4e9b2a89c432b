"""Executor for applying planned mirror operations to the remote host."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from sitepush import types
from sitepush.ssh import copy as ssh_copy
from sitepush.ssh.transport import SSHCommandError, SSHResult

if TYPE_CHECKING:
    from sitepush.ssh.selector import Transport

logger = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    """Raised when the transport fails and the run cannot continue."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code or 1


class _Outcome:
    def __init__(self, vanished: Sequence[str] = (), errors: Sequence[str] = ()) -> None:
        self.transferred = 0
        self.deleted = 0
        self.errors: List[str] = list(errors)
        self.vanished: List[str] = list(vanished)

    def classify(self) -> tuple[types.ExitClass, int]:
        if self.errors:
            return types.ExitClass.PARTIAL, types.EXIT_PARTIAL
        if self.vanished:
            return types.ExitClass.PARTIAL, types.EXIT_VANISHED
        return types.ExitClass.SUCCESS, types.EXIT_OK


def apply_operations(
    ops: Iterable[types.Operation],
    *,
    transport: "Transport",
    local_root: Path | str,
    policy: types.SyncPolicy,
    vanished: Sequence[str] = (),
    errors: Sequence[str] = (),
) -> types.SyncResult:
    """Apply operations in order.

    Per-file failures are collected and reported as a partial transfer; a
    transport failure stops the run immediately. ``errors`` carries problems
    found before execution started, such as unreadable remote directories.
    """
    operations = list(ops)
    outcome = _Outcome(vanished, errors)
    source = Path(local_root)
    try:
        for op in operations:
            _apply(op, transport=transport, source=source, policy=policy, outcome=outcome)
    except ExecutionError as exc:
        logger.error("%s", exc)
        return types.SyncResult(
            exit_class=types.ExitClass.FAILED,
            exit_code=exc.exit_code,
            operations=operations,
            transferred=outcome.transferred,
            deleted=outcome.deleted,
            errors=outcome.errors + [str(exc)],
        )
    for path in outcome.vanished:
        logger.warning("file has vanished: %s", path)
    exit_class, exit_code = outcome.classify()
    return types.SyncResult(
        exit_class=exit_class,
        exit_code=exit_code,
        operations=operations,
        transferred=outcome.transferred,
        deleted=outcome.deleted,
        errors=outcome.errors,
    )


def _apply(
    op: types.Operation,
    *,
    transport: "Transport",
    source: Path,
    policy: types.SyncPolicy,
    outcome: _Outcome,
) -> None:
    remote_path = transport.target.remote_file(op.path)
    if op.type == types.OperationType.SKIP:
        return
    if op.type == types.OperationType.DELETE:
        if _run_step(transport, ["rm", "-rf", "--", remote_path], op, outcome):
            outcome.deleted += 1
    elif op.type == types.OperationType.MKDIR:
        _run_step(transport, ["mkdir", "-p", "--", remote_path], op, outcome)
    elif op.type == types.OperationType.SYMLINK:
        link_target = op.metadata.get("link_target")
        if not link_target:
            outcome.errors.append(f"symlink target unknown for {op.path}")
            return
        if _run_step(transport, ["ln", "-sfn", "--", link_target, remote_path], op, outcome):
            outcome.transferred += 1
    elif op.type == types.OperationType.COPY:
        _copy(op, transport=transport, source=source, remote_path=remote_path, policy=policy, outcome=outcome)
    else:  # pragma: no cover - unknown ops future-proofing
        raise ExecutionError(f"Unsupported operation type: {op.type}")


def _copy(
    op: types.Operation,
    *,
    transport: "Transport",
    source: Path,
    remote_path: str,
    policy: types.SyncPolicy,
    outcome: _Outcome,
) -> None:
    logger.debug("Uploading %s -> %s", op.path, remote_path)
    try:
        ssh_copy.push_file(
            transport,
            local_path=source / op.path,
            remote_path=remote_path,
            in_place=policy.force,
        )
    except ssh_copy.SourceVanishedError:
        outcome.vanished.append(op.path)
        return
    except ssh_copy.RemoteCopyError as exc:
        if exc.transport_failed:
            raise ExecutionError(f"Transfer of {op.path} failed: {exc}", exit_code=exc.exit_code) from exc
        logger.warning("Failed to transfer %s: %s", op.path, exc)
        outcome.errors.append(f"{op.path}: {exc}")
        return
    except SSHCommandError as exc:
        raise ExecutionError(str(exc)) from exc
    outcome.transferred += 1


def _run_step(
    transport: "Transport",
    remote_command: List[str],
    op: types.Operation,
    outcome: _Outcome,
) -> bool:
    logger.debug("Remote %s for %s", op.type.value, op.path)
    try:
        result = transport.run(remote_command)
    except SSHCommandError as exc:
        raise ExecutionError(str(exc)) from exc
    return _check(result, op, outcome)


def _check(result: SSHResult, op: types.Operation, outcome: _Outcome) -> bool:
    if result.ok:
        return True
    message: Optional[str] = result.diagnostic(f"remote {op.type.value} failed")
    if result.transport_failed:
        if result.auth_failed or result.prompt_detected:
            message = f"SSH authentication failed: {message}"
        raise ExecutionError(f"{op.describe()} failed: {message}", exit_code=result.exit_code)
    logger.warning("%s failed: %s", op.describe(), message)
    outcome.errors.append(f"{op.path}: {message}")
    return False


__all__ = ["ExecutionError", "apply_operations"]
