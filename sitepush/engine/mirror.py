"""One-way mirror of a local tree onto the deployment target."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sitepush import types
from sitepush.engine import executor, planner, snapshot
from sitepush.ssh import listing
from sitepush.ssh.transport import SSHCommandError

if TYPE_CHECKING:
    from sitepush.ssh.selector import Transport

logger = logging.getLogger(__name__)


def sync(local_root: Path | str, transport: "Transport", policy: types.SyncPolicy) -> types.SyncResult:
    """Mirror ``local_root`` onto ``transport.target.remote_path``.

    Raises snapshot.SnapshotError when the local source is unusable; remote
    failures are reported through the returned result.
    """
    target = transport.target
    local = snapshot.build_snapshot(local_root, excludes=policy.excludes)
    try:
        remote = _remote_snapshot(transport, policy)
    except listing.RemoteListingError as exc:
        logger.error("Cannot read %s:%s: %s", target.destination, target.remote_path, exc)
        return types.SyncResult(exit_class=types.ExitClass.FAILED, exit_code=exc.exit_code, errors=[str(exc)])
    except SSHCommandError as exc:
        logger.error("%s", exc)
        return types.SyncResult(exit_class=types.ExitClass.FAILED, exit_code=1, errors=[str(exc)])

    plan_result = planner.plan(
        planner.PlannerInput(
            local=local.entries,
            remote=remote.entries,
            policy=policy,
            excluded=local.excluded,
        )
    )
    log_plan(plan_result, policy)

    for error in remote.errors:
        logger.warning("Remote listing incomplete: %s", error)

    if policy.dry_run:
        exit_class, exit_code = types.ExitClass.SUCCESS, types.EXIT_OK
        if remote.errors:
            exit_class, exit_code = types.ExitClass.PARTIAL, types.EXIT_PARTIAL
        elif local.vanished:
            exit_class, exit_code = types.ExitClass.PARTIAL, types.EXIT_VANISHED
        return types.SyncResult(
            exit_class=exit_class,
            exit_code=exit_code,
            operations=plan_result.operations,
            errors=list(remote.errors),
            dry_run=True,
        )

    return executor.apply_operations(
        plan_result.operations,
        transport=transport,
        local_root=local.root,
        policy=policy,
        vanished=local.vanished,
        errors=remote.errors,
    )


def _remote_snapshot(transport: "Transport", policy: types.SyncPolicy) -> snapshot.SnapshotResult:
    target = transport.target
    try:
        return snapshot.build_remote_snapshot(transport, target.remote_path, excludes=policy.excludes)
    except listing.RemoteRootMissing:
        if policy.dry_run:
            logger.info("Remote path %s does not exist yet; it would be created.", target.remote_path)
            return snapshot.SnapshotResult(root=target.remote_path, entries={})
    logger.info("Creating remote path %s.", target.remote_path)
    # Like rsync, only the last component is created; a missing parent is an error.
    result = transport.run(["mkdir", "--", target.remote_path])
    if not result.ok:
        raise listing.RemoteListingError(
            f"unable to create {target.remote_path}: {result.diagnostic()}",
            exit_code=result.exit_code,
        )
    return snapshot.SnapshotResult(root=target.remote_path, entries={})


def log_plan(plan_result: planner.PlannerOutput, policy: types.SyncPolicy) -> None:
    for line in plan_result.report_lines():
        logger.info("%s", line)
    logger.info(
        "%s%d to transfer, %d to delete, %d up to date (%s mode).",
        "Dry run: " if policy.dry_run else "",
        plan_result.count(types.OperationType.COPY) + plan_result.count(types.OperationType.SYMLINK),
        plan_result.count(types.OperationType.DELETE),
        sum(1 for op in plan_result.operations if op.reason == planner.REASON_UPTODATE),
        policy.mode.value,
    )


__all__ = ["log_plan", "sync"]
