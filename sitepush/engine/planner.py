"""Planner: diff the local and remote snapshots into one-way mirror operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from sitepush import types
from sitepush.engine.snapshot import ExcludedEntry

REASON_UPTODATE = "uptodate"
REASON_EXCLUDED = "excluded"


@dataclass
class PlannerInput:
    local: Dict[str, types.FileEntry]
    remote: Dict[str, types.FileEntry]
    policy: types.SyncPolicy
    excluded: List[ExcludedEntry] = field(default_factory=list)


@dataclass
class PlannerOutput:
    operations: List[types.Operation] = field(default_factory=list)

    @property
    def actions(self) -> List[types.Operation]:
        """Operations that change the remote tree."""
        return [op for op in self.operations if op.type != types.OperationType.SKIP]

    def report_lines(self) -> List[str]:
        """Decision report, omitting files that are already up to date."""
        return [op.describe() for op in self.operations if op.reason != REASON_UPTODATE]

    def count(self, op_type: types.OperationType) -> int:
        return sum(1 for op in self.operations if op.type == op_type)


def plan(input_data: PlannerInput) -> PlannerOutput:
    """Compute the operations that make the remote tree mirror the local one."""
    out = PlannerOutput()
    deleted = _plan_deletes(out, input_data.local, input_data.remote)
    for path in sorted(input_data.local):
        entry = input_data.local[path]
        remote_entry = None if _under_any(path, deleted) else input_data.remote.get(path)
        _classify_path(out, entry, remote_entry, input_data.policy)
    for item in sorted(input_data.excluded, key=lambda excluded: excluded.path):
        out.operations.append(
            types.Operation(type=types.OperationType.SKIP, path=item.path, reason=REASON_EXCLUDED, is_dir=item.is_dir)
        )
    return out


def _plan_deletes(
    out: PlannerOutput,
    local: Dict[str, types.FileEntry],
    remote: Dict[str, types.FileEntry],
) -> Set[str]:
    deleted: Set[str] = set()
    for path in sorted(remote):
        if _under_any(path, deleted):
            continue
        remote_entry = remote[path]
        local_entry = local.get(path)
        if local_entry is None:
            reason = "absent_locally"
        elif local_entry.kind != remote_entry.kind:
            reason = "type_changed"
        else:
            continue
        deleted.add(path)
        out.operations.append(
            types.Operation(
                type=types.OperationType.DELETE,
                path=path,
                reason=reason,
                is_dir=remote_entry.is_dir,
            )
        )
    return deleted


def _classify_path(
    out: PlannerOutput,
    entry: types.FileEntry,
    remote_entry: types.FileEntry | None,
    policy: types.SyncPolicy,
) -> None:
    if entry.is_dir:
        if remote_entry is None:
            out.operations.append(
                types.Operation(type=types.OperationType.MKDIR, path=entry.path, reason="missing_remotely", is_dir=True)
            )
        return
    if entry.is_symlink:
        if remote_entry is None or policy.force or remote_entry.link_target != entry.link_target:
            out.operations.append(
                types.Operation(
                    type=types.OperationType.SYMLINK,
                    path=entry.path,
                    reason="force" if remote_entry is not None and policy.force else "link_changed",
                    metadata={"link_target": entry.link_target},
                )
            )
        else:
            _skip_uptodate(out, entry)
        return
    if remote_entry is None:
        reason = "missing_remotely"
    elif policy.force:
        reason = "force"
    elif _older(remote_entry, entry):
        reason = "newer_locally"
    else:
        _skip_uptodate(out, entry)
        return
    out.operations.append(
        types.Operation(
            type=types.OperationType.COPY,
            path=entry.path,
            reason=reason,
            metadata={"size": entry.size},
        )
    )


def _skip_uptodate(out: PlannerOutput, entry: types.FileEntry) -> None:
    out.operations.append(types.Operation(type=types.OperationType.SKIP, path=entry.path, reason=REASON_UPTODATE))


def _older(remote_entry: types.FileEntry, local_entry: types.FileEntry) -> bool:
    # Whole seconds, since remote find and local stat differ in sub-second precision.
    return int(remote_entry.mtime) < int(local_entry.mtime)


def _under_any(path: str, roots: Iterable[str]) -> bool:
    return any(path == root or path.startswith(f"{root}/") for root in roots)


__all__ = ["PlannerInput", "PlannerOutput", "REASON_EXCLUDED", "REASON_UPTODATE", "plan"]
