"""Core deployment data types."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_PARTIAL = 23
EXIT_VANISHED = 24
EXIT_INTERRUPTED = 130

_MODE_PATTERN = re.compile(r"^[0-7]{3,4}$")


class ConflictMode(str, Enum):
    UPDATE = "update"
    FORCE = "force"


@dataclass(frozen=True)
class DeploymentTarget:
    """Remote destination of a deployment."""

    host: str
    user: Optional[str]
    remote_path: str
    port: int = 22

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("Deployment target must include a host.")
        if not PurePosixPath(self.remote_path).is_absolute():
            raise ValueError(f"Remote path must be absolute: {self.remote_path}")
        if not 0 < int(self.port) < 65536:
            raise ValueError(f"Invalid SSH port: {self.port}")
        object.__setattr__(self, "remote_path", str(PurePosixPath(self.remote_path)))

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def remote_file(self, rel_path: str) -> str:
        if rel_path == ".":
            return self.remote_path
        return str(PurePosixPath(self.remote_path) / rel_path)


@dataclass(frozen=True)
class SyncPolicy:
    """How the local tree is mirrored onto the remote path."""

    excludes: Tuple[str, ...] = ()
    mode: ConflictMode = ConflictMode.UPDATE
    dry_run: bool = False

    @property
    def force(self) -> bool:
        return self.mode == ConflictMode.FORCE


@dataclass(frozen=True)
class RemediationProfile:
    """Ownership and mode bits applied recursively to the remote tree."""

    label: str
    owner: str
    dir_mode: str
    file_mode: str

    def __post_init__(self) -> None:
        if not self.owner:
            raise ValueError(f"Remediation profile '{self.label}' needs an owner.")
        for value in (self.dir_mode, self.file_mode):
            if not _MODE_PATTERN.match(value):
                raise ValueError(f"Invalid octal mode '{value}' in remediation profile '{self.label}'.")


@dataclass(frozen=True)
class FileEntry:
    """Filesystem entry metadata."""

    path: str
    is_dir: bool
    size: int
    mtime: float
    is_symlink: bool = False
    link_target: Optional[str] = None

    def __post_init__(self) -> None:
        normalized = normalize_relative_path(self.path)
        object.__setattr__(self, "path", normalized)

    @property
    def kind(self) -> str:
        if self.is_symlink:
            return "symlink"
        return "dir" if self.is_dir else "file"


class OperationType(str, Enum):
    MKDIR = "mkdir"
    COPY = "transfer"
    SYMLINK = "symlink"
    DELETE = "delete"
    SKIP = "skip"


@dataclass(frozen=True)
class Operation:
    """A single mirror decision."""

    type: OperationType
    path: str
    reason: str = ""
    is_dir: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized = normalize_relative_path(self.path)
        object.__setattr__(self, "path", normalized)

    def describe(self) -> str:
        suffix = "/" if self.is_dir else ""
        return f"{self.type.value} {self.path}{suffix}"


class ExitClass(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class SyncResult:
    exit_class: ExitClass
    exit_code: int = EXIT_OK
    operations: List[Operation] = field(default_factory=list)
    transferred: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_class == ExitClass.SUCCESS


@dataclass(frozen=True)
class RunOutcome:
    exit_code: int
    summary: str


def normalize_relative_path(path: str | PurePosixPath) -> str:
    """Normalize a path relative to the deployment root."""
    normalized_input = str(path).replace("\\", "/")
    if re.match(r"^[A-Za-z]:", normalized_input):
        raise ValueError(f"Absolute paths are not allowed: {path}")
    candidate = PurePosixPath(normalized_input)
    if candidate.is_absolute():
        raise ValueError(f"Absolute paths are not allowed: {path}")
    parts = []
    for part in candidate.parts:
        if part in ("", "."):
            continue
        if part == "..":
            raise ValueError(f"Path escapes root: {path}")
        parts.append(part)
    return "/".join(parts) if parts else "."


__all__ = [
    "ConflictMode",
    "DeploymentTarget",
    "EXIT_INTERRUPTED",
    "EXIT_OK",
    "EXIT_PARTIAL",
    "EXIT_USAGE",
    "EXIT_VANISHED",
    "ExitClass",
    "FileEntry",
    "Operation",
    "OperationType",
    "RemediationProfile",
    "RunOutcome",
    "SyncPolicy",
    "SyncResult",
    "normalize_relative_path",
]
