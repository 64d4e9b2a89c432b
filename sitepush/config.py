"""Deployment configuration: optional TOML file merged with CLI overrides."""

from __future__ import annotations

import getpass
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from . import types
from .credentials import DEFAULT_SECRET_FILE, DEFAULT_SUDO_PASSWORD_ENV

CONFIG_FILE_NAME = "sitepush.toml"
DEFAULT_PORT = 22
DEFAULT_SERVED_OWNER = "33:33"
DEFAULT_EXCLUDES: tuple[str, ...] = (
    ".git",
    ".gitignore",
    "node_modules",
    ".env",
    "docker-compose.yml",
    "encrypt_password.sh",
    DEFAULT_SECRET_FILE,
    ".vscode",
    "deploy.sh",
    "README.md",
)

_KNOWN_KEYS: Dict[str, set[str]] = {
    "target": {"host", "user", "path", "port"},
    "sync": {"source", "exclude", "default_excludes", "mode"},
    "remediation": {
        "enabled",
        "pre_owner",
        "pre_dir_mode",
        "pre_file_mode",
        "post_owner",
        "post_dir_mode",
        "post_file_mode",
    },
    "credentials": {"secret_file", "sudo_password_env", "ssh_command"},
}


class ConfigError(RuntimeError):
    """Raised when the configuration is invalid."""

    pass


@dataclass
class TargetBlock:
    host: Optional[str] = None
    user: Optional[str] = None
    path: Optional[str] = None
    port: int = DEFAULT_PORT


@dataclass
class SyncBlock:
    source: Optional[str] = None
    exclude: List[str] = field(default_factory=list)
    default_excludes: bool = True
    mode: str = types.ConflictMode.UPDATE.value


@dataclass
class RemediationBlock:
    enabled: bool = True
    pre_owner: Optional[str] = None
    pre_dir_mode: str = "775"
    pre_file_mode: str = "664"
    post_owner: str = DEFAULT_SERVED_OWNER
    post_dir_mode: str = "755"
    post_file_mode: str = "644"


@dataclass
class CredentialsBlock:
    secret_file: str = DEFAULT_SECRET_FILE
    sudo_password_env: str = DEFAULT_SUDO_PASSWORD_ENV
    ssh_command: str = "ssh"


@dataclass
class FileConfig:
    """Contents of a sitepush.toml document."""

    target: TargetBlock = field(default_factory=TargetBlock)
    sync: SyncBlock = field(default_factory=SyncBlock)
    remediation: RemediationBlock = field(default_factory=RemediationBlock)
    credentials: CredentialsBlock = field(default_factory=CredentialsBlock)
    path: Optional[Path] = None


@dataclass(frozen=True)
class DeployConfig:
    """Immutable settings for a single run, threaded through every component."""

    target: types.DeploymentTarget
    source: Path
    policy: types.SyncPolicy
    fix_perms: bool
    pre_profile: types.RemediationProfile
    post_profile: types.RemediationProfile
    secret_file: Optional[Path]
    sudo_password_env: str = DEFAULT_SUDO_PASSWORD_ENV
    ssh_command: str = "ssh"
    config_path: Optional[Path] = None


def find_config_file(source: Path, explicit: Path | str | None = None) -> Optional[Path]:
    """Return the config file to load, or None when running on flags alone."""
    if explicit is not None:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file {path} not found.")
        return path
    candidate = source / CONFIG_FILE_NAME
    return candidate if candidate.is_file() else None


def load_config_file(path: Path) -> FileConfig:
    """Load and validate a sitepush.toml file."""
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except OSError as exc:  # pragma: no cover - filesystem errors
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return parse_config(data, path)


def parse_config(data: Mapping[str, Any], path: Path | None = None) -> FileConfig:
    where = path.name if path else "config"
    for section, value in data.items():
        if section not in _KNOWN_KEYS:
            raise ConfigError(f"Unknown section [{section}] in {where}.")
        if not isinstance(value, Mapping):
            raise ConfigError(f"[{section}] must be a table in {where}.")
        unknown = sorted(set(value) - _KNOWN_KEYS[section])
        if unknown:
            raise ConfigError(f"Unknown key(s) {', '.join(unknown)} in [{section}] of {where}.")
    return FileConfig(
        target=_load_target(data.get("target", {}), where),
        sync=_load_sync(data.get("sync", {}), where),
        remediation=_load_remediation(data.get("remediation", {}), where),
        credentials=_load_credentials(data.get("credentials", {}), where),
        path=path,
    )


def _load_target(block: Mapping[str, Any], where: str) -> TargetBlock:
    port = block.get("port", DEFAULT_PORT)
    if not isinstance(port, int) or isinstance(port, bool):
        raise ConfigError(f"target.port must be an integer in {where}.")
    return TargetBlock(
        host=_optional_str(block, "host", "target", where),
        user=_optional_str(block, "user", "target", where),
        path=_optional_str(block, "path", "target", where),
        port=port,
    )


def _load_sync(block: Mapping[str, Any], where: str) -> SyncBlock:
    patterns = block.get("exclude", [])
    if not isinstance(patterns, list) or not all(isinstance(item, str) for item in patterns):
        raise ConfigError(f"sync.exclude must be an array of strings in {where}.")
    mode = block.get("mode", types.ConflictMode.UPDATE.value)
    if mode not in {item.value for item in types.ConflictMode}:
        raise ConfigError(f"sync.mode must be 'update' or 'force' in {where}.")
    return SyncBlock(
        source=_optional_str(block, "source", "sync", where),
        exclude=list(patterns),
        default_excludes=_bool(block, "default_excludes", True, "sync", where),
        mode=mode,
    )


def _load_remediation(block: Mapping[str, Any], where: str) -> RemediationBlock:
    defaults = RemediationBlock()
    return RemediationBlock(
        enabled=_bool(block, "enabled", defaults.enabled, "remediation", where),
        pre_owner=_optional_str(block, "pre_owner", "remediation", where),
        pre_dir_mode=_mode(block, "pre_dir_mode", defaults.pre_dir_mode, where),
        pre_file_mode=_mode(block, "pre_file_mode", defaults.pre_file_mode, where),
        post_owner=_optional_str(block, "post_owner", "remediation", where) or defaults.post_owner,
        post_dir_mode=_mode(block, "post_dir_mode", defaults.post_dir_mode, where),
        post_file_mode=_mode(block, "post_file_mode", defaults.post_file_mode, where),
    )


def _load_credentials(block: Mapping[str, Any], where: str) -> CredentialsBlock:
    defaults = CredentialsBlock()
    return CredentialsBlock(
        secret_file=_optional_str(block, "secret_file", "credentials", where) or defaults.secret_file,
        sudo_password_env=_optional_str(block, "sudo_password_env", "credentials", where) or defaults.sudo_password_env,
        ssh_command=_optional_str(block, "ssh_command", "credentials", where) or defaults.ssh_command,
    )


def _optional_str(block: Mapping[str, Any], key: str, section: str, where: str) -> Optional[str]:
    value = block.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{section}.{key} must be a string in {where}.")
    return value


def _bool(block: Mapping[str, Any], key: str, default: bool, section: str, where: str) -> bool:
    value = block.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be true or false in {where}.")
    return value


def _mode(block: Mapping[str, Any], key: str, default: str, where: str) -> str:
    value = block.get(key, default)
    # An unquoted 755 parses as the integer 755; keep its digits.
    # A 0o755 literal arrives as 493 and fails mode validation later.
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ConfigError(f"remediation.{key} must be an octal string in {where}.")
    return value


def build_deploy_config(
    file_cfg: FileConfig,
    *,
    source: Path,
    host: Optional[str] = None,
    user: Optional[str] = None,
    remote_path: Optional[str] = None,
    port: Optional[int] = None,
    force: Optional[bool] = None,
    dry_run: bool = False,
    fix_perms: Optional[bool] = None,
    secret_file: Optional[str] = None,
    extra_excludes: Sequence[str] = (),
) -> DeployConfig:
    """Merge file settings and CLI overrides into an immutable DeployConfig."""
    resolved_host = host or file_cfg.target.host
    resolved_path = remote_path or file_cfg.target.path
    if not resolved_host:
        raise ConfigError("No remote host configured; pass --host or set [target] host.")
    if not resolved_path:
        raise ConfigError("No remote path configured; pass --remote-path or set [target] path.")
    resolved_user = user or file_cfg.target.user
    try:
        target = types.DeploymentTarget(
            host=resolved_host,
            user=resolved_user,
            remote_path=resolved_path,
            port=port if port is not None else file_cfg.target.port,
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    if force is None:
        mode = types.ConflictMode(file_cfg.sync.mode)
    else:
        mode = types.ConflictMode.FORCE if force else types.ConflictMode.UPDATE

    secret_path = _resolve_secret_file(secret_file or file_cfg.credentials.secret_file, file_cfg, source)
    excludes = _collect_excludes(file_cfg, source, secret_path, extra_excludes)
    remediation = file_cfg.remediation
    try:
        pre_profile = types.RemediationProfile(
            label="pre-sync",
            owner=remediation.pre_owner or resolved_user or getpass.getuser(),
            dir_mode=remediation.pre_dir_mode,
            file_mode=remediation.pre_file_mode,
        )
        post_profile = types.RemediationProfile(
            label="post-sync",
            owner=remediation.post_owner,
            dir_mode=remediation.post_dir_mode,
            file_mode=remediation.post_file_mode,
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    return DeployConfig(
        target=target,
        source=source,
        policy=types.SyncPolicy(excludes=excludes, mode=mode, dry_run=dry_run),
        fix_perms=remediation.enabled if fix_perms is None else fix_perms,
        pre_profile=pre_profile,
        post_profile=post_profile,
        secret_file=secret_path,
        sudo_password_env=file_cfg.credentials.sudo_password_env,
        ssh_command=file_cfg.credentials.ssh_command,
        config_path=file_cfg.path,
    )


def _resolve_secret_file(value: str, file_cfg: FileConfig, source: Path) -> Optional[Path]:
    if not value:
        return None
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    base = file_cfg.path.parent if file_cfg.path else source
    return base / path


def _collect_excludes(
    file_cfg: FileConfig,
    source: Path,
    secret_path: Optional[Path],
    extra_excludes: Sequence[str],
) -> tuple[str, ...]:
    patterns: List[str] = list(DEFAULT_EXCLUDES) if file_cfg.sync.default_excludes else []
    patterns.extend(file_cfg.sync.exclude)
    patterns.extend(extra_excludes)
    # Tool-internal files never leave the machine, even with custom excludes.
    for internal in (file_cfg.path, secret_path):
        anchored = _anchored_pattern(internal, source)
        if anchored:
            patterns.append(anchored)
    deduplicated: List[str] = []
    for pattern in patterns:
        if pattern not in deduplicated:
            deduplicated.append(pattern)
    return tuple(deduplicated)


def _anchored_pattern(path: Optional[Path], source: Path) -> Optional[str]:
    if path is None:
        return None
    try:
        rel = path.resolve().relative_to(source.resolve())
    except ValueError:
        return None
    return "/" + rel.as_posix()


__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigError",
    "CredentialsBlock",
    "DEFAULT_EXCLUDES",
    "DeployConfig",
    "FileConfig",
    "RemediationBlock",
    "SyncBlock",
    "TargetBlock",
    "build_deploy_config",
    "find_config_file",
    "load_config_file",
    "parse_config",
]
