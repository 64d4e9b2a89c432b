"""Command-line interface for sitepush."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

try:
    import argcomplete
    ARGCOMPLETE_AVAILABLE = True
except ImportError:
    ARGCOMPLETE_AVAILABLE = False

from . import __version__, config, credentials, types
from .engine import mirror, snapshot
from .logging import configure_logging
from .ssh import privileged
from .ssh.selector import Transport, select_transport

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(
        prog="sitepush",
        description="Mirror a local directory tree onto a remote host over SSH.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without touching the remote.",
    )
    parser.add_argument(
        "--fix-perms",
        dest="fix_perms",
        action="store_true",
        default=None,
        help="Fix remote ownership/permissions before and after the sync (default).",
    )
    parser.add_argument(
        "--no-fix-perms",
        dest="fix_perms",
        action="store_false",
        help="Skip remote ownership/permission remediation.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        default=None,
        help="Rewrite every file in place instead of only files newer than the remote copy.",
    )
    parser.add_argument(
        "--config",
        help=f"Path to a config file (defaults to <source>/{config.CONFIG_FILE_NAME} when present).",
    )
    parser.add_argument("--source", help="Local directory to publish (defaults to the current directory).")
    parser.add_argument("--host", help="Remote host name or SSH alias.")
    parser.add_argument("--user", help="Remote login user.")
    parser.add_argument("--remote-path", help="Absolute destination path on the remote host.")
    parser.add_argument("--port", type=int, help="SSH port (default 22).")
    parser.add_argument(
        "--secret-file",
        help=f"gpg-encrypted SSH password (defaults to {credentials.DEFAULT_SECRET_FILE} next to the config).",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Additional exclude pattern (can be repeated).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (can be repeated).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (can be repeated).",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> config.DeployConfig:
    """Resolve the config file and CLI flags into a DeployConfig."""
    source = Path(args.source or ".").expanduser()
    config_path = config.find_config_file(source, args.config)
    file_cfg = config.load_config_file(config_path) if config_path else config.FileConfig()
    if args.source is None and file_cfg.sync.source and config_path is not None:
        source = config_path.parent / file_cfg.sync.source
    source = source.resolve()
    if not source.is_dir():
        raise config.ConfigError(f"Source directory {source} does not exist.")
    return config.build_deploy_config(
        file_cfg,
        source=source,
        host=args.host,
        user=args.user,
        remote_path=args.remote_path,
        port=args.port,
        force=args.force,
        dry_run=args.dry_run,
        fix_perms=args.fix_perms,
        secret_file=args.secret_file,
        extra_excludes=args.exclude,
    )


class DeployRunner:
    """Runs credential resolution, remediation and the mirror sync in order."""

    def __init__(
        self,
        deploy_config: config.DeployConfig,
        *,
        prompt: Callable[[str], str] | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self._config = deploy_config
        self._secret: Optional[credentials.Secret] = None
        self._transport: Optional[Transport] = None
        self._sudo_cache = credentials.SudoPasswordCache(
            deploy_config.target.destination,
            env_var=deploy_config.sudo_password_env,
            environ=environ if environ is not None else os.environ,
            prompt=prompt,
        )

    def run(self) -> types.RunOutcome:
        try:
            outcome = self._run_stages()
        except KeyboardInterrupt:
            logger.error("Interrupted.")
            outcome = types.RunOutcome(types.EXIT_INTERRUPTED, "interrupted")
        finally:
            if self._transport is not None:
                self._transport.close()
            self._clear_secrets()
        return outcome

    def _run_stages(self) -> types.RunOutcome:
        cfg = self._config
        target = cfg.target
        if cfg.policy.dry_run:
            logger.info("*** DRY RUN: no files will be changed on the remote ***")
        logger.info("Deploying %s to %s:%s", cfg.source, target.destination, target.remote_path)

        self._secret = credentials.resolve_credential(cfg.secret_file)
        transport = self._transport = select_transport(target, self._secret, ssh_command=cfg.ssh_command)
        transport.share_connection()

        if cfg.fix_perms and not cfg.policy.dry_run:
            logger.info("Pre-fixing ownership and permissions on remote (requires sudo on %s)...", target.host)
            failure = self._remediate(transport, cfg.pre_profile, skip_missing=True)
            if failure is not None:
                return failure
            logger.info("Pre-fix completed. Proceeding with sync...")

        try:
            result = mirror.sync(cfg.source, transport, cfg.policy)
        except snapshot.SnapshotError as exc:
            logger.error("%s", exc)
            return types.RunOutcome(1, str(exc))

        failure = self._classify(result)
        if failure is not None:
            return failure

        if cfg.policy.dry_run:
            logger.info("Dry run complete. Review output above.")
            return types.RunOutcome(types.EXIT_OK, "dry run complete")

        summary = f"{result.transferred} transferred, {result.deleted} deleted"
        logger.info("Deploy finished: %s.", summary)

        if cfg.fix_perms:
            logger.info("Fixing ownership and permissions on remote (requires sudo on %s)...", target.host)
            failure = self._remediate(transport, cfg.post_profile)
            if failure is not None:
                return failure
            logger.info("Permissions fixed.")
        return types.RunOutcome(types.EXIT_OK, summary)

    def _classify(self, result: types.SyncResult) -> Optional[types.RunOutcome]:
        if result.exit_class == types.ExitClass.FAILED:
            logger.error("Sync failed with exit code %d.", result.exit_code)
            return types.RunOutcome(result.exit_code, "sync failed")
        if result.exit_class == types.ExitClass.PARTIAL:
            # Tolerated whenever remediation is on, whatever caused the partial transfer.
            if self._config.fix_perms:
                logger.warning(
                    "Sync reported partial success (exit %d); permissions will be fixed next.", result.exit_code
                )
                return None
            for error in result.errors:
                logger.error(" - %s", error)
            logger.error("Sync failed with exit code %d.", result.exit_code)
            return types.RunOutcome(result.exit_code, "partial transfer")
        return None

    def _remediate(
        self,
        transport: Transport,
        profile: types.RemediationProfile,
        *,
        skip_missing: bool = False,
    ) -> Optional[types.RunOutcome]:
        try:
            result = privileged.run_privileged(
                transport,
                profile=profile,
                root=self._config.target.remote_path,
                sudo_password=privileged.sudo_password_for(transport, self._sudo_cache),
                skip_missing=skip_missing,
            )
        except credentials.CredentialError as exc:
            logger.error("%s remediation failed: %s", profile.label, exc)
            return types.RunOutcome(1, f"{profile.label} remediation failed")
        if result.ok:
            return None
        logger.error("%s remediation failed (exit %d): %s", profile.label, result.exit_code, result.reason)
        return types.RunOutcome(result.exit_code or 1, f"{profile.label} remediation failed")

    def _clear_secrets(self) -> None:
        if self._secret is not None:
            self._secret.clear()
            self._secret = None
        self._sudo_cache.clear()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for console_scripts."""
    parser = build_parser()

    if ARGCOMPLETE_AVAILABLE:
        argcomplete.autocomplete(parser)

    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(verbose=args.verbose, quiet=args.quiet)
    try:
        deploy_config = config_from_args(args)
    except config.ConfigError as exc:
        logger.error("%s", exc)
        parser.print_usage()
        return types.EXIT_USAGE
    outcome = DeployRunner(deploy_config).run()
    return outcome.exit_code


if __name__ == "__main__":  # pragma: no cover - manual execution guard
    raise SystemExit(main())
