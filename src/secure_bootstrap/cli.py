"""
Command-line interface for the secure bootstrap system.

This module provides the main CLI entry point with commands for:
- run: Converge the host through the hardening pipeline
- plan: Show what run would change, without writing anything
- preflight: Check whether the host can be bootstrapped
- backups: List (and verify) first-seen artifact backups
- config: Configuration management

Exit codes: 0 completed, 1 aborted by the operator, 2 failed, 3 precondition
or configuration error.
"""

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from pathlib import Path
from typing import Optional

from secure_bootstrap import __version__
from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.backup_store import BackupStore
from secure_bootstrap.config import SystemConfig
from secure_bootstrap.config_loader import load_config, render_env_file, validate_config
from secure_bootstrap.enums import PipelineStatus
from secure_bootstrap.exceptions import BootstrapError, ConfigError, PersistenceError, PreconditionError
from secure_bootstrap.gate import CheckpointGate
from secure_bootstrap.i18n import get_message
from secure_bootstrap.models import StepRecord
from secure_bootstrap.notifications import RunSummaryPayload, build_router
from secure_bootstrap.pipeline import GateStep, Step, build_default_pipeline
from secure_bootstrap.preflight import Preflight
from secure_bootstrap.run_lock import RunLock
from secure_bootstrap.system import SubprocessRunner


EXIT_COMPLETED = 0
EXIT_ABORTED = 1
EXIT_FAILED = 2
EXIT_PRECONDITION = 3

STATUS_EXIT_CODES = {
    PipelineStatus.COMPLETED: EXIT_COMPLETED,
    PipelineStatus.ABORTED: EXIT_ABORTED,
    PipelineStatus.FAILED: EXIT_FAILED,
}

DEFAULT_ENV_FILE = Path("secure-bootstrap.env")


def load_cli_config(args: argparse.Namespace) -> SystemConfig:
    """
    Load configuration for a command.

    An explicit --config file must exist. Without one, the default env file
    in the working directory is used when present, else only the environment.
    Command-line overrides are applied last.

    Raises:
        ConfigError: If the file is missing or an option is invalid
    """
    env_file = Path(args.config) if getattr(args, "config", None) else None
    if env_file is None and DEFAULT_ENV_FILE.exists():
        env_file = DEFAULT_ENV_FILE
    config = load_config(env_file)

    overrides = {}
    if getattr(args, "language", None):
        overrides["language"] = args.language
    if getattr(args, "yes", False):
        overrides["assume_yes"] = True
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def print_step_start(language: str):
    def callback(index: int, total: int, step: Step) -> None:
        name = get_message(
            "step.gate" if isinstance(step, GateStep) else f"step.{step.name}",
            language,
        )
        print(get_message("cli.step_start", language, number=index + 1, total=total, name=name))
    return callback


def print_step_done(language: str):
    def callback(record: StepRecord) -> None:
        if record.result is None or not record.result.ok:
            return
        if record.result.changed:
            print(get_message("cli.step_changed", language, count=len(record.result.diff)))
        else:
            print(get_message("cli.step_unchanged", language))
    return callback


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    try:
        config = load_cli_config(args)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PRECONDITION

    language = config.language
    logger = AuditLogger.from_config(config.logging)
    runner = SubprocessRunner()

    preflight = Preflight(config, runner, logger=logger)
    try:
        preflight.check()
    except PreconditionError as e:
        for error in e.details.get("errors", [e.message]):
            print(f"  ✗ {error}", file=sys.stderr)
        print(get_message("preflight.failed", language), file=sys.stderr)
        return EXIT_PRECONDITION

    lock = RunLock(config.paths.lock_file)
    try:
        lock.acquire()
    except PreconditionError:
        print(get_message("cli.lock_busy", language, path=lock.path), file=sys.stderr)
        return EXIT_PRECONDITION

    try:
        backups = BackupStore(config.paths.backup_dir, config.paths.hmac_secret)
        gate = CheckpointGate(assume_yes=config.assume_yes, language=language, logger=logger)
        pipeline = build_default_pipeline(
            config,
            runner,
            backups,
            gate,
            logger=logger,
            on_step_start=print_step_start(language),
            on_step_done=print_step_done(language),
        )
        run = pipeline.run()
    finally:
        lock.release()

    print()
    for line in run.summary_lines(language):
        print(line)

    if args.json:
        output = Path(args.json)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(run.to_dict(), f, indent=2, ensure_ascii=False)

    router = build_router(config.notifications, config.simulation_mode, logger)
    if router.channels:
        asyncio.run(router.notify(RunSummaryPayload.from_run(run, language)))

    return STATUS_EXIT_CODES.get(run.status, EXIT_FAILED)


def cmd_plan(args: argparse.Namespace) -> int:
    """Handle the 'plan' command."""
    try:
        config = load_cli_config(args)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PRECONDITION

    language = config.language
    runner = SubprocessRunner()
    try:
        Preflight(config, runner).check()
    except PreconditionError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PRECONDITION

    backups = BackupStore(config.paths.backup_dir, config.paths.hmac_secret)
    gate = CheckpointGate(assume_yes=True, language=language)
    entries = build_default_pipeline(config, runner, backups, gate).plan()

    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2, ensure_ascii=False))
        return EXIT_FAILED if any(entry.error for entry in entries) else EXIT_COMPLETED

    print(get_message("cli.plan_header", language))
    for entry in entries:
        name = get_message(f"step.{entry.domain.value}", language)
        if entry.error is not None:
            print(f"  {name}: {entry.error.message}")
        elif not entry.diff:
            print(get_message("cli.plan_none", language, name=name))
        for change in entry.diff:
            data = change.to_dict()
            print(get_message(
                "cli.plan_change",
                language,
                name=name,
                field=change.name,
                actual=data["actual"],
                desired=data["desired"],
            ))
    return EXIT_FAILED if any(entry.error for entry in entries) else EXIT_COMPLETED


def cmd_preflight(args: argparse.Namespace) -> int:
    """Handle the 'preflight' command."""
    try:
        config = load_cli_config(args)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PRECONDITION

    preflight = Preflight(config, SubprocessRunner())
    result = preflight.run()
    preflight.print_results(result)
    return EXIT_COMPLETED if result.success else EXIT_PRECONDITION


def cmd_backups(args: argparse.Namespace) -> int:
    """Handle the 'backups' command."""
    try:
        config = load_cli_config(args)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PRECONDITION

    store = BackupStore(config.paths.backup_dir, config.paths.hmac_secret)
    try:
        entries = store.entries()
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILED

    if not entries:
        print(get_message("summary.no_backup", config.language))
        return EXIT_COMPLETED

    intact = True
    for entry in entries:
        location = entry.backup_path if entry.existed else "(absent before first change)"
        line = f"  [{entry.domain}] {entry.artifact} -> {location}  {entry.created_at}"
        if args.verify:
            ok = store.verify(entry)
            intact = intact and ok
            line += "  OK" if ok else "  MODIFIED OR MISSING"
        print(line)
    return EXIT_COMPLETED if intact else EXIT_FAILED


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_ENV_FILE

    if args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return EXIT_FAILED
        config = dataclasses.replace(
            load_config(environ={}), language=args.language or "en"
        )
        config_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(render_env_file(config))
        print(f"Configuration created at: {config_path}")
        return EXIT_COMPLETED

    try:
        config = load_config(config_path if config_path.exists() or args.path else None)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PRECONDITION
    language = args.language or config.language

    if args.action == "show":
        print(f"Configuration from: {config_path if config_path.exists() else 'environment'}")
        print(f"  Admin user: {config.account.admin_user}")
        print(f"  SSH port: {config.ssh.port if config.ssh.port is not None else 'keep current'}")
        print(f"  Root login disabled: {config.ssh.disable_root_login}")
        print(f"  Password auth disabled: {config.ssh.disable_password_auth}")
        print(f"  Firewall zone: {config.firewall.zone} (web: {config.firewall.enable_web})")
        print(f"  Extra ports: {', '.join(config.firewall.extra_ports) or '-'}")
        print(
            f"  Jail: maxretry={config.jail.max_retry} findtime={config.jail.find_time} "
            f"bantime={config.jail.ban_time}"
        )
        print(f"  Rotate root password: {config.credential.rotate}")
        print(f"  State dir: {config.paths.state_dir}")
        print(f"  Language: {config.language}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        return EXIT_COMPLETED

    result = validate_config(config)
    if result.valid:
        print(get_message("cli.config_valid", language))
    else:
        print(get_message("cli.config_invalid", language))
        for error in result.errors:
            print(f"  - {error}")
    for warning in result.warnings:
        print(f"  ! {warning}")
    return EXIT_COMPLETED if result.valid else EXIT_PRECONDITION


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="secure-bootstrap",
        description="Converge a RHEL-like host to a hardened SSH, firewall and fail2ban baseline",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config", "-c",
            help=f"Path to KEY=value configuration file (default: ./{DEFAULT_ENV_FILE} if present)",
        )
        sub.add_argument(
            "--language", "-l",
            choices=["de", "en"],
            help="Output language (overrides LANGUAGE)",
        )

    # 'run' command
    run_parser = subparsers.add_parser("run", help="Run the hardening pipeline")
    add_common(run_parser)
    run_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Pass every checkpoint without asking (same as ASSUME_YES=1)",
    )
    run_parser.add_argument(
        "--json",
        help="Path to write the run record as JSON",
    )
    run_parser.set_defaults(func=cmd_run)

    # 'plan' command
    plan_parser = subparsers.add_parser("plan", help="Show planned changes without applying them")
    add_common(plan_parser)
    plan_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the plan as JSON",
    )
    plan_parser.set_defaults(func=cmd_plan)

    # 'preflight' command
    preflight_parser = subparsers.add_parser("preflight", help="Check host preconditions")
    add_common(preflight_parser)
    preflight_parser.set_defaults(func=cmd_preflight)

    # 'backups' command
    backups_parser = subparsers.add_parser("backups", help="List first-seen artifact backups")
    add_common(backups_parser)
    backups_parser.add_argument(
        "--verify",
        action="store_true",
        help="Check that every snapshot is present and unmodified",
    )
    backups_parser.set_defaults(func=cmd_backups)

    # 'config' command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help=f"Path to configuration file (default: ./{DEFAULT_ENV_FILE})",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.add_argument(
        "--language", "-l",
        choices=["de", "en"],
        help="Language for output and new configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_COMPLETED

    try:
        return args.func(args)
    except BootstrapError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
