"""
Preflight module for the secure bootstrap system.

Checks that the host can run the pipeline at all before any step executes:
declared configuration is valid, the process runs as root, the distribution
is RHEL-like, and the tools the enabled domains rely on are on PATH.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.config import SystemConfig
from secure_bootstrap.config_loader import ConfigValidationResult, validate_config
from secure_bootstrap.exceptions import PreconditionError
from secure_bootstrap.i18n import get_message
from secure_bootstrap.system import CommandRunner


RHEL_FAMILY = frozenset({"rhel", "fedora", "centos", "rocky", "almalinux", "ol"})

BASE_COMMANDS = ("systemctl", "sshd", "getent", "id", "useradd", "usermod", "rpm", "dnf")
CREDENTIAL_COMMANDS = ("chpasswd", "openssl")
OPTIONAL_COMMANDS = ("ss",)


@dataclass
class PreflightResult:
    """Outcome of all preflight checks."""

    success: bool
    config_validation: ConfigValidationResult
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def read_os_release(path: Path) -> dict[str, str]:
    """Parse an os-release file into a KEY -> value mapping."""
    values: dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return values
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and not key.startswith("#"):
            values[key] = value.strip().strip('"').strip("'")
    return values


class Preflight:
    """
    Host preflight checks.

    Performs:
    1. Configuration validation
    2. Root privilege check
    3. Distribution family check
    4. Required command availability
    """

    def __init__(
        self,
        config: SystemConfig,
        runner: CommandRunner,
        os_release: Path = Path("/etc/os-release"),
        euid: Callable[[], int] = os.geteuid,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config
        self._runner = runner
        self._os_release = os_release
        self._euid = euid
        self._logger = logger

    def run(self) -> PreflightResult:
        language = self._config.language
        config_result = validate_config(self._config)
        errors = list(config_result.errors)
        warnings = list(config_result.warnings)

        if self._euid() != 0:
            errors.append(get_message("preflight.not_root", language))

        release = read_os_release(self._os_release)
        family = {release.get("ID", "")} | set(release.get("ID_LIKE", "").split())
        if not family & RHEL_FAMILY:
            errors.append(get_message(
                "preflight.unsupported_os", language, os_id=release.get("ID", "unknown")
            ))

        for command in self.required_commands():
            if self._runner.which(command) is None:
                errors.append(get_message("preflight.missing_command", language, command=command))
        for command in OPTIONAL_COMMANDS:
            if self._runner.which(command) is None:
                warnings.append(get_message("preflight.missing_command", language, command=command))

        result = PreflightResult(
            success=not errors,
            config_validation=config_result,
            errors=errors,
            warnings=warnings,
        )
        if self._logger:
            self._logger.info("preflight", "Preflight finished", {
                "success": result.success,
                "errors": errors,
                "warnings": warnings,
            })
        return result

    def required_commands(self) -> tuple[str, ...]:
        commands = BASE_COMMANDS
        if self._config.credential.rotate:
            commands += CREDENTIAL_COMMANDS
        return commands

    def check(self) -> PreflightResult:
        """
        Run the checks and refuse to continue on any error.

        Raises:
            PreconditionError: If any check failed
        """
        result = self.run()
        if not result.success:
            raise PreconditionError(
                code="preflight_failed",
                message="; ".join(result.errors),
                details={"errors": result.errors},
            )
        return result

    def print_results(self, result: PreflightResult) -> None:
        language = self._config.language
        for error in result.errors:
            print(f"  ✗ {error}")
        for warning in result.warnings:
            print(f"  ! {warning}")
        if result.success:
            print(f"✓ {get_message('preflight.ok', language)}")
        else:
            print(f"✗ {get_message('preflight.failed', language)}")
