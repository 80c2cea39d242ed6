"""
Command execution surface for probes and reconcilers.

Every interaction with host tools (sshd, systemctl, firewall-cmd,
fail2ban-client, openssl, useradd, ...) goes through a CommandRunner so that
probes and reconcilers can be exercised against a scripted runner in tests.
No timeout is imposed here: a hung service call is left to the process
supervisor, since aborting mid-activation could strand a validated artifact.
"""

import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def detail(self) -> str:
        """Short diagnostic text for error messages."""
        text = (self.stderr or self.stdout).strip()
        return text.splitlines()[-1] if text else f"exit status {self.returncode}"


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for running host commands."""

    def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        """Run a command to completion and capture its output."""
        ...

    def which(self, name: str) -> Optional[str]:
        """Return the absolute path of a command, or None if absent."""
        ...


class SubprocessRunner:
    """CommandRunner backed by subprocess.run."""

    def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        try:
            completed = subprocess.run(
                list(args),
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(args=tuple(args), returncode=127, stderr=str(e))
        except PermissionError as e:
            return CommandResult(args=tuple(args), returncode=126, stderr=str(e))
        return CommandResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)


def ensure_package(runner: CommandRunner, package: str) -> CommandResult:
    """
    Install a package with dnf if rpm does not know it yet.

    Package installation is a collaborator of the reconcilers, not part of
    the convergence protocol: callers treat a failure as an activation error.
    """
    query = runner.run(["rpm", "-q", package])
    if query.ok:
        return query
    return runner.run(["dnf", "install", "-y", package])


def service_active(runner: CommandRunner, unit: str) -> bool:
    return runner.run(["systemctl", "is-active", "--quiet", unit]).ok
