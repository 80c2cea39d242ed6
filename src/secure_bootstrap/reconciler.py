"""
Reconciler base module.

Every configuration domain converges through the same protocol:

    diff -> backup once -> render -> validate -> activate -> verify

An empty diff short-circuits before anything is touched. The candidate
artifact, and any companion file the domain rewrites with it, is written
next to the live one and validated there; only candidates that passed
validation are moved into place with os.replace, so a validation failure
leaves the live files byte-for-byte unchanged.
"""

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.backup_store import BackupStore
from secure_bootstrap.config import SystemConfig
from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ActivationError, BootstrapError, ProbeError, ValidationError, VerificationMismatch
from secure_bootstrap.models import ApplyResult, DomainState, FieldChange, compute_diff
from secure_bootstrap.system import CommandRunner


def _current_mode(path: Path) -> int:
    try:
        return path.stat().st_mode & 0o777
    except FileNotFoundError:
        return 0o644


class Reconciler(ABC):
    """
    Shared convergence protocol for one configuration domain.

    Subclasses provide the domain hooks:
        render   - produce the candidate artifact content
        validate - check the candidate without touching the live artifact
        activate - make the owning service pick up the new artifact
    and declare which fields are checked against live state afterwards.
    """

    domain: ConfigurationDomain
    probe_class: type
    verify_fields: tuple[str, ...] = ()
    depends_on: tuple[ConfigurationDomain, ...] = ()
    file_mode = 0o644

    def __init__(
        self,
        config: SystemConfig,
        runner: CommandRunner,
        backups: BackupStore,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.backups = backups
        self.logger = logger
        self._probe = self.probe_class(config, runner)

    @property
    def name(self) -> str:
        return self.domain.value

    @property
    def artifact_path(self) -> Optional[Path]:
        """Live file this domain writes, or None for command-only domains."""
        return None

    def backup_targets(self) -> list[Path]:
        path = self.artifact_path
        return [path] if path is not None else []

    def companion_artifacts(self) -> dict[Path, str]:
        """
        Further live files to rewrite together with the artifact.

        They are staged, validated and swapped in alongside it, and keep
        their current mode. Only files whose content must change belong here.
        """
        return {}

    def probe(self) -> DomainState:
        return self._probe.probe()

    def prepare(self, desired: DomainState, actual: DomainState) -> None:
        """Make the owning tool available before validation. No-op by default."""

    @abstractmethod
    def render(self, desired: DomainState) -> str:
        ...

    @abstractmethod
    def validate(
        self,
        candidate: Optional[Path],
        desired: DomainState,
        actual: DomainState,
    ) -> None:
        """Raise ValidationError if the candidate must not be activated."""

    @abstractmethod
    def activate(self, desired: DomainState, actual: DomainState) -> None:
        """Raise ActivationError if the service did not accept the change."""

    def apply(self, actual: DomainState, desired: DomainState) -> ApplyResult:
        """
        Converge the domain from actual to desired state.

        Returns:
            ApplyResult; errors of the validation, activation and verification
            stages are carried in the result rather than raised

        Raises:
            PersistenceError: If the first-seen backup cannot be recorded
        """
        diff = compute_diff(actual, desired)
        if not diff:
            self._log_info("No changes needed")
            return ApplyResult(
                domain=self.domain,
                changed=False,
                validated=True,
                effective=actual,
            )

        self._log_info("Changes required", {"diff": [c.to_dict() for c in diff]})
        backup_path = self._backup()

        try:
            self.prepare(desired, actual)
        except ActivationError as e:
            return self._failed(e, diff, backup_path, changed=False, validated=False)

        content = self.render(desired)
        artifact = self.artifact_path
        try:
            if artifact is None:
                self._log_debug("Rendered plan", {"plan": content})
                self.validate(None, desired, actual)
            else:
                self._write_validated(artifact, content, desired, actual)
        except ValidationError as e:
            return self._failed(e, diff, backup_path, changed=False, validated=False)

        try:
            self.activate(desired, actual)
        except ActivationError as e:
            return self._failed(e, diff, backup_path, changed=True, validated=True)

        try:
            effective = self.probe()
        except ProbeError as e:
            error = VerificationMismatch(
                code="reprobe_failed",
                message=f"Could not read back {self.name} after activation: {e.message}",
                details={"domain": self.name},
            )
            return self._failed(error, diff, backup_path, changed=True, validated=True)

        mismatches = self.verify(desired, effective)
        if mismatches:
            error = VerificationMismatch(
                code="effective_state_mismatch",
                message=f"{self.name} did not converge: "
                + ", ".join(change.name for change in mismatches),
                details={
                    "domain": self.name,
                    "mismatches": [change.to_dict() for change in mismatches],
                },
            )
            return self._failed(
                error, diff, backup_path, changed=True, validated=True, effective=effective
            )

        self._log_info("Converged", {"changes": len(diff)})
        return ApplyResult(
            domain=self.domain,
            changed=True,
            validated=True,
            diff=diff,
            backup_path=backup_path,
            effective=effective,
        )

    def verify(self, desired: DomainState, effective: DomainState) -> list[FieldChange]:
        fields = set(self.verify_fields)
        return [change for change in compute_diff(effective, desired) if change.name in fields]

    def _backup(self) -> Optional[str]:
        """Record first-seen backups; returns the primary target's backup path."""
        paths = []
        for target in self.backup_targets():
            entry, created = self.backups.backup_once(target, self.domain)
            if created:
                self._log_info("Recorded first-seen backup", {
                    "artifact": entry.artifact,
                    "existed": entry.existed,
                    "backup_path": entry.backup_path,
                })
            paths.append(entry.backup_path)
        return paths[0] if paths else None

    def _write_validated(
        self,
        artifact: Path,
        content: str,
        desired: DomainState,
        actual: DomainState,
    ) -> None:
        """Stage every candidate beside its live file, validate, then swap them in."""
        files = {artifact: (content, self.file_mode)}
        staged: dict[Path, Path] = {}
        current = artifact
        try:
            for path, text in self.companion_artifacts().items():
                files[path] = (text, _current_mode(path))
            for current, (text, mode) in files.items():
                staged[current] = self._stage(current, text, mode)
            self.validate(staged[artifact], desired, actual)
            for current, candidate in staged.items():
                os.replace(candidate, current)
        except OSError as e:
            self._discard(staged)
            raise ValidationError(
                code="candidate_write",
                message=f"Cannot stage candidate for {current}: {e}",
                details={"domain": self.name, "artifact": str(current)},
            )
        except ValidationError:
            self._discard(staged)
            raise

    @staticmethod
    def _stage(path: Path, content: str, mode: int) -> Path:
        """Write content to a temp file in path's directory."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        candidate = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(candidate, mode)
        except OSError:
            candidate.unlink(missing_ok=True)
            raise
        return candidate

    @staticmethod
    def _discard(staged: dict[Path, Path]) -> None:
        for candidate in staged.values():
            candidate.unlink(missing_ok=True)

    def _failed(
        self,
        error: BootstrapError,
        diff: tuple[FieldChange, ...],
        backup_path: Optional[str],
        changed: bool,
        validated: bool,
        effective: Optional[DomainState] = None,
    ) -> ApplyResult:
        if self.logger:
            self.logger.log_error(self.name, error.message, error, {"backup_path": backup_path})
        return ApplyResult(
            domain=self.domain,
            changed=changed,
            validated=validated,
            error=error,
            diff=diff,
            backup_path=backup_path,
            effective=effective,
        )

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self.logger:
            self.logger.info(self.name, message, data)

    def _log_debug(self, message: str, data: Optional[dict] = None) -> None:
        if self.logger:
            self.logger.debug(self.name, message, data)
