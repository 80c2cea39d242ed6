"""
Data models for the secure bootstrap system.

This module defines the per-domain state values (used both as desired state
and as probed actual state), the diff between them, the immutable result of
applying one reconciler, and the record of a whole pipeline run.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Optional, Union

from secure_bootstrap.enums import (
    REACHABILITY_DOMAINS,
    ConfigurationDomain,
    ErrorKind,
    PipelineStatus,
    StepKind,
)
from secure_bootstrap.exceptions import BootstrapError
from secure_bootstrap.i18n import get_message


SECRET = {"secret": True}
NOT_DIFFED = {"diff": False}
MASKED_ACTUAL = "<recorded>"
MASKED_DESIRED = "<declared>"


@dataclass(frozen=True)
class SSHPolicyState:
    """Effective SSH daemon policy."""

    port: Optional[int] = None
    permit_root_login: Optional[str] = None  # 'no', 'prohibit-password', 'yes'
    password_authentication: Optional[bool] = None
    kbd_interactive_authentication: Optional[bool] = None
    pubkey_authentication: Optional[bool] = None
    listening_ports: Optional[frozenset[int]] = None
    admin_key_count: Optional[int] = field(default=None, metadata=NOT_DIFFED)


@dataclass(frozen=True)
class FirewallState:
    """Exposure of the managed firewall zone."""

    running: Optional[bool] = None
    services: Optional[frozenset[str]] = None
    ports: Optional[frozenset[str]] = None
    installed: Optional[bool] = field(default=None, metadata=NOT_DIFFED)
    ssh_port: Optional[int] = field(default=None, metadata=NOT_DIFFED)


@dataclass(frozen=True)
class JailState:
    """SSH intrusion jail definition and service status."""

    enabled: Optional[bool] = None
    port: Optional[str] = None
    max_retry: Optional[int] = None
    find_time: Optional[int] = None
    ban_time: Optional[int] = None
    backend: Optional[str] = None
    ban_action: Optional[str] = None
    log_path: Optional[str] = None
    service_active: Optional[bool] = None
    installed: Optional[bool] = field(default=None, metadata=NOT_DIFFED)


@dataclass(frozen=True)
class PrivilegedGroupState:
    """Administrative account and its managed group memberships."""

    user: Optional[str] = None
    user_exists: Optional[bool] = None
    groups: Optional[frozenset[str]] = None


@dataclass(frozen=True)
class EmergencyCredentialState:
    """Emergency root password, its offline record, and the shadow entry."""

    password: Optional[str] = field(default=None, repr=False, metadata=SECRET)
    credential_recorded: Optional[bool] = None
    file_mode: Optional[int] = None
    shadow_in_sync: Optional[bool] = None


DomainState = Union[
    SSHPolicyState,
    FirewallState,
    JailState,
    PrivilegedGroupState,
    EmergencyCredentialState,
]


@dataclass(frozen=True)
class FieldChange:
    """One field where desired state differs from actual state."""

    name: str
    actual: Any
    desired: Any

    def to_dict(self) -> dict:
        return {
            "field": self.name,
            "actual": _jsonable(self.actual),
            "desired": _jsonable(self.desired),
        }


def compute_diff(actual: DomainState, desired: DomainState) -> tuple[FieldChange, ...]:
    """
    Compute the set of diffable fields where desired != actual.

    Fields marked NOT_DIFFED carry probe context only. Secret fields take part
    in the comparison, but their values are masked in the resulting change.
    """
    if type(actual) is not type(desired):
        raise TypeError(
            f"Cannot diff {type(actual).__name__} against {type(desired).__name__}"
        )

    changes: list[FieldChange] = []
    for f in fields(desired):
        if not f.metadata.get("diff", True):
            continue
        want = getattr(desired, f.name)
        have = getattr(actual, f.name)
        if want == have:
            continue
        if f.metadata.get("secret"):
            changes.append(FieldChange(
                name=f.name,
                actual=None if have is None else MASKED_ACTUAL,
                desired=MASKED_DESIRED,
            ))
        else:
            changes.append(FieldChange(name=f.name, actual=have, desired=want))
    return tuple(changes)


def _jsonable(value: Any) -> Any:
    if isinstance(value, frozenset):
        return sorted(value)
    return value


@dataclass(frozen=True)
class ApplyResult:
    """Immutable outcome of one Reconciler.apply call."""

    domain: ConfigurationDomain
    changed: bool
    validated: bool
    error: Optional[BootstrapError] = None
    diff: tuple[FieldChange, ...] = ()
    backup_path: Optional[str] = None
    effective: Optional[DomainState] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None and self.validated

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    def to_dict(self) -> dict:
        return {
            "domain": self.domain.value,
            "changed": self.changed,
            "validated": self.validated,
            "error": self.error.to_dict() if self.error is not None else None,
            "diff": [change.to_dict() for change in self.diff],
            "backup_path": self.backup_path,
        }


@dataclass(frozen=True)
class StepRecord:
    """Record of one executed pipeline step."""

    index: int
    name: str
    kind: StepKind
    domain: Optional[ConfigurationDomain] = None
    result: Optional[ApplyResult] = None
    confirmed: Optional[bool] = None
    error: Optional[BootstrapError] = None
    timestamp: str = ""

    @property
    def failed(self) -> bool:
        if self.error is not None:
            return True
        return self.result is not None and not self.result.ok

    def to_dict(self) -> dict:
        data: dict = {
            "index": self.index,
            "name": self.name,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
        }
        if self.domain is not None:
            data["domain"] = self.domain.value
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.confirmed is not None:
            data["confirmed"] = self.confirmed
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass(frozen=True)
class PipelineRun:
    """Finalized, immutable record of a pipeline invocation."""

    run_id: str
    status: PipelineStatus
    records: tuple[StepRecord, ...]
    started_at: str
    finished_at: str
    failed_step: Optional[StepRecord] = None
    reason: Optional[str] = None

    @property
    def change_count(self) -> int:
        return sum(
            1 for record in self.records
            if record.result is not None and record.result.changed
        )

    @property
    def failure(self) -> Optional[BootstrapError]:
        if self.failed_step is None:
            return None
        if self.failed_step.error is not None:
            return self.failed_step.error
        if self.failed_step.result is not None:
            return self.failed_step.result.error
        return None

    def summary_lines(self, language: str = "en") -> list[str]:
        """
        Build the operator-facing run summary.

        Distinguishes completed, aborted and failed runs, names the exact
        step and error kind, and reminds the operator about the state of
        reachability-affecting domains after a failure.
        """
        if self.status == PipelineStatus.COMPLETED:
            return [get_message("summary.completed", language, changes=self.change_count)]

        step = self.failed_step
        step_label = f"{step.index + 1} ({step.name})" if step else "?"

        if self.status == PipelineStatus.ABORTED:
            return [get_message("summary.aborted", language, step=step_label)]

        if self.status == PipelineStatus.FAILED:
            error = self.failure
            kind = error.kind.value if error is not None and error.kind else "error"
            lines = [
                get_message(
                    "summary.failed",
                    language,
                    step=step_label,
                    kind=kind,
                    reason=self.reason or "",
                )
            ]
            if step is not None and step.domain in REACHABILITY_DOMAINS and error is not None:
                backup = step.result.backup_path if step.result else None
                if error.kind == ErrorKind.VALIDATION:
                    lines.append(get_message("summary.reminder_untouched", language))
                elif error.kind in (ErrorKind.ACTIVATION, ErrorKind.VERIFICATION):
                    lines.append(
                        get_message(
                            "summary.reminder_manual",
                            language,
                            backup=backup or get_message("summary.no_backup", language),
                        )
                    )
            return lines

        return [get_message("summary.not_finished", language, status=self.status.value)]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "changes": self.change_count,
            "failed_step": self.failed_step.index if self.failed_step else None,
            "reason": self.reason,
            "records": [record.to_dict() for record in self.records],
        }


@dataclass(frozen=True)
class BackupEntry:
    """First-seen snapshot of one artifact, kept for manual disaster recovery."""

    artifact: str
    domain: str
    existed: bool  # False: artifact was absent, recovery means deleting it
    backup_path: Optional[str]
    sha256: Optional[str]
    created_at: str

    def to_dict(self) -> dict:
        return {
            "artifact": self.artifact,
            "domain": self.domain,
            "existed": self.existed,
            "backup_path": self.backup_path,
            "sha256": self.sha256,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class BackupManifest:
    """All backup entries with HMAC protection."""

    version: int
    entries: dict[str, BackupEntry]
    last_updated: str
    hmac: str
