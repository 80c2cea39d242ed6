"""
Pipeline module for the secure bootstrap system.

Runs reconcilers and checkpoint gates strictly in order. The first failed
step (a probe that cannot read, a candidate that does not validate, a
service that rejects it, a live state that does not converge) or the first
declined gate ends the run; nothing after it executes.

The run starts only after preflight has passed. A precondition failure
is raised to the caller before the run status ever leaves NOT_STARTED.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.backup_store import BackupStore
from secure_bootstrap.config import SystemConfig
from secure_bootstrap.emergency_credential import EmergencyCredentialReconciler
from secure_bootstrap.enums import ConfigurationDomain, PipelineStatus, StepKind
from secure_bootstrap.exceptions import BootstrapError
from secure_bootstrap.firewall import FirewallReconciler
from secure_bootstrap.gate import CheckpointGate
from secure_bootstrap.i18n import get_message
from secure_bootstrap.intrusion_jail import IntrusionJailReconciler
from secure_bootstrap.models import DomainState, FieldChange, PipelineRun, StepRecord, compute_diff
from secure_bootstrap.privileged_group import PrivilegedGroupReconciler
from secure_bootstrap.probes import PROBE_CLASSES
from secure_bootstrap.reconciler import Reconciler
from secure_bootstrap.resolver import DesiredStateResolver
from secure_bootstrap.ssh_policy import SSHPolicyReconciler
from secure_bootstrap.system import CommandRunner


@dataclass(frozen=True)
class ReconcileStep:
    """Pipeline step that converges one domain."""

    reconciler: Reconciler

    kind = StepKind.RECONCILE

    @property
    def name(self) -> str:
        return self.reconciler.name

    @property
    def domain(self) -> ConfigurationDomain:
        return self.reconciler.domain


@dataclass(frozen=True)
class GateStep:
    """Pipeline step that waits for operator confirmation."""

    name: str
    message_key: str
    info_key: Optional[str] = None

    kind = StepKind.GATE
    domain = None


Step = Union[ReconcileStep, GateStep]


@dataclass(frozen=True)
class PlanEntry:
    """Planned change set of one domain, computed without side effects."""

    domain: ConfigurationDomain
    diff: tuple[FieldChange, ...] = ()
    error: Optional[BootstrapError] = None

    def to_dict(self) -> dict:
        return {
            "domain": self.domain.value,
            "diff": [change.to_dict() for change in self.diff],
            "error": self.error.to_dict() if self.error is not None else None,
        }


class RunContext:
    """
    Effective domain states gathered during one run.

    Later steps read the states earlier steps left behind. A dependency that
    no earlier step recorded is probed on first use and cached.
    """

    def __init__(self, config: SystemConfig, runner: CommandRunner) -> None:
        self._config = config
        self._runner = runner
        self._states: dict[ConfigurationDomain, DomainState] = {}

    def record(self, domain: ConfigurationDomain, state: DomainState) -> None:
        self._states[domain] = state

    def recorded(self, domain: ConfigurationDomain) -> Optional[DomainState]:
        return self._states.get(domain)

    def effective(self, domain: ConfigurationDomain) -> DomainState:
        if domain not in self._states:
            probe = PROBE_CLASSES[domain](self._config, self._runner)
            self._states[domain] = probe.probe()
        return self._states[domain]

    def dependencies(self, reconciler: Reconciler) -> dict[ConfigurationDomain, DomainState]:
        return {domain: self.effective(domain) for domain in reconciler.depends_on}


class Pipeline:
    """
    Ordered sequence of reconcile and gate steps.

    Each run produces a finalized, immutable PipelineRun. Progress callbacks
    let a front end print steps as they happen; they never influence control
    flow.
    """

    def __init__(
        self,
        steps: list[Step],
        config: SystemConfig,
        runner: CommandRunner,
        gate: CheckpointGate,
        resolver: Optional[DesiredStateResolver] = None,
        logger: Optional[AuditLogger] = None,
        on_step_start: Optional[Callable[[int, int, Step], None]] = None,
        on_step_done: Optional[Callable[[StepRecord], None]] = None,
    ) -> None:
        self._steps = list(steps)
        self._config = config
        self._runner = runner
        self._gate = gate
        self._resolver = resolver or DesiredStateResolver(config)
        self._logger = logger
        self._on_step_start = on_step_start
        self._on_step_done = on_step_done
        self._status = PipelineStatus.NOT_STARTED

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def status(self) -> PipelineStatus:
        return self._status

    def run(self) -> PipelineRun:
        """
        Execute all steps in order, halting at the first failure or refusal.

        Returns:
            Finalized PipelineRun with status COMPLETED, ABORTED or FAILED
        """
        run_id = uuid.uuid4().hex
        started_at = _now()
        context = RunContext(self._config, self._runner)
        records: list[StepRecord] = []
        self._status = PipelineStatus.RUNNING

        self._log_info("Pipeline started", {"run_id": run_id, "steps": len(self._steps)})
        if self._gate.assume_yes and self._logger:
            self._logger.warn("pipeline", get_message("gate.assumed", self._config.language))

        failed_step: Optional[StepRecord] = None
        reason: Optional[str] = None

        for index, step in enumerate(self._steps):
            if self._on_step_start:
                self._on_step_start(index, len(self._steps), step)

            if isinstance(step, GateStep):
                record = self._run_gate(index, step, context)
            else:
                record = self._run_reconcile(index, step, context)

            records.append(record)
            if self._on_step_done:
                self._on_step_done(record)

            if record.kind == StepKind.GATE and not record.confirmed:
                self._status = PipelineStatus.ABORTED
                failed_step = record
                reason = get_message("gate.aborted", self._config.language)
                break
            if record.failed:
                self._status = PipelineStatus.FAILED
                failed_step = record
                error = record.error or (record.result.error if record.result else None)
                reason = error.message if error is not None else "step failed"
                break
        else:
            self._status = PipelineStatus.COMPLETED

        run = PipelineRun(
            run_id=run_id,
            status=self._status,
            records=tuple(records),
            started_at=started_at,
            finished_at=_now(),
            failed_step=failed_step,
            reason=reason,
        )
        self._log_info("Pipeline finished", {
            "run_id": run_id,
            "status": run.status.value,
            "changes": run.change_count,
        })
        return run

    def plan(self) -> list[PlanEntry]:
        """
        Compute the diff every reconcile step would act on.

        Desired states are recorded in the context in place of effective
        ones, so dependent domains plan against the state earlier steps
        would leave behind. Nothing on the host is written.
        """
        context = RunContext(self._config, self._runner)
        entries: list[PlanEntry] = []
        for step in self._steps:
            if not isinstance(step, ReconcileStep):
                continue
            reconciler = step.reconciler
            try:
                actual = reconciler.probe()
                desired = self._resolver.resolve(
                    reconciler.domain, actual, context.dependencies(reconciler)
                )
            except BootstrapError as e:
                entries.append(PlanEntry(domain=reconciler.domain, error=e))
                continue
            context.record(reconciler.domain, desired)
            entries.append(PlanEntry(domain=reconciler.domain, diff=compute_diff(actual, desired)))
        return entries

    def _run_reconcile(self, index: int, step: ReconcileStep, context: RunContext) -> StepRecord:
        reconciler = step.reconciler
        try:
            actual = reconciler.probe()
            desired = self._resolver.resolve(
                reconciler.domain, actual, context.dependencies(reconciler)
            )
            result = reconciler.apply(actual, desired)
        except BootstrapError as e:
            if self._logger:
                self._logger.log_error("pipeline", f"Step {step.name} failed", e)
            return StepRecord(
                index=index,
                name=step.name,
                kind=StepKind.RECONCILE,
                domain=reconciler.domain,
                error=e,
                timestamp=_now(),
            )

        if result.ok:
            context.record(reconciler.domain, result.effective)
        return StepRecord(
            index=index,
            name=step.name,
            kind=StepKind.RECONCILE,
            domain=reconciler.domain,
            result=result,
            timestamp=_now(),
        )

    def _run_gate(self, index: int, step: GateStep, context: RunContext) -> StepRecord:
        language = self._config.language
        params = self._gate_params(context)
        message = get_message(step.message_key, language, **params)
        info = get_message(step.info_key, language, **params) if step.info_key else None
        confirmed = self._gate.confirm(message, info)
        return StepRecord(
            index=index,
            name=step.name,
            kind=StepKind.GATE,
            confirmed=confirmed,
            timestamp=_now(),
        )

    def _gate_params(self, context: RunContext) -> dict:
        ssh_state = context.recorded(ConfigurationDomain.SSH_POLICY)
        return {
            "user": self._config.account.admin_user,
            "port": self._resolver.ssh_port(ssh_state),
            "path": str(self._config.credential.credential_file),
        }

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.info("pipeline", message, data)


def build_default_pipeline(
    config: SystemConfig,
    runner: CommandRunner,
    backups: BackupStore,
    gate: CheckpointGate,
    logger: Optional[AuditLogger] = None,
    on_step_start: Optional[Callable[[int, int, Step], None]] = None,
    on_step_done: Optional[Callable[[StepRecord], None]] = None,
) -> Pipeline:
    """
    Build the standard hardening sequence.

    Order: ready gate, emergency credential, privileged group, SSH policy,
    firewall exposure, intrusion jail, with a confirmation gate after each
    step whose outcome the operator must check by hand. A disabled step
    takes its confirmation gate with it.
    """
    def reconciler(cls: type) -> ReconcileStep:
        return ReconcileStep(cls(config, runner, backups, logger))

    steps: list[Step] = [GateStep("ready", "gate.ready")]
    if config.credential.rotate:
        steps += [
            reconciler(EmergencyCredentialReconciler),
            GateStep("credential_stored", "gate.credential_stored"),
        ]
    steps += [
        reconciler(PrivilegedGroupReconciler),
        GateStep("admin_login_tested", "gate.admin_login_tested"),
        reconciler(SSHPolicyReconciler),
        GateStep("ssh_confirmed", "gate.ssh_confirmed", "info.ssh_test"),
        reconciler(FirewallReconciler),
        GateStep("firewall_confirmed", "gate.firewall_confirmed", "info.firewall_test"),
        reconciler(IntrusionJailReconciler),
    ]

    return Pipeline(
        steps=steps,
        config=config,
        runner=runner,
        gate=gate,
        logger=logger,
        on_step_start=on_step_start,
        on_step_done=on_step_done,
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
