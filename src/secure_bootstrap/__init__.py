"""
Secure Bootstrap - convergent hardening for RHEL-like hosts.

This package converges SSH daemon policy, firewall exposure, brute-force
protection, privileged group membership and the emergency root credential
to a declared target state, in a fixed order, with operator checkpoints
wherever a change could cut off remote access.
"""

__version__ = "0.1.0"
__author__ = "Secure Bootstrap Team"

from secure_bootstrap.exceptions import (
    BootstrapError,
    ConfigError,
    PreconditionError,
    ProbeError,
    ValidationError,
    ActivationError,
    VerificationMismatch,
    PersistenceError,
    TamperingError,
    NotificationError,
)
from secure_bootstrap.enums import (
    ConfigurationDomain,
    ErrorKind,
    LogLevel,
    PipelineStatus,
    StepKind,
)
from secure_bootstrap.config import (
    SSHConfig,
    FirewallConfig,
    JailConfig,
    AccountConfig,
    CredentialConfig,
    PathsConfig,
    LoggingConfig,
    TelegramConfig,
    WebhookConfig,
    NotificationConfig,
    SystemConfig,
)
from secure_bootstrap.config_loader import (
    ConfigValidationResult,
    config_from_mapping,
    load_config,
    validate_config,
)
from secure_bootstrap.models import (
    SSHPolicyState,
    FirewallState,
    JailState,
    PrivilegedGroupState,
    EmergencyCredentialState,
    FieldChange,
    ApplyResult,
    StepRecord,
    PipelineRun,
    BackupEntry,
    compute_diff,
)
from secure_bootstrap.system import (
    CommandResult,
    CommandRunner,
    SubprocessRunner,
)
from secure_bootstrap.resolver import DesiredStateResolver
from secure_bootstrap.backup_store import BackupStore
from secure_bootstrap.reconciler import Reconciler
from secure_bootstrap.ssh_policy import SSHPolicyReconciler
from secure_bootstrap.firewall import FirewallReconciler
from secure_bootstrap.intrusion_jail import IntrusionJailReconciler
from secure_bootstrap.privileged_group import PrivilegedGroupReconciler
from secure_bootstrap.emergency_credential import EmergencyCredentialReconciler
from secure_bootstrap.gate import CheckpointGate
from secure_bootstrap.pipeline import (
    GateStep,
    Pipeline,
    PlanEntry,
    ReconcileStep,
    RunContext,
    build_default_pipeline,
)
from secure_bootstrap.preflight import Preflight, PreflightResult
from secure_bootstrap.run_lock import RunLock
from secure_bootstrap.audit_logger import AuditLogger, LogEntry
from secure_bootstrap.notifications import (
    NotificationRouter,
    NotificationResult,
    RunSummaryPayload,
    TelegramChannel,
    WebhookChannel,
)
from secure_bootstrap.i18n import (
    get_message,
    validate_translations,
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
)

__all__ = [
    # Exceptions
    "BootstrapError",
    "ConfigError",
    "PreconditionError",
    "ProbeError",
    "ValidationError",
    "ActivationError",
    "VerificationMismatch",
    "PersistenceError",
    "TamperingError",
    "NotificationError",
    # Enums
    "ConfigurationDomain",
    "ErrorKind",
    "LogLevel",
    "PipelineStatus",
    "StepKind",
    # Configuration
    "SSHConfig",
    "FirewallConfig",
    "JailConfig",
    "AccountConfig",
    "CredentialConfig",
    "PathsConfig",
    "LoggingConfig",
    "TelegramConfig",
    "WebhookConfig",
    "NotificationConfig",
    "SystemConfig",
    "ConfigValidationResult",
    "config_from_mapping",
    "load_config",
    "validate_config",
    # Models
    "SSHPolicyState",
    "FirewallState",
    "JailState",
    "PrivilegedGroupState",
    "EmergencyCredentialState",
    "FieldChange",
    "ApplyResult",
    "StepRecord",
    "PipelineRun",
    "BackupEntry",
    "compute_diff",
    # Host commands
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
    # Convergence
    "DesiredStateResolver",
    "BackupStore",
    "Reconciler",
    "SSHPolicyReconciler",
    "FirewallReconciler",
    "IntrusionJailReconciler",
    "PrivilegedGroupReconciler",
    "EmergencyCredentialReconciler",
    # Pipeline
    "CheckpointGate",
    "GateStep",
    "Pipeline",
    "PlanEntry",
    "ReconcileStep",
    "RunContext",
    "build_default_pipeline",
    "Preflight",
    "PreflightResult",
    "RunLock",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Notifications
    "NotificationRouter",
    "NotificationResult",
    "RunSummaryPayload",
    "TelegramChannel",
    "WebhookChannel",
    # I18n
    "get_message",
    "validate_translations",
    "SUPPORTED_LANGUAGES",
    "DEFAULT_LANGUAGE",
]
