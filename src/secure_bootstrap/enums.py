"""
Enumeration types for the secure bootstrap system.

These enums provide type-safe constants for configuration domains, pipeline
states, error kinds, and logging levels throughout the system.
"""

from enum import Enum


class ConfigurationDomain(Enum):
    """Independently owned configuration surface on the host."""

    SSH_POLICY = "ssh_policy"
    FIREWALL_EXPOSURE = "firewall_exposure"
    INTRUSION_JAIL = "intrusion_jail"
    PRIVILEGED_GROUP = "privileged_group"
    EMERGENCY_CREDENTIAL = "emergency_credential"


# Domains whose failure can cut off remote administrative access.
REACHABILITY_DOMAINS = frozenset({
    ConfigurationDomain.SSH_POLICY,
    ConfigurationDomain.FIREWALL_EXPOSURE,
})


class PipelineStatus(Enum):
    """Lifecycle state of a pipeline run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class StepKind(Enum):
    """Kind of a pipeline step."""

    RECONCILE = "reconcile"
    GATE = "gate"


class ErrorKind(Enum):
    """Fatal error kinds reported in a run summary."""

    PRECONDITION = "precondition_error"
    PROBE = "probe_error"
    VALIDATION = "validation_error"
    ACTIVATION = "activation_error"
    VERIFICATION = "verification_mismatch"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
