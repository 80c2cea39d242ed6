"""
Emergency credential reconciler.

Records the root password in a root-only file first, then sets it with
chpasswd. Writing the record before the shadow entry means an interrupted
run can leave a recorded password that is not yet active, never an active
password that nobody recorded.
"""

from pathlib import Path
from typing import Optional

from secure_bootstrap.config_loader import password_policy_error
from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ActivationError, ValidationError
from secure_bootstrap.models import EmergencyCredentialState
from secure_bootstrap.probes import CREDENTIAL_PREFIX, EmergencyCredentialProbe
from secure_bootstrap.reconciler import Reconciler


class EmergencyCredentialReconciler(Reconciler):
    """Converges the root password and its offline record."""

    domain = ConfigurationDomain.EMERGENCY_CREDENTIAL
    probe_class = EmergencyCredentialProbe
    verify_fields = ("password", "credential_recorded", "file_mode", "shadow_in_sync")
    file_mode = 0o600

    @property
    def artifact_path(self) -> Path:
        return self.config.credential.credential_file

    def render(self, desired: EmergencyCredentialState) -> str:
        return (
            "# Emergency root password managed by secure-bootstrap.\n"
            "# Copy it to offline storage; this file is the record future runs compare against.\n"
            f"{CREDENTIAL_PREFIX}{desired.password}\n"
        )

    def validate(
        self,
        candidate: Optional[Path],
        desired: EmergencyCredentialState,
        actual: EmergencyCredentialState,
    ) -> None:
        problem = password_policy_error(desired.password or "")
        if problem:
            raise ValidationError(
                code="password_policy",
                message=f"Emergency password {problem}",
                details={"domain": self.name},
            )
        mode = candidate.stat().st_mode & 0o777
        if mode != self.file_mode:
            raise ValidationError(
                code="credential_mode",
                message=f"Credential record would be created with mode {oct(mode)}",
                details={"domain": self.name},
            )

    def activate(
        self, desired: EmergencyCredentialState, actual: EmergencyCredentialState
    ) -> None:
        if actual.password == desired.password and actual.shadow_in_sync:
            return
        result = self.runner.run(
            ["chpasswd", "-c", "SHA512"],
            input_text=f"root:{desired.password}\n",
        )
        if not result.ok:
            raise ActivationError(
                code="chpasswd",
                message=f"chpasswd failed: {result.detail()}",
                details={"domain": self.name},
            )
        self._log_info("Root password rotated", {"record": str(self.artifact_path)})
