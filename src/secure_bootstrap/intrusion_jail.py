"""
Intrusion jail reconciler.

Owns the SSH jail drop-in of fail2ban. The candidate is validated by letting
fail2ban parse a private copy of its configuration tree that contains the
candidate in place of the live drop-in.
"""

import configparser
import io
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ActivationError, ValidationError
from secure_bootstrap.models import JailState
from secure_bootstrap.probes import JailProbe
from secure_bootstrap.reconciler import Reconciler
from secure_bootstrap.system import ensure_package


HEADER = "# Managed by secure-bootstrap. Regenerated on every change; do not edit.\n"


class IntrusionJailReconciler(Reconciler):
    """Converges the fail2ban sshd jail and keeps the service running."""

    domain = ConfigurationDomain.INTRUSION_JAIL
    probe_class = JailProbe
    verify_fields = ("enabled", "port", "max_retry", "find_time", "ban_time", "service_active")
    depends_on = (ConfigurationDomain.SSH_POLICY,)

    @property
    def artifact_path(self) -> Path:
        return self.config.jail.jail_path

    def prepare(self, desired: JailState, actual: JailState) -> None:
        if actual.installed:
            return
        for package in ("epel-release", "fail2ban"):
            result = ensure_package(self.runner, package)
            if not result.ok:
                raise ActivationError(
                    code="package_install",
                    message=f"Could not install {package}: {result.detail()}",
                    details={"domain": self.name, "package": package},
                )
        self._log_info("Installed fail2ban")

    def render(self, desired: JailState) -> str:
        parser = configparser.ConfigParser(interpolation=None)
        parser["sshd"] = {
            "enabled": "true" if desired.enabled else "false",
            "port": desired.port or "ssh",
            "filter": "sshd",
            "logpath": desired.log_path or "",
            "backend": desired.backend or "auto",
            "banaction": desired.ban_action or "",
            "maxretry": str(desired.max_retry),
            "findtime": str(desired.find_time),
            "bantime": str(desired.ban_time),
        }
        buffer = io.StringIO()
        parser.write(buffer)
        return HEADER + buffer.getvalue()

    def validate(
        self,
        candidate: Optional[Path],
        desired: JailState,
        actual: JailState,
    ) -> None:
        config_dir = self.config.jail.config_dir
        relative = self.artifact_path.relative_to(config_dir)

        with tempfile.TemporaryDirectory(prefix="secure-bootstrap-f2b-") as workdir:
            copy = Path(workdir) / "fail2ban"
            try:
                shutil.copytree(config_dir, copy, symlinks=True)
                staged = copy / relative
                staged.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(candidate, staged)
            except OSError as e:
                raise ValidationError(
                    code="jail_stage",
                    message=f"Cannot stage fail2ban configuration for testing: {e}",
                    details={"domain": self.name},
                )
            result = self.runner.run(["fail2ban-client", "-c", str(copy), "-t"])

        if not result.ok:
            raise ValidationError(
                code="jail_syntax",
                message=f"fail2ban rejected the candidate jail: {result.detail()}",
                details={"domain": self.name},
            )

    def activate(self, desired: JailState, actual: JailState) -> None:
        for args in (
            ["systemctl", "enable", "fail2ban"],
            ["systemctl", "restart", "fail2ban"],
        ):
            result = self.runner.run(args)
            if not result.ok:
                raise ActivationError(
                    code="fail2ban_restart",
                    message=f"{' '.join(args)} failed: {result.detail()}",
                    details={"domain": self.name, "artifact": str(self.artifact_path)},
                )
