"""
Privileged group reconciler.

Ensures the administrative account exists and belongs to the managed groups.
Memberships are only ever added; groups outside the managed set are neither
inspected nor touched.

When the docker group is managed, Docker CE is installed from its upstream
repository and started first, since the package creates the group.
"""

from pathlib import Path
from typing import Optional

from secure_bootstrap.config_loader import is_account_name
from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ActivationError, ValidationError
from secure_bootstrap.models import PrivilegedGroupState
from secure_bootstrap.probes import PrivilegedGroupProbe
from secure_bootstrap.reconciler import Reconciler
from secure_bootstrap.system import ensure_package, service_active


DOCKER_GROUP = "docker"
DOCKER_REPO_URL = "https://download.docker.com/linux/centos/docker-ce.repo"
DOCKER_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)


class PrivilegedGroupReconciler(Reconciler):
    """Converges the admin account and its privileged group membership."""

    domain = ConfigurationDomain.PRIVILEGED_GROUP
    probe_class = PrivilegedGroupProbe
    verify_fields = ("user_exists", "groups")

    def backup_targets(self) -> list[Path]:
        return [self.config.account.group_file]

    def prepare(self, desired: PrivilegedGroupState, actual: PrivilegedGroupState) -> None:
        if DOCKER_GROUP not in (desired.groups or ()):
            return
        if not self.runner.run(["rpm", "-q", DOCKER_PACKAGES[0]]).ok:
            self._install_docker()
        if not service_active(self.runner, "docker"):
            result = self.runner.run(["systemctl", "enable", "--now", "docker"])
            if not result.ok:
                raise ActivationError(
                    code="service_start",
                    message=f"Could not start docker: {result.detail()}",
                    details={"domain": self.name, "unit": "docker"},
                )
            self._log_info("Started docker")

    def _install_docker(self) -> None:
        self._ensure_package("dnf-plugins-core")
        repo = self.runner.run(["dnf", "config-manager", "--add-repo", DOCKER_REPO_URL])
        if not repo.ok:
            raise ActivationError(
                code="package_repository",
                message=f"Could not add the Docker CE repository: {repo.detail()}",
                details={"domain": self.name, "repository": DOCKER_REPO_URL},
            )
        for package in DOCKER_PACKAGES:
            self._ensure_package(package)
        self._log_info("Installed Docker CE", {"packages": list(DOCKER_PACKAGES)})

    def _ensure_package(self, package: str) -> None:
        result = ensure_package(self.runner, package)
        if not result.ok:
            raise ActivationError(
                code="package_install",
                message=f"Could not install {package}: {result.detail()}",
                details={"domain": self.name, "package": package},
            )

    def render(self, desired: PrivilegedGroupState) -> str:
        groups = ",".join(sorted(desired.groups or ()))
        return f"user {desired.user}\ngroups {groups}\n"

    def validate(
        self,
        candidate: Optional[Path],
        desired: PrivilegedGroupState,
        actual: PrivilegedGroupState,
    ) -> None:
        if not desired.user or not is_account_name(desired.user):
            raise ValidationError(
                code="invalid_user",
                message=f"'{desired.user}' is not a valid account name",
                details={"domain": self.name},
            )
        for group in sorted(desired.groups or ()):
            if not self.runner.run(["getent", "group", group]).ok:
                raise ValidationError(
                    code="group_missing",
                    message=f"Group '{group}' does not exist on this host",
                    details={"domain": self.name, "group": group},
                )

    def activate(self, desired: PrivilegedGroupState, actual: PrivilegedGroupState) -> None:
        if not actual.user_exists:
            self._run(["useradd", "-m", "-s", "/bin/bash", desired.user])
            self._log_info("Created account", {"user": desired.user})

        missing = sorted((desired.groups or frozenset()) - (actual.groups or frozenset()))
        if missing:
            self._run(["usermod", "-aG", ",".join(missing), desired.user])
            self._log_info("Added group membership", {"user": desired.user, "groups": missing})

    def _run(self, args: list[str]) -> None:
        result = self.runner.run(args)
        if not result.ok:
            raise ActivationError(
                code="account_update",
                message=f"{args[0]} failed: {result.detail()}",
                details={"domain": self.name, "command": args[0]},
            )
