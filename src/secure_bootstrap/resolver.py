"""
Desired State Resolver module.

Turns declared configuration plus the probed actual state into the desired
state of one domain. Resolution is a pure function of its inputs: the same
config, actual state and dependency states always yield the same value.
"""

from typing import Mapping, Optional

from secure_bootstrap.config import SystemConfig
from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.models import (
    DomainState,
    EmergencyCredentialState,
    FirewallState,
    JailState,
    PrivilegedGroupState,
    SSHPolicyState,
)


DEFAULT_SSH_PORT = 22
CREDENTIAL_FILE_MODE = 0o600


class DesiredStateResolver:
    """
    Resolves declared configuration into per-domain desired state.

    Dependencies are the effective states of other domains, supplied by the
    pipeline. Firewall and jail depend on the SSH policy so that they expose
    and protect the port sshd actually listens on.
    """

    def __init__(self, config: SystemConfig) -> None:
        self._config = config

    def resolve(
        self,
        domain: ConfigurationDomain,
        actual: DomainState,
        dependencies: Optional[Mapping[ConfigurationDomain, DomainState]] = None,
    ) -> DomainState:
        dependencies = dependencies or {}
        resolvers = {
            ConfigurationDomain.SSH_POLICY: self._ssh_policy,
            ConfigurationDomain.FIREWALL_EXPOSURE: self._firewall_exposure,
            ConfigurationDomain.INTRUSION_JAIL: self._intrusion_jail,
            ConfigurationDomain.PRIVILEGED_GROUP: self._privileged_group,
            ConfigurationDomain.EMERGENCY_CREDENTIAL: self._emergency_credential,
        }
        return resolvers[domain](actual, dependencies)

    def ssh_port(
        self,
        ssh_state: Optional[SSHPolicyState] = None,
    ) -> int:
        """Port sshd should listen on: declared, else probed, else 22."""
        if self._config.ssh.port is not None:
            return self._config.ssh.port
        if ssh_state is not None and ssh_state.port is not None:
            return ssh_state.port
        return DEFAULT_SSH_PORT

    def _ssh_policy(self, actual: SSHPolicyState, dependencies) -> SSHPolicyState:
        ssh = self._config.ssh
        port = self.ssh_port(actual)
        # Listening sockets are only compared when the host can report them.
        listening = frozenset({port}) if actual.listening_ports is not None else None
        return SSHPolicyState(
            port=port,
            permit_root_login="no" if ssh.disable_root_login else "prohibit-password",
            password_authentication=not ssh.disable_password_auth,
            kbd_interactive_authentication=False,
            pubkey_authentication=True,
            listening_ports=listening,
            admin_key_count=actual.admin_key_count,
        )

    def _dependency_port(self, dependencies) -> int:
        return self.ssh_port(dependencies.get(ConfigurationDomain.SSH_POLICY))

    def _firewall_exposure(self, actual: FirewallState, dependencies) -> FirewallState:
        fw = self._config.firewall
        port = self._dependency_port(dependencies)

        services = {"ssh"}
        if fw.enable_web:
            services.update({"http", "https"})

        ports = set(fw.extra_ports)
        if port != DEFAULT_SSH_PORT:
            ports.add(f"{port}/tcp")

        return FirewallState(
            running=True,
            services=frozenset(services),
            ports=frozenset(ports),
            installed=actual.installed,
            ssh_port=port,
        )

    def _intrusion_jail(self, actual: JailState, dependencies) -> JailState:
        jail = self._config.jail
        return JailState(
            enabled=True,
            port=str(self._dependency_port(dependencies)),
            max_retry=jail.max_retry,
            find_time=jail.find_time,
            ban_time=jail.ban_time,
            backend=jail.backend,
            ban_action=jail.ban_action,
            log_path=jail.log_path,
            service_active=True,
            installed=actual.installed,
        )

    def _privileged_group(self, actual: PrivilegedGroupState, dependencies) -> PrivilegedGroupState:
        account = self._config.account
        groups = {account.privileged_group}
        if account.enable_docker:
            groups.add("docker")
        return PrivilegedGroupState(
            user=account.admin_user,
            user_exists=True,
            groups=frozenset(groups),
        )

    def _emergency_credential(
        self, actual: EmergencyCredentialState, dependencies
    ) -> EmergencyCredentialState:
        credential = self._config.credential
        if credential.password:
            password = credential.password
        elif actual.password and actual.shadow_in_sync:
            password = actual.password
        else:
            password = credential.generated_password
        return EmergencyCredentialState(
            password=password,
            credential_recorded=True,
            file_mode=CREDENTIAL_FILE_MODE,
            shadow_in_sync=True,
        )
