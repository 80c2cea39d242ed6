"""
State probes: read-only views of each configuration domain.

A probe never mutates what it reads. When the domain's tool or artifact is
absent (firewalld not installed yet, jail file never written) it returns an
"absent" state so a first-time diff can still be computed. ProbeError is
raised only when the read itself is impossible.
"""

import configparser
import stat
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from secure_bootstrap.config import SystemConfig
from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ProbeError
from secure_bootstrap.models import (
    EmergencyCredentialState,
    FirewallState,
    JailState,
    PrivilegedGroupState,
    SSHPolicyState,
)
from secure_bootstrap.system import CommandRunner, service_active


KEY_PREFIXES = ("ssh-ed25519", "ssh-rsa", "ecdsa-sha2-", "sk-ssh-ed25519", "sk-ecdsa-sha2-")
SYSTEM_ZONES_DIR = Path("/usr/lib/firewalld/zones")
CREDENTIAL_PREFIX = "password: "
# OpenSSH prints the legacy name of some keyword values.
PERMIT_ROOT_LOGIN_ALIASES = {"without-password": "prohibit-password"}


def _read_text(path: Path, domain: ConfigurationDomain) -> Optional[str]:
    """Read a file, mapping absence to None and unreadability to ProbeError."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ProbeError(
            code="unreadable",
            message=f"Cannot read {path}: {e}",
            details={"domain": domain.value, "path": str(path)},
        )


def _yes_no(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() == "yes"


class SSHPolicyProbe:
    """Reads the effective sshd policy, its listening ports, and admin keys."""

    domain = ConfigurationDomain.SSH_POLICY

    def __init__(self, config: SystemConfig, runner: CommandRunner) -> None:
        self._config = config
        self._runner = runner

    def probe(self) -> SSHPolicyState:
        key_count = self.admin_key_count()
        if self._runner.which("sshd") is None:
            return SSHPolicyState(admin_key_count=key_count)

        result = self._runner.run(
            ["sshd", "-T", "-C", "user=root,host=localhost,addr=127.0.0.1"]
        )
        if not result.ok:
            raise ProbeError(
                code="sshd_effective_config",
                message=f"sshd -T failed: {result.detail()}",
                details={"domain": self.domain.value},
            )

        directives: dict[str, list[str]] = {}
        for line in result.stdout.splitlines():
            key, _, value = line.strip().partition(" ")
            if key:
                directives.setdefault(key.lower(), []).append(value.strip())

        ports = [int(p) for p in directives.get("port", []) if p.isdigit()]
        kbd = directives.get("kbdinteractiveauthentication") or directives.get(
            "challengeresponseauthentication"
        )
        root_login = (directives.get("permitrootlogin") or [None])[0]

        return SSHPolicyState(
            port=ports[0] if ports else None,
            permit_root_login=PERMIT_ROOT_LOGIN_ALIASES.get(root_login, root_login),
            password_authentication=_yes_no((directives.get("passwordauthentication") or [None])[0]),
            kbd_interactive_authentication=_yes_no(kbd[0] if kbd else None),
            pubkey_authentication=_yes_no((directives.get("pubkeyauthentication") or [None])[0]),
            listening_ports=self.listening_ports(),
            admin_key_count=key_count,
        )

    def listening_ports(self) -> Optional[frozenset[int]]:
        """TCP ports held by sshd, from `ss`; None when ss is unavailable."""
        if self._runner.which("ss") is None:
            return None
        result = self._runner.run(["ss", "-Hltnp"])
        if not result.ok:
            raise ProbeError(
                code="listening_sockets",
                message=f"ss failed: {result.detail()}",
                details={"domain": self.domain.value},
            )
        ports: set[int] = set()
        for line in result.stdout.splitlines():
            if '"sshd"' not in line:
                continue
            columns = line.split()
            if len(columns) < 4:
                continue
            port = columns[3].rsplit(":", 1)[-1]
            if port.isdigit():
                ports.add(int(port))
        return frozenset(ports)

    def admin_key_count(self) -> int:
        account = self._config.account
        keys_file = account.home_root / account.admin_user / ".ssh" / "authorized_keys"
        text = _read_text(keys_file, self.domain)
        if text is None:
            return 0
        return sum(
            1 for line in text.splitlines()
            if any(part.startswith(KEY_PREFIXES) for part in line.split())
            and not line.lstrip().startswith("#")
        )


class FirewallProbe:
    """Reads the exposure of the managed firewalld zone."""

    domain = ConfigurationDomain.FIREWALL_EXPOSURE

    def __init__(self, config: SystemConfig, runner: CommandRunner) -> None:
        self._config = config
        self._runner = runner

    def probe(self) -> FirewallState:
        if self._runner.which("firewall-cmd") is None:
            return FirewallState(running=False, installed=False)

        zone = self._config.firewall.zone
        if not service_active(self._runner, "firewalld"):
            services, ports = self.permanent_exposure(zone)
            return FirewallState(running=False, services=services, ports=ports, installed=True)

        services = self._list(["firewall-cmd", f"--zone={zone}", "--list-services"])
        ports = self._list(["firewall-cmd", f"--zone={zone}", "--list-ports"])
        return FirewallState(running=True, services=services, ports=ports, installed=True)

    def _list(self, args: list[str]) -> frozenset[str]:
        result = self._runner.run(args)
        if not result.ok:
            raise ProbeError(
                code="firewall_query",
                message=f"{' '.join(args)} failed: {result.detail()}",
                details={"domain": self.domain.value},
            )
        return frozenset(result.stdout.split())

    def permanent_exposure(
        self, zone: str
    ) -> tuple[Optional[frozenset[str]], Optional[frozenset[str]]]:
        """Exposure from the zone XML while firewalld is stopped."""
        for directory in (self._config.firewall.zones_dir, SYSTEM_ZONES_DIR):
            text = _read_text(directory / f"{zone}.xml", self.domain)
            if text is None:
                continue
            try:
                root = ET.fromstring(text)
            except ET.ParseError as e:
                raise ProbeError(
                    code="zone_parse",
                    message=f"Cannot parse zone file for '{zone}': {e}",
                    details={"domain": self.domain.value, "path": str(directory / f'{zone}.xml')},
                )
            services = frozenset(el.get("name", "") for el in root.findall("service"))
            ports = frozenset(
                f"{el.get('port')}/{el.get('protocol')}" for el in root.findall("port")
            )
            return services, ports
        return None, None


class JailProbe:
    """Reads the SSH jail definition and the live fail2ban jail."""

    domain = ConfigurationDomain.INTRUSION_JAIL

    def __init__(self, config: SystemConfig, runner: CommandRunner) -> None:
        self._config = config
        self._runner = runner

    def probe(self) -> JailState:
        installed = self._runner.which("fail2ban-client") is not None
        section = self.read_jail_file()
        active = installed and service_active(self._runner, "fail2ban")

        def file_int(key: str) -> Optional[int]:
            value = section.get(key) if section else None
            return int(value) if value is not None and value.isdigit() else None

        enabled = None
        if section is not None:
            enabled = section.get("enabled", "").lower() in ("true", "yes", "1")
        max_retry = file_int("maxretry")
        find_time = file_int("findtime")
        ban_time = file_int("bantime")

        if active:
            status = self._runner.run(["fail2ban-client", "status", "sshd"])
            if not status.ok:
                enabled = False
            else:
                max_retry = self._live_int("maxretry")
                find_time = self._live_int("findtime")
                ban_time = self._live_int("bantime")

        return JailState(
            enabled=enabled,
            port=section.get("port") if section else None,
            max_retry=max_retry,
            find_time=find_time,
            ban_time=ban_time,
            backend=section.get("backend") if section else None,
            ban_action=section.get("banaction") if section else None,
            log_path=section.get("logpath") if section else None,
            service_active=active,
            installed=installed,
        )

    def read_jail_file(self) -> Optional[dict[str, str]]:
        text = _read_text(self._config.jail.jail_path, self.domain)
        if text is None:
            return None
        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read_string(text, source=str(self._config.jail.jail_path))
        except configparser.Error as e:
            raise ProbeError(
                code="jail_parse",
                message=f"Cannot parse {self._config.jail.jail_path}: {e}",
                details={"domain": self.domain.value},
            )
        if not parser.has_section("sshd"):
            return {}
        return {key: value.strip() for key, value in parser.items("sshd")}

    def _live_int(self, key: str) -> Optional[int]:
        result = self._runner.run(["fail2ban-client", "get", "sshd", key])
        if not result.ok:
            return None
        value = result.stdout.strip()
        return int(value) if value.isdigit() else None


class PrivilegedGroupProbe:
    """Reads the admin account and its membership in managed groups."""

    domain = ConfigurationDomain.PRIVILEGED_GROUP

    def __init__(self, config: SystemConfig, runner: CommandRunner) -> None:
        self._config = config
        self._runner = runner

    def managed_groups(self) -> frozenset[str]:
        account = self._config.account
        groups = {account.privileged_group}
        if account.enable_docker:
            groups.add("docker")
        return frozenset(groups)

    def probe(self) -> PrivilegedGroupState:
        user = self._config.account.admin_user
        lookup = self._runner.run(["getent", "passwd", user])
        if lookup.returncode == 2:
            return PrivilegedGroupState(user=user, user_exists=False, groups=frozenset())
        if not lookup.ok:
            raise ProbeError(
                code="account_lookup",
                message=f"getent passwd {user} failed: {lookup.detail()}",
                details={"domain": self.domain.value},
            )

        groups = self._runner.run(["id", "-nG", user])
        if not groups.ok:
            raise ProbeError(
                code="group_lookup",
                message=f"id -nG {user} failed: {groups.detail()}",
                details={"domain": self.domain.value},
            )
        member_of = frozenset(groups.stdout.split()) & self.managed_groups()
        return PrivilegedGroupState(user=user, user_exists=True, groups=member_of)


class EmergencyCredentialProbe:
    """Reads the recorded emergency password and checks it against /etc/shadow."""

    domain = ConfigurationDomain.EMERGENCY_CREDENTIAL

    def __init__(self, config: SystemConfig, runner: CommandRunner) -> None:
        self._config = config
        self._runner = runner

    def probe(self) -> EmergencyCredentialState:
        path = self._config.credential.credential_file
        text = _read_text(path, self.domain)
        if text is None:
            return EmergencyCredentialState(credential_recorded=False)

        password = None
        for line in text.splitlines():
            if line.startswith(CREDENTIAL_PREFIX):
                password = line[len(CREDENTIAL_PREFIX):].strip() or None

        mode = stat.S_IMODE(path.stat().st_mode)
        return EmergencyCredentialState(
            password=password,
            credential_recorded=password is not None,
            file_mode=mode,
            shadow_in_sync=self.shadow_matches(password) if password else None,
        )

    def root_hash(self) -> Optional[str]:
        text = _read_text(self._config.credential.shadow_file, self.domain)
        if text is None:
            raise ProbeError(
                code="shadow_missing",
                message=f"{self._config.credential.shadow_file} does not exist",
                details={"domain": self.domain.value},
            )
        for line in text.splitlines():
            fields = line.split(":")
            if fields[0] == "root" and len(fields) > 1:
                return fields[1]
        return None

    def shadow_matches(self, password: str) -> bool:
        """
        Check a candidate password against root's crypt hash.

        Only $1$, $5$ and $6$ hashes can be recomputed with `openssl passwd`;
        any other scheme is reported as out of sync so rotation rewrites it
        as SHA-512.
        """
        current = self.root_hash()
        if not current or not current.startswith("$"):
            return False
        parts = current.split("$")
        if len(parts) < 4 or parts[1] not in ("1", "5", "6"):
            return False
        scheme, salt = parts[1], parts[2]
        if salt.startswith("rounds="):
            return False
        result = self._runner.run(
            ["openssl", "passwd", f"-{scheme}", "-salt", salt, "-stdin"],
            input_text=password + "\n",
        )
        if not result.ok:
            raise ProbeError(
                code="openssl_passwd",
                message=f"openssl passwd failed: {result.detail()}",
                details={"domain": self.domain.value},
            )
        return result.stdout.strip() == current


PROBE_CLASSES = {
    ConfigurationDomain.SSH_POLICY: SSHPolicyProbe,
    ConfigurationDomain.FIREWALL_EXPOSURE: FirewallProbe,
    ConfigurationDomain.INTRUSION_JAIL: JailProbe,
    ConfigurationDomain.PRIVILEGED_GROUP: PrivilegedGroupProbe,
    ConfigurationDomain.EMERGENCY_CREDENTIAL: EmergencyCredentialProbe,
}
