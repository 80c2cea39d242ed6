"""
Shared fixtures: a scripted host that answers the commands probes and
reconcilers issue, backed by real files under tmp_path.
"""

import configparser
import glob
import hashlib
import xml.etree.ElementTree as ET
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

import pytest

from secure_bootstrap.config import (
    AccountConfig,
    CredentialConfig,
    FirewallConfig,
    JailConfig,
    PathsConfig,
    SSHConfig,
    SystemConfig,
)
from secure_bootstrap.system import CommandResult


ADMIN_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIBv1 admin@laptop"
INITIAL_ROOT_PASSWORD = "initial-root-password"
DOCKER_REPO = "https://download.docker.com/linux/centos/docker-ce.repo"
KNOWN_SERVICES = ("ssh", "http", "https", "cockpit", "dhcpv6-client", "mdns")
SSHD_KEYWORDS = frozenset({
    "port", "permitrootlogin", "passwordauthentication", "kbdinteractiveauthentication",
    "challengeresponseauthentication", "pubkeyauthentication", "subsystem", "usepam",
})
SSHD_DEFAULTS = {
    "port": "22",
    "permitrootlogin": "prohibit-password",
    "passwordauthentication": "yes",
    "kbdinteractiveauthentication": "yes",
    "pubkeyauthentication": "yes",
}
# sshd -T prints the first name OpenSSH registers for a value.
SSHD_OUTPUT_NAMES = {("permitrootlogin", "prohibit-password"): "without-password"}

# Commands that change the host; a converged host must see none of them.
MUTATING = (
    ("systemctl", "restart"),
    ("systemctl", "reload"),
    ("systemctl", "enable"),
    ("firewall-cmd", "--reload"),
    ("dnf",),
    ("useradd",),
    ("usermod",),
    ("chpasswd",),
)


def fake_crypt(salt: str, password: str) -> str:
    digest = hashlib.sha512(f"{salt}:{password}".encode("utf-8")).hexdigest()
    return f"$6${salt}${digest}"


class FakeHost:
    """
    In-memory RHEL-like host implementing the CommandRunner protocol.

    Files live under a tmp directory; service runtime state (listening
    ports, loaded zone, loaded jail) lives in attributes and only changes
    when the matching reload/restart command is issued.
    """

    def __init__(self, root: Path, include_dropins: bool = True) -> None:
        self.root = root
        self.calls: list[tuple[str, ...]] = []

        self.etc = root / "etc"
        self.ssh_dir = self.etc / "ssh"
        self.dropin_dir = self.ssh_dir / "sshd_config.d"
        self.sshd_config = self.ssh_dir / "sshd_config"
        self.zones_dir = self.etc / "firewalld" / "zones"
        self.f2b_dir = self.etc / "fail2ban"
        self.group_file = self.etc / "group"
        self.shadow_file = self.etc / "shadow"
        self.home = root / "home"
        self.credential_file = root / "root" / "root_emergency_password.txt"
        self.state_dir = root / "var" / "lib" / "secure-bootstrap"

        for directory in (self.dropin_dir, self.zones_dir, self.home, self.credential_file.parent):
            directory.mkdir(parents=True, exist_ok=True)
        # Stock EL8 ships no Include; EL9 puts it ahead of every other directive.
        include = f"Include {self.dropin_dir}/*.conf\n" if include_dropins else ""
        self.sshd_config.write_text(
            "# $OpenBSD: sshd_config\n\n"
            + include
            + "PermitRootLogin yes\n"
            "PasswordAuthentication yes\n"
            "Subsystem sftp /usr/libexec/openssh/sftp-server\n"
        )
        self.group_file.write_text("root:x:0:\nwheel:x:10:\n")
        self.shadow_file.write_text(
            f"root:{fake_crypt('abcdefgh', INITIAL_ROOT_PASSWORD)}:19000:0:99999:7:::\n"
        )

        self.commands = {
            "sshd", "ss", "systemctl", "firewall-cmd", "firewall-offline-cmd", "getent",
            "id", "useradd", "usermod", "chpasswd", "openssl", "rpm", "dnf",
        }
        self.packages = {"openssh-server", "firewalld"}
        self.repos: set[str] = set()
        self.active = {"sshd", "firewalld"}
        self.users: dict[str, set[str]] = {"root": {"root"}}
        self.groups = {"root", "wheel"}

        self.sshd_ports = {22}
        self.firewall_runtime = (
            frozenset({"ssh", "cockpit", "dhcpv6-client"}),
            frozenset(),
        )
        self.jail_runtime: Optional[dict[str, str]] = None

        # Failure injection
        self.sshd_rejects = False
        self.sshd_reload_fails = False
        self.port_bind_blocked = False
        self.firewall_reload_fails = False
        self.fail2ban_rejects = False
        self.permission_denied: set[Path] = set()

    # -- CommandRunner -----------------------------------------------------

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.commands else None

    def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        args = tuple(args)
        self.calls.append(args)
        handler = getattr(self, "_cmd_" + args[0].replace("-", "_"), None)
        if handler is None or args[0] not in self.commands:
            return CommandResult(args, 127, stderr=f"{args[0]}: command not found")
        returncode, stdout, stderr = handler(args[1:], input_text)
        return CommandResult(args, returncode, stdout, stderr)

    # -- helpers -----------------------------------------------------------

    def mutating_calls(self) -> list[tuple[str, ...]]:
        return [
            call for call in self.calls
            if any(call[:len(prefix)] == prefix for prefix in MUTATING)
        ]

    def add_admin_key(self, user: str = "admin") -> None:
        keys = self.home / user / ".ssh" / "authorized_keys"
        keys.parent.mkdir(parents=True, exist_ok=True)
        keys.write_text(ADMIN_KEY + "\n")

    def uninstall(self, package: str, commands: tuple[str, ...], service: str) -> None:
        self.packages.discard(package)
        self.commands.difference_update(commands)
        self.active.discard(service)

    def sshd_values(self, path: Path) -> tuple[dict[str, str], list[str]]:
        """First-value-wins parse of the global section of an sshd config, following Include."""
        values: dict[str, str] = {}
        problems: list[str] = []

        def consume(p: Path) -> None:
            for line in p.read_text().splitlines():
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                key, _, value = line.partition(" ")
                key = key.lower()
                value = value.strip()
                if key == "match":
                    return
                if key == "include":
                    for included in sorted(glob.glob(value)):
                        consume(Path(included))
                    continue
                if key not in SSHD_KEYWORDS:
                    problems.append(f"Bad configuration option: {key}")
                    continue
                if key == "port" and not value.isdigit():
                    problems.append(f"Badly formatted port number: {value}")
                values.setdefault(key, value)

        consume(path)
        return values, problems

    def effective_sshd(self) -> dict[str, str]:
        values, _ = self.sshd_values(self.sshd_config)
        merged = dict(SSHD_DEFAULTS)
        merged.update(values)
        if "challengeresponseauthentication" in values and "kbdinteractiveauthentication" not in values:
            merged["kbdinteractiveauthentication"] = values["challengeresponseauthentication"]
        merged.pop("challengeresponseauthentication", None)
        return merged

    def _load_zone(self) -> None:
        zone_file = self.zones_dir / "public.xml"
        if not zone_file.exists():
            return
        root = ET.parse(zone_file).getroot()
        self.firewall_runtime = (
            frozenset(el.get("name") for el in root.findall("service")),
            frozenset(f"{el.get('port')}/{el.get('protocol')}" for el in root.findall("port")),
        )

    def _read_jail(self, directory: Path) -> Optional[dict[str, str]]:
        parser = configparser.ConfigParser(interpolation=None)
        for path in sorted((directory / "jail.d").glob("*.conf")):
            parser.read_string(path.read_text(), source=str(path))
        if not parser.has_section("sshd"):
            return None
        return dict(parser.items("sshd"))

    # -- commands ----------------------------------------------------------

    def _cmd_sshd(self, args, input_text):
        if args[:1] == ("-T",):
            effective = self.effective_sshd()
            lines = [f"{k} {SSHD_OUTPUT_NAMES.get((k, v), v)}\n" for k, v in effective.items()]
            return 0, "".join(lines), ""
        if args[:1] == ("-t",):
            if self.sshd_rejects:
                return 255, "", "/etc/ssh/sshd_config.d/00-hardening.conf line 2: Bad configuration option"
            _, problems = self.sshd_values(Path(args[2]))
            if problems:
                return 255, "", problems[0]
            return 0, "", ""
        return 1, "", "unsupported"

    def _cmd_ss(self, args, input_text):
        lines = [
            f'LISTEN 0 128 0.0.0.0:{port} 0.0.0.0:* users:(("sshd",pid=900,fd=3))'
            for port in sorted(self.sshd_ports)
        ]
        lines.append('LISTEN 0 511 0.0.0.0:9090 0.0.0.0:* users:(("systemd",pid=1,fd=50))')
        return 0, "\n".join(lines) + "\n", ""

    def _cmd_systemctl(self, args, input_text):
        if args[:2] == ("is-active", "--quiet"):
            return (0 if args[2] in self.active else 3), "", ""
        action, unit = args[0], args[-1]
        if unit == "sshd" and action in ("reload", "restart"):
            if self.sshd_reload_fails:
                return 1, "", "Job for sshd.service failed"
            port = int(self.effective_sshd()["port"])
            if not self.port_bind_blocked:
                self.sshd_ports = {port}
            return 0, "", ""
        if unit == "firewalld" and action == "enable":
            if self.firewall_reload_fails:
                return 1, "", "Job for firewalld.service failed"
            self.active.add("firewalld")
            self._load_zone()
            return 0, "", ""
        if unit == "fail2ban":
            if action == "restart":
                self.jail_runtime = self._read_jail(self.f2b_dir)
                self.active.add("fail2ban")
            return 0, "", ""
        if action == "enable" and "--now" in args:
            self.active.add(unit)
        return 0, "", ""

    def _cmd_firewall_cmd(self, args, input_text):
        if args == ("--get-services",):
            return 0, " ".join(KNOWN_SERVICES) + "\n", ""
        if args == ("--reload",):
            if self.firewall_reload_fails:
                return 1, "", "Error: COMMAND_FAILED"
            self._load_zone()
            return 0, "", ""
        if args[-1] == "--list-services":
            return 0, " ".join(sorted(self.firewall_runtime[0])) + "\n", ""
        if args[-1] == "--list-ports":
            return 0, " ".join(sorted(self.firewall_runtime[1])) + "\n", ""
        return 1, "", "unsupported"

    def _cmd_firewall_offline_cmd(self, args, input_text):
        return self._cmd_firewall_cmd(args, input_text)

    def _cmd_fail2ban_client(self, args, input_text):
        if args[:1] == ("-c",) and args[2:] == ("-t",):
            if self.fail2ban_rejects:
                return 255, "", "ERROR  Failed during configuration: bad value"
            try:
                jail = self._read_jail(Path(args[1]))
            except configparser.Error as e:
                return 255, "", str(e)
            if jail is not None and not jail.get("maxretry", "").isdigit():
                return 255, "", "ERROR  invalid maxretry"
            return 0, "OK: configuration test is successful\n", ""
        if args == ("status", "sshd"):
            if self.jail_runtime and self.jail_runtime.get("enabled") == "true":
                return 0, "Status for the jail: sshd\n", ""
            return 255, "", "Sorry but the jail 'sshd' does not exist"
        if args[:2] == ("get", "sshd"):
            return 0, self.jail_runtime[args[2]] + "\n", ""
        return 1, "", "unsupported"

    def _cmd_rpm(self, args, input_text):
        package = args[-1]
        if package in self.packages:
            return 0, f"{package}-1.0-1.el9.noarch\n", ""
        return 1, f"package {package} is not installed\n", ""

    def _cmd_dnf(self, args, input_text):
        if args[:2] == ("config-manager", "--add-repo"):
            self.repos.add(args[2])
            return 0, f"Adding repo from: {args[2]}\n", ""
        package = args[-1]
        if package.startswith("docker-") and DOCKER_REPO not in self.repos:
            return 1, "", f"Error: Unable to find a match: {package}"
        self.packages.add(package)
        if package == "fail2ban":
            self.commands.add("fail2ban-client")
            (self.f2b_dir / "jail.d").mkdir(parents=True, exist_ok=True)
            (self.f2b_dir / "jail.conf").write_text("[DEFAULT]\nbantime = 10m\n")
        if package == "firewalld":
            self.commands.update({"firewall-cmd", "firewall-offline-cmd"})
        if package == "docker-ce":
            self.commands.add("docker")
            self.groups.add("docker")
        return 0, "Complete!\n", ""

    def _cmd_getent(self, args, input_text):
        database, name = args
        if database == "passwd":
            if name in self.users:
                return 0, f"{name}:x:1000:1000::/home/{name}:/bin/bash\n", ""
            return 2, "", ""
        if name in self.groups:
            return 0, f"{name}:x:10:\n", ""
        return 2, "", ""

    def _cmd_id(self, args, input_text):
        user = args[-1]
        if user not in self.users:
            return 1, "", f"id: '{user}': no such user"
        return 0, " ".join(sorted(self.users[user])) + "\n", ""

    def _cmd_useradd(self, args, input_text):
        user = args[-1]
        self.users[user] = {user}
        self.groups.add(user)
        (self.home / user).mkdir(parents=True, exist_ok=True)
        return 0, "", ""

    def _cmd_usermod(self, args, input_text):
        groups, user = args[1], args[2]
        missing = [g for g in groups.split(",") if g not in self.groups]
        if missing:
            return 6, "", f"usermod: group '{missing[0]}' does not exist"
        self.users[user].update(groups.split(","))
        return 0, "", ""

    def _cmd_chpasswd(self, args, input_text):
        user, _, password = input_text.rstrip("\n").partition(":")
        lines = []
        for line in self.shadow_file.read_text().splitlines():
            fields = line.split(":")
            if fields[0] == user:
                fields[1] = fake_crypt("newsalt1", password)
            lines.append(":".join(fields))
        self.shadow_file.write_text("\n".join(lines) + "\n")
        return 0, "", ""

    def _cmd_openssl(self, args, input_text):
        salt = args[args.index("-salt") + 1]
        return 0, fake_crypt(salt, input_text.rstrip("\n")) + "\n", ""


def make_config(host: FakeHost, **sections) -> SystemConfig:
    """SystemConfig pointing every artifact path into the fake host."""
    config = SystemConfig(
        ssh=SSHConfig(
            dropin_path=host.dropin_dir / "00-hardening.conf",
            main_config_path=host.sshd_config,
        ),
        firewall=FirewallConfig(zones_dir=host.zones_dir),
        jail=JailConfig(
            jail_path=host.f2b_dir / "jail.d" / "sshd-hardening.conf",
            config_dir=host.f2b_dir,
        ),
        account=AccountConfig(home_root=host.home, group_file=host.group_file),
        credential=CredentialConfig(
            generated_password="generated-emergency-password-0001",
            credential_file=host.credential_file,
            shadow_file=host.shadow_file,
        ),
        paths=PathsConfig(state_dir=host.state_dir, hmac_secret="test-secret"),
    )
    overrides = {}
    for name, values in sections.items():
        overrides[name] = replace(getattr(config, name), **values)
    return replace(config, **overrides)


@pytest.fixture
def host(tmp_path: Path) -> FakeHost:
    fake = FakeHost(tmp_path)
    fake.add_admin_key()
    return fake


@pytest.fixture
def host_without_include(tmp_path: Path) -> FakeHost:
    """Host whose main sshd config does not include the drop-in directory (stock EL8)."""
    fake = FakeHost(tmp_path, include_dropins=False)
    fake.add_admin_key()
    return fake
