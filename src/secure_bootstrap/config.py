"""
Configuration dataclasses for the secure bootstrap system.

This module defines all configuration structures used throughout the system,
including SSH policy, firewall exposure, intrusion jail thresholds, accounts,
the emergency credential, filesystem locations, logging, and notifications.

All configuration objects are frozen: a SystemConfig is built once at process
start and passed by value into every resolver and reconciler.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


DEFAULT_HMAC_SECRET = "default-secret-change-me"


@dataclass(frozen=True)
class SSHConfig:
    """SSH daemon policy inputs."""

    port: Optional[int] = None  # None: keep the probed port, else 22
    disable_root_login: bool = True
    disable_password_auth: bool = True
    dropin_path: Path = Path("/etc/ssh/sshd_config.d/00-hardening.conf")
    main_config_path: Path = Path("/etc/ssh/sshd_config")


@dataclass(frozen=True)
class FirewallConfig:
    """Firewall exposure inputs."""

    zone: str = "public"
    enable_web: bool = False
    extra_ports: tuple[str, ...] = ()
    zones_dir: Path = Path("/etc/firewalld/zones")


@dataclass(frozen=True)
class JailConfig:
    """Brute-force protection thresholds for the SSH jail."""

    max_retry: int = 5
    find_time: int = 600
    ban_time: int = 3600
    backend: str = "systemd"
    ban_action: str = "firewallcmd-rich-rules"
    log_path: str = "/var/log/secure"
    jail_path: Path = Path("/etc/fail2ban/jail.d/sshd-hardening.conf")
    config_dir: Path = Path("/etc/fail2ban")


@dataclass(frozen=True)
class AccountConfig:
    """Administrative account and privileged group membership."""

    admin_user: str = "admin"
    privileged_group: str = "wheel"
    enable_docker: bool = False
    home_root: Path = Path("/home")
    group_file: Path = Path("/etc/group")


@dataclass(frozen=True)
class CredentialConfig:
    """Emergency root credential rotation."""

    rotate: bool = True
    password: Optional[str] = field(default=None, repr=False)
    generated_password: str = field(default="", repr=False)
    credential_file: Path = Path("/root/root_emergency_password.txt")
    shadow_file: Path = Path("/etc/shadow")


@dataclass(frozen=True)
class PathsConfig:
    """Locations owned by the bootstrap tool itself."""

    state_dir: Path = Path("/var/lib/secure-bootstrap")
    hmac_secret: str = field(default=DEFAULT_HMAC_SECRET, repr=False)

    @property
    def backup_dir(self) -> Path:
        return self.state_dir / "backups"

    @property
    def lock_file(self) -> Path:
        return self.state_dir / "run.lock"


@dataclass(frozen=True)
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = field(default=None, repr=False)
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram notification channel configuration."""

    bot_token: str = field(repr=False)
    chat_id: str


@dataclass(frozen=True)
class WebhookConfig:
    """Generic webhook notification channel configuration."""

    url: str
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class NotificationConfig:
    """Run-summary notification channels."""

    telegram: Optional[TelegramConfig] = None
    webhook: Optional[WebhookConfig] = None


@dataclass(frozen=True)
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    ssh: SSHConfig = field(default_factory=SSHConfig)
    firewall: FirewallConfig = field(default_factory=FirewallConfig)
    jail: JailConfig = field(default_factory=JailConfig)
    account: AccountConfig = field(default_factory=AccountConfig)
    credential: CredentialConfig = field(default_factory=CredentialConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    language: str = "en"  # 'de' or 'en'
    assume_yes: bool = False
    simulation_mode: bool = False
