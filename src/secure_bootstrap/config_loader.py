"""
Configuration loading for the secure bootstrap system.

Declared options arrive as a flat mapping of KEY=value strings, either from a
.env-style file (read with python-dotenv) merged over the process environment,
or from any mapping handed in directly. The mapping is parsed exactly once into
a frozen SystemConfig; nothing else in the system reads the environment.
"""

import base64
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from dotenv import dotenv_values

from secure_bootstrap.config import (
    DEFAULT_HMAC_SECRET,
    AccountConfig,
    CredentialConfig,
    FirewallConfig,
    JailConfig,
    LoggingConfig,
    NotificationConfig,
    PathsConfig,
    SSHConfig,
    SystemConfig,
    TelegramConfig,
    WebhookConfig,
)
from secure_bootstrap.exceptions import ConfigError
from secure_bootstrap.i18n import SUPPORTED_LANGUAGES


TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})

# Keys written by `config init`, in display order, with their defaults.
DOCUMENTED_DEFAULTS: dict[str, str] = {
    "ADMIN_USER": "admin",
    "SSH_PORT": "",
    "DISABLE_ROOT_LOGIN": "1",
    "DISABLE_PASSWORD_AUTH": "1",
    "ENABLE_WEB": "0",
    "FIREWALL_ZONE": "public",
    "FIREWALL_EXTRA_PORTS": "",
    "FAIL2BAN_MAXRETRY": "5",
    "FAIL2BAN_FINDTIME": "600",
    "FAIL2BAN_BANTIME": "3600",
    "FAIL2BAN_BACKEND": "systemd",
    "FAIL2BAN_BANACTION": "firewallcmd-rich-rules",
    "FAIL2BAN_LOGPATH": "/var/log/secure",
    "ENABLE_DOCKER": "0",
    "ROTATE_ROOT_PASSWORD": "1",
    "ROOT_PASSWORD_FILE": "/root/root_emergency_password.txt",
    "STATE_DIR": "/var/lib/secure-bootstrap",
    "BACKUP_HMAC_SECRET": DEFAULT_HMAC_SECRET,
    "ASSUME_YES": "0",
    "LANGUAGE": "en",
    "LOG_LEVEL": "info",
    "LOG_FORMAT": "text",
    "AUDIT_MODE": "0",
}


def generate_password() -> str:
    """Random base64 password from 24 bytes (about 32 characters)."""
    return base64.b64encode(secrets.token_bytes(24)).decode("ascii")


def parse_bool(mapping: Mapping[str, Optional[str]], key: str, default: bool) -> bool:
    raw = mapping.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigError(
        code="invalid_bool",
        message=f"{key} must be 0 or 1, got {raw!r}",
        details={"key": key, "value": raw},
    )


def parse_int(
    mapping: Mapping[str, Optional[str]],
    key: str,
    default: Optional[int],
    minimum: int = 0,
    maximum: Optional[int] = None,
) -> Optional[int]:
    raw = mapping.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(
            code="invalid_int",
            message=f"{key} must be an integer, got {raw!r}",
            details={"key": key, "value": raw},
        )
    if value < minimum or (maximum is not None and value > maximum):
        raise ConfigError(
            code="out_of_range",
            message=f"{key}={value} is out of range",
            details={"key": key, "value": value, "minimum": minimum, "maximum": maximum},
        )
    return value


def parse_list(mapping: Mapping[str, Optional[str]], key: str) -> tuple[str, ...]:
    raw = mapping.get(key) or ""
    items = [p.strip() for chunk in raw.replace(";", ",").split(",") for p in chunk.split()]
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item and item not in seen:
            out.append(item)
            seen.add(item)
    return tuple(out)


def _text(mapping: Mapping[str, Optional[str]], key: str, default: str) -> str:
    raw = mapping.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def config_from_mapping(
    mapping: Mapping[str, Optional[str]],
    password_factory: Callable[[], str] = generate_password,
) -> SystemConfig:
    """
    Build a SystemConfig from declared KEY=value options.

    Unset options take their documented defaults. A fallback emergency
    password is drawn once here, so that resolving desired state later is
    deterministic for a given configuration value.

    Args:
        mapping: Declared options (values may be None for bare keys)
        password_factory: Source of the fallback emergency password

    Returns:
        Frozen SystemConfig

    Raises:
        ConfigError: If an option cannot be parsed
    """
    ssh = SSHConfig(
        port=parse_int(mapping, "SSH_PORT", None, minimum=1, maximum=65535),
        disable_root_login=parse_bool(mapping, "DISABLE_ROOT_LOGIN", True),
        disable_password_auth=parse_bool(mapping, "DISABLE_PASSWORD_AUTH", True),
    )

    firewall = FirewallConfig(
        zone=_text(mapping, "FIREWALL_ZONE", "public"),
        enable_web=parse_bool(mapping, "ENABLE_WEB", False),
        extra_ports=parse_list(mapping, "FIREWALL_EXTRA_PORTS"),
    )

    jail = JailConfig(
        max_retry=parse_int(mapping, "FAIL2BAN_MAXRETRY", 5, minimum=1),
        find_time=parse_int(mapping, "FAIL2BAN_FINDTIME", 600, minimum=1),
        ban_time=parse_int(mapping, "FAIL2BAN_BANTIME", 3600, minimum=1),
        backend=_text(mapping, "FAIL2BAN_BACKEND", "systemd"),
        ban_action=_text(mapping, "FAIL2BAN_BANACTION", "firewallcmd-rich-rules"),
        log_path=_text(mapping, "FAIL2BAN_LOGPATH", "/var/log/secure"),
    )

    account = AccountConfig(
        admin_user=_text(mapping, "ADMIN_USER", "admin"),
        enable_docker=parse_bool(mapping, "ENABLE_DOCKER", False),
    )

    explicit_password = mapping.get("ROOT_PASSWORD") or None
    credential = CredentialConfig(
        rotate=parse_bool(mapping, "ROTATE_ROOT_PASSWORD", True),
        password=explicit_password,
        generated_password="" if explicit_password else password_factory(),
        credential_file=Path(_text(mapping, "ROOT_PASSWORD_FILE", "/root/root_emergency_password.txt")),
    )

    paths = PathsConfig(
        state_dir=Path(_text(mapping, "STATE_DIR", "/var/lib/secure-bootstrap")),
        hmac_secret=_text(mapping, "BACKUP_HMAC_SECRET", DEFAULT_HMAC_SECRET),
    )

    logging_config = LoggingConfig(
        level=_text(mapping, "LOG_LEVEL", "info").lower(),
        audit_mode=parse_bool(mapping, "AUDIT_MODE", False),
        audit_signing_key=mapping.get("AUDIT_SIGNING_KEY") or None,
        output_format=_text(mapping, "LOG_FORMAT", "text").lower(),
    )

    notifications = NotificationConfig()
    bot_token = _text(mapping, "TELEGRAM_BOT_TOKEN", "")
    chat_id = _text(mapping, "TELEGRAM_CHAT_ID", "")
    webhook_url = _text(mapping, "NOTIFY_WEBHOOK_URL", "")
    if bot_token and chat_id:
        notifications = NotificationConfig(
            telegram=TelegramConfig(bot_token=bot_token, chat_id=chat_id),
            webhook=notifications.webhook,
        )
    if webhook_url:
        notifications = NotificationConfig(
            telegram=notifications.telegram,
            webhook=WebhookConfig(url=webhook_url),
        )

    return SystemConfig(
        ssh=ssh,
        firewall=firewall,
        jail=jail,
        account=account,
        credential=credential,
        paths=paths,
        logging=logging_config,
        notifications=notifications,
        language=_text(mapping, "LANGUAGE", "en").lower(),
        assume_yes=parse_bool(mapping, "ASSUME_YES", False),
        simulation_mode=parse_bool(mapping, "SIMULATION_MODE", False),
    )


def load_config(
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SystemConfig:
    """
    Load configuration from an optional .env file merged with the environment.

    Process environment values win over file values, so
    `SSH_PORT=2222 secure-bootstrap run` overrides the file.

    Args:
        env_file: Optional path to a KEY=value file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Frozen SystemConfig

    Raises:
        ConfigError: If the file is missing or an option is invalid
    """
    merged: dict[str, Optional[str]] = {}
    if env_file is not None:
        if not env_file.exists():
            raise ConfigError(
                code="config_missing",
                message=f"Configuration file not found: {env_file}",
                details={"path": str(env_file)},
            )
        merged.update(dotenv_values(env_file))

    env = os.environ if environ is None else environ
    for key in list(DOCUMENTED_DEFAULTS) + [
        "ROOT_PASSWORD",
        "AUDIT_SIGNING_KEY",
        "NOTIFY_WEBHOOK_URL",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_ID",
        "SIMULATION_MODE",
    ]:
        if key in env:
            merged[key] = env[key]

    return config_from_mapping(merged)


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_config(config: SystemConfig) -> ConfigValidationResult:
    """
    Validate a parsed configuration for semantic problems.

    Checks:
    - Admin user name is a plain POSIX account name
    - Extra firewall ports look like `port/proto`
    - Logging format and language are supported
    - HMAC secret is not the default value

    Returns:
        ConfigValidationResult with validation status
    """
    errors: list[str] = []
    warnings: list[str] = []

    user = config.account.admin_user
    if not user or user == "root" or not is_account_name(user):
        errors.append(f"ADMIN_USER must be a non-root account name: {user!r}")

    for entry in config.firewall.extra_ports:
        if not is_port_spec(entry):
            errors.append(f"FIREWALL_EXTRA_PORTS entry is not port/proto: {entry!r}")

    if config.credential.password:
        problem = password_policy_error(config.credential.password)
        if problem:
            errors.append(f"ROOT_PASSWORD {problem}")

    if config.logging.output_format not in ("json", "text", "both"):
        errors.append(f"Unsupported LOG_FORMAT: {config.logging.output_format}")

    if config.logging.audit_mode and not config.logging.audit_signing_key:
        errors.append("AUDIT_MODE requires AUDIT_SIGNING_KEY")

    if config.language not in SUPPORTED_LANGUAGES:
        errors.append(f"Unsupported language: {config.language}")

    if config.paths.hmac_secret == DEFAULT_HMAC_SECRET:
        warnings.append("BACKUP_HMAC_SECRET is using default value - please change for production")

    if not config.ssh.disable_password_auth:
        warnings.append("Password authentication stays enabled for SSH")

    if config.assume_yes:
        warnings.append("ASSUME_YES is set: checkpoint gates will not wait for the operator")

    return ConfigValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )


def is_port_spec(entry: str) -> bool:
    port, _, proto = entry.partition("/")
    if proto not in ("tcp", "udp"):
        return False
    if "-" in port:
        low, _, high = port.partition("-")
        return _is_port(low) and _is_port(high) and int(low) <= int(high)
    return _is_port(port)


def _is_port(text: str) -> bool:
    return text.isdigit() and 1 <= int(text) <= 65535


MIN_PASSWORD_LENGTH = 16


def password_policy_error(password: str) -> Optional[str]:
    """Describe why a root password is unusable, or None if it is acceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"must be at least {MIN_PASSWORD_LENGTH} characters long"
    if any(c in password for c in ":\r\n") or password != password.strip():
        return "must not contain colons, line breaks or surrounding whitespace"
    return None


def is_account_name(name: str) -> bool:
    if not name or len(name) > 32 or not (name[0].islower() or name[0] == "_"):
        return False
    return all(c.islower() or c.isdigit() or c in "_-" for c in name)


def render_env_file(config: SystemConfig) -> str:
    """Render a commented KEY=value file for `config init`."""
    values = dict(DOCUMENTED_DEFAULTS)
    values.update({
        "ADMIN_USER": config.account.admin_user,
        "SSH_PORT": "" if config.ssh.port is None else str(config.ssh.port),
        "LANGUAGE": config.language,
    })
    lines = ["# secure-bootstrap configuration", "# ROOT_PASSWORD is generated when unset."]
    lines.extend(f"{key}={value}" for key, value in values.items())
    return "\n".join(lines) + "\n"
