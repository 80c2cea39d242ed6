"""
Property-based tests for configuration loading.

Uses Hypothesis for property-based testing of option parsing, environment
precedence and semantic validation.
"""

import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from secure_bootstrap.config import (
    CredentialConfig,
    LoggingConfig,
    SystemConfig,
    AccountConfig,
    FirewallConfig,
)
from secure_bootstrap.config_loader import (
    FALSE_VALUES,
    MIN_PASSWORD_LENGTH,
    TRUE_VALUES,
    config_from_mapping,
    is_port_spec,
    load_config,
    parse_bool,
    password_policy_error,
    render_env_file,
    validate_config,
)
from secure_bootstrap.exceptions import ConfigError


def fixed_password() -> str:
    return "generated-password-abcdefgh"


# Strategies for generating valid test data

@st.composite
def account_name_strategy(draw) -> str:
    """Generate plain POSIX account names other than root."""
    first = draw(st.sampled_from("abcdefghijklmnopqrstuvwxyz_"))
    rest = draw(st.text(alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789_-"), max_size=15))
    name = first + rest
    return "admin" if name == "root" else name


@st.composite
def bool_text_strategy(draw) -> tuple[str, bool]:
    """Generate accepted boolean spellings with random case and padding."""
    value = draw(st.booleans())
    word = draw(st.sampled_from(sorted((TRUE_VALUES if value else FALSE_VALUES) - {""})))
    word = "".join(c.upper() if draw(st.booleans()) else c for c in word)
    pad = draw(st.sampled_from(["", " ", "\t"]))
    return f"{pad}{word}{pad}", value


class TestOptionParsingProperty:
    """
    Property-based tests for option parsing.

    **Feature: secure-bootstrap, Property 20: Declared options parse exactly once into a frozen config**
    """

    def test_empty_mapping_yields_documented_defaults(self) -> None:
        """
        Property 20: Declared options parse exactly once into a frozen config.

        With no options set, every section SHALL take its documented default
        and the fallback password SHALL come from the factory.

        **Feature: secure-bootstrap, Property 20: Declared options parse exactly once into a frozen config**
        """
        config = config_from_mapping({}, fixed_password)
        expected = SystemConfig(credential=CredentialConfig(generated_password=fixed_password()))
        assert config == expected

    @given(spelling=bool_text_strategy())
    @settings(max_examples=100)
    def test_boolean_spellings(self, spelling: tuple[str, bool]) -> None:
        text, value = spelling
        assert parse_bool({"ENABLE_WEB": text}, "ENABLE_WEB", not value) is value

    @given(text=st.text(alphabet=st.sampled_from("abcxyz23"), min_size=1, max_size=6))
    @settings(max_examples=100)
    def test_unknown_boolean_spelling_is_rejected(self, text: str) -> None:
        if text.lower() in TRUE_VALUES | FALSE_VALUES:
            return
        with pytest.raises(ConfigError) as exc:
            parse_bool({"ENABLE_WEB": text}, "ENABLE_WEB", False)
        assert exc.value.code == "invalid_bool"

    @given(port=st.integers(min_value=-1000, max_value=70000))
    @settings(max_examples=100)
    def test_ssh_port_range(self, port: int) -> None:
        """
        Property 20b: SSH_PORT accepts exactly 1..65535.

        **Feature: secure-bootstrap, Property 20: Declared options parse exactly once into a frozen config**
        """
        mapping = {"SSH_PORT": str(port)}
        if 1 <= port <= 65535:
            assert config_from_mapping(mapping, fixed_password).ssh.port == port
        else:
            with pytest.raises(ConfigError) as exc:
                config_from_mapping(mapping, fixed_password)
            assert exc.value.code == "out_of_range"

    def test_non_numeric_threshold_is_rejected(self) -> None:
        with pytest.raises(ConfigError) as exc:
            config_from_mapping({"FAIL2BAN_MAXRETRY": "five"}, fixed_password)
        assert exc.value.code == "invalid_int"
        assert exc.value.details["key"] == "FAIL2BAN_MAXRETRY"

    def test_blank_port_keeps_probed_port(self) -> None:
        assert config_from_mapping({"SSH_PORT": "  "}, fixed_password).ssh.port is None

    def test_extra_ports_are_split_and_deduplicated(self) -> None:
        config = config_from_mapping(
            {"FIREWALL_EXTRA_PORTS": "80/tcp, 443/tcp;80/tcp 53/udp"}, fixed_password
        )
        assert config.firewall.extra_ports == ("80/tcp", "443/tcp", "53/udp")

    def test_declared_root_password_skips_generation(self) -> None:
        def factory() -> str:
            raise AssertionError("password generated although ROOT_PASSWORD is set")

        config = config_from_mapping({"ROOT_PASSWORD": "declared-password-123456"}, factory)
        assert config.credential.password == "declared-password-123456"
        assert config.credential.generated_password == ""

    def test_notification_channels_need_complete_settings(self) -> None:
        partial = config_from_mapping({"TELEGRAM_BOT_TOKEN": "123:abc"}, fixed_password)
        complete = config_from_mapping(
            {"TELEGRAM_BOT_TOKEN": "123:abc", "TELEGRAM_CHAT_ID": "42", "NOTIFY_WEBHOOK_URL": "https://hooks.example/x"},
            fixed_password,
        )
        assert partial.notifications.telegram is None
        assert complete.notifications.telegram.chat_id == "42"
        assert complete.notifications.webhook.url == "https://hooks.example/x"


class TestEnvironmentPrecedenceProperty:
    """
    Property-based tests for file and environment merging.

    **Feature: secure-bootstrap, Property 21: Environment values override the configuration file**
    """

    @given(
        user=account_name_strategy(),
        file_port=st.integers(min_value=1, max_value=65535),
        env_port=st.one_of(st.none(), st.integers(min_value=1, max_value=65535)),
    )
    @settings(max_examples=50, deadline=None)
    def test_environment_wins_over_file(self, user: str, file_port: int, env_port: Optional[int]) -> None:
        """
        Property 21: Environment values override the configuration file.

        *For any* option set in both places, the environment value SHALL be
        used; options only in the file SHALL be kept.

        **Feature: secure-bootstrap, Property 21: Environment values override the configuration file**
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            env_file = Path(tmpdir) / "bootstrap.env"
            env_file.write_text(f"ADMIN_USER={user}\nSSH_PORT={file_port}\n")
            environ = {} if env_port is None else {"SSH_PORT": str(env_port), "UNRELATED": "x"}

            config = load_config(env_file, environ)

            assert config.account.admin_user == user
            assert config.ssh.port == (file_port if env_port is None else env_port)

    @given(user=account_name_strategy(), port=st.one_of(st.none(), st.integers(min_value=1, max_value=65535)))
    @settings(max_examples=50, deadline=None)
    def test_rendered_file_loads_back(self, user: str, port: Optional[int]) -> None:
        """
        Property 21b: A rendered configuration file loads back unchanged.

        **Feature: secure-bootstrap, Property 21: Environment values override the configuration file**
        """
        source = SystemConfig(account=AccountConfig(admin_user=user), ssh=replace(SystemConfig().ssh, port=port))
        with tempfile.TemporaryDirectory() as tmpdir:
            env_file = Path(tmpdir) / "bootstrap.env"
            env_file.write_text(render_env_file(source))

            loaded = load_config(env_file, {})

        assert loaded.account.admin_user == user
        assert loaded.ssh.port == port
        assert loaded.firewall == source.firewall
        assert loaded.jail == source.jail

    def test_missing_file_is_reported(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError) as exc:
            load_config(tmp_path / "absent.env", {})
        assert exc.value.code == "config_missing"


class TestConfigValidation:
    """Semantic validation of parsed configurations."""

    def test_default_config_is_valid_with_secret_warning(self) -> None:
        result = validate_config(SystemConfig())
        assert result.valid
        assert result.errors == []
        assert any("BACKUP_HMAC_SECRET" in w for w in result.warnings)

    @pytest.mark.parametrize("user", ["root", "", "Admin", "1ops", "ops user"])
    def test_unusable_admin_user(self, user: str) -> None:
        result = validate_config(SystemConfig(account=AccountConfig(admin_user=user)))
        assert not result.valid
        assert any("ADMIN_USER" in e for e in result.errors)

    def test_malformed_extra_port(self) -> None:
        config = SystemConfig(firewall=FirewallConfig(extra_ports=("8080/tcp", "http")))
        result = validate_config(config)
        assert result.errors == ["FIREWALL_EXTRA_PORTS entry is not port/proto: 'http'"]

    def test_audit_mode_needs_signing_key(self) -> None:
        result = validate_config(SystemConfig(logging=LoggingConfig(audit_mode=True)))
        assert "AUDIT_MODE requires AUDIT_SIGNING_KEY" in result.errors

    def test_unsupported_language_and_format(self) -> None:
        config = SystemConfig(language="fr", logging=LoggingConfig(output_format="xml"))
        result = validate_config(config)
        assert "Unsupported language: fr" in result.errors
        assert "Unsupported LOG_FORMAT: xml" in result.errors

    def test_weak_declared_password(self) -> None:
        config = SystemConfig(credential=CredentialConfig(password="short"))
        result = validate_config(config)
        assert any(e.startswith("ROOT_PASSWORD") for e in result.errors)

    @given(password=st.text(min_size=1, max_size=40))
    @settings(max_examples=100)
    def test_password_policy(self, password: str) -> None:
        problem = password_policy_error(password)
        acceptable = (
            len(password) >= MIN_PASSWORD_LENGTH
            and not any(c in password for c in ":\r\n")
            and password == password.strip()
        )
        assert (problem is None) == acceptable

    @given(port=st.integers(min_value=1, max_value=65535), proto=st.sampled_from(["tcp", "udp"]))
    @settings(max_examples=100)
    def test_port_specs(self, port: int, proto: str) -> None:
        assert is_port_spec(f"{port}/{proto}")
        assert is_port_spec(f"{port}-{port}/{proto}")
        assert not is_port_spec(f"{port}/sctp")
        assert not is_port_spec(str(port))
