"""
SSH policy reconciler.

Owns a single sshd drop-in and keeps the main sshd config pointing at it:
the drop-in directory Include is the first directive there, and global
occurrences of the keywords the drop-in sets are commented out (sshd keeps
the first value it reads, and Port lines accumulate). The candidate pair is
validated with `sshd -t` before either file is replaced.
"""

import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import ActivationError, ValidationError
from secure_bootstrap.models import SSHPolicyState
from secure_bootstrap.probes import SSHPolicyProbe
from secure_bootstrap.reconciler import Reconciler


HEADER = "# Managed by secure-bootstrap. Regenerated on every change; do not edit.\n"
DISABLED_PREFIX = "# disabled by secure-bootstrap: "
MANAGED_KEYWORDS = frozenset({
    "port",
    "permitrootlogin",
    "passwordauthentication",
    "kbdinteractiveauthentication",
    "challengeresponseauthentication",
    "pubkeyauthentication",
})
KEYWORD_RE = re.compile(r"^\s*([A-Za-z]+)(?:\s*=\s*|\s+)(.*?)\s*$")


def _yes_no(value: Optional[bool]) -> str:
    return "yes" if value else "no"


def render_main_config(text: str, dropin_dir: Path) -> str:
    """
    Rewrite a main sshd config so the managed drop-ins take precedence.

    The Include for dropin_dir is placed after the leading comment block and
    removed elsewhere; managed keywords outside Match blocks are commented
    out. Everything else is kept as written. Applying it twice changes
    nothing.

    Args:
        text: Current main config content ("" when the file is absent)
        dropin_dir: Directory holding the managed drop-in

    Returns:
        The main config content to install
    """
    include_target = f"{dropin_dir}/*.conf"
    lines = text.splitlines()

    head = 0
    while head < len(lines) and (not lines[head].strip() or lines[head].lstrip().startswith("#")):
        head += 1

    body = []
    in_match = False
    for line in lines[head:]:
        parsed = KEYWORD_RE.match(line)
        keyword = parsed.group(1).lower() if parsed and not line.lstrip().startswith("#") else ""
        if keyword == "match":
            in_match = True
        if in_match or not keyword:
            body.append(line)
        elif keyword == "include" and parsed.group(2) == include_target:
            continue
        elif keyword in MANAGED_KEYWORDS:
            body.append(DISABLED_PREFIX + line.strip())
        else:
            body.append(line)

    return "\n".join(lines[:head] + [f"Include {include_target}"] + body) + "\n"


class SSHPolicyReconciler(Reconciler):
    """Converges sshd port, root login and authentication methods."""

    domain = ConfigurationDomain.SSH_POLICY
    probe_class = SSHPolicyProbe
    verify_fields = (
        "port",
        "permit_root_login",
        "password_authentication",
        "kbd_interactive_authentication",
        "pubkey_authentication",
        "listening_ports",
    )

    @property
    def artifact_path(self) -> Path:
        return self.config.ssh.dropin_path

    def backup_targets(self) -> list[Path]:
        return [self.config.ssh.dropin_path, self.config.ssh.main_config_path]

    def companion_artifacts(self) -> dict[Path, str]:
        current = self._main_config_text()
        installed = self._installed_main_config(current)
        if installed == current:
            return {}
        return {self.config.ssh.main_config_path: installed}

    def _main_config_text(self) -> str:
        try:
            return self.config.ssh.main_config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def _installed_main_config(self, current: str) -> str:
        return render_main_config(current, self.config.ssh.dropin_path.parent)

    def render(self, desired: SSHPolicyState) -> str:
        lines = [
            f"Port {desired.port}",
            f"PermitRootLogin {desired.permit_root_login}",
            f"PasswordAuthentication {_yes_no(desired.password_authentication)}",
            f"KbdInteractiveAuthentication {_yes_no(desired.kbd_interactive_authentication)}",
            f"ChallengeResponseAuthentication {_yes_no(desired.kbd_interactive_authentication)}",
            f"PubkeyAuthentication {_yes_no(desired.pubkey_authentication)}",
        ]
        return HEADER + "\n".join(lines) + "\n"

    def validate(
        self,
        candidate: Optional[Path],
        desired: SSHPolicyState,
        actual: SSHPolicyState,
    ) -> None:
        if not desired.password_authentication and not actual.admin_key_count:
            user = self.config.account.admin_user
            raise ValidationError(
                code="admin_key_missing",
                message=(
                    f"Key-only login requested but '{user}' has no authorized SSH key; "
                    "refusing to lock the account out"
                ),
                details={"domain": self.name, "user": user},
            )

        # sshd reads the candidate first, then the main config as it will be installed.
        main_config = self.config.ssh.main_config_path
        fd, check_name = tempfile.mkstemp(
            dir=main_config.parent, prefix=f".{main_config.name}.", suffix=".check"
        )
        check = Path(check_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(f"Include {candidate}\n")
                f.write(self._installed_main_config(self._main_config_text()))
            result = self.runner.run(["sshd", "-t", "-f", str(check)])
        finally:
            check.unlink(missing_ok=True)

        if not result.ok:
            raise ValidationError(
                code="sshd_syntax",
                message=f"sshd rejected the candidate configuration: {result.detail()}",
                details={"domain": self.name},
            )

    def activate(self, desired: SSHPolicyState, actual: SSHPolicyState) -> None:
        # A port change needs the listener rebound; restart waits for readiness.
        if desired.port != actual.port:
            result = self.runner.run(["systemctl", "restart", "sshd"])
        else:
            result = self.runner.run(["systemctl", "reload", "sshd"])
            if not result.ok:
                result = self.runner.run(["systemctl", "restart", "sshd"])

        if not result.ok:
            raise ActivationError(
                code="sshd_reload",
                message=f"sshd did not accept the new configuration: {result.detail()}",
                details={"domain": self.name, "artifact": str(self.artifact_path)},
            )
