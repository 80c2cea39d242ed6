"""
Internationalization (i18n) module for the secure bootstrap system.

Provides translations for all operator-facing messages in English (en) and
German (de): checkpoint prompts, reachability test instructions, run
summaries, and CLI output.
"""

from typing import Optional


# Supported languages
SUPPORTED_LANGUAGES = frozenset({"de", "en"})
DEFAULT_LANGUAGE = "en"


# Translation dictionary with all messages
# Structure: {message_key: {language_code: translated_message}}
TRANSLATIONS: dict[str, dict[str, str]] = {
    # Checkpoint gates
    "gate.prompt": {
        "en": "Type 'yes' to continue, anything else to abort: ",
        "de": "Tippe 'yes' zum Fortfahren, alles andere bricht ab: ",
    },
    "gate.aborted": {
        "en": "Aborted by operator.",
        "de": "Vom Operator abgebrochen.",
    },
    "gate.non_interactive": {
        "en": "No interactive terminal and no ASSUME_YES override: refusing to continue.",
        "de": "Kein interaktives Terminal und kein ASSUME_YES gesetzt: Abbruch.",
    },
    "gate.assumed": {
        "en": "ASSUME_YES is set: continuing without operator confirmation.",
        "de": "ASSUME_YES ist gesetzt: Fortfahren ohne Bestätigung.",
    },
    "gate.ready": {
        "en": "Ready to start bootstrap? Keep your current SSH session open at all times.",
        "de": "Bereit für den Bootstrap? Halte die aktuelle SSH-Sitzung die ganze Zeit offen.",
    },
    "gate.credential_stored": {
        "en": "Root password rotated. Have you stored the new emergency password from {path} safely?",
        "de": "Root-Passwort rotiert. Hast du das neue Notfall-Passwort aus {path} sicher verwahrt?",
    },
    "gate.admin_login_tested": {
        "en": "Account '{user}' configured. Have you tested 'ssh {user}@server' with your key in a NEW terminal?",
        "de": "Konto '{user}' eingerichtet. Hast du 'ssh {user}@server' mit deinem Schlüssel in einem NEUEN Terminal getestet?",
    },
    "gate.ssh_confirmed": {
        "en": "Have you confirmed SSH hardening works and you can still log in as '{user}' on port {port}?",
        "de": "Hast du bestätigt, dass die SSH-Härtung funktioniert und du dich als '{user}' auf Port {port} anmelden kannst?",
    },
    "gate.firewall_confirmed": {
        "en": "Have you confirmed the firewall exposes only SSH (port {port}) and SSH access still works?",
        "de": "Hast du bestätigt, dass die Firewall nur SSH (Port {port}) freigibt und der SSH-Zugang noch funktioniert?",
    },

    # Step names
    "step.gate": {
        "en": "checkpoint",
        "de": "Checkpoint",
    },
    "step.ssh_policy": {
        "en": "SSH policy",
        "de": "SSH-Richtlinie",
    },
    "step.firewall_exposure": {
        "en": "firewall exposure",
        "de": "Firewall-Freigaben",
    },
    "step.intrusion_jail": {
        "en": "intrusion jail",
        "de": "Intrusion-Jail",
    },
    "step.privileged_group": {
        "en": "privileged group",
        "de": "Privilegierte Gruppe",
    },
    "step.emergency_credential": {
        "en": "emergency credential",
        "de": "Notfall-Zugangsdaten",
    },

    # Run summary
    "summary.completed": {
        "en": "Completed with {changes} change(s).",
        "de": "Abgeschlossen mit {changes} Änderung(en).",
    },
    "summary.aborted": {
        "en": "Aborted at step {step}.",
        "de": "Abgebrochen bei Schritt {step}.",
    },
    "summary.failed": {
        "en": "Failed at step {step} with {kind}: {reason}",
        "de": "Fehlgeschlagen bei Schritt {step} mit {kind}: {reason}",
    },
    "summary.reminder_untouched": {
        "en": "The previous, backed-up configuration is still the one in effect.",
        "de": "Die vorherige, gesicherte Konfiguration ist weiterhin aktiv.",
    },
    "summary.reminder_manual": {
        "en": "The new configuration may not be live. Inspect the service manually; the original is kept at {backup}.",
        "de": "Die neue Konfiguration ist eventuell nicht aktiv. Prüfe den Dienst manuell; das Original liegt unter {backup}.",
    },
    "summary.no_backup": {
        "en": "(no backup recorded)",
        "de": "(keine Sicherung vorhanden)",
    },
    "summary.not_finished": {
        "en": "Run did not finish (status: {status}).",
        "de": "Lauf nicht beendet (Status: {status}).",
    },

    # Reachability test instructions
    "info.ssh_test": {
        "en": (
            "ACTION REQUIRED: open a NEW terminal and test:\n"
            "  ssh -p {port} {user}@YOUR_SERVER_IP\n"
            "Root login and password login should fail:\n"
            "  ssh -p {port} root@YOUR_SERVER_IP\n"
            "  ssh -p {port} -o PreferredAuthentications=password -o PubkeyAuthentication=no {user}@YOUR_SERVER_IP"
        ),
        "de": (
            "AKTION ERFORDERLICH: öffne ein NEUES Terminal und teste:\n"
            "  ssh -p {port} {user}@DEINE_SERVER_IP\n"
            "Root-Login und Passwort-Login müssen fehlschlagen:\n"
            "  ssh -p {port} root@DEINE_SERVER_IP\n"
            "  ssh -p {port} -o PreferredAuthentications=password -o PubkeyAuthentication=no {user}@DEINE_SERVER_IP"
        ),
    },
    "info.firewall_test": {
        "en": (
            "ACTION REQUIRED: from a NEW terminal test SSH again:\n"
            "  ssh -p {port} {user}@YOUR_SERVER_IP\n"
            "Optionally scan from another host: nmap -p 1-1024 YOUR_SERVER_IP"
        ),
        "de": (
            "AKTION ERFORDERLICH: teste SSH erneut aus einem NEUEN Terminal:\n"
            "  ssh -p {port} {user}@DEINE_SERVER_IP\n"
            "Optional von einem anderen Host scannen: nmap -p 1-1024 DEINE_SERVER_IP"
        ),
    },

    # Preflight
    "preflight.not_root": {
        "en": "This tool must be run as root (use sudo).",
        "de": "Dieses Werkzeug muss als root laufen (sudo verwenden).",
    },
    "preflight.unsupported_os": {
        "en": "Unsupported host: a RHEL-like distribution is required (found '{os_id}').",
        "de": "Nicht unterstützter Host: eine RHEL-ähnliche Distribution ist erforderlich (gefunden: '{os_id}').",
    },
    "preflight.missing_command": {
        "en": "Command '{command}' not found. Please install it or add it to PATH.",
        "de": "Befehl '{command}' nicht gefunden. Bitte installieren oder zum PATH hinzufügen.",
    },
    "preflight.ok": {
        "en": "Preflight checks passed.",
        "de": "Vorabprüfungen bestanden.",
    },
    "preflight.failed": {
        "en": "Preflight checks failed.",
        "de": "Vorabprüfungen fehlgeschlagen.",
    },

    # CLI output
    "cli.step_start": {
        "en": "Step {number}/{total}: {name}",
        "de": "Schritt {number}/{total}: {name}",
    },
    "cli.step_unchanged": {
        "en": "  already converged, no changes",
        "de": "  bereits im Sollzustand, keine Änderungen",
    },
    "cli.step_changed": {
        "en": "  converged ({count} field(s) changed)",
        "de": "  angeglichen ({count} Feld(er) geändert)",
    },
    "cli.plan_header": {
        "en": "Planned changes (nothing is written):",
        "de": "Geplante Änderungen (es wird nichts geschrieben):",
    },
    "cli.plan_none": {
        "en": "  {name}: no changes",
        "de": "  {name}: keine Änderungen",
    },
    "cli.plan_change": {
        "en": "  {name}: {field}: {actual} -> {desired}",
        "de": "  {name}: {field}: {actual} -> {desired}",
    },
    "cli.lock_busy": {
        "en": "Another bootstrap run holds the lock at {path}.",
        "de": "Ein anderer Bootstrap-Lauf hält die Sperre unter {path}.",
    },
    "cli.config_invalid": {
        "en": "Configuration is invalid:",
        "de": "Konfiguration ist ungültig:",
    },
    "cli.config_valid": {
        "en": "Configuration is valid.",
        "de": "Konfiguration ist gültig.",
    },
    "cli.version": {
        "en": "Version: {version}",
        "de": "Version: {version}",
    },

    # Notifications
    "notification.title_completed": {
        "en": "Bootstrap completed",
        "de": "Bootstrap abgeschlossen",
    },
    "notification.title_attention": {
        "en": "Bootstrap needs attention",
        "de": "Bootstrap benötigt Aufmerksamkeit",
    },
    "notification.host_label": {
        "en": "Host",
        "de": "Host",
    },
    "notification.time_label": {
        "en": "Time",
        "de": "Zeit",
    },
}


def get_message(
    key: str,
    language: Optional[str] = None,
    **kwargs,
) -> str:
    """
    Get a translated message by key.

    Args:
        key: The message key (e.g., 'gate.prompt')
        language: Language code ('de' or 'en'). Defaults to DEFAULT_LANGUAGE.
        **kwargs: Format arguments for the message template

    Returns:
        The translated and formatted message string.
        If the key is not found, returns the key itself.
        If the language is not found, falls back to DEFAULT_LANGUAGE.

    Examples:
        >>> get_message('summary.completed', 'en', changes=2)
        'Completed with 2 change(s).'
        >>> get_message('summary.aborted', 'de', step='3 (checkpoint)')
        'Abgebrochen bei Schritt 3 (checkpoint).'
    """
    # Use default language if not specified or invalid
    if language is None or language not in SUPPORTED_LANGUAGES:
        language = DEFAULT_LANGUAGE

    # Get translations for the key
    translations = TRANSLATIONS.get(key)

    if translations is None:
        # Key not found, return the key itself
        return key

    # Get message for the requested language
    message = translations.get(language)

    if message is None:
        # Language not found, try default language
        message = translations.get(DEFAULT_LANGUAGE)

    if message is None:
        # No translation available, return the key
        return key

    # Format the message with provided arguments
    if kwargs:
        try:
            message = message.format(**kwargs)
        except KeyError:
            # If formatting fails, return the unformatted message
            pass

    return message


def get_all_message_keys() -> set[str]:
    """
    Get all available message keys.

    Returns:
        Set of all message keys in the translation dictionary.
    """
    return set(TRANSLATIONS.keys())


def has_translation(key: str, language: str) -> bool:
    """
    Check if a translation exists for a key and language.

    Args:
        key: The message key
        language: The language code

    Returns:
        True if translation exists, False otherwise.
    """
    translations = TRANSLATIONS.get(key)
    if translations is None:
        return False
    return language in translations


def get_missing_translations(language: str) -> set[str]:
    """
    Get all message keys that are missing translations for a language.

    Args:
        language: The language code to check

    Returns:
        Set of message keys missing translations for the specified language.
    """
    missing = set()
    for key, translations in TRANSLATIONS.items():
        if language not in translations:
            missing.add(key)
    return missing


def validate_translations() -> dict[str, set[str]]:
    """
    Validate that all languages have all translations.

    Returns:
        Dictionary mapping language codes to sets of missing message keys.
        Empty sets indicate complete translations.
    """
    result = {}
    for language in SUPPORTED_LANGUAGES:
        result[language] = get_missing_translations(language)
    return result
