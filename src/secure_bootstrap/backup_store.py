"""
Backup Store module for first-seen artifact snapshots.

Before a reconciler mutates an artifact for the first time, the original
content is copied here exactly once. Later runs find the manifest entry and
leave the snapshot alone, so the pre-hardening state survives any number of
pipeline runs. The manifest is HMAC-protected to detect tampering.
"""

import hashlib
import hmac
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from secure_bootstrap.enums import ConfigurationDomain
from secure_bootstrap.exceptions import PersistenceError, TamperingError
from secure_bootstrap.models import BackupEntry, BackupManifest


class BackupStore:
    """
    Write-once snapshot storage with an HMAC-protected manifest.

    The existence check and the snapshot creation happen under the pipeline
    run lock; the snapshot file itself is created with O_EXCL, so a snapshot
    on disk is never overwritten even if the manifest write was lost.
    """

    VERSION = 1
    MANIFEST_NAME = "manifest.json"

    def __init__(self, backup_dir: Path, hmac_secret: str) -> None:
        """
        Initialize the backup store.

        Args:
            backup_dir: Directory holding snapshots and the manifest
            hmac_secret: Secret key for HMAC computation
        """
        self._backup_dir = backup_dir
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._manifest: Optional[BackupManifest] = None

    @property
    def manifest_path(self) -> Path:
        return self._backup_dir / self.MANIFEST_NAME

    def load(self) -> BackupManifest:
        """
        Load the manifest from disk and validate its HMAC.

        Returns:
            The manifest (empty if none has been written yet)

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if self._manifest is not None:
            return self._manifest

        if not self.manifest_path.exists():
            self._manifest = BackupManifest(
                version=self.VERSION, entries={}, last_updated="", hmac=""
            )
            return self._manifest

        try:
            with open(self.manifest_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse backup manifest: {e}",
                details={"file_path": str(self.manifest_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read backup manifest: {e}",
                details={"file_path": str(self.manifest_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw_data.get("version"),
            "entries": raw_data.get("entries", {}),
            "last_updated": raw_data.get("last_updated"),
        })
        if not hmac.compare_digest(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="Backup manifest HMAC validation failed - it may have been tampered with",
                details={"file_path": str(self.manifest_path)},
            )

        entries = {
            artifact: BackupEntry(
                artifact=artifact,
                domain=data["domain"],
                existed=data["existed"],
                backup_path=data.get("backup_path"),
                sha256=data.get("sha256"),
                created_at=data["created_at"],
            )
            for artifact, data in raw_data.get("entries", {}).items()
        }
        self._manifest = BackupManifest(
            version=raw_data.get("version", self.VERSION),
            entries=entries,
            last_updated=raw_data.get("last_updated", ""),
            hmac=stored_hmac,
        )
        return self._manifest

    def get(self, artifact: Path) -> Optional[BackupEntry]:
        return self.load().entries.get(str(artifact))

    def entries(self) -> list[BackupEntry]:
        return sorted(self.load().entries.values(), key=lambda e: e.artifact)

    def backup_once(self, artifact: Path, domain: ConfigurationDomain) -> tuple[BackupEntry, bool]:
        """
        Snapshot an artifact unless a snapshot was already recorded.

        Args:
            artifact: Live path of the artifact about to be mutated
            domain: Owning configuration domain

        Returns:
            Tuple of (entry, created) where created is False for an existing backup

        Raises:
            PersistenceError: If the snapshot or manifest cannot be written
        """
        existing = self.get(artifact)
        if existing is not None:
            return existing, False

        now = datetime.now(timezone.utc).isoformat()
        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Cannot create backup directory {self._backup_dir}: {e}",
                details={"backup_dir": str(self._backup_dir)},
            )

        if not artifact.exists():
            entry = BackupEntry(
                artifact=str(artifact),
                domain=domain.value,
                existed=False,
                backup_path=None,
                sha256=None,
                created_at=now,
            )
        else:
            target = self._backup_dir / (self.snapshot_name(artifact))
            try:
                content = artifact.read_bytes()
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
            except FileExistsError:
                # Snapshot survived an interrupted run; keep it as the original.
                content = target.read_bytes()
            except OSError as e:
                raise PersistenceError(
                    code="io_error",
                    message=f"Failed to back up {artifact}: {e}",
                    details={"artifact": str(artifact), "backup_path": str(target)},
                )
            entry = BackupEntry(
                artifact=str(artifact),
                domain=domain.value,
                existed=True,
                backup_path=str(target),
                sha256=hashlib.sha256(content).hexdigest(),
                created_at=now,
            )

        manifest = self.load()
        entries = dict(manifest.entries)
        entries[entry.artifact] = entry
        self._save(entries)
        return entry, True

    def verify(self, entry: BackupEntry) -> bool:
        """Check that a recorded snapshot is still present and unmodified."""
        if not entry.existed:
            return True
        if entry.backup_path is None or not Path(entry.backup_path).exists():
            return False
        digest = hashlib.sha256(Path(entry.backup_path).read_bytes()).hexdigest()
        return hmac.compare_digest(digest, entry.sha256 or "")

    @staticmethod
    def snapshot_name(artifact: Path) -> str:
        return str(artifact).strip("/").replace("/", "__") + ".orig"

    def compute_hmac(self, data: dict) -> str:
        """
        Compute HMAC-SHA256 over serialized data.

        Args:
            data: Dictionary to compute HMAC over

        Returns:
            Hexadecimal HMAC string
        """
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _save(self, entries: dict[str, BackupEntry]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        entries_dict = {name: entry.to_dict() for name, entry in entries.items()}
        computed_hmac = self.compute_hmac({
            "version": self.VERSION,
            "entries": entries_dict,
            "last_updated": now,
        })
        output_data = {
            "version": self.VERSION,
            "entries": entries_dict,
            "last_updated": now,
            "hmac": computed_hmac,
        }

        tmp_path = self.manifest_path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.manifest_path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write backup manifest: {e}",
                details={"file_path": str(self.manifest_path)},
            )

        self._manifest = BackupManifest(
            version=self.VERSION,
            entries=entries,
            last_updated=now,
            hmac=computed_hmac,
        )
