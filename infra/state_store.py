"""
Infrastructure: Ledger State Store

Persistent ledger storage with atomic writes.
"""

import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pathlib import Path
import logging

from core.exceptions import CollaboratorUnavailable
from core.interfaces import LedgerStore

logger = logging.getLogger(__name__)


class JsonLedgerStore(LedgerStore):
    """
    Ledger storage using a single JSON file.

    Features:
    - Atomic writes (temp file + rename)
    - Corrupt files are quarantined, not overwritten
    - Timestamped backups for operator tooling
    """

    def __init__(self, state_file: Optional[str] = None):
        """
        Initialize state store.

        Args:
            state_file: Path to ledger JSON file (default: $LEDGER_FILE or data/ledger.json)
        """
        if state_file:
            self.state_file = Path(state_file)
        else:
            self.state_file = Path(os.getenv("LEDGER_FILE", "data/ledger.json"))

        # Ensure directory exists
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized JsonLedgerStore at {self.state_file}")

    def describe(self) -> str:
        return str(self.state_file)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load ledger state from file.

        Returns:
            State dict, or None if there is no usable state on disk
        """
        if not self.state_file.exists():
            logger.debug("No ledger file found")
            return None

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self._quarantine(f"unreadable ledger file: {e}")
            return None

        if not isinstance(data, dict) or "capital" not in data:
            self._quarantine("invalid ledger file format")
            return None

        logger.debug("Loaded ledger from file")
        return data

    def save(self, state: Dict[str, Any]) -> None:
        """
        Save ledger state to file atomically.

        Args:
            state: State dict to save
        """
        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.state_file.parent,
            prefix=".ledger_",
            suffix=".json.tmp",
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            os.replace(temp_path, self.state_file)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise CollaboratorUnavailable("ledger store", e) from e
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
        logger.debug("Saved ledger to file")

    def backup(self, backup_dir: Optional[Path] = None, label: str = "backup") -> Optional[Path]:
        """Copy the current ledger file aside with a timestamped name."""
        if not self.state_file.exists():
            return None
        target_dir = Path(backup_dir) if backup_dir else self.state_file.parent / "ledger_backups"
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        target = target_dir / f"{self.state_file.stem}-{label}-{timestamp}.json"
        shutil.copy2(self.state_file, target)
        logger.info(f"Ledger backup written to {target}")
        return target

    def _quarantine(self, reason: str) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        quarantined = self.state_file.with_name(f"{self.state_file.name}.corrupt-{timestamp}")
        try:
            os.replace(self.state_file, quarantined)
            logger.error(f"Failed to load ledger ({reason}); moved to {quarantined}")
        except OSError as e:
            logger.error(f"Failed to load ledger ({reason}); could not quarantine: {e}")


def create_ledger_store_from_config(cfg: Optional[Dict[str, Any]]) -> JsonLedgerStore:
    """Build the ledger store from the app.yaml `state:` block."""
    cfg = cfg or {}
    return JsonLedgerStore(cfg.get("path"))
