"""
Audit log of every guard decision.

Entries are append-only JSON lines in ``transactions.log``. Confirmation
codes are never handed to this module, so they cannot end up on disk.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .storage import ensure_private_file

logger = logging.getLogger(__name__)

AUDIT_FILE = "transactions.log"


class Action(str, Enum):
    REJECTED = "rejected"
    AUTO_FREEZE = "auto_freeze"
    CONFIRMATION_REQUESTED = "confirmation_requested"
    CONFIRMATION_EXPIRED = "confirmation_expired"
    SENDER_MISMATCH = "sender_mismatch"
    WRONG_CODE = "wrong_code"
    BRUTE_FORCE_CANCEL = "brute_force_cancel"
    APPROVED = "approved"
    FREEZE = "freeze"
    UNFREEZE = "unfreeze"
    DAILY_RESET = "daily_reset"


@dataclass(frozen=True)
class AuditEntry:
    """A single audit log line."""

    action: str
    timestamp: str
    reason: Optional[str] = None
    to: Optional[str] = None
    amount: Optional[float] = None
    token: Optional[str] = None
    details: Optional[dict[str, Any]] = None

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))

    @classmethod
    def from_dict(cls, raw: dict) -> "AuditEntry":
        known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
        extra = {k: v for k, v in raw.items() if k not in cls.__dataclass_fields__}
        if extra:
            known["details"] = {**(known.get("details") or {}), **extra}
        return cls(**known)


class AuditLog:
    """Append-only decision log for one wallet directory."""

    def __init__(self, wallet_dir: Path):
        self.path = Path(wallet_dir) / AUDIT_FILE

    def append(self, entry: AuditEntry) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(entry.to_json() + "\n")
            f.flush()
            os.fsync(f.fileno())
        ensure_private_file(self.path)

    def read(self, limit: int = 100, action: Optional[Action] = None) -> list[AuditEntry]:
        if not self.path.exists():
            return []
        entries: list[AuditEntry] = []
        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    raw = json.loads(line)
                    if not isinstance(raw, dict):
                        raise TypeError("not an object")
                    if action and raw.get("action") != action.value:
                        continue
                    entries.append(AuditEntry.from_dict(raw))
                except (ValueError, TypeError) as exc:
                    logger.warning("Skipping malformed line %d in %s: %s", lineno, self.path, exc)
        return entries[-limit:] if limit > 0 else entries
