"""
Persisted guard state for one wallet directory.

Snapshots are immutable; the engine returns a new ``GuardState`` for every
change and ``StateStore`` writes it back. On-disk keys keep the camelCase
layout of ``state.json`` that existing wallet directories already use.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .errors import StateError
from .integrity import IntegrityGuard
from .money import amount_to_micros, micros_to_number
from .storage import atomic_write_text, dump_document

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today_of(moment: datetime) -> str:
    """Calendar date (UTC) used for the daily spend window."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def from_iso(value: str) -> datetime:
    raw = value[:-1] + "+00:00" if value.endswith("Z") else value
    moment = datetime.fromisoformat(raw)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _optional_iso(value: Optional[str]) -> Optional[datetime]:
    return from_iso(value) if value else None


@dataclass(frozen=True)
class Identity:
    """Who asked for (or confirmed) a transfer, e.g. ``imessage:+1555...``."""

    platform: str
    id: str

    @classmethod
    def from_dict(cls, raw: dict) -> "Identity":
        return cls(platform=str(raw["platform"]), id=str(raw["id"]))

    @classmethod
    def parse(cls, value: str) -> "Identity":
        platform, sep, ident = value.partition(":")
        if not sep or not platform or not ident:
            raise ValueError(f"Identity must look like platform:id, got {value!r}")
        return cls(platform=platform, id=ident)

    def to_dict(self) -> dict:
        return {"platform": self.platform, "id": self.id}

    def __str__(self) -> str:
        return f"{self.platform}:{self.id}"


@dataclass(frozen=True)
class PendingTx:
    """The single transfer awaiting a confirmation code."""

    code: str
    to: str
    amount_micros: int
    token: str
    created_at: datetime
    expires_at: datetime
    sender: Optional[Identity] = None
    attempts: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "to": self.to,
            "amount": micros_to_number(self.amount_micros),
            "token": self.token,
            "sender": self.sender.to_dict() if self.sender else None,
            "attempts": self.attempts,
            "createdAt": to_iso(self.created_at),
            "expiresAt": to_iso(self.expires_at),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "PendingTx":
        sender = raw.get("sender")
        return cls(
            code=str(raw["code"]),
            to=str(raw["to"]),
            amount_micros=amount_to_micros(raw["amount"]),
            token=str(raw.get("token") or "USDC"),
            created_at=from_iso(raw["createdAt"]),
            expires_at=from_iso(raw["expiresAt"]),
            sender=Identity.from_dict(sender) if sender else None,
            attempts=int(raw.get("attempts") or 0),
        )


@dataclass(frozen=True)
class GuardState:
    """Kill switch, spend accumulator, cooldown and pending confirmation."""

    daily_date: str
    frozen: bool = False
    frozen_at: Optional[datetime] = None
    frozen_reason: Optional[str] = None
    daily_total_micros: int = 0
    last_transaction_at: Optional[datetime] = None
    recent_requests: tuple[datetime, ...] = field(default_factory=tuple)
    pending: Optional[PendingTx] = None

    @classmethod
    def initial(cls, today: str) -> "GuardState":
        return cls(daily_date=today)

    def to_dict(self) -> dict:
        return {
            "frozen": self.frozen,
            "frozenAt": to_iso(self.frozen_at) if self.frozen_at else None,
            "frozenReason": self.frozen_reason,
            "dailyTotal": micros_to_number(self.daily_total_micros),
            "dailyDate": self.daily_date,
            "lastTransaction": (
                to_iso(self.last_transaction_at) if self.last_transaction_at else None
            ),
            "pendingConfirmation": self.pending.to_dict() if self.pending else None,
            "recentRequests": [to_epoch_ms(ts) for ts in self.recent_requests],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "GuardState":
        pending = raw.get("pendingConfirmation")
        return cls(
            frozen=bool(raw.get("frozen", False)),
            frozen_at=_optional_iso(raw.get("frozenAt")),
            frozen_reason=raw.get("frozenReason"),
            daily_total_micros=amount_to_micros(raw.get("dailyTotal") or 0),
            daily_date=str(raw.get("dailyDate") or ""),
            last_transaction_at=_optional_iso(raw.get("lastTransaction")),
            recent_requests=tuple(from_epoch_ms(ts) for ts in raw.get("recentRequests") or []),
            pending=PendingTx.from_dict(pending) if pending else None,
        )


class StateStore:
    """Reads and writes ``state.json`` under integrity protection."""

    def __init__(self, wallet_dir: Path, integrity: IntegrityGuard):
        self.wallet_dir = Path(wallet_dir)
        self.integrity = integrity

    @property
    def path(self) -> Path:
        return self.wallet_dir / STATE_FILE

    def load(self, today: str) -> GuardState:
        """Current state, or a fresh default when none has been saved yet."""
        content = self.integrity.read_verified(STATE_FILE)
        if content is None:
            return GuardState.initial(today)
        try:
            raw: Any = json.loads(content.decode("utf-8"))
            if not isinstance(raw, dict):
                raise StateError(f"{STATE_FILE} must contain an object")
            return GuardState.from_dict(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise StateError(f"{STATE_FILE} is malformed: {exc}") from exc

    def save(self, state: GuardState) -> None:
        content = dump_document(state.to_dict())
        atomic_write_text(self.path, content)
        self.integrity.sign_content(STATE_FILE, content.encode("utf-8"))
        logger.debug("Saved state to %s", self.path)
