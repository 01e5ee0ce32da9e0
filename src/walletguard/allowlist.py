"""Registry of destination addresses approved for transfers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import AllowlistError
from .integrity import IntegrityGuard
from .state import to_iso, utc_now
from .storage import atomic_write_text, dump_document

logger = logging.getLogger(__name__)

ALLOWLIST_FILE = "allowlist.json"


def canonical_address(address: str) -> str:
    return address.strip().lower()


@dataclass(frozen=True)
class AllowlistEntry:
    address: str
    label: str = ""
    added_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {"address": self.address, "label": self.label, "addedAt": self.added_at}

    @classmethod
    def from_dict(cls, raw: dict) -> "AllowlistEntry":
        return cls(
            address=canonical_address(str(raw["address"])),
            label=str(raw.get("label") or ""),
            added_at=raw.get("addedAt"),
        )


@dataclass(frozen=True)
class Allowlist:
    """Immutable snapshot of the allowlist, unique by canonical address."""

    entries: tuple[AllowlistEntry, ...] = ()

    def find(self, address: str) -> Optional[AllowlistEntry]:
        wanted = canonical_address(address)
        for entry in self.entries:
            if entry.address == wanted:
                return entry
        return None

    def contains(self, address: str) -> bool:
        return self.find(address) is not None

    def with_entry(self, address: str, label: str, added_at: datetime) -> "Allowlist":
        entry = AllowlistEntry(canonical_address(address), label, to_iso(added_at))
        return Allowlist(self.entries + (entry,))

    def without(self, address: str) -> "Allowlist":
        wanted = canonical_address(address)
        return Allowlist(tuple(e for e in self.entries if e.address != wanted))

    def to_dict(self) -> dict:
        return {"addresses": [e.to_dict() for e in self.entries]}

    @classmethod
    def from_dict(cls, raw: dict) -> "Allowlist":
        addresses = raw.get("addresses")
        if not isinstance(addresses, list):
            raise AllowlistError(f"{ALLOWLIST_FILE} must contain an 'addresses' list")
        entries: list[AllowlistEntry] = []
        seen: set[str] = set()
        for item in addresses:
            try:
                entry = AllowlistEntry.from_dict(item)
            except (KeyError, TypeError, AttributeError) as exc:
                raise AllowlistError(f"Invalid allowlist entry {item!r}") from exc
            if entry.address in seen:
                continue
            seen.add(entry.address)
            entries.append(entry)
        return cls(tuple(entries))


class AllowlistStore:
    """Reads and writes ``allowlist.json`` under integrity protection."""

    def __init__(self, wallet_dir: Path, integrity: IntegrityGuard):
        self.wallet_dir = Path(wallet_dir)
        self.integrity = integrity

    @property
    def path(self) -> Path:
        return self.wallet_dir / ALLOWLIST_FILE

    def load(self) -> Allowlist:
        content = self.integrity.read_verified(ALLOWLIST_FILE)
        if content is None:
            return Allowlist()
        try:
            raw = json.loads(content.decode("utf-8"))
        except ValueError as exc:
            raise AllowlistError(f"{ALLOWLIST_FILE} is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise AllowlistError(f"{ALLOWLIST_FILE} must contain an object")
        return Allowlist.from_dict(raw)

    def save(self, allowlist: Allowlist) -> None:
        content = dump_document(allowlist.to_dict())
        atomic_write_text(self.path, content)
        self.integrity.sign_content(ALLOWLIST_FILE, content.encode("utf-8"))

    def add(self, address: str, label: str = "") -> bool:
        """Add ``address``; False when it is already listed."""
        allowlist = self.load()
        existing = allowlist.find(address)
        if existing is not None:
            logger.info("Address %s already allowlisted as %r", existing.address, existing.label)
            return False
        self.save(allowlist.with_entry(address, label, utc_now()))
        logger.info("Allowlisted %s as %r", canonical_address(address), label)
        return True

    def remove(self, address: str) -> bool:
        """Remove ``address``; False when it was not listed."""
        allowlist = self.load()
        if not allowlist.contains(address):
            return False
        self.save(allowlist.without(address))
        logger.info("Removed %s from allowlist", canonical_address(address))
        return True
