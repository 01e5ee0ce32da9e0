"""
Per-wallet guard configuration.

``config.json`` is deep-merged over ``DEFAULT_CONFIG`` on every load, so a
partial document only overrides the keys it names.
"""

from __future__ import annotations

import copy
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .integrity import IntegrityGuard
from .money import limit_to_micros
from .state import Identity
from .storage import atomic_write_text, dump_document

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"

DEFAULT_CONFIG: dict[str, Any] = {
    "version": 1,
    "limits": {
        "perTransaction": 50,
        "dailyMax": 200,
        "highValueThreshold": 100,
    },
    "cooldown": {
        "betweenTransactions": 30,
        "afterRejection": 300,
    },
    "confirmation": {
        "codeExpiry": 300,
        "codeLength": 6,
        "maxAttempts": 3,
        "requiredForAllSends": True,
    },
    "freezeOnAnomalies": {
        "rapidRequests": 3,
        "windowSeconds": 60,
    },
    "authorizedSenders": [],
}


def merge_config(defaults: dict, overrides: dict) -> dict:
    """Return ``defaults`` with ``overrides`` applied, recursing into sections."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _number(doc: dict, section: str, key: str, *, integer: bool = False) -> float:
    value = doc.get(section, {}).get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{section}.{key} must be finite")
    if value < 0:
        raise ConfigError(f"{section}.{key} must not be negative")
    if integer and int(value) != value:
        raise ConfigError(f"{section}.{key} must be a whole number")
    return value


@dataclass(frozen=True)
class GuardConfig:
    """Limits, cooldowns and anomaly thresholds for one wallet."""

    per_transaction_micros: int
    daily_max_micros: int
    high_value_threshold_micros: int
    cooldown_seconds: float
    after_rejection_seconds: float
    code_expiry_seconds: float
    code_length: int
    max_attempts: int
    anomaly_trigger: int
    anomaly_window_seconds: float
    authorized_senders: tuple[Identity, ...] = ()

    @classmethod
    def from_dict(cls, doc: dict) -> "GuardConfig":
        code_length = int(_number(doc, "confirmation", "codeLength", integer=True))
        if code_length < 1:
            raise ConfigError("confirmation.codeLength must be at least 1")
        max_attempts = int(_number(doc, "confirmation", "maxAttempts", integer=True))
        if max_attempts < 1:
            raise ConfigError("confirmation.maxAttempts must be at least 1")
        anomaly_trigger = int(_number(doc, "freezeOnAnomalies", "rapidRequests", integer=True))
        if anomaly_trigger < 1:
            raise ConfigError("freezeOnAnomalies.rapidRequests must be at least 1")

        senders_raw = doc.get("authorizedSenders", [])
        if not isinstance(senders_raw, list):
            raise ConfigError("authorizedSenders must be a list")
        try:
            senders = tuple(Identity.from_dict(s) for s in senders_raw)
        except (TypeError, KeyError, AttributeError) as exc:
            raise ConfigError(f"Invalid authorizedSenders entry: {exc}") from exc

        return cls(
            per_transaction_micros=limit_to_micros(_number(doc, "limits", "perTransaction")),
            daily_max_micros=limit_to_micros(_number(doc, "limits", "dailyMax")),
            high_value_threshold_micros=limit_to_micros(
                _number(doc, "limits", "highValueThreshold")
            ),
            cooldown_seconds=_number(doc, "cooldown", "betweenTransactions"),
            after_rejection_seconds=_number(doc, "cooldown", "afterRejection"),
            code_expiry_seconds=_number(doc, "confirmation", "codeExpiry"),
            code_length=code_length,
            max_attempts=max_attempts,
            anomaly_trigger=anomaly_trigger,
            anomaly_window_seconds=_number(doc, "freezeOnAnomalies", "windowSeconds"),
            authorized_senders=senders,
        )

    @classmethod
    def default(cls) -> "GuardConfig":
        return cls.from_dict(DEFAULT_CONFIG)

    def is_authorized(self, identity: Identity) -> bool:
        return identity in self.authorized_senders


def _coerce_value(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


class ConfigStore:
    """Reads and writes ``config.json`` under integrity protection."""

    def __init__(self, wallet_dir: Path, integrity: IntegrityGuard):
        self.wallet_dir = Path(wallet_dir)
        self.integrity = integrity

    @property
    def path(self) -> Path:
        return self.wallet_dir / CONFIG_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def load_document(self) -> dict:
        """Merged config document (defaults when the file is absent)."""
        content = self.integrity.read_verified(CONFIG_FILE)
        if content is None:
            return copy.deepcopy(DEFAULT_CONFIG)
        try:
            raw = json.loads(content.decode("utf-8"))
        except ValueError as exc:
            raise ConfigError(f"{CONFIG_FILE} is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"{CONFIG_FILE} must contain an object")
        return merge_config(DEFAULT_CONFIG, raw)

    def load(self) -> GuardConfig:
        return GuardConfig.from_dict(self.load_document())

    def save(self, doc: dict) -> None:
        GuardConfig.from_dict(merge_config(DEFAULT_CONFIG, doc))
        content = dump_document(doc)
        atomic_write_text(self.path, content)
        self.integrity.sign_content(CONFIG_FILE, content.encode("utf-8"))

    def init(self) -> bool:
        """Write the defaults unless a config already exists."""
        if self.path.exists():
            return False
        self.save(copy.deepcopy(DEFAULT_CONFIG))
        logger.info("Created config at %s", self.path)
        return True

    def set_value(self, dotted_key: str, raw: str) -> Any:
        """Set ``limits.dailyMax``-style keys; returns the coerced value."""
        doc = self.load_document()
        keys = dotted_key.split(".")
        node: Any = doc
        for key in keys[:-1]:
            if not isinstance(node, dict) or not isinstance(node.get(key), dict):
                raise ConfigError(f"Unknown config section: {dotted_key}")
            node = node[key]
        leaf = keys[-1]
        if not isinstance(node, dict) or leaf not in node or isinstance(node[leaf], (dict, list)):
            raise ConfigError(f"Unknown config key: {dotted_key}")

        value = _coerce_value(raw)
        node[leaf] = value
        self.save(doc)
        logger.info("Config %s set to %r", dotted_key, value)
        return value

