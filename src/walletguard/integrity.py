"""
Integrity tags for wallet files.

Each tracked file gets an HMAC-SHA256 tag over its raw bytes, keyed by
the operator secret in ``AWG_INTEGRITY_SECRET``. Tags live in a separate
``.signatures`` file so a forged read needs both files altered. Without
a secret, signing is a no-op and verification always passes.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Optional

from .errors import IntegrityError
from .storage import atomic_write_text, dump_document

logger = logging.getLogger(__name__)

SECRET_ENV_VAR = "AWG_INTEGRITY_SECRET"
SIGNATURES_FILE = ".signatures"
TRACKED_FILES = ("config.json", "allowlist.json", "state.json")


def secret_from_env() -> Optional[str]:
    return os.getenv(SECRET_ENV_VAR) or None


def compute_tag(content: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``content`` under ``secret``."""
    return hmac.new(secret.encode(), content, hashlib.sha256).hexdigest()


def tags_match(expected: str, stored: str) -> bool:
    """Constant-time comparison of two hex tags."""
    try:
        expected_bytes = bytes.fromhex(expected)
        stored_bytes = bytes.fromhex(stored)
    except ValueError:
        return False
    return hmac.compare_digest(expected_bytes, stored_bytes)


class IntegrityGuard:
    """Signs and verifies tracked files in one wallet directory."""

    def __init__(self, wallet_dir: Path, secret: Optional[str] = None):
        self.wallet_dir = Path(wallet_dir)
        self._secret = secret if secret is not None else secret_from_env()

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    @property
    def signatures_path(self) -> Path:
        return self.wallet_dir / SIGNATURES_FILE

    def _load_signatures(self) -> dict[str, str]:
        if not self.signatures_path.exists():
            return {}
        try:
            raw = json.loads(self.signatures_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error("Signature store %s is not valid JSON", self.signatures_path)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _save_signatures(self, signatures: dict[str, str]) -> None:
        atomic_write_text(self.signatures_path, dump_document(signatures))

    def _read(self, filename: str) -> Optional[bytes]:
        try:
            return (self.wallet_dir / filename).read_bytes()
        except FileNotFoundError:
            return None

    def sign_content(self, filename: str, content: bytes) -> Optional[str]:
        """Record the tag for ``content`` as written to ``filename``."""
        if not self._secret:
            return None
        tag = compute_tag(content, self._secret)
        signatures = self._load_signatures()
        signatures[filename] = tag
        self._save_signatures(signatures)
        logger.debug("Signed %s", filename)
        return tag

    def sign(self, filename: str) -> Optional[str]:
        """Re-sign ``filename`` from its current bytes on disk."""
        if not self._secret:
            return None
        content = self._read(filename)
        if content is None:
            return None
        return self.sign_content(filename, content)

    def content_matches(self, filename: str, content: bytes) -> bool:
        """Check ``content`` against the tag stored for ``filename``."""
        if not self._secret:
            return True
        stored = self._load_signatures().get(filename)
        if not stored:
            return False
        return tags_match(compute_tag(content, self._secret), stored)

    def verify(self, filename: str) -> bool:
        """Check ``filename`` against its stored tag. Absent files pass."""
        content = self._read(filename)
        if content is None:
            return True
        return self.content_matches(filename, content)

    def read_verified(self, filename: str) -> Optional[bytes]:
        """Read ``filename`` once and return those bytes only if they verify.

        Returns None when the file does not exist. Callers must parse the
        returned bytes, never a second read of the file.
        """
        content = self._read(filename)
        if content is None:
            return None
        if not self.content_matches(filename, content):
            logger.error("Integrity check failed for %s in %s", filename, self.wallet_dir)
            raise IntegrityError(filename)
        return content

    def sign_all(self) -> dict[str, Optional[str]]:
        return {name: self.sign(name) for name in TRACKED_FILES}

    def verify_all(self) -> dict[str, bool]:
        return {name: self.verify(name) for name in TRACKED_FILES}
