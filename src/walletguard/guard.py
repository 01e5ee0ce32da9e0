"""
WalletGuard: the file-backed front door to the authorization engine.

Each public call takes the wallet lock, loads config, allowlist and state
(every read integrity-checked), runs the engine, saves the new state and
appends its audit entries before returning. An ``IntegrityError`` aborts
the call before any decision is made.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Union

from . import engine
from .allowlist import AllowlistStore
from .audit import AuditLog
from .config import ConfigStore
from .engine import ConfirmOutcome, Decision, FreezeOutcome, RequestOutcome, SendRequest, StatusReport
from .integrity import IntegrityGuard
from .money import amount_to_micros
from .state import GuardState, Identity, StateStore, today_of, utc_now
from .storage import ensure_private_dir, exclusive_lock

logger = logging.getLogger(__name__)

DIR_ENV_VAR = "AWG_DIR"
LOCK_FILE = ".lock"


def default_wallet_dir() -> Path:
    override = os.getenv(DIR_ENV_VAR)
    return Path(override) if override else Path.cwd() / ".awg"


class WalletGuard:
    """Guarded transfer requests for one wallet directory."""

    def __init__(
        self,
        wallet_dir: Optional[Path] = None,
        secret: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        code_generator: Callable[[int], str] = engine.generate_code,
    ):
        self.wallet_dir = Path(wallet_dir) if wallet_dir else default_wallet_dir()
        ensure_private_dir(self.wallet_dir)
        self.integrity = IntegrityGuard(self.wallet_dir, secret=secret)
        self.config_store = ConfigStore(self.wallet_dir, self.integrity)
        self.allowlist_store = AllowlistStore(self.wallet_dir, self.integrity)
        self.state_store = StateStore(self.wallet_dir, self.integrity)
        self.audit = AuditLog(self.wallet_dir)
        self._clock = clock
        self._code_generator = code_generator
        self._lock_path = self.wallet_dir / LOCK_FILE

    def _load_state(self, now: datetime) -> GuardState:
        return self.state_store.load(today_of(now))

    def _commit(self, decision: Decision) -> None:
        if decision.state is not None:
            self.state_store.save(decision.state)
        for entry in decision.audit:
            self.audit.append(entry)

    def request_send(
        self,
        to: str,
        amount: Union[Decimal, float, int, str],
        token: str = "USDC",
        sender: Optional[Identity] = None,
    ) -> RequestOutcome:
        """Ask to send ``amount`` of ``token`` to ``to``.

        On success the outcome carries a one-time code that a human must
        relay back through ``confirm_send``.
        """
        request = SendRequest(to=to, amount_micros=amount_to_micros(amount), token=token, sender=sender)
        with exclusive_lock(self._lock_path):
            now = self._clock()
            config = self.config_store.load()
            allowlist = self.allowlist_store.load()
            state = self._load_state(now)
            decision = engine.request_send(
                config, allowlist, state, request, now, code_generator=self._code_generator
            )
            self._commit(decision)

        outcome = decision.outcome
        if outcome.needs_confirmation:
            logger.info("Confirmation requested: %s %s to %s", amount, token, to)
        elif outcome.frozen:
            logger.warning("Wallet auto-frozen after rapid requests (%s)", self.wallet_dir)
        else:
            logger.info("Send request rejected: %s", outcome.reason.value if outcome.reason else "")
        return outcome

    def confirm_send(self, code: str, sender: Optional[Identity] = None) -> ConfirmOutcome:
        """Confirm the pending transfer with the code issued for it."""
        with exclusive_lock(self._lock_path):
            now = self._clock()
            config = self.config_store.load()
            state = self._load_state(now)
            decision = engine.confirm_send(config, state, code, sender, now)
            self._commit(decision)

        outcome = decision.outcome
        if outcome.approved:
            logger.info("Transfer approved: %s %s to %s", outcome.amount, outcome.token, outcome.to)
        elif outcome.cancelled:
            logger.warning("Pending transfer cancelled after too many wrong codes")
        else:
            logger.info("Confirmation rejected: %s", outcome.reason.value if outcome.reason else "")
        return outcome

    def freeze(self, reason: str = "manual") -> FreezeOutcome:
        with exclusive_lock(self._lock_path):
            now = self._clock()
            decision = engine.freeze(self._load_state(now), reason, now)
            self._commit(decision)
        logger.warning("Wallet frozen: %s", reason)
        return decision.outcome

    def unfreeze(self) -> FreezeOutcome:
        with exclusive_lock(self._lock_path):
            now = self._clock()
            decision = engine.unfreeze(self._load_state(now), now)
            self._commit(decision)
        logger.info("Wallet unfrozen")
        return decision.outcome

    def get_status(self) -> StatusReport:
        with exclusive_lock(self._lock_path):
            now = self._clock()
            config = self.config_store.load()
            decision = engine.status(config, self._load_state(now), now)
            self._commit(decision)
        return decision.outcome
