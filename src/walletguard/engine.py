"""
Transfer authorization engine.

Every operation is a pure function of the loaded config, allowlist and
state plus the current time. It returns a ``Decision`` holding the outcome
for the caller, the state snapshot to persist (``None`` when nothing
changed) and the audit entries to append. ``WalletGuard`` does the I/O.

A transfer moves through NONE -> PENDING -> {APPROVED, EXPIRED,
BRUTE_FORCE_CANCELLED} -> NONE. PENDING loops on a wrong code while
attempts remain.
"""

from __future__ import annotations

import hmac
import math
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar, Union

from .allowlist import Allowlist
from .audit import Action, AuditEntry
from .config import GuardConfig
from .money import format_amount, micros_to_number
from .state import GuardState, Identity, PendingTx, to_iso, today_of


class Reason(str, Enum):
    WALLET_FROZEN = "wallet_frozen"
    UNAUTHORIZED_SENDER = "unauthorized_sender"
    ADDRESS_NOT_ALLOWLISTED = "address_not_allowlisted"
    INVALID_AMOUNT = "invalid_amount"
    OVER_PER_TX_LIMIT = "over_per_tx_limit"
    OVER_DAILY_LIMIT = "over_daily_limit"
    COOLDOWN_ACTIVE = "cooldown_active"
    ANOMALY_RAPID_REQUESTS = "anomaly_rapid_requests"
    CONFIRMATION_PENDING = "confirmation_pending"
    NO_PENDING = "no_pending_confirmation"
    CODE_EXPIRED = "code_expired"
    SENDER_MISMATCH = "sender_mismatch"
    WRONG_CODE = "wrong_code"
    BRUTE_FORCE_CANCELLED = "brute_force_cancelled"


def generate_code(length: int = 6) -> str:
    """Uniform random numeric code with no leading zero."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


@dataclass(frozen=True)
class SendRequest:
    to: str
    amount_micros: int
    token: str = "USDC"
    sender: Optional[Identity] = None


@dataclass(frozen=True)
class RequestOutcome:
    """Result of a send request. ``approved`` is always False here."""

    approved: bool = False
    needs_confirmation: bool = False
    reason: Optional[Reason] = None
    message: str = ""
    code: Optional[str] = None
    expires_at: Optional[datetime] = None
    retry_after: Optional[int] = None
    frozen: bool = False

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "needsConfirmation": self.needs_confirmation,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "code": self.code,
            "expiresAt": to_iso(self.expires_at) if self.expires_at else None,
            "retryAfter": self.retry_after,
            "frozen": self.frozen,
        }


@dataclass(frozen=True)
class ConfirmOutcome:
    """Result of a confirmation attempt."""

    approved: bool
    reason: Optional[Reason] = None
    message: str = ""
    to: Optional[str] = None
    amount_micros: Optional[int] = None
    token: Optional[str] = None
    attempts_remaining: Optional[int] = None
    cancelled: bool = False

    @property
    def amount(self) -> Optional[Union[int, float]]:
        return micros_to_number(self.amount_micros) if self.amount_micros is not None else None

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "to": self.to,
            "amount": self.amount,
            "token": self.token,
            "attemptsRemaining": self.attempts_remaining,
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class FreezeOutcome:
    frozen: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"frozen": self.frozen, "reason": self.reason}


@dataclass(frozen=True)
class PendingSummary:
    """What a pending transfer looks like to an operator (never the code)."""

    to: str
    amount_micros: int
    token: str
    expires_at: datetime
    attempts_remaining: int
    sender: Optional[Identity] = None


@dataclass(frozen=True)
class StatusReport:
    frozen: bool
    frozen_reason: Optional[str]
    frozen_at: Optional[datetime]
    daily_total_micros: int
    daily_max_micros: int
    pending: Optional[PendingSummary] = None

    @property
    def daily_remaining_micros(self) -> int:
        return max(0, self.daily_max_micros - self.daily_total_micros)

    def to_dict(self) -> dict:
        return {
            "frozen": self.frozen,
            "frozenReason": self.frozen_reason,
            "frozenAt": to_iso(self.frozen_at) if self.frozen_at else None,
            "dailyTotal": micros_to_number(self.daily_total_micros),
            "dailyMax": micros_to_number(self.daily_max_micros),
            "dailyRemaining": micros_to_number(self.daily_remaining_micros),
            "pendingConfirmation": self.pending is not None,
        }


OutcomeT = TypeVar("OutcomeT", RequestOutcome, ConfirmOutcome, FreezeOutcome, StatusReport)


@dataclass(frozen=True)
class Decision(Generic[OutcomeT]):
    outcome: OutcomeT
    state: Optional[GuardState] = None
    audit: tuple[AuditEntry, ...] = ()


def _entry(
    action: Action,
    now: datetime,
    reason: Optional[str] = None,
    to: Optional[str] = None,
    amount_micros: Optional[int] = None,
    token: Optional[str] = None,
    **details,
) -> AuditEntry:
    return AuditEntry(
        action=action.value,
        timestamp=to_iso(now),
        reason=reason,
        to=to,
        amount=micros_to_number(amount_micros) if amount_micros is not None else None,
        token=token,
        details={k: v for k, v in details.items() if v is not None} or None,
    )


def _rolled_over(state: GuardState, today: str) -> GuardState:
    if state.daily_date == today:
        return state
    return replace(state, daily_total_micros=0, daily_date=today)


def _reject(
    request: SendRequest,
    now: datetime,
    reason: Reason,
    message: str,
    state: Optional[GuardState] = None,
    retry_after: Optional[int] = None,
    **details,
) -> Decision[RequestOutcome]:
    entry = _entry(
        Action.REJECTED,
        now,
        reason=reason.value,
        to=request.to,
        amount_micros=request.amount_micros,
        token=request.token,
        **details,
    )
    outcome = RequestOutcome(reason=reason, message=message, retry_after=retry_after)
    return Decision(outcome=outcome, state=state, audit=(entry,))


def request_send(
    config: GuardConfig,
    allowlist: Allowlist,
    state: GuardState,
    request: SendRequest,
    now: datetime,
    code_generator: Callable[[int], str] = generate_code,
) -> Decision[RequestOutcome]:
    """Run the request gate; on success issue a one-time confirmation code.

    Checks short-circuit in a fixed order: frozen, sender, allowlist,
    per-transaction limit, daily limit, cooldown, anomaly window.
    """
    state = _rolled_over(state, today_of(now))
    amount = format_amount(request.amount_micros)

    if state.frozen:
        return _reject(
            request, now, Reason.WALLET_FROZEN,
            "Wallet is FROZEN. Unfreeze before sending.",
        )

    if config.authorized_senders and request.sender is not None:
        if not config.is_authorized(request.sender):
            return _reject(
                request, now, Reason.UNAUTHORIZED_SENDER, "Unauthorized sender.",
                sender=str(request.sender),
            )

    if not allowlist.contains(request.to):
        return _reject(
            request, now, Reason.ADDRESS_NOT_ALLOWLISTED,
            f"Address not in allowlist. Add it first:\n"
            f'  awg allowlist add {request.to} --label "description"',
        )

    if request.amount_micros <= 0:
        return _reject(request, now, Reason.INVALID_AMOUNT, "Amount must be positive.")

    if request.amount_micros > config.per_transaction_micros:
        return _reject(
            request, now, Reason.OVER_PER_TX_LIMIT,
            f"Amount {amount} exceeds per-transaction limit of "
            f"{format_amount(config.per_transaction_micros)}.",
        )

    if state.daily_total_micros + request.amount_micros > config.daily_max_micros:
        return _reject(
            request, now, Reason.OVER_DAILY_LIMIT,
            f"Would exceed daily limit. Spent: {format_amount(state.daily_total_micros)}"
            f"/{format_amount(config.daily_max_micros)}.",
        )

    if state.last_transaction_at is not None:
        elapsed = (now - state.last_transaction_at).total_seconds()
        if elapsed < config.cooldown_seconds:
            wait = math.ceil(config.cooldown_seconds - elapsed)
            return _reject(
                request, now, Reason.COOLDOWN_ACTIVE, f"Cooldown active. Wait {wait}s.",
                retry_after=wait,
            )

    window = config.anomaly_window_seconds
    recent = tuple(
        ts for ts in state.recent_requests if (now - ts).total_seconds() < window
    ) + (now,)

    if len(recent) >= config.anomaly_trigger:
        frozen_state = replace(
            state,
            recent_requests=recent,
            frozen=True,
            frozen_at=now,
            frozen_reason=Reason.ANOMALY_RAPID_REQUESTS.value,
        )
        entry = _entry(
            Action.AUTO_FREEZE, now, reason="rapid_requests",
            to=request.to, amount_micros=request.amount_micros, token=request.token,
            count=len(recent),
        )
        outcome = RequestOutcome(
            reason=Reason.ANOMALY_RAPID_REQUESTS,
            message="WALLET AUTO-FROZEN: Too many rapid requests detected.",
            frozen=True,
        )
        return Decision(outcome=outcome, state=frozen_state, audit=(entry,))

    if state.pending is not None and not state.pending.is_expired(now):
        return _reject(
            request, now, Reason.CONFIRMATION_PENDING,
            "Another transfer is awaiting confirmation. Confirm it or let it expire first.",
            state=replace(state, recent_requests=recent),
        )

    code = code_generator(config.code_length)
    expires_at = now + timedelta(seconds=config.code_expiry_seconds)
    pending = PendingTx(
        code=code,
        to=request.to,
        amount_micros=request.amount_micros,
        token=request.token,
        created_at=now,
        expires_at=expires_at,
        sender=request.sender,
    )
    new_state = replace(state, recent_requests=recent, pending=pending)
    entry = _entry(
        Action.CONFIRMATION_REQUESTED, now,
        to=request.to, amount_micros=request.amount_micros, token=request.token,
        expiresAt=to_iso(expires_at),
        replacedExpired=True if state.pending is not None else None,
    )
    minutes = config.code_expiry_seconds / 60
    outcome = RequestOutcome(
        needs_confirmation=True,
        message=(
            f"Confirm send of {amount} {request.token} to {request.to}\n\n"
            f"Confirmation code: **{code}**\n\n"
            f"Reply with this code to approve. Expires in {minutes:g} minutes."
        ),
        code=code,
        expires_at=expires_at,
    )
    return Decision(outcome=outcome, state=new_state, audit=(entry,))


def _codes_match(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def confirm_send(
    config: GuardConfig,
    state: GuardState,
    code: str,
    confirmer: Optional[Identity],
    now: datetime,
) -> Decision[ConfirmOutcome]:
    """Validate a confirmation code against the pending transfer."""
    state = _rolled_over(state, today_of(now))
    pending = state.pending

    if pending is None:
        return Decision(ConfirmOutcome(
            approved=False, reason=Reason.NO_PENDING,
            message="No pending transaction to confirm.",
        ))

    context = dict(to=pending.to, amount_micros=pending.amount_micros, token=pending.token)

    if pending.is_expired(now):
        entry = _entry(Action.CONFIRMATION_EXPIRED, now, **context)
        outcome = ConfirmOutcome(
            approved=False, reason=Reason.CODE_EXPIRED,
            message="Confirmation code expired. Request a new transaction.",
        )
        return Decision(outcome, state=replace(state, pending=None), audit=(entry,))

    if state.frozen:
        entry = _entry(Action.REJECTED, now, reason=Reason.WALLET_FROZEN.value, **context)
        outcome = ConfirmOutcome(
            approved=False, reason=Reason.WALLET_FROZEN,
            message="Wallet is FROZEN. Unfreeze before confirming.",
        )
        return Decision(outcome, audit=(entry,))

    if pending.sender is not None and confirmer is not None and pending.sender != confirmer:
        entry = _entry(Action.SENDER_MISMATCH, now, **context)
        outcome = ConfirmOutcome(
            approved=False, reason=Reason.SENDER_MISMATCH,
            message="Sender mismatch. Only the original requester can confirm.",
        )
        return Decision(outcome, audit=(entry,))

    if not _codes_match(code, pending.code):
        attempts = pending.attempts + 1
        if attempts >= config.max_attempts:
            entry = _entry(Action.BRUTE_FORCE_CANCEL, now, attempts=attempts, **context)
            outcome = ConfirmOutcome(
                approved=False, reason=Reason.BRUTE_FORCE_CANCELLED, cancelled=True,
                attempts_remaining=0,
                message="Transaction auto-cancelled: too many wrong confirmation codes.",
            )
            return Decision(outcome, state=replace(state, pending=None), audit=(entry,))

        remaining = config.max_attempts - attempts
        entry = _entry(Action.WRONG_CODE, now, attempts=attempts, **context)
        outcome = ConfirmOutcome(
            approved=False, reason=Reason.WRONG_CODE, attempts_remaining=remaining,
            message=f"Wrong confirmation code. {remaining} attempt(s) remaining.",
        )
        new_state = replace(state, pending=replace(pending, attempts=attempts))
        return Decision(outcome, state=new_state, audit=(entry,))

    new_state = replace(
        state,
        daily_total_micros=state.daily_total_micros + pending.amount_micros,
        last_transaction_at=now,
        pending=None,
    )
    entry = _entry(Action.APPROVED, now, **context)
    outcome = ConfirmOutcome(
        approved=True,
        to=pending.to,
        amount_micros=pending.amount_micros,
        token=pending.token,
        message=(
            f"Approved! Sending {format_amount(pending.amount_micros)} "
            f"{pending.token} to {pending.to}"
        ),
    )
    return Decision(outcome, state=new_state, audit=(entry,))


def freeze(state: GuardState, reason: str, now: datetime) -> Decision[FreezeOutcome]:
    """Engage the kill switch. A pending confirmation is left in place."""
    new_state = replace(state, frozen=True, frozen_at=now, frozen_reason=reason)
    entry = _entry(Action.FREEZE, now, reason=reason)
    return Decision(FreezeOutcome(frozen=True, reason=reason), state=new_state, audit=(entry,))


def unfreeze(state: GuardState, now: datetime) -> Decision[FreezeOutcome]:
    new_state = replace(state, frozen=False, frozen_at=None, frozen_reason=None)
    entry = _entry(Action.UNFREEZE, now)
    return Decision(FreezeOutcome(frozen=False), state=new_state, audit=(entry,))


def status(config: GuardConfig, state: GuardState, now: datetime) -> Decision[StatusReport]:
    """Report current limits and kill-switch status.

    The only change this may make is the daily rollover.
    """
    today = today_of(now)
    rolled = _rolled_over(state, today)
    changed = rolled is not state

    pending = None
    if rolled.pending is not None:
        p = rolled.pending
        pending = PendingSummary(
            to=p.to,
            amount_micros=p.amount_micros,
            token=p.token,
            expires_at=p.expires_at,
            attempts_remaining=max(0, config.max_attempts - p.attempts),
            sender=p.sender,
        )

    report = StatusReport(
        frozen=rolled.frozen,
        frozen_reason=rolled.frozen_reason,
        frozen_at=rolled.frozen_at,
        daily_total_micros=rolled.daily_total_micros,
        daily_max_micros=config.daily_max_micros,
        pending=pending,
    )
    if not changed:
        return Decision(report)

    entry = _entry(
        Action.DAILY_RESET, now,
        previousDate=state.daily_date or None,
        previousTotal=micros_to_number(state.daily_total_micros),
    )
    return Decision(report, state=rolled, audit=(entry,))
