"""
Wallet Guard — a local authorization gate for agent-initiated transfers.

Agent requests a send → guard checks allowlist, limits, cooldown →
human relays a one-time code → guard approves → external tool executes.
"""

__version__ = "0.1.0"

from .allowlist import Allowlist, AllowlistEntry, AllowlistStore
from .audit import Action, AuditEntry, AuditLog
from .config import DEFAULT_CONFIG, ConfigStore, GuardConfig
from .engine import ConfirmOutcome, Reason, RequestOutcome, StatusReport
from .errors import IntegrityError, WalletGuardError
from .guard import WalletGuard
from .integrity import IntegrityGuard
from .state import GuardState, Identity, PendingTx, StateStore

__all__ = [
    "WalletGuard", "Identity",
    "RequestOutcome", "ConfirmOutcome", "StatusReport", "Reason",
    "GuardConfig", "ConfigStore", "DEFAULT_CONFIG",
    "Allowlist", "AllowlistEntry", "AllowlistStore",
    "GuardState", "PendingTx", "StateStore",
    "IntegrityGuard", "IntegrityError", "WalletGuardError",
    "AuditLog", "AuditEntry", "Action",
]
