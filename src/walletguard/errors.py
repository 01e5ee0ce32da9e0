"""
Wallet Guard error types.

Policy rejections are returned as outcomes, not raised. The exceptions
here cover the cases where the guard cannot make a decision at all, so
callers can tell "rejected by policy" apart from "storage is broken".
"""


class WalletGuardError(Exception):
    """Base error for all Wallet Guard operations."""
    pass


class IntegrityError(WalletGuardError):
    """A tracked file does not match its recorded integrity tag."""
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(
            f"Integrity check failed for {filename}: file may have been tampered with"
        )


# Document errors
class DocumentError(WalletGuardError):
    """Base error for malformed wallet documents."""
    pass


class ConfigError(DocumentError):
    """config.json is malformed or a value is invalid."""
    pass


class AllowlistError(DocumentError):
    """allowlist.json is malformed."""
    pass


class StateError(DocumentError):
    """state.json is malformed."""
    pass


# Execution errors
class ExecutionError(WalletGuardError):
    """The external transfer tool could not be run or reported failure."""
    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)
