"""
Hands approved transfers to the external wallet tool.

The guard never signs or broadcasts anything itself. After an approval is
recorded, the CLI runs ``npx awal send <amount> <to> --json``. A failure
here does not undo the approval; reconciliation is an operator task.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from .engine import ConfirmOutcome
from .errors import ExecutionError
from .money import micros_to_plain

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = ("npx", "awal", "send")


@dataclass
class ExecutionResult:
    success: bool
    output: str = ""
    error: Optional[str] = None


class AwalExecutor:
    """Runs the external send command for an approved confirmation."""

    def __init__(self, command: Sequence[str] = DEFAULT_COMMAND, timeout: float = 120.0):
        self.command = tuple(command)
        self.timeout = timeout

    def build_args(self, outcome: ConfirmOutcome) -> list[str]:
        if not outcome.approved or outcome.to is None or outcome.amount_micros is None:
            raise ExecutionError("Refusing to execute a transfer that was not approved")
        return [*self.command, micros_to_plain(outcome.amount_micros), outcome.to, "--json"]

    def execute(self, outcome: ConfirmOutcome) -> ExecutionResult:
        args = self.build_args(outcome)
        logger.info("Executing approved transfer: %s", " ".join(args))
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.exception("Transfer execution could not complete")
            return ExecutionResult(success=False, error=str(exc))

        if result.returncode != 0:
            error = result.stderr.strip() or f"exit status {result.returncode}"
            logger.warning("Transfer execution failed: %s", error)
            return ExecutionResult(success=False, output=result.stdout, error=error)
        return ExecutionResult(success=True, output=result.stdout)
