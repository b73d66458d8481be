"""
Terminal startup recovery coordinator.

RECOVERY PHASES:
1. List durable active transactions
2. Cancel active or suspended ones idle past the expiry threshold
3. Reinstate the remaining active ones in the state machine's active index
4. Optional expiry sweep over anything the first pass missed

SAFETY:
- Never resumes a transaction idle longer than the threshold
- One bad record does not abort recovery of the others
- Suspended transactions are counted (or expired), never auto-resumed
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List

from poscore.logging import get_logger, LogStream
from poscore.state.models import TransactionStatus
from poscore.state.transaction_machine import TransactionStateMachine, TransactionStateMachineError
from poscore.state.transaction_store import StorageError, TransactionStore


# ============================================================================
# RECOVERY STATUS
# ============================================================================

class RecoveryStatus(Enum):
    """Recovery operation status."""
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"  # Some transactions could not be recovered
    FAILED = "FAILED"


@dataclass
class RecoveryReport:
    """Report of recovery operation."""
    status: RecoveryStatus
    recovered: int
    expired: int
    suspended: int
    cleaned: int
    recovery_time_seconds: float
    timestamp: datetime
    recovered_ids: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "recovered": self.recovered,
            "expired": self.expired,
            "suspended": self.suspended,
            "cleaned": self.cleaned,
            "failures": self.failures,
            "recovery_time_seconds": self.recovery_time_seconds,
            "timestamp": self.timestamp.isoformat()
        }


# ============================================================================
# RECOVERY COORDINATOR
# ============================================================================

class RecoveryCoordinator:
    """
    Startup recovery for one terminal.

    USAGE:
        coordinator = RecoveryCoordinator(machine, store)

        report = coordinator.recover()
        if report.status != RecoveryStatus.SUCCESS:
            logger.warning(f"Recovery partial: {report.failures}")
    """

    def __init__(
        self,
        machine: TransactionStateMachine,
        store: TransactionStore,
        cleanup_on_startup: bool = True
    ):
        self.machine = machine
        self.store = store
        self.cleanup_on_startup = cleanup_on_startup

        self.logger = get_logger(LogStream.RECOVERY)

    def recover(self) -> RecoveryReport:
        """
        Reinstate durable active transactions after a restart.

        Returns:
            RecoveryReport with recovery details
        """
        started = self.machine.clock.now()
        self.logger.info("Starting transaction recovery")

        try:
            candidates = (
                self.store.list_states(TransactionStatus.ACTIVE)
                + self.store.list_states(TransactionStatus.SUSPENDED)
            )
        except StorageError as e:
            self.logger.error("Recovery failed", extra={"error": str(e)}, exc_info=True)
            return RecoveryReport(
                status=RecoveryStatus.FAILED,
                recovered=0,
                expired=0,
                suspended=0,
                cleaned=0,
                recovery_time_seconds=0.0,
                timestamp=self.machine.clock.now(),
                failures=[f"Recovery exception: {e}"],
            )

        recovered_ids: List[str] = []
        failures: List[str] = []
        expired = 0
        suspended = 0

        for state in candidates:
            try:
                result = self.machine.recover_transaction(state.transaction_id)
            except (StorageError, TransactionStateMachineError) as e:
                failures.append(f"{state.transaction_id}: {e}")
                self.logger.error(
                    f"Could not recover transaction {state.transaction_id}",
                    extra={"transaction_id": state.transaction_id, "error": str(e)}
                )
                continue

            if result is None:
                expired += 1
            elif result.status == TransactionStatus.SUSPENDED:
                suspended += 1
            else:
                recovered_ids.append(result.transaction_id)

        cleaned = 0
        if self.cleanup_on_startup:
            try:
                cleaned = self.machine.cleanup_expired_transactions()
            except StorageError as e:
                failures.append(f"Cleanup failed: {e}")

        finished = self.machine.clock.now()
        report = RecoveryReport(
            status=RecoveryStatus.PARTIAL if failures else RecoveryStatus.SUCCESS,
            recovered=len(recovered_ids),
            expired=expired,
            suspended=suspended,
            cleaned=cleaned,
            recovery_time_seconds=(finished - started).total_seconds(),
            timestamp=finished,
            recovered_ids=recovered_ids,
            failures=failures,
        )

        self.logger.info(f"Recovery complete: {report.status.value}", extra=report.to_dict())
        return report
