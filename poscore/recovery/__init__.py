"""
Recovery package.

COMPONENTS:
- RecoveryCoordinator: reinstates or expires durable active transactions
  at terminal startup

USAGE:
    from poscore.recovery import RecoveryCoordinator, RecoveryStatus

    report = RecoveryCoordinator(machine, store).recover()
    if report.status == RecoveryStatus.SUCCESS:
        logger.info("Recovery successful")
"""

from .coordinator import (
    RecoveryCoordinator,
    RecoveryReport,
    RecoveryStatus,
)

__all__ = [
    "RecoveryCoordinator",
    "RecoveryReport",
    "RecoveryStatus",
]
