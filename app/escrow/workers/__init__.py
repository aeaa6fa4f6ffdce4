"""
Workers for escrow settlement.

- SettlementExecutor: Captures or cancels a PaymentIntent and pays the seller
- ReleaseScheduler: Sweeps orders past their confirmation deadline
- retry_failed_transfers: Retries seller transfers after capture

Usage:
    from escrow.workers import run_release_sweep, retry_failed_transfers

    run_release_sweep.delay()
    retry_failed_transfers.delay()
"""

from escrow.workers.release_scheduler import (
    ReleaseScheduler,
    SweepReport,
    run_release_sweep,
)
from escrow.workers.settlement_executor import SettlementExecutor, SettlementResult
from escrow.workers.transfer_retry import retry_failed_transfers

__all__ = [
    # Release Scheduler
    "ReleaseScheduler",
    "SweepReport",
    "run_release_sweep",
    # Settlement
    "SettlementExecutor",
    "SettlementResult",
    # Transfers
    "retry_failed_transfers",
]
