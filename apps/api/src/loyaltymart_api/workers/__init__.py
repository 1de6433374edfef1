"""Background workers for the order pipeline."""

from .accrual_calculator import AccrualCalculationProcessor  # noqa: F401
from .accrual_reconciler import AccrualReconciliationProcessor, PollingPolicy  # noqa: F401
from .order_pool import OrderWorkerPool, SubmitOutcome, WorkerContext  # noqa: F401
from .pending_order_sweeper import PendingOrderSweeper  # noqa: F401
