"""
Settlement: двухфазный расчёт lock-then-place.

- SettlementStateMachine: явные состояния и разрешённые переходы
- holdings: выбор holding-записи для блокировки
- AllocationOrderCoordinator: оркестрация фаз A/B и компенсации
"""

from .coordinator import (
    AllocationOrderCoordinator,
    CancelResult,
    SettlementResult,
    default_order_id,
)
from .holdings import eligible_holdings, find_holding, select_holding
from .state_machine import (
    ALLOWED_TRANSITIONS,
    FUNDS_LOCKED_STATES,
    RECONCILIATION_STATES,
    TERMINAL_STATES,
    SettlementState,
    SettlementStateMachine,
    SettlementTransition,
)

__all__ = [
    "AllocationOrderCoordinator",
    "CancelResult",
    "SettlementResult",
    "default_order_id",
    "eligible_holdings",
    "find_holding",
    "select_holding",
    "ALLOWED_TRANSITIONS",
    "FUNDS_LOCKED_STATES",
    "RECONCILIATION_STATES",
    "TERMINAL_STATES",
    "SettlementState",
    "SettlementStateMachine",
    "SettlementTransition",
]
