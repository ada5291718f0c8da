"""Settlement State Machine — состояния двухфазного расчёта lock-then-place.

Успешный путь:
    IDLE → LOCKING → LOCKED → PLACING → PLACED

Выходы по отказу:
- LOCK_FAILED: фаза A отклонена, откатывать нечего (терминальное)
- LOCK_UNCONFIRMED: фаза A отправлена, но не подтверждена — фаза B запрещена,
  повтор фазы A запрещён (риск двойной блокировки)
- PLACE_UNCONFIRMED: фаза B отправлена, но не подтверждена — компенсации нет,
  ордер может существовать
- PLACE_FAILED_COMPENSATING → RELEASED: фаза B отклонена, allocation освобождена
- RELEASE_FAILED: release не прошёл, блокировка остаётся (ручное вмешательство)
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from clob_ledger.core.errors import InvalidTransition

logger = logging.getLogger(__name__)


class SettlementState(str, Enum):
    """Состояние расчёта."""

    IDLE = "IDLE"
    LOCKING = "LOCKING"
    LOCKED = "LOCKED"
    PLACING = "PLACING"
    PLACED = "PLACED"
    LOCK_FAILED = "LOCK_FAILED"
    LOCK_UNCONFIRMED = "LOCK_UNCONFIRMED"
    PLACE_UNCONFIRMED = "PLACE_UNCONFIRMED"
    PLACE_FAILED_COMPENSATING = "PLACE_FAILED_COMPENSATING"
    RELEASED = "RELEASED"
    RELEASE_FAILED = "RELEASE_FAILED"


ALLOWED_TRANSITIONS: Dict[SettlementState, FrozenSet[SettlementState]] = {
    SettlementState.IDLE: frozenset({SettlementState.LOCKING, SettlementState.LOCK_FAILED}),
    SettlementState.LOCKING: frozenset({
        SettlementState.LOCKED,
        SettlementState.LOCK_FAILED,
        SettlementState.LOCK_UNCONFIRMED,
    }),
    SettlementState.LOCKED: frozenset({SettlementState.PLACING}),
    SettlementState.PLACING: frozenset({
        SettlementState.PLACED,
        SettlementState.PLACE_UNCONFIRMED,
        SettlementState.PLACE_FAILED_COMPENSATING,
    }),
    SettlementState.PLACE_FAILED_COMPENSATING: frozenset({
        SettlementState.RELEASED,
        SettlementState.RELEASE_FAILED,
    }),
}

TERMINAL_STATES: FrozenSet[SettlementState] = frozenset({
    SettlementState.PLACED,
    SettlementState.LOCK_FAILED,
    SettlementState.LOCK_UNCONFIRMED,
    SettlementState.PLACE_UNCONFIRMED,
    SettlementState.RELEASED,
    SettlementState.RELEASE_FAILED,
})

# Состояния, в которых средства (возможно) заблокированы на леджере
FUNDS_LOCKED_STATES: FrozenSet[SettlementState] = frozenset({
    SettlementState.LOCKED,
    SettlementState.PLACING,
    SettlementState.PLACED,
    SettlementState.LOCK_UNCONFIRMED,
    SettlementState.PLACE_UNCONFIRMED,
    SettlementState.PLACE_FAILED_COMPENSATING,
    SettlementState.RELEASE_FAILED,
})

# Исход известен не полностью, нужна сверка на следующем refresh read-path
RECONCILIATION_STATES: FrozenSet[SettlementState] = frozenset({
    SettlementState.LOCK_UNCONFIRMED,
    SettlementState.PLACE_UNCONFIRMED,
    SettlementState.RELEASE_FAILED,
})


@dataclass(frozen=True)
class SettlementTransition:
    """Зафиксированный переход."""

    previous_state: SettlementState
    new_state: SettlementState
    reason: str
    details: str
    ts_utc_ms: int


class SettlementStateMachine:
    """Явная state machine одного расчёта.

    Недопустимый переход → InvalidTransition (ошибка программы, не леджера).
    История переходов хранится для диагностики и отдаётся в SettlementResult.
    """

    def __init__(self, label: str = "", clock: Callable[[], float] = time.time):
        self.label = label
        self._clock = clock
        self._state = SettlementState.IDLE
        self._history: List[SettlementTransition] = []

    @property
    def state(self) -> SettlementState:
        return self._state

    @property
    def history(self) -> tuple:
        return tuple(self._history)

    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, new_state: SettlementState) -> bool:
        return new_state in ALLOWED_TRANSITIONS.get(self._state, frozenset())

    def transition(self, new_state: SettlementState, reason: str, details: str = "") -> SettlementTransition:
        """Переход в new_state.

        Raises:
            InvalidTransition: переход не разрешён таблицей ALLOWED_TRANSITIONS
        """
        if not self.can_transition(new_state):
            raise InvalidTransition(
                f"{self.label or 'settlement'}: {self._state.value} → {new_state.value} is not allowed"
            )

        record = SettlementTransition(
            previous_state=self._state,
            new_state=new_state,
            reason=reason,
            details=details,
            ts_utc_ms=int(self._clock() * 1000),
        )
        self._history.append(record)
        self._state = new_state

        level = logging.ERROR if new_state == SettlementState.RELEASE_FAILED else logging.INFO
        if new_state in RECONCILIATION_STATES and level == logging.INFO:
            level = logging.WARNING
        logger.log(
            level,
            "%s: %s → %s (%s) %s",
            self.label or "settlement",
            record.previous_state.value,
            new_state.value,
            reason,
            details,
        )
        return record

    def last_reason(self) -> Optional[str]:
        return self._history[-1].reason if self._history else None
