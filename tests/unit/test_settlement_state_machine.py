"""Тесты для Settlement State Machine.

Coverage:
- успешный путь IDLE → LOCKING → LOCKED → PLACING → PLACED
- выходы по отказу и компенсация
- запрет недопустимых переходов (фаза B без подтверждённой фазы A)
- классификация состояний (terminal / funds locked / reconciliation)
"""

import pytest

from clob_ledger.core.errors import InvalidTransition
from clob_ledger.settlement.state_machine import (
    ALLOWED_TRANSITIONS,
    FUNDS_LOCKED_STATES,
    RECONCILIATION_STATES,
    TERMINAL_STATES,
    SettlementState,
    SettlementStateMachine,
)

S = SettlementState


def drive(*states):
    sm = SettlementStateMachine(label="test", clock=lambda: 1700000000.0)
    for state in states:
        sm.transition(state, f"to_{state.value.lower()}")
    return sm


class TestTransitions:
    """Тесты переходов"""

    def test_happy_path(self):
        sm = drive(S.LOCKING, S.LOCKED, S.PLACING, S.PLACED)

        assert sm.state == S.PLACED
        assert sm.is_terminal()
        assert [t.new_state for t in sm.history] == [S.LOCKING, S.LOCKED, S.PLACING, S.PLACED]
        assert sm.history[0].previous_state == S.IDLE
        assert sm.history[0].ts_utc_ms == 1700000000000
        assert sm.last_reason() == "to_placed"

    def test_compensation_path(self):
        sm = drive(S.LOCKING, S.LOCKED, S.PLACING, S.PLACE_FAILED_COMPENSATING, S.RELEASED)
        assert sm.state == S.RELEASED

    def test_release_failed_path(self):
        sm = drive(S.LOCKING, S.LOCKED, S.PLACING, S.PLACE_FAILED_COMPENSATING, S.RELEASE_FAILED)
        assert sm.state in RECONCILIATION_STATES

    def test_precondition_failure(self):
        assert drive(S.LOCK_FAILED).state == S.LOCK_FAILED

    @pytest.mark.parametrize(
        "path",
        [
            # фаза B без подтверждённой фазы A
            (S.LOCKING, S.PLACING),
            (S.LOCKING, S.LOCK_UNCONFIRMED, S.PLACING),
            # повтор фазы A после неизвестного исхода
            (S.LOCKING, S.LOCK_UNCONFIRMED, S.LOCKING),
            # компенсация после неподтверждённой фазы B
            (S.LOCKING, S.LOCKED, S.PLACING, S.PLACE_UNCONFIRMED, S.PLACE_FAILED_COMPENSATING),
            # release только через компенсацию
            (S.LOCKING, S.LOCKED, S.RELEASED),
            (S.PLACED,),
        ],
    )
    def test_forbidden(self, path):
        sm = SettlementStateMachine()
        with pytest.raises(InvalidTransition):
            for state in path:
                sm.transition(state, "x")

    def test_rejected_transition_keeps_state(self):
        sm = drive(S.LOCKING)
        with pytest.raises(InvalidTransition):
            sm.transition(S.PLACED, "x")
        assert sm.state == S.LOCKING
        assert len(sm.history) == 1

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert not ALLOWED_TRANSITIONS.get(state)


class TestClassification:
    """Тесты классификации состояний для UI"""

    @pytest.mark.parametrize("state", [S.LOCK_FAILED, S.RELEASED, S.IDLE])
    def test_funds_free(self, state):
        assert state not in FUNDS_LOCKED_STATES

    @pytest.mark.parametrize(
        "state", [S.PLACED, S.LOCK_UNCONFIRMED, S.PLACE_UNCONFIRMED, S.RELEASE_FAILED]
    )
    def test_funds_locked(self, state):
        assert state in FUNDS_LOCKED_STATES

    def test_reconciliation(self):
        assert RECONCILIATION_STATES == {S.LOCK_UNCONFIRMED, S.PLACE_UNCONFIRMED, S.RELEASE_FAILED}
