"""
AllocationOrderCoordinator — двухфазный расчёт lock-then-place

Фаза A: блокировка средств holding → Allocation (Token_Lock), подтверждение через ContractResolver
Фаза B: размещение Order со ссылкой на подтверждённую Allocation (AddOrder), подтверждение по orderId

Инвариант: не существует Order, чья Allocation отсутствует или освобождена.

Правила:
- фаза A не подтверждена → фаза B не отправляется, фаза A не повторяется
- фаза B отклонена леджером → компенсация: release Allocation ровно один раз
- фаза B отправлена, но не подтверждена → компенсации НЕТ (ордер может существовать)
- сабмит закоммичен, но чтение для подтверждения упало (500, 401 и т.п.) → *_UNCONFIRMED
- release не прошёл → RELEASE_FAILED + CompensationFailure (ручное вмешательство, без повторов)
- отмена ордера освобождает Allocation в той же транзакции
"""

import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Tuple

from clob_ledger.config import SettlementConfig
from clob_ledger.core.domain.command import SubmissionResult
from clob_ledger.core.domain.contract import Contract
from clob_ledger.core.domain.settlement import (
    Allocation,
    Holding,
    Order,
    OrderMode,
    OrderRequest,
    TradingPair,
    encode_optional,
)
from clob_ledger.core.errors import (
    AuthError,
    CompensationFailure,
    ConfirmationTimeout,
    ContractNotFound,
    InsufficientHoldings,
    LedgerClientError,
    LedgerPermissionError,
    LedgerRejection,
    LedgerUnavailable,
    OrderBookNotFound,
    SubmissionOutcomeUnknown,
)
from clob_ledger.ledger.active_state import ActiveStateQuery
from clob_ledger.ledger.commands import LedgerCommandClient
from clob_ledger.ledger.pubsub import CHANNEL_BALANCES, CHANNEL_ORDERS, RefreshBus
from clob_ledger.ledger.resolver import ContractResolver, NaturalKeyMatcher, PayloadSubsetMatcher
from clob_ledger.settlement.holdings import find_holding
from clob_ledger.settlement.state_machine import (
    FUNDS_LOCKED_STATES,
    RECONCILIATION_STATES,
    SettlementState,
    SettlementStateMachine,
    SettlementTransition,
)

logger = logging.getLogger(__name__)

# Отказы, гарантирующие, что команда НЕ закоммичена
DEFINITE_REJECTIONS = (LedgerRejection, LedgerPermissionError, AuthError)

# Ошибки до фазы A: на леджере ещё ничего не сделано
PRECONDITION_ERRORS = (
    ValueError,
    InsufficientHoldings,
    OrderBookNotFound,
    LedgerRejection,
    LedgerPermissionError,
    LedgerUnavailable,
)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class SettlementResult:
    """Результат place_order.

    UI различает по state:
    - PLACED: ордер размещён и подтверждён
    - LOCK_FAILED / RELEASED: ордер не размещён, средства свободны
    - LOCK_UNCONFIRMED / PLACE_UNCONFIRMED: средства (возможно) заблокированы, статус ордера неизвестен
    - RELEASE_FAILED: средства заблокированы, требуется оператор

    allocation / order — подтверждённые контракты в виде доменных моделей.
    """

    state: SettlementState
    reason: str
    details: str
    order_id: str
    allocation_id: Optional[str] = None
    order_contract_id: Optional[str] = None
    holding_id: Optional[str] = None
    allocation: Optional[Allocation] = None
    order: Optional[Order] = None
    lock_submission: Optional[SubmissionResult] = None
    order_submission: Optional[SubmissionResult] = None
    release_submission: Optional[SubmissionResult] = None
    error: Optional[BaseException] = None
    transitions: Tuple[SettlementTransition, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state == SettlementState.PLACED

    @property
    def funds_locked(self) -> bool:
        return self.state in FUNDS_LOCKED_STATES

    @property
    def needs_reconciliation(self) -> bool:
        return self.state in RECONCILIATION_STATES


@dataclass(frozen=True)
class CancelResult:
    """Результат cancel_order."""

    order_contract_id: str
    allocation_id: Optional[str]
    submission: SubmissionResult
    release_in_same_submission: bool


@dataclass
class _Attempt:
    """Накопитель данных одного расчёта."""

    request: OrderRequest
    order_id: str
    machine: SettlementStateMachine
    holding: Optional[Holding] = None
    allocation: Optional[Contract] = None
    order: Optional[Contract] = None
    lock_submission: Optional[SubmissionResult] = None
    order_submission: Optional[SubmissionResult] = None
    release_submission: Optional[SubmissionResult] = None
    error: Optional[BaseException] = None


def default_order_id(prefix: str = "ORDER") -> str:
    """Natural key ордера: PREFIX-<ms>-<random>."""
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


# =============================================================================
# COORDINATOR
# =============================================================================


class AllocationOrderCoordinator:
    """Оркестрация lock-then-place с компенсацией."""

    def __init__(
        self,
        commands: LedgerCommandClient,
        query: ActiveStateQuery,
        resolver: ContractResolver,
        config: Optional[SettlementConfig] = None,
        operator_party: Optional[str] = None,
        bus: Optional[RefreshBus] = None,
        order_id_factory: Optional[Callable[[], str]] = None,
    ):
        self.commands = commands
        self.query = query
        self.resolver = resolver
        self.config = config or SettlementConfig()
        self.operator_party = operator_party
        self.bus = bus
        self._order_id_factory = order_id_factory or (lambda: default_order_id(self.config.order_id_prefix))

    # ------------------------------------------------------------------ place

    async def place_order(self, request: OrderRequest) -> SettlementResult:
        """
        Двухфазное размещение ордера.

        Args:
            request: Намерение (party, пара, сторона, количество, цена)

        Returns:
            SettlementResult с терминальным состоянием

        Raises:
            CompensationFailure: release после отказа фазы B не прошёл (RELEASE_FAILED)
            AuthError: credential истёк до начала фазы A
        """
        order_id = self._order_id_factory()
        attempt = _Attempt(
            request=request,
            order_id=order_id,
            machine=SettlementStateMachine(label=f"order {order_id}"),
        )

        # 0. Предусловия (без side effects)
        try:
            pair = request.pair()
            lock_currency = request.lock_currency()
            lock_amount = request.lock_amount()
            order_book_id, operator = await self._resolve_order_book(request, pair)
            attempt.holding = await find_holding(
                self.query, request.party, lock_currency, lock_amount, self.config.holding_templates
            )
        except PRECONDITION_ERRORS as exc:
            attempt.error = exc
            attempt.machine.transition(SettlementState.LOCK_FAILED, "precondition_failed", str(exc))
            return self._finish(attempt)

        # 1. Фаза A: блокировка
        allocation = await self._lock(attempt, operator, lock_currency, lock_amount)
        if allocation is None:
            return self._finish(attempt)

        # 2. Фаза B: размещение
        await self._place(attempt, order_book_id, allocation)
        return self._finish(attempt)

    async def _lock(
        self, attempt: _Attempt, operator: str, currency: str, amount: Decimal
    ) -> Optional[Contract]:
        party = attempt.request.party
        holding = attempt.holding
        machine = attempt.machine

        existing = await self._existing_allocation_ids(party)

        machine.transition(
            SettlementState.LOCKING,
            "lock_submitted",
            f"holding={holding.contract_id} amount={amount} {currency}",
        )
        lock_argument = {
            "receiver": party,
            "provider": operator,
            "amount": str(amount),
            "currency": currency,
        }
        try:
            attempt.lock_submission = await self.commands.exercise(
                holding.contract_id,
                holding.template_id,
                self.config.lock_choice,
                lock_argument,
                [party],
            )
        except SubmissionOutcomeUnknown as exc:
            attempt.error = exc
            machine.transition(SettlementState.LOCK_UNCONFIRMED, "lock_outcome_unknown", str(exc))
            return None
        except DEFINITE_REJECTIONS as exc:
            attempt.error = exc
            machine.transition(SettlementState.LOCK_FAILED, "lock_rejected", str(exc))
            return None

        matcher = _ExcludingMatcher(
            PayloadSubsetMatcher({"receiver": party, "amount": str(amount), "currency": currency}),
            existing,
        )
        try:
            allocation = await self.resolver.resolve(
                self.config.allocation_template,
                party,
                attempt.lock_submission.completion_offset,
                matcher,
            )
        except ConfirmationTimeout as exc:
            attempt.error = exc
            machine.transition(SettlementState.LOCK_UNCONFIRMED, "lock_confirmation_timeout", str(exc))
            return None
        except LedgerClientError as exc:
            # lock закоммичен: ошибка чтения не означает отказ
            attempt.error = exc
            machine.transition(SettlementState.LOCK_UNCONFIRMED, "lock_confirmation_failed", str(exc))
            return None

        attempt.allocation = allocation
        machine.transition(SettlementState.LOCKED, "allocation_confirmed", allocation.contract_id)
        return allocation

    async def _place(self, attempt: _Attempt, order_book_id: str, allocation: Contract) -> None:
        request = attempt.request
        machine = attempt.machine

        machine.transition(
            SettlementState.PLACING,
            "order_submitted",
            f"orderId={attempt.order_id} allocation={allocation.contract_id}",
        )
        argument = {
            self.config.order_id_field: attempt.order_id,
            "owner": request.party,
            "orderType": request.side.value,
            "orderMode": request.mode.value,
            "price": encode_optional(
                str(request.price) if request.mode == OrderMode.LIMIT and request.price is not None else None
            ),
            "quantity": str(request.quantity),
            "allocationCid": allocation.contract_id,
        }
        try:
            attempt.order_submission = await self.commands.exercise(
                order_book_id,
                self.config.order_book_template,
                self.config.place_choice,
                argument,
                [request.party],
            )
        except SubmissionOutcomeUnknown as exc:
            attempt.error = exc
            machine.transition(SettlementState.PLACE_UNCONFIRMED, "order_outcome_unknown", str(exc))
            return
        except DEFINITE_REJECTIONS as exc:
            attempt.error = exc
            machine.transition(SettlementState.PLACE_FAILED_COMPENSATING, "order_rejected", str(exc))
            await self._compensate(attempt, allocation, exc)
            return

        try:
            order = await self.resolver.resolve(
                self.config.order_template,
                request.party,
                attempt.order_submission.completion_offset,
                NaturalKeyMatcher(self.config.order_id_field, attempt.order_id),
            )
        except ConfirmationTimeout as exc:
            attempt.error = exc
            machine.transition(SettlementState.PLACE_UNCONFIRMED, "order_confirmation_timeout", str(exc))
            return
        except LedgerClientError as exc:
            attempt.error = exc
            machine.transition(SettlementState.PLACE_UNCONFIRMED, "order_confirmation_failed", str(exc))
            return

        attempt.order = order
        machine.transition(SettlementState.PLACED, "order_confirmed", order.contract_id)

    async def _compensate(self, attempt: _Attempt, allocation: Contract, place_error: BaseException) -> None:
        """Release Allocation. Ровно одна попытка."""
        machine = attempt.machine
        try:
            attempt.release_submission = await self.commands.exercise(
                allocation.contract_id,
                allocation.template_id,
                self.config.release_choice,
                {},
                [attempt.request.party],
            )
        except LedgerClientError as exc:
            machine.transition(SettlementState.RELEASE_FAILED, "release_failed", str(exc))
            result = self._finish(attempt)
            raise CompensationFailure(allocation.contract_id, exc, original=place_error, result=result) from exc

        machine.transition(SettlementState.RELEASED, "allocation_released", allocation.contract_id)

    # ----------------------------------------------------------------- cancel

    async def cancel_order(self, order_contract_id: str, party: str) -> CancelResult:
        """
        Отмена ордера вместе с освобождением его Allocation.

        Одна submission: CancelOrder (+ release Allocation, если choice отмены
        на леджере сам её не освобождает) — оба эффекта атомарны.

        Raises:
            ContractNotFound: ордер не виден party
            LedgerRejection / LedgerPermissionError / AuthError / SubmissionOutcomeUnknown
        """
        order = await self.query.fetch(party, order_contract_id)
        if order is None:
            raise ContractNotFound(order_contract_id, party)

        allocation_id = order.field("allocationCid", "allocationRef")
        commands = [
            await self.commands.exercise_command(
                order_contract_id, order.template_id, self.config.cancel_choice, {}
            )
        ]
        release_in_same_submission = False
        if not self.config.cancel_releases_allocation and allocation_id:
            commands.append(
                await self.commands.exercise_command(
                    allocation_id, self.config.allocation_template, self.config.release_choice, {}
                )
            )
            release_in_same_submission = True

        submission = await self.commands.submit(commands, [party])
        logger.info(
            "Cancelled order %s (allocation %s, explicit release=%s)",
            order_contract_id,
            allocation_id,
            release_in_same_submission,
        )
        self._publish(CHANNEL_ORDERS, {"event": "cancelled", "order_contract_id": order_contract_id})
        self._publish(CHANNEL_BALANCES, {"event": "released", "allocation_id": allocation_id})
        return CancelResult(
            order_contract_id=order_contract_id,
            allocation_id=allocation_id,
            submission=submission,
            release_in_same_submission=release_in_same_submission,
        )

    # ---------------------------------------------------------------- helpers

    async def _resolve_order_book(self, request: OrderRequest, pair: TradingPair) -> Tuple[str, str]:
        """
        Contract id order book и party оператора.

        Order book ищется по tradingPair, если id не передан.
        """
        book: Optional[Contract] = None
        if request.order_book_contract_id:
            book = await self.query.fetch(request.party, request.order_book_contract_id)
            book_id = request.order_book_contract_id
        else:
            books = await self.query.query(request.party, template_ids=[self.config.order_book_template])
            symbols = {request.trading_pair, pair.symbol(), f"{pair.base}-{pair.quote}"}
            matching = [b for b in books if b.payload.get("tradingPair") in symbols]
            if not matching:
                raise OrderBookNotFound(request.trading_pair)
            book = matching[0]
            book_id = book.contract_id

        operator = (book.field("operator", "provider") if book is not None else None) or self.operator_party
        if not operator:
            raise ValueError(f"operator party unknown for order book {book_id}")
        return book_id, operator

    async def _existing_allocation_ids(self, party: str) -> frozenset:
        """Allocation id, существовавшие до фазы A (их нельзя принять за новую блокировку)."""
        try:
            contracts = await self.query.query(party, template_ids=[self.config.allocation_template])
        except (LedgerRejection, LedgerUnavailable) as exc:
            logger.info("Could not snapshot existing allocations: %s", exc)
            return frozenset()
        return frozenset(c.contract_id for c in contracts)

    def _finish(self, attempt: _Attempt) -> SettlementResult:
        machine = attempt.machine
        last = machine.history[-1] if machine.history else None
        result = SettlementResult(
            state=machine.state,
            reason=last.reason if last else "",
            details=last.details if last else "",
            order_id=attempt.order_id,
            allocation_id=attempt.allocation.contract_id if attempt.allocation else None,
            order_contract_id=attempt.order.contract_id if attempt.order else None,
            holding_id=attempt.holding.contract_id if attempt.holding else None,
            allocation=Allocation.from_contract(attempt.allocation) if attempt.allocation else None,
            order=Order.from_contract(attempt.order) if attempt.order else None,
            lock_submission=attempt.lock_submission,
            order_submission=attempt.order_submission,
            release_submission=attempt.release_submission,
            error=attempt.error,
            transitions=machine.history,
        )
        if attempt.lock_submission is not None or machine.state == SettlementState.LOCK_UNCONFIRMED:
            self._publish(CHANNEL_BALANCES, result)
            self._publish(CHANNEL_ORDERS, result)
        return result

    def _publish(self, channel: str, event) -> None:
        if self.bus is not None:
            self.bus.publish(channel, event)


class _ExcludingMatcher:
    def __init__(self, inner, excluded_ids: frozenset):
        self.inner = inner
        self.excluded_ids = excluded_ids

    def matches(self, contract: Contract) -> bool:
        return contract.contract_id not in self.excluded_ids and self.inner.matches(contract)

    def describe(self) -> str:
        if not self.excluded_ids:
            return self.inner.describe()
        return f"{self.inner.describe()} (excluding {len(self.excluded_ids)} pre-existing)"
