"""
ContractResolver — поиск только что созданного контракта при eventual consistency

Алгоритм:
- пауза (начиная с initial_delay, x2 каждую попытку, с потолком max_delay)
- запрос на completionOffset; нет совпадения → запрос на текущем frontier
  (леджер может показать запись на frontier раньше, чем на историческом offset, и наоборот)
- совпадение → контракт; бюджет исчерпан → ConfirmationTimeout

Исчерпание бюджета — это timeout подтверждения, а не "контракт не существует":
запись в леджер уже прошла.

Цикл только читает, поэтому его можно прервать (отмена задачи) без side effects.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from clob_ledger.config import FRONTIER_OFFSET, ResolverConfig
from clob_ledger.core.domain.contract import Contract
from clob_ledger.core.domain.settlement import to_decimal
from clob_ledger.core.errors import ConfirmationTimeout, LedgerUnavailable
from clob_ledger.ledger.active_state import ActiveStateQuery

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# MATCHERS
# =============================================================================


class ContractMatcher(Protocol):
    def matches(self, contract: Contract) -> bool:
        ...

    def describe(self) -> str:
        ...


def values_equal(expected: Any, actual: Any) -> bool:
    """
    Сравнение значения payload.

    Числа и числовые строки сравниваются как Decimal ("100" == "100.0000000000").
    Dict/list сравниваются рекурсивно по тем же правилам.
    """
    if isinstance(expected, Mapping) and isinstance(actual, Mapping):
        return all(
            k in actual and values_equal(v, actual[k]) for k, v in expected.items() if v is not None
        )
    if isinstance(expected, (list, tuple)) and isinstance(actual, (list, tuple)):
        return len(expected) == len(actual) and all(values_equal(e, a) for e, a in zip(expected, actual))
    if isinstance(expected, bool) or isinstance(actual, bool):
        return type(expected) is type(actual) and expected == actual
    if isinstance(expected, (int, float, Decimal, str)) and isinstance(actual, (int, float, Decimal, str)):
        left, right = to_decimal(expected), to_decimal(actual)
        if left is not None and right is not None:
            return left == right
    return expected == actual


class NaturalKeyMatcher:
    """
    Совпадение по natural key (например, orderId, сгенерированный клиентом до сабмита).

    Сравнение целого payload ненадёжно: леджер назначает status, итоговые суммы и т.п.
    """

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value

    def matches(self, contract: Contract) -> bool:
        # natural key сравнивается как строка: "100" и "100.0" — разные ордера
        return self.field in contract.payload and str(contract.payload[self.field]) == str(self.value)

    def describe(self) -> str:
        return f"{self.field}={self.value!r}"


class PayloadSubsetMatcher:
    """Совпадение по каждому non-null полю, переданному в исходном payload."""

    def __init__(self, payload: Mapping[str, Any]):
        self.expected = {k: v for k, v in payload.items() if v is not None}
        if not self.expected:
            raise ValueError("PayloadSubsetMatcher requires at least one non-null field")

    def matches(self, contract: Contract) -> bool:
        return all(
            k in contract.payload and values_equal(v, contract.payload[k]) for k, v in self.expected.items()
        )

    def describe(self) -> str:
        return ", ".join(f"{k}={v!r}" for k, v in sorted(self.expected.items()))


def matcher_for(payload: Mapping[str, Any], natural_key: Optional[str] = None) -> ContractMatcher:
    """NaturalKeyMatcher если natural key присутствует в payload, иначе PayloadSubsetMatcher."""
    if natural_key and payload.get(natural_key) is not None:
        return NaturalKeyMatcher(natural_key, payload[natural_key])
    return PayloadSubsetMatcher(payload)


def pick_latest(contracts: Sequence[Contract]) -> Contract:
    """Самый свежий: максимальный offset, иначе последний в порядке ответа."""
    best_index = max(range(len(contracts)), key=lambda i: (contracts[i].offset_rank(), i))
    return contracts[best_index]


# =============================================================================
# RESOLVER
# =============================================================================


class ContractResolver:
    """Подтверждение созданного контракта с exponential backoff."""

    def __init__(
        self,
        query: ActiveStateQuery,
        config: Optional[ResolverConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.query = query
        self.config = config or ResolverConfig()
        self._sleep = sleep

    async def resolve(
        self,
        template_id: str,
        party: str,
        after_offset: str,
        matcher: ContractMatcher,
    ) -> Contract:
        """
        Поиск контракта, материализованного сабмитом.

        Args:
            template_id: Record type искомого контракта
            party: Читающая party
            after_offset: completionOffset сабмита
            matcher: Критерий совпадения

        Returns:
            Совпавший Contract

        Raises:
            ConfirmationTimeout: Бюджет попыток исчерпан
            AuthError: credential истёк
        """
        delays = self.config.delays()
        for attempt, delay in enumerate(delays, start=1):
            await self._sleep(delay)

            for offset in _offsets_to_try(after_offset):
                found = await self._find(template_id, party, offset, matcher)
                if found is not None:
                    logger.info(
                        "Resolved %s [%s] -> %s on attempt %d (offset %s)",
                        template_id,
                        matcher.describe(),
                        found.contract_id,
                        attempt,
                        offset,
                    )
                    return found

            logger.debug(
                "Attempt %d/%d: %s [%s] not visible yet", attempt, len(delays), template_id, matcher.describe()
            )

        logger.warning(
            "Confirmation timeout for %s [%s] after offset %s (%d attempts)",
            template_id,
            matcher.describe(),
            after_offset,
            len(delays),
        )
        raise ConfirmationTimeout(template_id, party, str(after_offset), len(delays))

    async def _find(self, template_id: str, party: str, offset: str, matcher: ContractMatcher) -> Optional[Contract]:
        try:
            contracts = await self.query.query(party, template_ids=[template_id], at_offset=offset)
        except LedgerUnavailable as exc:
            logger.info("Transient read failure while resolving %s: %s", template_id, exc)
            return None
        candidates = [c for c in contracts if matcher.matches(c)]
        if not candidates:
            return None
        return pick_latest(candidates)


def _offsets_to_try(after_offset: str) -> tuple[str, ...]:
    after_offset = str(after_offset)
    if after_offset == FRONTIER_OFFSET:
        return (FRONTIER_OFFSET,)
    return (after_offset, FRONTIER_OFFSET)
