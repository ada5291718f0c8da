"""
Выбор holding-записи для блокировки (фаза A)

Правило выбора среди нескольких подходящих holdings: largest-first
(меньше фрагментации), при равенстве — по возрастанию contract id.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from clob_ledger.core.domain.settlement import Holding, holdings_from_contract
from clob_ledger.core.errors import InsufficientHoldings, LedgerRejection
from clob_ledger.ledger.active_state import ActiveStateQuery

logger = logging.getLogger(__name__)


def eligible_holdings(holdings: Iterable[Holding], currency: str, amount: Decimal) -> List[Holding]:
    """Holdings нужной валюты с балансом не меньше amount, в порядке предпочтения."""
    eligible = [h for h in holdings if h.currency == currency and h.amount >= amount]
    return sorted(eligible, key=lambda h: (-h.amount, h.contract_id))


def select_holding(holdings: Iterable[Holding], currency: str, amount: Decimal) -> Optional[Holding]:
    ranked = eligible_holdings(holdings, currency, amount)
    return ranked[0] if ranked else None


async def find_holding(
    query: ActiveStateQuery,
    party: str,
    currency: str,
    amount: Decimal,
    holding_templates: Sequence[str],
) -> Holding:
    """
    Поиск holding для блокировки.

    Holding templates перебираются в порядке предпочтения; первый template
    с подходящими holdings выигрывает.

    Raises:
        InsufficientHoldings: Ни один template не дал подходящего holding
    """
    for template_id in holding_templates:
        try:
            contracts = await query.query(party, template_ids=[template_id])
        except LedgerRejection as exc:
            # template может быть не задеплоен
            logger.info("Holding template %s not queryable: %s", template_id, exc)
            continue

        holdings = [h for c in contracts for h in holdings_from_contract(c)]
        selected = select_holding(holdings, currency, amount)
        if selected is not None:
            logger.info(
                "Selected holding %s (%s %s) of %d candidate(s) for lock of %s",
                selected.contract_id,
                selected.amount,
                selected.currency,
                len(holdings),
                amount,
            )
            return selected

    raise InsufficientHoldings(party, currency, str(amount))
