"""Тесты выбора holding-записи для блокировки."""

from decimal import Decimal

import httpx
import pytest

from clob_ledger.core.domain import Holding
from clob_ledger.core.errors import InsufficientHoldings
from clob_ledger.ledger.active_state import ActiveStateQuery
from clob_ledger.ledger.template_identity import TemplateIdentityResolver
from clob_ledger.ledger.transport import LedgerTransport
from clob_ledger.settlement.holdings import eligible_holdings, find_holding, select_holding
from tests.fake_ledger import ALICE, FakeLedger, make_config, static_token


def holding(contract_id, amount, currency="USDT"):
    return Holding(contract_id=contract_id, template_id="pkg:Token:Token", currency=currency, amount=Decimal(amount))


def make_query(ledger):
    client = httpx.AsyncClient(transport=ledger.mock_transport())
    transport = LedgerTransport(make_config().ledger, static_token, client=client)
    return ActiveStateQuery(transport, identity=TemplateIdentityResolver(transport))


class TestSelection:
    """Тесты правила выбора"""

    def test_largest_first(self):
        holdings = [holding("a", "50"), holding("b", "200"), holding("c", "120")]
        assert select_holding(holdings, "USDT", Decimal("40")).contract_id == "b"

    def test_ties_by_contract_id(self):
        holdings = [holding("z", "100"), holding("m", "100")]
        assert [h.contract_id for h in eligible_holdings(holdings, "USDT", Decimal("1"))] == ["m", "z"]

    def test_filters_currency_and_amount(self):
        holdings = [holding("a", "10"), holding("b", "500", currency="BTC"), holding("c", "30")]
        ranked = eligible_holdings(holdings, "USDT", Decimal("30"))
        assert [h.contract_id for h in ranked] == ["c"]

    def test_exact_amount_is_enough(self):
        assert select_holding([holding("a", "30")], "USDT", Decimal("30.000")) is not None

    def test_none_eligible(self):
        assert select_holding([holding("a", "10")], "USDT", Decimal("11")) is None


class TestFindHolding:
    """Тесты поиска holding на леджере"""

    @pytest.mark.asyncio
    async def test_found(self):
        ledger = FakeLedger()
        ledger.add_holding(ALICE, "USDT", "20")
        big = ledger.add_holding(ALICE, "USDT", "80")
        ledger.add_holding(ALICE, "BTC", "1")

        selected = await find_holding(make_query(ledger), ALICE, "USDT", Decimal("15"), ["Token:Token"])

        assert selected.contract_id == big
        assert selected.template_id == "pkg0001:Token:Token"

    @pytest.mark.asyncio
    async def test_falls_through_templates(self):
        ledger = FakeLedger()
        utxo = ledger.add_holding(ALICE, "USDT", "80", template="UTXO:UTXO")

        selected = await find_holding(
            make_query(ledger), ALICE, "USDT", Decimal("15"), ["Token:Token", "UTXO:UTXO"]
        )
        assert selected.contract_id == utxo

    @pytest.mark.asyncio
    async def test_multi_currency_balance_record(self):
        ledger = FakeLedger()
        balance = ledger.add_contract(
            "TokenBalance:TokenBalance",
            {"owner": ALICE, "balances": [["USDT", "500"], ["BTC", "0.1"]]},
            [ALICE],
        )

        selected = await find_holding(
            make_query(ledger), ALICE, "USDT", Decimal("100"), ["Token:Token", "TokenBalance:TokenBalance"]
        )

        assert selected.contract_id == balance
        assert selected.amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_insufficient(self):
        ledger = FakeLedger()
        ledger.add_holding(ALICE, "USDT", "10")

        with pytest.raises(InsufficientHoldings) as exc_info:
            await find_holding(make_query(ledger), ALICE, "USDT", Decimal("15"), ["Token:Token"])
        assert exc_info.value.currency == "USDT"
