"""Тесты для ActiveStateQuery и нормализации envelope.

Coverage:
- все варианты envelope (bare array / wrapped object / single entry)
- плоские и вложенные записи, пропуск не-контрактов
- фильтр привязан к читающей party
- 403 → пустой результат
"""

import httpx
import pytest
from jsonschema import ValidationError as SchemaValidationError

from clob_ledger.core.errors import AuthError, LedgerRejection
from clob_ledger.ledger.active_state import (
    ENVELOPE_PARSERS,
    ActiveStateQuery,
    build_query_request,
    flatten_entry,
    normalize_envelope,
)
from clob_ledger.ledger.template_identity import TemplateIdentityResolver
from clob_ledger.ledger.transport import LedgerTransport
from tests.fake_ledger import ALICE, BOB, FakeLedger, make_config, static_token


def created_event(contract_id="c1", template_id="pkg:Token:Token", **extra):
    event = {
        "contractId": contract_id,
        "templateId": template_id,
        "createArgument": {"owner": ALICE, "amount": "5"},
        "signatories": [ALICE],
        "observers": [],
    }
    event.update(extra)
    return event


def make_query(ledger):
    client = httpx.AsyncClient(transport=ledger.mock_transport())
    transport = LedgerTransport(make_config().ledger, static_token, client=client)
    return ActiveStateQuery(transport, identity=TemplateIdentityResolver(transport))


class TestFlattenEntry:
    """Тесты flatten_entry"""

    @pytest.mark.parametrize(
        "entry",
        [
            {"contractEntry": {"JsActiveContract": {"createdEvent": created_event()}}},
            {"contractEntry": {"activeContract": {"createdEvent": created_event()}}},
            {"entry": {"createdEvent": created_event()}},
            {"createdEvent": created_event()},
            created_event(),
        ],
    )
    def test_nested_shapes(self, entry):
        contract = flatten_entry(entry)

        assert contract.contract_id == "c1"
        assert contract.template_id == "pkg:Token:Token"
        assert contract.payload == {"owner": ALICE, "amount": "5"}
        assert contract.signatories == frozenset({ALICE})

    @pytest.mark.parametrize("key", ["createArguments", "payload", "argument"])
    def test_payload_aliases(self, key):
        event = created_event()
        event[key] = event.pop("createArgument")
        assert flatten_entry(event).payload["amount"] == "5"

    @pytest.mark.parametrize(
        "entry",
        [
            {"contractEntry": {"JsEmpty": {}}},
            {"offset": 5},
            {"contractId": "c1"},
            "not-an-object",
        ],
    )
    def test_non_contract_entries(self, entry):
        assert flatten_entry(entry) is None

    def test_offset_preserved(self):
        contract = flatten_entry({"createdEvent": created_event(offset=12)})
        assert contract.offset == "12"


class TestNormalizeEnvelope:
    """Тесты вариантов парсера"""

    def test_parser_order(self):
        assert [p.__name__ for p in ENVELOPE_PARSERS] == [
            "parse_bare_array",
            "parse_wrapped_object",
            "parse_single_entry",
        ]

    def test_bare_array(self):
        result = normalize_envelope([{"createdEvent": created_event()}, {"offset": 1}])

        assert result.parser == "bare_array"
        assert len(result.contracts) == 1
        assert result.skipped == 1

    @pytest.mark.parametrize("key", ["activeContracts", "activeRecords", "contracts"])
    def test_wrapped_object(self, key):
        result = normalize_envelope({key: [{"createdEvent": created_event()}]})

        assert result.parser == "wrapped_object"
        assert result.contracts[0].contract_id == "c1"

    def test_single_entry(self):
        result = normalize_envelope({"contractEntry": {"JsActiveContract": {"createdEvent": created_event()}}})
        assert result.parser == "single_entry"
        assert len(result.contracts) == 1

    def test_empty_array(self):
        result = normalize_envelope([])
        assert result.ok
        assert result.contracts == ()

    def test_unrecognized(self):
        result = normalize_envelope({"unexpected": True})

        assert not result.ok
        assert "wrapped_object" in result.reason


class TestBuildQueryRequest:
    """Тесты тела запроса"""

    def test_party_scoped(self):
        body = build_query_request(ALICE, template_ids=["pkg:Token:Token"])

        assert body["readAs"] == [ALICE]
        assert body["activeAtOffset"] == "0"
        assert list(body["filter"]["filtersByParty"]) == [ALICE]

    def test_requires_filter(self):
        with pytest.raises(ValueError):
            build_query_request(ALICE)

    def test_invalid_party(self):
        with pytest.raises(SchemaValidationError):
            build_query_request("alice", template_ids=["T:T"])


class TestActiveStateQuery:
    """Тесты ActiveStateQuery против fake леджера"""

    @pytest.fixture
    def ledger(self):
        ledger = FakeLedger()
        ledger.add_holding(ALICE, "USDT", "100")
        ledger.add_holding(BOB, "USDT", "50")
        ledger.add_order_book()
        return ledger

    @pytest.mark.asyncio
    async def test_visibility_scoped_to_party(self, ledger):
        query = make_query(ledger)
        contracts = await query.query(ALICE, template_ids=["Token:Token"])

        assert [c.payload["owner"] for c in contracts] == [ALICE]
        assert contracts[0].template_id == "pkg0001:Token:Token"
        inclusive = ledger.queries[-1]["filter"]["filtersByParty"][ALICE]["inclusive"]
        assert inclusive["templateIds"] == ["pkg0001:Token:Token"]

    @pytest.mark.asyncio
    async def test_wrapped_envelope(self, ledger):
        ledger.envelope = "wrapped"
        contracts = await make_query(ledger).query(BOB, template_ids=["Token:Token"])
        assert len(contracts) == 1

    @pytest.mark.asyncio
    async def test_fetch_by_contract_id(self, ledger):
        book_id = ledger.active("MasterOrderBook:MasterOrderBook")[0].contract_id
        query = make_query(ledger)

        contract = await query.fetch(ALICE, book_id)

        assert contract.contract_id == book_id
        assert contract.payload["tradingPair"] == "BTC/USDT"

    @pytest.mark.asyncio
    async def test_fetch_missing(self, ledger):
        assert await make_query(ledger).fetch(ALICE, "00cid9999") is None

    @pytest.mark.asyncio
    async def test_historical_offset(self, ledger):
        query = make_query(ledger)
        ledger.add_holding(ALICE, "BTC", "1")

        at_first = await query.query(ALICE, template_ids=["Token:Token"], at_offset="1")
        at_frontier = await query.query(ALICE, template_ids=["Token:Token"])

        assert len(at_first) == 1
        assert len(at_frontier) == 2

    @pytest.mark.asyncio
    async def test_403_is_empty(self, ledger):
        ledger.forbidden_parties.add(ALICE)
        assert await make_query(ledger).query(ALICE, template_ids=["Token:Token"]) == []

    @pytest.mark.asyncio
    async def test_401_is_fatal(self, ledger):
        ledger.valid_tokens = {"other"}
        with pytest.raises(AuthError):
            await make_query(ledger).query(ALICE, template_ids=["pkg0001:Token:Token"])

    @pytest.mark.asyncio
    async def test_unrecognized_envelope_is_empty(self):
        def handler(request):
            return httpx.Response(200, json={"result": "weird"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        query = ActiveStateQuery(LedgerTransport(make_config().ledger, static_token, client=client))

        assert await query.query(ALICE, template_ids=["pkg:Token:Token"]) == []

    @pytest.mark.asyncio
    async def test_rejection_propagates(self):
        def handler(request):
            return httpx.Response(400, json={"code": "INVALID_ARGUMENT", "cause": "unknown template"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        query = ActiveStateQuery(LedgerTransport(make_config().ledger, static_token, client=client))

        with pytest.raises(LedgerRejection):
            await query.query(ALICE, template_ids=["pkg:Nope:Nope"])
