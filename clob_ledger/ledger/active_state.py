"""
ActiveStateQuery — чтение active-state view леджера

Фильтр всегда привязан к явной читающей party (filtersByParty).
filtersForAnyParty — привилегированная возможность и как fallback не используется.

Ответ леджера полиморфен, нормализация идёт через варианты парсеров в фиксированном порядке:
1. bare_array      — тело ответа является массивом записей
2. wrapped_object  — {activeContracts | activeRecords | contracts: [...]}
3. single_entry    — один объект с contractEntry / entry / createdEvent

Каждый парсер возвращает ParseResult и никогда не бросает исключений:
новый формат envelope добавляется новым парсером в конец ENVELOPE_PARSERS.

Статусы:
- 403 → пустой результат (visibility gap ожидаем при eventual consistency)
- 401 → AuthError (всегда фатально)
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

from pydantic import ValidationError

from clob_ledger.config import FRONTIER_OFFSET
from clob_ledger.core.contracts import validate_query_request
from clob_ledger.core.domain.contract import Contract
from clob_ledger.core.errors import error_from_response
from clob_ledger.ledger.transport import LedgerTransport

logger = logging.getLogger(__name__)

WRAPPER_KEYS: Tuple[str, ...] = ("activeContracts", "activeRecords", "contracts")
PAYLOAD_KEYS: Tuple[str, ...] = ("createArgument", "createArguments", "payload", "argument")


# =============================================================================
# ENVELOPE PARSERS
# =============================================================================


@dataclass(frozen=True)
class ParseResult:
    """Результат одного варианта парсера."""

    parser: str
    ok: bool
    contracts: Tuple[Contract, ...] = ()
    skipped: int = 0
    reason: str = ""


def _created_event(entry: dict) -> dict:
    """Поиск createdEvent во вложенных формах; плоская запись возвращается как есть."""
    for wrapper_key in ("contractEntry", "entry"):
        wrapper = entry.get(wrapper_key)
        if isinstance(wrapper, dict):
            active = wrapper.get("JsActiveContract") or wrapper.get("activeContract") or wrapper
            if isinstance(active, dict) and isinstance(active.get("createdEvent"), dict):
                return active["createdEvent"]
            return {}
    if isinstance(entry.get("createdEvent"), dict):
        return entry["createdEvent"]
    return entry


def flatten_entry(entry: Any) -> Optional[Contract]:
    """Одна запись ответа → Contract (None если запись не является активным контрактом)."""
    if not isinstance(entry, dict):
        return None
    created = _created_event(entry)
    contract_id = created.get("contractId")
    template_id = created.get("templateId")
    if not contract_id or not template_id:
        return None

    payload = {}
    for key in PAYLOAD_KEYS:
        if isinstance(created.get(key), dict):
            payload = created[key]
            break

    offset = created.get("offset", entry.get("offset"))
    try:
        return Contract(
            contract_id=contract_id,
            template_id=template_id,
            payload=payload,
            signatories=created.get("signatories") or [],
            observers=created.get("observers") or [],
            offset=offset,
        )
    except ValidationError as exc:
        logger.debug("Skipping malformed contract entry %s: %s", contract_id, exc)
        return None


def _flatten_all(parser: str, entries: Iterable[Any]) -> ParseResult:
    contracts = []
    skipped = 0
    for entry in entries:
        contract = flatten_entry(entry)
        if contract is None:
            skipped += 1
        else:
            contracts.append(contract)
    return ParseResult(parser=parser, ok=True, contracts=tuple(contracts), skipped=skipped)


def parse_bare_array(body: Any) -> ParseResult:
    if not isinstance(body, list):
        return ParseResult(parser="bare_array", ok=False, reason="body is not a JSON array")
    return _flatten_all("bare_array", body)


def parse_wrapped_object(body: Any) -> ParseResult:
    if not isinstance(body, dict):
        return ParseResult(parser="wrapped_object", ok=False, reason="body is not a JSON object")
    for key in WRAPPER_KEYS:
        if isinstance(body.get(key), list):
            return _flatten_all("wrapped_object", body[key])
    return ParseResult(parser="wrapped_object", ok=False, reason=f"none of {WRAPPER_KEYS} present")


def parse_single_entry(body: Any) -> ParseResult:
    if not isinstance(body, dict):
        return ParseResult(parser="single_entry", ok=False, reason="body is not a JSON object")
    if not any(key in body for key in ("contractEntry", "entry", "createdEvent")):
        return ParseResult(parser="single_entry", ok=False, reason="no entry/createdEvent key")
    return _flatten_all("single_entry", [body])


ENVELOPE_PARSERS: Tuple[Callable[[Any], ParseResult], ...] = (
    parse_bare_array,
    parse_wrapped_object,
    parse_single_entry,
)


def normalize_envelope(body: Any) -> ParseResult:
    """Первый успешный парсер из ENVELOPE_PARSERS."""
    reasons = []
    for parser in ENVELOPE_PARSERS:
        result = parser(body)
        if result.ok:
            return result
        reasons.append(f"{result.parser}: {result.reason}")
    return ParseResult(parser="none", ok=False, reason="; ".join(reasons))


# =============================================================================
# REQUEST
# =============================================================================


def build_query_request(
    party: str,
    *,
    template_ids: Optional[Sequence[str]] = None,
    contract_ids: Optional[Sequence[str]] = None,
    at_offset: str = FRONTIER_OFFSET,
) -> dict[str, Any]:
    """
    Тело active-contracts запроса, привязанное к одной party.

    Raises:
        ValueError: Если не задан ни один фильтр
        ValidationError (jsonschema): Если тело не соответствует query_request схеме
    """
    if not template_ids and not contract_ids:
        raise ValueError("query requires template_ids or contract_ids")

    inclusive: dict[str, Any] = {}
    if template_ids:
        inclusive["templateIds"] = list(template_ids)
    if contract_ids:
        inclusive["contractIds"] = list(contract_ids)

    body = {
        "readAs": [party],
        "activeAtOffset": str(at_offset),
        "verbose": True,
        "filter": {"filtersByParty": {party: {"inclusive": inclusive}}},
    }
    validate_query_request(body)
    return body


async def fetch_active(transport: LedgerTransport, body: dict[str, Any], operation: str = "active-contracts query") -> list[Contract]:
    """
    Выполнение готового запроса + нормализация.

    403 → [], 401 → AuthError, прочие ошибки → типизированное исключение.
    """
    response = await transport.request("POST", transport.settings.query_path, json=body, operation=operation)
    if response.status_code == 403:
        logger.info("%s: not visible to %s (HTTP 403), treating as empty", operation, body["readAs"][0])
        return []
    if not response.is_success:
        raise error_from_response(response, operation)

    result = normalize_envelope(response.json() if response.content else [])
    if not result.ok:
        logger.warning("%s: unrecognized response envelope (%s)", operation, result.reason)
        return []
    if result.skipped:
        logger.debug("%s: skipped %d non-contract entries", operation, result.skipped)
    return list(result.contracts)


# =============================================================================
# ACTIVE STATE QUERY
# =============================================================================


class ActiveStateQuery:
    """
    Запрос active-state view по record type или contract id.

    identity (TemplateIdentityResolver) квалифицирует короткие template id перед запросом.
    """

    def __init__(self, transport: LedgerTransport, identity=None):
        self.transport = transport
        self.identity = identity

    async def query(
        self,
        party: str,
        *,
        template_ids: Optional[Sequence[str]] = None,
        contract_ids: Optional[Sequence[str]] = None,
        at_offset: str = FRONTIER_OFFSET,
    ) -> list[Contract]:
        """
        Активные контракты, видимые party.

        Args:
            party: Читающая party (обязательна)
            template_ids: Record types (короткая или полная форма)
            contract_ids: Конкретные contract id
            at_offset: Offset снимка ("0" — текущий frontier)

        Returns:
            Список Contract (пустой при 403)
        """
        if template_ids and self.identity is not None:
            template_ids = [await self.identity.qualify(t) for t in template_ids]

        body = build_query_request(
            party, template_ids=template_ids, contract_ids=contract_ids, at_offset=at_offset
        )
        contracts = await fetch_active(self.transport, body)
        if contract_ids:
            wanted = set(contract_ids)
            contracts = [c for c in contracts if c.contract_id in wanted]
        return contracts

    async def fetch(self, party: str, contract_id: str, at_offset: str = FRONTIER_OFFSET) -> Optional[Contract]:
        """Один контракт по id (None если не виден party)."""
        contracts = await self.query(party, contract_ids=[contract_id], at_offset=at_offset)
        return contracts[0] if contracts else None
