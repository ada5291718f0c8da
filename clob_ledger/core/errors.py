"""
Ledger Errors — таксономия ошибок клиента леджера

Каждая ошибка соответствует отдельному корректирующему действию:
- AuthError: credential истёк/отсутствует, восстанавливается владельцем токена
- LedgerPermissionError: party не видит запись (HTTP 403), чтение деградирует в пустой результат
- LedgerRejection: бизнес-отказ или некорректная команда, текст леджера без изменений
- LedgerUnavailable: транспортный сбой после повтора
- SubmissionOutcomeUnknown: запись могла как пройти, так и не пройти
- ConfirmationTimeout: запись прошла, подтверждение на чтении не пришло в бюджет
- ContractNotFound: контракта действительно нет в view данной party
- CompensationFailure: release после закоммиченной фазы A не прошёл (ручное вмешательство)
"""

import json
from typing import Any, Dict, List, Optional

import httpx


# =============================================================================
# BASE
# =============================================================================


class LedgerClientError(Exception):
    """Базовая ошибка клиента леджера."""


class InvalidTransition(LedgerClientError):
    """Недопустимый переход state machine расчёта."""


class InsufficientHoldings(LedgerClientError):
    """Нет holding-записи с достаточным балансом для блокировки."""

    def __init__(self, party: str, currency: str, amount: str):
        super().__init__(
            f"No holding of {currency} with at least {amount} visible to {party}"
        )
        self.party = party
        self.currency = currency
        self.amount = amount


# =============================================================================
# TRANSPORT / PROTOCOL ERRORS
# =============================================================================


class AuthError(LedgerClientError):
    """HTTP 401: credential отсутствует или истёк. Всегда фатальна для операции."""

    def __init__(self, message: str = "Authentication required or token expired", body: str = ""):
        super().__init__(message)
        self.body = body


class LedgerPermissionError(LedgerClientError):
    """HTTP 403: у party нет прав на чтение/действие."""

    def __init__(self, message: str = "Access denied", body: str = ""):
        super().__init__(message)
        self.body = body


class LedgerRejection(LedgerClientError):
    """
    Отказ леджера (malformed command, business rule).

    Сообщение леджера сохраняется дословно — для диагностики.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        code: Optional[str] = None,
        errors: Optional[List[Any]] = None,
        body: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.errors = errors or []
        self.body = body
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.status_code} {self.code}] {self.message}"
        return f"[{self.status_code}] {self.message}"


class LedgerUnavailable(LedgerClientError):
    """Транспортный сбой (сеть, timeout, 502/503/504) после исчерпания повторов."""


class SubmissionOutcomeUnknown(LedgerUnavailable):
    """
    Сабмит отправлен, но ответ не получен.

    Команда могла закоммититься: вызывающий код НЕ должен трактовать это как отказ.
    """

    def __init__(self, command_id: str, message: str):
        super().__init__(message)
        self.command_id = command_id


# =============================================================================
# RECONCILIATION ERRORS
# =============================================================================


class ConfirmationTimeout(LedgerClientError):
    """
    Запись в леджер прошла, но контракт не появился в active-state view за бюджет попыток.

    Не путать с ContractNotFound: намерение выполнено, не пришло только подтверждение.
    """

    def __init__(self, template_id: str, party: str, after_offset: str, attempts: int):
        super().__init__(
            f"Contract of {template_id} not visible to {party} after offset "
            f"{after_offset} within {attempts} attempts"
        )
        self.template_id = template_id
        self.party = party
        self.after_offset = after_offset
        self.attempts = attempts


NotFoundAfterRetries = ConfirmationTimeout


class ContractNotFound(LedgerClientError):
    """Контракт отсутствует в view данной party."""

    def __init__(self, contract_id: str, party: str):
        super().__init__(f"Contract {contract_id} not found for {party}")
        self.contract_id = contract_id
        self.party = party


class OrderBookNotFound(LedgerClientError):
    """Order book для торговой пары не найден в view party."""

    def __init__(self, trading_pair: str):
        super().__init__(f"Order book not found for {trading_pair}")
        self.trading_pair = trading_pair


class CompensationFailure(LedgerClientError):
    """
    Компенсирующий release аллокации не прошёл.

    Блокировка средств остаётся на леджере. Автоматический повтор запрещён:
    требуется ручное вмешательство оператора.
    """

    def __init__(
        self,
        allocation_id: str,
        cause: BaseException,
        original: Optional[BaseException] = None,
        result: Any = None,
    ):
        super().__init__(
            f"Release of allocation {allocation_id} failed: {cause}. "
            f"Funds remain locked, manual intervention required"
        )
        self.allocation_id = allocation_id
        self.cause = cause
        self.original = original
        self.result = result


# =============================================================================
# RESPONSE MAPPING
# =============================================================================

# Статусы, при которых исход операции на леджере неизвестен
NETWORK_LEVEL_STATUSES = frozenset({502, 503, 504})


def extract_error_details(body: Any) -> Dict[str, Any]:
    """
    Извлечение деталей ошибки из тела ответа леджера.

    Поддерживает Canton error body (code/cause/correlationId/traceId/errorCategory)
    и общие поля message/errors.
    """
    if not isinstance(body, dict):
        return {}
    keys = ("code", "cause", "message", "errors", "correlationId", "traceId", "context", "errorCategory")
    return {k: body[k] for k in keys if body.get(k) is not None}


def _rejection_message(details: Dict[str, Any], text: str, operation: str) -> str:
    if details.get("message"):
        return str(details["message"])
    if details.get("cause"):
        return str(details["cause"])
    if details.get("errors"):
        errors = details["errors"]
        if isinstance(errors, list):
            return "; ".join(str(e) for e in errors)
        return str(errors)
    return text or f"{operation} failed"


def error_from_response(response: httpx.Response, operation: str) -> LedgerClientError:
    """
    Маппинг non-2xx ответа в типизированную ошибку.

    - 401 → AuthError
    - 403 → LedgerPermissionError
    - 502/503/504 → LedgerUnavailable
    - остальное → LedgerRejection с дословным сообщением леджера
    """
    text = response.text
    try:
        body = json.loads(text) if text else {}
    except ValueError:
        body = {}

    status = response.status_code
    if status == 401:
        return AuthError(body=text)
    if status == 403:
        details = extract_error_details(body)
        return LedgerPermissionError(_rejection_message(details, text, operation), body=text)
    if status in NETWORK_LEVEL_STATUSES:
        return LedgerUnavailable(f"{operation}: ledger unavailable (HTTP {status}) {text}".strip())

    details = extract_error_details(body)
    errors = details.get("errors")
    return LedgerRejection(
        _rejection_message(details, text, operation),
        status_code=status,
        code=details.get("code"),
        errors=errors if isinstance(errors, list) else ([errors] if errors else []),
        body=text,
        details=details,
    )
