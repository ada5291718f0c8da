"""
Конфигурация клиента леджера

- LedgerSettings: endpoint'ы, timeout, сетевые повторы, operator party
- ResolverConfig: бюджет и кривая backoff для подтверждения контрактов
- SettlementConfig: имена templates/choices/полей двухфазного расчёта

load_settings() читает переменные окружения CLOB_LEDGER_* (опционально из .env).
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from dotenv import dotenv_values

ENV_PREFIX = "CLOB_LEDGER_"

# activeAtOffset для запроса на текущем frontier леджера
FRONTIER_OFFSET = "0"


@dataclass(frozen=True)
class LedgerSettings:
    """
    Параметры HTTP доступа к леджеру.

    request_timeout_sec — timeout одного HTTP вызова, отдельный от бюджета
    ContractResolver: один медленный вызов не съедает всё окно сверки.
    """
    base_url: str = "http://localhost:7575"
    submit_path: str = "/v2/commands/submit-and-wait"
    query_path: str = "/v2/state/active-contracts"
    packages_path: str = "/v2/packages"
    request_timeout_sec: float = 10.0
    network_retries: int = 1
    operator_party: Optional[str] = None
    fallback_templates: Tuple[str, ...] = (
        "MasterOrderBook:MasterOrderBook",
        "OrderBook:OrderBook",
        "Token:Token",
    )


@dataclass(frozen=True)
class ResolverConfig:
    """
    Backoff для ContractResolver.

    Задержки: initial_delay_sec, x2 на каждой попытке, не больше max_delay_sec.
    По умолчанию: 0.5, 1, 2, 4, 8 секунд (5 попыток).
    """
    initial_delay_sec: float = 0.5
    max_delay_sec: float = 8.0
    max_attempts: int = 5

    def delays(self) -> Tuple[float, ...]:
        result = []
        delay = self.initial_delay_sec
        for _ in range(self.max_attempts):
            result.append(min(delay, self.max_delay_sec))
            delay *= 2
        return tuple(result)


@dataclass(frozen=True)
class SettlementConfig:
    """Имена templates, choices и полей двухфазного расчёта."""
    holding_templates: Tuple[str, ...] = ("Token:Token", "UTXO:UTXO", "TokenBalance:TokenBalance")
    allocation_template: str = "Allocation:Allocation"
    order_book_template: str = "MasterOrderBook:MasterOrderBook"
    order_template: str = "Order:Order"

    lock_choice: str = "Token_Lock"
    place_choice: str = "AddOrder"
    release_choice: str = "Allocation_Cancel"
    cancel_choice: str = "CancelOrder"

    order_id_field: str = "orderId"
    order_id_prefix: str = "ORDER"

    # CancelOrder на леджере сам освобождает allocation в той же транзакции
    cancel_releases_allocation: bool = True


@dataclass(frozen=True)
class ClientConfig:
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)


def _split(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> ClientConfig:
    """
    Сборка ClientConfig из окружения.

    Значения из env_file (.env) перекрываются реальным окружением.

    Args:
        env_file: Путь к .env файлу (опционально)
        environ: Окружение (по умолчанию os.environ)

    Returns:
        ClientConfig со значениями по умолчанию для незаданных переменных
    """
    values = {}
    if env_file:
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(environ if environ is not None else os.environ)

    def get(name: str) -> Optional[str]:
        return values.get(ENV_PREFIX + name)

    ledger_defaults = LedgerSettings()
    ledger = LedgerSettings(
        base_url=(get("BASE_URL") or ledger_defaults.base_url).rstrip("/"),
        submit_path=get("SUBMIT_PATH") or ledger_defaults.submit_path,
        query_path=get("QUERY_PATH") or ledger_defaults.query_path,
        packages_path=get("PACKAGES_PATH") or ledger_defaults.packages_path,
        request_timeout_sec=float(get("REQUEST_TIMEOUT_SEC") or ledger_defaults.request_timeout_sec),
        network_retries=int(get("NETWORK_RETRIES") or ledger_defaults.network_retries),
        operator_party=get("OPERATOR_PARTY") or None,
        fallback_templates=_split(get("FALLBACK_TEMPLATES") or "") or ledger_defaults.fallback_templates,
    )

    resolver_defaults = ResolverConfig()
    resolver = ResolverConfig(
        initial_delay_sec=float(get("RESOLVER_INITIAL_DELAY_SEC") or resolver_defaults.initial_delay_sec),
        max_delay_sec=float(get("RESOLVER_MAX_DELAY_SEC") or resolver_defaults.max_delay_sec),
        max_attempts=int(get("RESOLVER_MAX_ATTEMPTS") or resolver_defaults.max_attempts),
    )
    if resolver.max_attempts < 1:
        raise ValueError(f"RESOLVER_MAX_ATTEMPTS must be >= 1, got {resolver.max_attempts}")

    settlement_defaults = SettlementConfig()
    cancel_releases = get("CANCEL_RELEASES_ALLOCATION")
    settlement = SettlementConfig(
        holding_templates=_split(get("HOLDING_TEMPLATES") or "") or settlement_defaults.holding_templates,
        allocation_template=get("ALLOCATION_TEMPLATE") or settlement_defaults.allocation_template,
        order_book_template=get("ORDER_BOOK_TEMPLATE") or settlement_defaults.order_book_template,
        order_template=get("ORDER_TEMPLATE") or settlement_defaults.order_template,
        cancel_releases_allocation=(
            _as_bool(cancel_releases) if cancel_releases is not None
            else settlement_defaults.cancel_releases_allocation
        ),
    )

    return ClientConfig(ledger=ledger, resolver=resolver, settlement=settlement)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Базовая настройка логирования для приложений (библиотека handlers не ставит)."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
