"""
clob_ledger — клиент Canton JSON Ledger API для CLOB-биржи.

Запись команд, чтение active-state view и двухфазный расчёт ордеров
(lock средств → размещение ордера) с подтверждением при eventual consistency.
"""

from clob_ledger.client import ClobLedgerClient
from clob_ledger.config import ClientConfig, LedgerSettings, ResolverConfig, SettlementConfig, load_settings

__version__ = "0.4.0"

__all__ = [
    "ClobLedgerClient",
    "ClientConfig",
    "LedgerSettings",
    "ResolverConfig",
    "SettlementConfig",
    "load_settings",
]
