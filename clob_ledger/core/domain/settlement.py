"""
Settlement — доменные модели двухфазного расчёта

Holding (баланс) → Allocation (блокировка средств, фаза A) → Order (фаза B).

Holding/Allocation/Order — типизированные представления payload'ов контрактов.
OrderRequest — намерение вызывающего кода.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .contract import Contract


# =============================================================================
# ENUMS
# =============================================================================


class OrderSide(str, Enum):
    """Сторона ордера"""

    BUY = "BUY"
    SELL = "SELL"


class OrderMode(str, Enum):
    """Тип ордера"""

    LIMIT = "LIMIT"
    MARKET = "MARKET"


# =============================================================================
# HELPERS
# =============================================================================


def to_decimal(value: Any) -> Decimal | None:
    """Decimal из числа/строки леджера ("100", "100.0000000000"), None если не число."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def normalize_daml_map(value: Any) -> dict[str, Any]:
    """
    Daml Map/TextMap → dict.

    Леджер кодирует map как список пар `[[k, v], ...]`, список `{key, value}`
    или объект с полем `map`/`entries`.
    """
    if not value:
        return {}

    def _entries(entries: list) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for entry in entries:
            if isinstance(entry, (list, tuple)) and len(entry) >= 2:
                result[entry[0]] = entry[1]
            elif isinstance(entry, dict) and "key" in entry and "value" in entry:
                result[entry["key"]] = entry["value"]
        return result

    if isinstance(value, list):
        return _entries(value)
    if isinstance(value, dict):
        if isinstance(value.get("map"), list):
            return _entries(value["map"])
        if isinstance(value.get("entries"), list):
            return _entries(value["entries"])
        return dict(value)
    return {}


def encode_optional(value: Any) -> dict[str, Any]:
    """Daml Optional в JSON-кодировке: {"Some": v} / {"None": null}."""
    if value is None:
        return {"None": None}
    return {"Some": value}


def decode_optional(value: Any) -> Any:
    """Обратное к encode_optional; голые значения возвращаются как есть."""
    if isinstance(value, dict):
        if "Some" in value:
            return value["Some"]
        if "None" in value:
            return None
    return value


# =============================================================================
# TRADING PAIR
# =============================================================================


class TradingPair(BaseModel):
    """Торговая пара BASE/QUOTE."""

    base: str = Field(..., min_length=1, description="Базовая валюта (например, 'BTC')")
    quote: str = Field(..., min_length=1, description="Котируемая валюта (например, 'USDT')")

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, pair: str) -> "TradingPair":
        """Разбор `BASE/QUOTE` или `BASE-QUOTE`."""
        for sep in ("/", "-"):
            if sep in pair:
                base, _, quote = pair.partition(sep)
                if base and quote and sep not in quote:
                    return cls(base=base.strip(), quote=quote.strip())
        raise ValueError(f"trading pair {pair!r} is not of the form BASE/QUOTE")

    def symbol(self) -> str:
        return f"{self.base}/{self.quote}"


# =============================================================================
# ORDER REQUEST
# =============================================================================


class OrderRequest(BaseModel):
    """
    Намерение разместить ордер.

    BUY блокирует quote-валюту, SELL — base-валюту.
    """

    party: str = Field(..., min_length=1, description="Party владельца ордера")
    trading_pair: str = Field(..., min_length=3, description="Пара (BASE/QUOTE)")
    side: OrderSide = Field(..., description="BUY/SELL")
    mode: OrderMode = Field(default=OrderMode.LIMIT, description="LIMIT/MARKET")
    quantity: Decimal = Field(..., gt=0, description="Количество base-валюты")
    price: Decimal | None = Field(None, description="Лимитная цена (обязательна для LIMIT)")
    order_book_contract_id: str | None = Field(None, description="Contract id order book, если известен")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_price(self) -> "OrderRequest":
        """LIMIT требует положительную цену."""
        if self.mode == OrderMode.LIMIT and (self.price is None or self.price <= 0):
            raise ValueError("price is required for LIMIT orders and must be positive")
        if self.price is not None and self.price <= 0:
            raise ValueError(f"price {self.price} must be positive")
        return self

    def pair(self) -> TradingPair:
        return TradingPair.parse(self.trading_pair)

    def lock_currency(self) -> str:
        pair = self.pair()
        return pair.quote if self.side == OrderSide.BUY else pair.base

    def lock_amount(self) -> Decimal:
        """
        Сумма блокировки.

        - SELL: quantity base-валюты
        - BUY LIMIT: quantity * price в quote-валюте
        - BUY MARKET: quantity трактуется как сумма в quote-валюте (цены нет)
        """
        if self.side == OrderSide.BUY and self.mode == OrderMode.LIMIT and self.price is not None:
            return self.quantity * self.price
        return self.quantity


# =============================================================================
# LEDGER RECORD VIEWS
# =============================================================================


class Holding(BaseModel):
    """Holding (fungible balance record)."""

    contract_id: str = Field(..., min_length=1)
    template_id: str = Field(..., min_length=1)
    owner: str | None = Field(None, description="Владелец")
    currency: str = Field(..., min_length=1, description="Валюта/токен")
    amount: Decimal = Field(..., ge=0, description="Баланс")

    model_config = {"frozen": True}

    @classmethod
    def from_contract(cls, contract: Contract) -> "Holding | None":
        """None если payload не похож на holding."""
        currency = contract.field("currency", "tokenType", "asset", "symbol")
        amount = to_decimal(contract.field("amount", "quantity", "balance"))
        if currency is None or amount is None or amount < 0:
            return None
        return cls(
            contract_id=contract.contract_id,
            template_id=contract.template_id,
            owner=contract.field("owner", "holder"),
            currency=str(currency),
            amount=amount,
        )


def holdings_from_contract(contract: Contract) -> list[Holding]:
    """
    Все holdings одного контракта.

    TokenBalance-подобные записи держат несколько валют в Daml map
    `balances` (currency → amount); остальные записи дают не больше одного holding.
    """
    balances = normalize_daml_map(contract.payload.get("balances"))
    if not balances:
        holding = Holding.from_contract(contract)
        return [holding] if holding is not None else []

    holdings = []
    for currency, raw_amount in balances.items():
        amount = to_decimal(raw_amount)
        if amount is None or amount < 0:
            continue
        holdings.append(
            Holding(
                contract_id=contract.contract_id,
                template_id=contract.template_id,
                owner=contract.field("owner", "holder"),
                currency=str(currency),
                amount=amount,
            )
        )
    return holdings


class Allocation(BaseModel):
    """Allocation — заблокированные средства в ожидании расчёта."""

    contract_id: str = Field(..., min_length=1)
    receiver: str = Field(..., min_length=1, description="Блокирующая party")
    provider: str | None = Field(None, description="Бенефициар (оператор order book)")
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=1)

    model_config = {"frozen": True}

    @classmethod
    def from_contract(cls, contract: Contract) -> "Allocation":
        return cls(
            contract_id=contract.contract_id,
            receiver=contract.field("receiver", "owner"),
            provider=contract.field("provider", "operator"),
            amount=to_decimal(contract.field("amount", "quantity")),
            currency=contract.field("currency", "tokenType", "asset"),
        )


class Order(BaseModel):
    """Order — ссылается на Allocation по contract id."""

    contract_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1, description="Natural key, генерируется клиентом")
    owner: str = Field(..., min_length=1)
    side: OrderSide
    mode: OrderMode = OrderMode.LIMIT
    price: Decimal | None = None
    quantity: Decimal = Field(..., gt=0)
    allocation_cid: str = Field(..., min_length=1, description="Ссылка на Allocation")
    status: str | None = Field(None, description="Статус (назначается леджером)")

    model_config = {"frozen": True}

    @classmethod
    def from_contract(cls, contract: Contract) -> "Order":
        return cls(
            contract_id=contract.contract_id,
            order_id=contract.field("orderId"),
            owner=contract.field("owner"),
            side=contract.field("orderType", "side"),
            mode=contract.field("orderMode", "mode", default=OrderMode.LIMIT),
            price=to_decimal(decode_optional(contract.payload.get("price"))),
            quantity=to_decimal(contract.field("quantity")),
            allocation_cid=contract.field("allocationCid", "allocationRef"),
            status=contract.field("status"),
        )
