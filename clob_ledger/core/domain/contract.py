"""
Contract — активная запись леджера

Immutable: контракт не меняется на месте, а архивируется последующей транзакцией.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from .template import short_form


class Contract(BaseModel):
    """
    Плоская форма активного контракта.

    Формируется из любого envelope ответа active-state query
    (см. clob_ledger.ledger.active_state).
    """

    contract_id: str = Field(..., min_length=1, description="Contract id")
    template_id: str = Field(..., min_length=1, description="Template id (полная или короткая форма)")
    payload: dict[str, Any] = Field(default_factory=dict, description="Create arguments")
    signatories: frozenset[str] = Field(default_factory=frozenset, description="Signatory parties")
    observers: frozenset[str] = Field(default_factory=frozenset, description="Observer parties")
    offset: str | None = Field(None, description="Offset создания (если леджер его вернул)")

    model_config = {"frozen": True}

    @field_validator("offset", mode="before")
    @classmethod
    def normalize_offset(cls, v: Any) -> str | None:
        """Offset приходит как число или строка — храним строкой."""
        if v is None:
            return None
        return str(v)

    @property
    def template_short(self) -> str:
        return short_form(self.template_id)

    def offset_rank(self) -> int:
        """Числовой ранг offset для сортировки (-1 если неизвестен/нечисловой)."""
        if self.offset is None:
            return -1
        try:
            return int(self.offset)
        except ValueError:
            return -1

    def field(self, *names: str, default: Any = None) -> Any:
        """Первое непустое поле payload из списка алиасов."""
        for name in names:
            value = self.payload.get(name)
            if value is not None:
                return value
        return default
