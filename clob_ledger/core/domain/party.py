"""
Party — идентичность участника леджера

Формат: `<prefix>::<fingerprint>`. Fingerprint выводится из публичного ключа
и нужен в signing-workflow, поэтому извлекается чистым разбором строки.
"""

from typing import Final

from pydantic import BaseModel, Field, field_validator

PARTY_SEPARATOR: Final[str] = "::"


class Party(BaseModel):
    """
    Immutable value object для party id.

    Неизменяем после выделения леджером.
    """

    party_id: str = Field(..., min_length=3, description="Полный party id (prefix::fingerprint)")

    model_config = {"frozen": True}

    @field_validator("party_id")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Ровно один разделитель `::`, обе половины непустые."""
        parts = v.split(PARTY_SEPARATOR)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"party id {v!r} is not of the form <prefix>::<fingerprint>")
        return v

    @property
    def prefix(self) -> str:
        return self.party_id.split(PARTY_SEPARATOR)[0]

    @property
    def fingerprint(self) -> str:
        return self.party_id.split(PARTY_SEPARATOR)[1]

    def __str__(self) -> str:
        return self.party_id


def parse_party(party_id: str) -> Party:
    """Разбор строки party id (ValueError при неверном формате)."""
    return Party(party_id=party_id)


def fingerprint_of(party_id: str) -> str:
    """Fingerprint-половина party id."""
    return parse_party(party_id).fingerprint


def party_from_public_key(public_key: bytes, prefix: str) -> str:
    """
    Party id из сырого публичного ключа.

    Args:
        public_key: Публичный ключ (например, Ed25519, 32 байта)
        prefix: Префикс party (hint/namespace participant'а)

    Returns:
        Строка вида `prefix::<hex(public_key)>`
    """
    if not public_key:
        raise ValueError("public_key must not be empty")
    if not prefix or PARTY_SEPARATOR in prefix:
        raise ValueError(f"invalid party prefix {prefix!r}")
    return f"{prefix}{PARTY_SEPARATOR}{public_key.hex()}"
