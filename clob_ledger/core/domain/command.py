"""
Commands — намерения записи в леджер

Create / Exercise команды + submission (idempotency key + actAs).
Команды одноразовые и не персистятся.
"""

import uuid
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# COMMANDS
# =============================================================================


class CreateCommand(BaseModel):
    """Создание контракта."""

    template_id: str = Field(..., min_length=1, description="Template id")
    payload: dict[str, Any] = Field(default_factory=dict, description="Create arguments")

    model_config = {"frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return {
            "CreateCommand": {
                "templateId": self.template_id,
                "createArguments": self.payload,
            }
        }


class ExerciseCommand(BaseModel):
    """Исполнение choice на существующем контракте."""

    contract_id: str = Field(..., min_length=1, description="Целевой контракт")
    template_id: str = Field(..., min_length=1, description="Template id целевого контракта")
    choice: str = Field(..., min_length=1, description="Имя choice")
    argument: dict[str, Any] = Field(default_factory=dict, description="Choice argument")

    model_config = {"frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return {
            "ExerciseCommand": {
                "templateId": self.template_id,
                "contractId": self.contract_id,
                "choice": self.choice,
                "choiceArgument": self.argument,
            }
        }


Command = Union[CreateCommand, ExerciseCommand]


def new_command_id() -> str:
    """Свежий idempotency key."""
    return str(uuid.uuid4())


# =============================================================================
# SUBMISSION
# =============================================================================


class Submission(BaseModel):
    """
    Пакет команд с idempotency key.

    Повторная отправка после сетевого сбоя ОБЯЗАНА использовать тот же command_id,
    иначе дубль, который на самом деле прошёл, применится дважды.
    """

    commands: tuple[Command, ...] = Field(..., min_length=1, description="Команды (атомарно)")
    act_as: tuple[str, ...] = Field(..., min_length=1, description="Parties, от имени которых действуем")
    read_as: tuple[str, ...] = Field(default=(), description="Дополнительные читающие parties")
    command_id: str = Field(default_factory=new_command_id, min_length=1, description="Idempotency key")

    model_config = {"frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return {
            "commands": [c.to_wire() for c in self.commands],
            "commandId": self.command_id,
            "actAs": list(self.act_as),
            "readAs": list(self.read_as or self.act_as),
        }


class SubmissionResult(BaseModel):
    """Доказательство коммита (НЕ доказательство идентичности созданных контрактов)."""

    update_id: str = Field(..., min_length=1, description="Update id")
    completion_offset: str = Field(..., min_length=1, description="Offset коммита")
    command_id: str | None = Field(None, description="Idempotency key submission")

    model_config = {"frozen": True}

    @field_validator("completion_offset", mode="before")
    @classmethod
    def normalize_offset(cls, v: Any) -> str:
        """Леджер отдаёт offset числом — приводим к строке."""
        return str(v) if v is not None else v
