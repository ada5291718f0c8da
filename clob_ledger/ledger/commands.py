"""
LedgerCommandClient — сабмит Create/Exercise команд

submit-and-wait возвращает только {updateId, completionOffset}: доказательство коммита,
но не идентичность созданных контрактов (её находит ContractResolver).

Idempotency:
- каждый логический сабмит получает свежий commandId
- повторы после сетевого сбоя (не отказа леджера) идут с тем же телом, т.е. с тем же commandId
- если ответ так и не получен → SubmissionOutcomeUnknown, а не "ошибка"
"""

import logging
from typing import Any, Optional, Sequence

from clob_ledger.core.contracts import validate_submission_result, validate_submit_request
from clob_ledger.core.contracts import ValidationError as SchemaValidationError
from clob_ledger.core.domain.command import (
    Command,
    CreateCommand,
    ExerciseCommand,
    Submission,
    SubmissionResult,
    new_command_id,
)
from clob_ledger.core.errors import (
    LedgerRejection,
    LedgerUnavailable,
    SubmissionOutcomeUnknown,
    error_from_response,
)
from clob_ledger.ledger.transport import LedgerTransport

logger = logging.getLogger(__name__)


class LedgerCommandClient:
    """
    Клиент записи в леджер.

    Локального состояния не держит: единственный side effect — запись в леджер.
    """

    def __init__(self, transport: LedgerTransport, identity=None):
        self.transport = transport
        self.identity = identity

    async def submit(
        self,
        commands: Sequence[Command],
        act_as: Sequence[str],
        *,
        command_id: Optional[str] = None,
        read_as: Sequence[str] = (),
    ) -> SubmissionResult:
        """
        Атомарный сабмит пакета команд.

        Args:
            commands: Create/Exercise команды
            act_as: Parties, от имени которых действуем
            command_id: Idempotency key (по умолчанию свежий uuid4)
            read_as: Дополнительные читающие parties

        Returns:
            SubmissionResult (updateId + completionOffset)

        Raises:
            AuthError: credential отсутствует/истёк (после одного refresh)
            LedgerPermissionError: у party нет прав
            LedgerRejection: отказ леджера (сообщение дословно)
            SubmissionOutcomeUnknown: ответ не получен, исход неизвестен
        """
        submission = Submission(
            commands=tuple(commands),
            act_as=tuple(act_as),
            read_as=tuple(read_as),
            command_id=command_id or new_command_id(),
        )
        body = submission.to_wire()
        validate_submit_request(body)

        logger.info(
            "Submitting %d command(s) %s as %s (commandId=%s)",
            len(submission.commands),
            _describe(submission.commands),
            ",".join(submission.act_as),
            submission.command_id,
        )

        try:
            response = await self.transport.request(
                "POST", self.transport.settings.submit_path, json=body, operation="submit"
            )
        except LedgerUnavailable as exc:
            raise SubmissionOutcomeUnknown(
                submission.command_id,
                f"Submission {submission.command_id} outcome unknown: {exc}",
            ) from exc

        if not response.is_success:
            error = error_from_response(response, "submit")
            if isinstance(error, LedgerUnavailable):
                raise SubmissionOutcomeUnknown(submission.command_id, str(error)) from error
            logger.warning("Submission %s failed: %s", submission.command_id, error)
            raise error

        try:
            data = response.json()
        except ValueError as exc:
            # 2xx: команда могла закоммититься, тело не читается
            raise SubmissionOutcomeUnknown(
                submission.command_id, f"Unreadable submit response body: {exc}"
            ) from exc
        try:
            validate_submission_result(data)
        except SchemaValidationError as exc:
            raise LedgerRejection(
                f"Unexpected submit response shape: {exc.message}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        result = SubmissionResult(
            update_id=data["updateId"],
            completion_offset=data["completionOffset"],
            command_id=submission.command_id,
        )
        logger.info(
            "Submission %s committed: updateId=%s offset=%s",
            submission.command_id,
            result.update_id,
            result.completion_offset,
        )
        return result

    async def create(
        self, template_id: str, payload: dict[str, Any], act_as: Sequence[str], *, command_id: Optional[str] = None
    ) -> SubmissionResult:
        template_id = await self._qualify(template_id)
        return await self.submit([CreateCommand(template_id=template_id, payload=payload)], act_as, command_id=command_id)

    async def exercise(
        self,
        contract_id: str,
        template_id: str,
        choice: str,
        argument: dict[str, Any],
        act_as: Sequence[str],
        *,
        command_id: Optional[str] = None,
    ) -> SubmissionResult:
        command = await self.exercise_command(contract_id, template_id, choice, argument)
        return await self.submit([command], act_as, command_id=command_id)

    async def exercise_command(
        self, contract_id: str, template_id: str, choice: str, argument: dict[str, Any]
    ) -> ExerciseCommand:
        """ExerciseCommand с квалифицированным template id."""
        return ExerciseCommand(
            contract_id=contract_id,
            template_id=await self._qualify(template_id),
            choice=choice,
            argument=argument,
        )

    async def _qualify(self, template_id: str) -> str:
        if self.identity is None:
            return template_id
        return await self.identity.qualify(template_id)


def _describe(commands: Sequence[Command]) -> str:
    parts = []
    for command in commands:
        if isinstance(command, ExerciseCommand):
            parts.append(f"{command.choice}@{command.contract_id[:16]}")
        else:
            parts.append(f"create:{command.template_id}")
    return "[" + ", ".join(parts) + "]"
