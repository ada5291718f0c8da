"""
JSON Schema Wire Contract Validators

Модуль для валидации JSON тел запросов/ответов леджера согласно формальным JSON Schema контрактам.
Использует библиотеку jsonschema для проверки соответствия данных схемам.

Схемы:
- submit_request.json (submit-and-wait)
- query_request.json (active-contracts)
- packages_response.json (packages endpoint)
- submission_result.json (ответ submit-and-wait)
"""

import json
from pathlib import Path
from typing import Any, Dict

import jsonschema
from jsonschema import Draft202012Validator, ValidationError


# =============================================================================
# SCHEMA LOADER
# =============================================================================


class SchemaLoader:
    """
    Загрузчик JSON Schema файлов.

    Схемы лежат в каталоге schema/ рядом с этим модулем (устанавливаются как package data).
    """

    def __init__(self, schema_dir: Path | None = None):
        self._schema_dir = schema_dir or Path(__file__).parent / "schema"
        if not self._schema_dir.exists():
            raise RuntimeError(f"Schema directory not found: {self._schema_dir}")

        # Кэш загруженных схем
        self._schemas: Dict[str, Dict[str, Any]] = {}

    def load_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Загрузка JSON Schema файла.

        Args:
            schema_name: Имя схемы без расширения (например, 'submit_request')

        Returns:
            Загруженная схема как dict

        Raises:
            FileNotFoundError: Если файл схемы не найден
            ValueError: Если схема сама по себе невалидна
        """
        if schema_name in self._schemas:
            return self._schemas[schema_name]

        schema_path = self._schema_dir / f"{schema_name}.json"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema not found: {schema_path}")

        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)

        # meta-validation
        try:
            Draft202012Validator.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid JSON Schema in {schema_name}.json: {e}")

        self._schemas[schema_name] = schema
        return schema


# Глобальный экземпляр загрузчика (схемы неизменяемы)
_SCHEMA_LOADER = SchemaLoader()


# =============================================================================
# CONTRACT VALIDATORS
# =============================================================================


class ContractValidator:
    """
    Базовый класс для валидаторов wire-контрактов.

    Инкапсулирует логику валидации данных против JSON Schema.
    """

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        self.schema = _SCHEMA_LOADER.load_schema(schema_name)
        self.validator = Draft202012Validator(self.schema)

    def validate(self, data: Any) -> None:
        """
        Валидация данных против схемы.

        Raises:
            ValidationError: Если данные не соответствуют схеме
        """
        self.validator.validate(data)

    def is_valid(self, data: Any) -> bool:
        """Проверка валидности данных без exception."""
        return self.validator.is_valid(data)

    def iter_errors(self, data: Any):
        """Итератор по всем ошибкам валидации."""
        return self.validator.iter_errors(data)


class SubmitRequestValidator(ContractValidator):
    def __init__(self):
        super().__init__("submit_request")


class QueryRequestValidator(ContractValidator):
    def __init__(self):
        super().__init__("query_request")


class PackagesResponseValidator(ContractValidator):
    def __init__(self):
        super().__init__("packages_response")


class SubmissionResultValidator(ContractValidator):
    def __init__(self):
        super().__init__("submission_result")


# Валидаторы stateless, экземпляры переиспользуются
_SUBMIT_REQUEST = SubmitRequestValidator()
_QUERY_REQUEST = QueryRequestValidator()
_PACKAGES_RESPONSE = PackagesResponseValidator()
_SUBMISSION_RESULT = SubmissionResultValidator()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def validate_submit_request(data: Dict[str, Any]) -> None:
    """
    Валидация тела submit-and-wait.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    _SUBMIT_REQUEST.validate(data)


def validate_query_request(data: Dict[str, Any]) -> None:
    """
    Валидация тела active-contracts query.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    _QUERY_REQUEST.validate(data)


def validate_packages_response(data: Any) -> None:
    _PACKAGES_RESPONSE.validate(data)


def validate_submission_result(data: Any) -> None:
    _SUBMISSION_RESULT.validate(data)


__all__ = [
    "SchemaLoader",
    "ContractValidator",
    "SubmitRequestValidator",
    "QueryRequestValidator",
    "PackagesResponseValidator",
    "SubmissionResultValidator",
    "ValidationError",
    "validate_submit_request",
    "validate_query_request",
    "validate_packages_response",
    "validate_submission_result",
]
