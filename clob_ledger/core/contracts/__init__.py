"""
Wire Contract Validation Module

Модуль для валидации JSON тел запросов и ответов леджера.
"""

from .validators import (
    ContractValidator,
    PackagesResponseValidator,
    QueryRequestValidator,
    SchemaLoader,
    SubmissionResultValidator,
    SubmitRequestValidator,
    ValidationError,
    validate_packages_response,
    validate_query_request,
    validate_submission_result,
    validate_submit_request,
)

__all__ = [
    # Classes
    "SchemaLoader",
    "ContractValidator",
    "SubmitRequestValidator",
    "QueryRequestValidator",
    "PackagesResponseValidator",
    "SubmissionResultValidator",
    "ValidationError",
    # Functions
    "validate_submit_request",
    "validate_query_request",
    "validate_packages_response",
    "validate_submission_result",
]
