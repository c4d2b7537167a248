"""Input validation package."""

from src.validation.validator import (
    ERROR_MESSAGES,
    VALIDATION_RULES,
    ValidationError,
    clean_group,
    clean_profile,
    clean_transaction,
    has_errors,
    parse_number,
    sanitize_number,
    sanitize_string,
    validate_credentials,
    validate_email,
    validate_group,
    validate_password_change,
    validate_profile,
    validate_transaction,
)

__all__ = [
    "ERROR_MESSAGES",
    "VALIDATION_RULES",
    "ValidationError",
    "clean_group",
    "clean_profile",
    "clean_transaction",
    "has_errors",
    "parse_number",
    "sanitize_number",
    "sanitize_string",
    "validate_credentials",
    "validate_email",
    "validate_group",
    "validate_password_change",
    "validate_profile",
    "validate_transaction",
]
