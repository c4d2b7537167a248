"""
Input Validation

Pure, synchronous functions that map a loosely typed input record
(form data, a dict) to a field-keyed error map.

Error map convention:
- absent key  -> field is valid
- present key -> human-readable message for that field

Validation never mutates its input and never fixes values silently.
Trimming and coercion happen in the `clean_*` helpers, which return
new pydantic models or raise ValidationError with the error map.
"""

import math
import re
from typing import Any, Mapping, Optional

from src.models.budget import (
    GroupInput,
    ProfileInput,
    TransactionInput,
    TransactionType,
)


VALIDATION_RULES = {
    "transaction": {
        "amount": {"min": 0.01, "max": 999999.99},
        "concept": {"min_length": 1, "max_length": 255},
    },
    "group": {
        "name": {"min_length": 1, "max_length": 100},
        # (0, 100]: zero is excluded, one hundred allowed
        "percentage": {"min_exclusive": 0.0, "max": 100.0},
    },
    "profile": {
        "full_name": {"min_length": 1, "max_length": 100},
    },
    "password": {"min_length": 6},
}

ERROR_MESSAGES = {
    "required": "This field is required",
    "invalid_email": "Invalid email",
    "invalid_number": "Must be a number",
    "invalid_type": "Invalid type",
    "min_length": "Must be at least {min} characters",
    "max_length": "Must be at most {max} characters",
    "min_value": "Must be at least {min}",
    "max_value": "Must not exceed {max}",
    "positive": "Must be greater than {min}",
    "non_negative": "Must not be negative",
    "password_mismatch": "New passwords do not match",
}

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ValidationError(Exception):
    """Input failed one or more field rules. No mutation was attempted."""

    def __init__(self, errors: dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        if message is None:
            fields = ", ".join(sorted(self.errors))
            message = f"Invalid input: {fields}"
        super().__init__(message)


# =============================================================================
# HELPERS
# =============================================================================

def sanitize_string(value: Any) -> str:
    """Trimmed string form of `value`; None becomes ''."""
    if value is None:
        return ""
    return str(value).strip()


def sanitize_number(value: Any) -> float:
    """Parse `value` as a float; anything unparseable becomes 0."""
    number = parse_number(value)
    return 0.0 if number is None else number


def parse_number(value: Any) -> Optional[float]:
    """Finite float form of `value`, None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return sanitize_string(value).lower() in ("true", "1", "on", "yes")


def _check_length(value: Any, rules: dict) -> Optional[str]:
    text = sanitize_string(value)
    if not text:
        return ERROR_MESSAGES["required"]
    if len(text) < rules["min_length"]:
        return ERROR_MESSAGES["min_length"].format(min=rules["min_length"])
    if len(text) > rules["max_length"]:
        return ERROR_MESSAGES["max_length"].format(max=rules["max_length"])
    return None


def _check_email(value: Any) -> Optional[str]:
    if _is_blank(value):
        return ERROR_MESSAGES["required"]
    if not EMAIL_PATTERN.match(sanitize_string(value)):
        return ERROR_MESSAGES["invalid_email"]
    return None


def has_errors(errors: Mapping[str, Optional[str]]) -> bool:
    """True iff any field carries a non-empty message."""
    return any(message for message in errors.values())


# =============================================================================
# VALIDATORS
# =============================================================================

def validate_transaction(data: Mapping[str, Any]) -> dict[str, str]:
    """Validate amount, concept and type of a transaction."""
    errors: dict[str, str] = {}
    rules = VALIDATION_RULES["transaction"]

    raw_amount = data.get("amount")
    amount = parse_number(raw_amount)
    if _is_blank(raw_amount):
        errors["amount"] = ERROR_MESSAGES["required"]
    elif amount is None:
        errors["amount"] = ERROR_MESSAGES["invalid_number"]
    elif amount < rules["amount"]["min"]:
        errors["amount"] = ERROR_MESSAGES["min_value"].format(min=rules["amount"]["min"])
    elif amount > rules["amount"]["max"]:
        errors["amount"] = ERROR_MESSAGES["max_value"].format(max=rules["amount"]["max"])

    concept_error = _check_length(data.get("concept"), rules["concept"])
    if concept_error:
        errors["concept"] = concept_error

    raw_type = data.get("type")
    if _is_blank(raw_type):
        errors["type"] = ERROR_MESSAGES["required"]
    elif sanitize_string(getattr(raw_type, "value", raw_type)).lower() not in {
        t.value for t in TransactionType
    }:
        errors["type"] = ERROR_MESSAGES["invalid_type"]

    return errors


def validate_group(data: Mapping[str, Any]) -> dict[str, str]:
    """Validate name and percentage of a group."""
    errors: dict[str, str] = {}
    rules = VALIDATION_RULES["group"]

    name_error = _check_length(data.get("name"), rules["name"])
    if name_error:
        errors["name"] = name_error

    raw_percentage = data.get("percentage")
    percentage = parse_number(raw_percentage)
    if _is_blank(raw_percentage):
        errors["percentage"] = ERROR_MESSAGES["required"]
    elif percentage is None:
        errors["percentage"] = ERROR_MESSAGES["invalid_number"]
    elif percentage <= rules["percentage"]["min_exclusive"]:
        errors["percentage"] = ERROR_MESSAGES["positive"].format(
            min=int(rules["percentage"]["min_exclusive"])
        )
    elif percentage > rules["percentage"]["max"]:
        errors["percentage"] = ERROR_MESSAGES["max_value"].format(
            max=int(rules["percentage"]["max"])
        )

    return errors


def validate_profile(data: Mapping[str, Any]) -> dict[str, str]:
    """Validate full name, email and the optional general limit."""
    errors: dict[str, str] = {}

    name_error = _check_length(
        data.get("full_name"), VALIDATION_RULES["profile"]["full_name"]
    )
    if name_error:
        errors["full_name"] = name_error

    email_error = _check_email(data.get("email"))
    if email_error:
        errors["email"] = email_error

    raw_limit = data.get("general_limit")
    if not _is_blank(raw_limit):
        limit = parse_number(raw_limit)
        if limit is None:
            errors["general_limit"] = ERROR_MESSAGES["invalid_number"]
        elif limit < 0:
            errors["general_limit"] = ERROR_MESSAGES["non_negative"]

    return errors


def validate_email(data: Mapping[str, Any]) -> dict[str, str]:
    """Validate the email of a one-time sign-in link request."""
    email_error = _check_email(data.get("email"))
    return {"email": email_error} if email_error else {}


def validate_credentials(
    data: Mapping[str, Any],
    min_password_length: int = VALIDATION_RULES["password"]["min_length"],
) -> dict[str, str]:
    """Validate an email/password pair for sign-up and sign-in."""
    errors: dict[str, str] = {}

    email_error = _check_email(data.get("email"))
    if email_error:
        errors["email"] = email_error

    password = data.get("password")
    if _is_blank(password):
        errors["password"] = ERROR_MESSAGES["required"]
    elif len(str(password)) < min_password_length:
        errors["password"] = ERROR_MESSAGES["min_length"].format(min=min_password_length)

    return errors


def validate_password_change(
    data: Mapping[str, Any],
    min_password_length: int = VALIDATION_RULES["password"]["min_length"],
) -> dict[str, str]:
    """Validate current, new and confirmation passwords."""
    errors: dict[str, str] = {}

    for field in ("current_password", "new_password", "confirm_password"):
        if _is_blank(data.get(field)):
            errors[field] = ERROR_MESSAGES["required"]

    new_password = data.get("new_password")
    if "new_password" not in errors and len(str(new_password)) < min_password_length:
        errors["new_password"] = ERROR_MESSAGES["min_length"].format(min=min_password_length)

    if (
        "new_password" not in errors
        and "confirm_password" not in errors
        and new_password != data.get("confirm_password")
    ):
        errors["confirm_password"] = ERROR_MESSAGES["password_mismatch"]

    return errors


# =============================================================================
# NORMALIZERS
# =============================================================================

def _optional_uuid(value: Any) -> Optional[str]:
    text = sanitize_string(value)
    if not text or text.lower() in ("none", "null"):
        return None
    return text


def clean_transaction(data: Mapping[str, Any]) -> TransactionInput:
    """Validate and return a normalized TransactionInput."""
    errors = validate_transaction(data)
    group_id = _optional_uuid(data.get("group_id"))
    if not has_errors(errors):
        try:
            return TransactionInput(
                amount=round(sanitize_number(data.get("amount")), 2),
                concept=sanitize_string(data.get("concept")),
                type=sanitize_string(getattr(data.get("type"), "value", data.get("type"))).lower(),
                group_id=group_id,
            )
        except ValueError:
            errors["group_id"] = ERROR_MESSAGES["invalid_type"]
    raise ValidationError(errors)


def clean_group(data: Mapping[str, Any]) -> GroupInput:
    """Validate and return a normalized GroupInput."""
    errors = validate_group(data)
    if has_errors(errors):
        raise ValidationError(errors)
    return GroupInput(
        name=sanitize_string(data.get("name")),
        percentage=sanitize_number(data.get("percentage")),
        can_spend=_parse_bool(data.get("can_spend", False)),
    )


def clean_profile(data: Mapping[str, Any]) -> ProfileInput:
    """Validate and return a normalized ProfileInput."""
    errors = validate_profile(data)
    if has_errors(errors):
        raise ValidationError(errors)
    raw_limit = data.get("general_limit")
    return ProfileInput(
        full_name=sanitize_string(data.get("full_name")),
        email=sanitize_string(data.get("email")).lower(),
        general_limit=None if _is_blank(raw_limit) else sanitize_number(raw_limit),
    )
