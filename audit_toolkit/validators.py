"""
Field-level input validators.

Each validator returns ``None`` when the value is acceptable and a
``ValidationIssue`` otherwise, so callers can collect every failure of a
request before rejecting it with ``ensure_valid()``.
"""

import math
import re
from typing import Any, List, Optional, Sequence

from .exceptions import RequestValidationError, ValidationIssue

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
URL_PATTERN = re.compile(
    r"^https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"
)
IP_ADDRESS_PATTERN = re.compile(
    r"^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"
)
ACTOR_PATTERN = re.compile(r"^[A-Za-z0-9._:@-]{1,100}$")


def _issue(
    error: str, type_: str, insert_these: Sequence[Any], form_entry: str
) -> ValidationIssue:
    return ValidationIssue(
        type=type_,
        error=error,
        insert_these=[str(value) for value in insert_these],
        form_entry=form_entry,
    )


# Type guards


def is_string_type(value: Any) -> bool:
    return isinstance(value, str)


def is_number_type(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


# String validators


def not_empty(value: Any, name: str) -> Optional[ValidationIssue]:
    if not is_string_type(value):
        return _issue("notString", "string", [name], name)
    if is_empty(value):
        return _issue("notEmpty", "string", [name], name)
    return None


def string_length(
    value: Any, name: str, min_length: int, max_length: int
) -> Optional[ValidationIssue]:
    if not is_string_type(value):
        return _issue("notString", "string", [name], name)
    if len(value) < min_length:
        return _issue("stringTooShort", "string", [name, min_length], name)
    if len(value) > max_length:
        return _issue("stringTooLong", "string", [name, max_length], name)
    return None


def must_be(
    value: Any, name: str, options: Sequence[str]
) -> Optional[ValidationIssue]:
    if not is_string_type(value):
        return _issue("notString", "string", [name], name)
    if value not in options:
        return _issue("mustBe", "string", [name, ", ".join(options)], name)
    return None


def is_match(
    value: Any, compare_value: Any, first_name: str, second_name: str
) -> Optional[ValidationIssue]:
    if not is_string_type(value):
        return _issue("notString", "string", [first_name], first_name)
    if not is_string_type(compare_value):
        return _issue("notString", "string", [second_name], second_name)
    if value != compare_value:
        return _issue("noMatch", "string", [first_name, second_name], first_name)
    return None


# Format validators


def _format_check(
    value: Any, name: str, pattern: "re.Pattern[str]", error: str
) -> Optional[ValidationIssue]:
    if not is_string_type(value):
        return _issue("notString", "format", [name], name)
    if is_empty(value):
        return _issue("notEmpty", "format", [name], name)
    if not pattern.match(value):
        return _issue(error, "format", [name], name)
    return None


def is_email(value: Any, name: str) -> Optional[ValidationIssue]:
    return _format_check(value, name, EMAIL_PATTERN, "notEmail")


def is_url(value: Any, name: str) -> Optional[ValidationIssue]:
    return _format_check(value, name, URL_PATTERN, "notUrl")


def is_ip_address(value: Any, name: str) -> Optional[ValidationIssue]:
    return _format_check(value, name, IP_ADDRESS_PATTERN, "notIpAddress")


def is_actor_reference(value: Any, name: str = "actor") -> Optional[ValidationIssue]:
    """Actor references are short identifiers: user ids, service names, emails."""
    return _format_check(value, name, ACTOR_PATTERN, "notActorReference")


# Number validators


def is_number(value: Any, name: str) -> Optional[ValidationIssue]:
    if value is None:
        return _issue("notEmpty", "number", [name], name)
    if not is_number_type(value):
        return _issue("notNumber", "number", [name], name)
    return None


def is_integer(value: Any, name: str) -> Optional[ValidationIssue]:
    issue = is_number(value, name)
    if issue:
        return issue
    if isinstance(value, float) and not value.is_integer():
        return _issue("notInteger", "number", [name], name)
    return None


def is_positive(value: Any, name: str) -> Optional[ValidationIssue]:
    issue = is_number(value, name)
    if issue:
        return issue
    if value <= 0:
        return _issue("notPositive", "number", [name], name)
    return None


def greater_than_or_equal(
    value: Any, name: str, minimum: float
) -> Optional[ValidationIssue]:
    if not is_number_type(value):
        return _issue("notNumber", "number", [name], name)
    if value < minimum:
        return _issue("greaterThanOrEqual", "number", [name, minimum], name)
    return None


def less_than_or_equal(
    value: Any, name: str, maximum: float
) -> Optional[ValidationIssue]:
    if not is_number_type(value):
        return _issue("notNumber", "number", [name], name)
    if value > maximum:
        return _issue("lessThanOrEqual", "number", [name, maximum], name)
    return None


def ensure_valid(*results: Optional[ValidationIssue]) -> None:
    """
    Raise for the failed validations among ``results``.

    Raises:
        RequestValidationError: If any result is an issue
    """
    issues: List[ValidationIssue] = [issue for issue in results if issue is not None]
    if issues:
        raise RequestValidationError(issues)
