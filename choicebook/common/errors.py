"""
Classification of failures raised by generative AI calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping


class ErrorCode(str, Enum):
    """Closed set of error kinds surfaced by the generation pipeline."""

    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INVALID_INPUT = "INVALID_INPUT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


USER_MESSAGES: Mapping[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: (
        "Network connection issue. Please check your internet connection and try again."
    ),
    ErrorCode.RATE_LIMIT_EXCEEDED: "AI service is busy. Please wait a moment and try again.",
    ErrorCode.AUTHENTICATION_ERROR: (
        "AI service authentication issue. Please contact support if this continues."
    ),
    ErrorCode.CONTENT_POLICY_VIOLATION: (
        "Content doesn't meet safety guidelines. Please try with different details."
    ),
    ErrorCode.SERVICE_UNAVAILABLE: (
        "AI service is temporarily unavailable. Please try again in a few minutes."
    ),
    ErrorCode.INVALID_INPUT: "Invalid input provided. Please check your details and try again.",
    ErrorCode.QUOTA_EXCEEDED: (
        "AI service quota exceeded. Please try again later or contact support."
    ),
    ErrorCode.UNKNOWN_ERROR: (
        "An unexpected error occurred. Please try again or contact support if the problem persists."
    ),
}


@dataclass(frozen=True)
class ClassificationRule:
    """A single row of the classification table."""

    signals: tuple[str, ...]
    code: ErrorCode
    retryable: bool
    recoverable: bool

    def matches(self, message: str) -> bool:
        return any(signal in message for signal in self.signals)


# Evaluated in order; the first matching rule wins.
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(("timeout", "network", "fetch"), ErrorCode.NETWORK_ERROR, True, True),
    ClassificationRule(
        ("rate limit", "too many requests"), ErrorCode.RATE_LIMIT_EXCEEDED, True, True
    ),
    ClassificationRule(
        ("api key", "unauthorized", "authentication"),
        ErrorCode.AUTHENTICATION_ERROR,
        False,
        False,
    ),
    ClassificationRule(
        ("content policy", "inappropriate", "safety"),
        ErrorCode.CONTENT_POLICY_VIOLATION,
        False,
        True,
    ),
    ClassificationRule(
        ("service unavailable", "server error", "503"),
        ErrorCode.SERVICE_UNAVAILABLE,
        True,
        True,
    ),
    ClassificationRule(("invalid", "bad request", "400"), ErrorCode.INVALID_INPUT, False, True),
    ClassificationRule(("quota", "limit exceeded"), ErrorCode.QUOTA_EXCEEDED, False, False),
)

FALLBACK_RULE = ClassificationRule((), ErrorCode.UNKNOWN_ERROR, True, True)


@dataclass(frozen=True)
class OperationContext:
    """
    Identifies the operation being attempted and the entities it concerns.

    Attributes
    ----------
    operation:
        Operation name, e.g. ``story_generation`` or ``image_generation``.
    user_id, kid_id, story_id, page_type:
        Optional correlating identifiers carried into logs and error records.
    additional:
        Free-form extra context.
    """

    operation: str
    user_id: str | None = None
    kid_id: str | None = None
    story_id: str | None = None
    page_type: str | None = None
    additional: Mapping[str, Any] = field(default_factory=dict)

    def with_updates(self, **changes: Any) -> "OperationContext":
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"operation": self.operation}
        for key in ("user_id", "kid_id", "story_id", "page_type"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.additional:
            payload["additional"] = dict(self.additional)
        return payload


@dataclass(frozen=True)
class ErrorRecord:
    """Classified failure with retry/recovery flags and a fixed user-facing message."""

    code: ErrorCode
    message: str
    retryable: bool
    recoverable: bool
    user_message: str
    context: OperationContext

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "recoverable": self.recoverable,
            "user_message": self.user_message,
            "context": self.context.as_dict(),
        }


class GenerationError(Exception):
    """Raised when a generative operation fails for good; carries the classified record."""

    def __init__(self, record: ErrorRecord) -> None:
        super().__init__(record.message)
        self.record = record

    @property
    def code(self) -> ErrorCode:
        return self.record.code

    @property
    def retryable(self) -> bool:
        return self.record.retryable

    @property
    def recoverable(self) -> bool:
        return self.record.recoverable

    @property
    def user_message(self) -> str:
        return self.record.user_message


def classify_error(error: BaseException | object, context: OperationContext) -> ErrorRecord:
    """
    Map a raised failure to an :class:`ErrorRecord`.

    The failure text is matched case-insensitively against
    :data:`CLASSIFICATION_RULES`; the first matching rule decides the code and flags.
    A :class:`GenerationError` keeps the record it already carries.
    """
    if isinstance(error, GenerationError):
        return error.record

    message = str(error)
    lowered = message.lower()
    rule = next((rule for rule in CLASSIFICATION_RULES if rule.matches(lowered)), FALLBACK_RULE)

    return ErrorRecord(
        code=rule.code,
        message=message,
        retryable=rule.retryable,
        recoverable=rule.recoverable,
        user_message=USER_MESSAGES[rule.code],
        context=context,
    )


_OPERATION_PREFIXES: Mapping[str, str] = {
    "story_generation": "Story generation failed",
    "avatar_generation": "Avatar generation failed",
    "image_generation": "Image generation failed",
    "image_analysis": "Image analysis failed",
    "story_titles": "Title suggestions failed",
    "prompt_refinement": "Prompt refinement failed",
}


def operation_error_message(operation: str, record: ErrorRecord) -> str:
    """Prefix the record's user message with the failed operation, when it is a known one."""
    prefix = _OPERATION_PREFIXES.get(operation)
    if prefix is None:
        return record.user_message
    return f"{prefix}: {record.user_message}"


_RECOVERY_SUGGESTIONS: Mapping[ErrorCode, tuple[str, ...]] = {
    ErrorCode.NETWORK_ERROR: ("Check your internet connection", "Try refreshing the page"),
    ErrorCode.RATE_LIMIT_EXCEEDED: ("Wait a few minutes before trying again",),
    ErrorCode.CONTENT_POLICY_VIOLATION: (
        "Try with different or more appropriate content",
        "Ensure all details are suitable for children",
    ),
    ErrorCode.INVALID_INPUT: (
        "Check that all required fields are filled",
        "Verify that the input format is correct",
    ),
    ErrorCode.SERVICE_UNAVAILABLE: (
        "Wait a few minutes and try again",
        "Check service status page",
    ),
    ErrorCode.QUOTA_EXCEEDED: (
        "Contact support to increase your quota",
        "Try again later when quota resets",
    ),
}


def recovery_suggestions(record: ErrorRecord) -> list[str]:
    suggestions: list[str] = []
    if record.retryable:
        suggestions.append("Try the operation again")
    suggestions.extend(
        _RECOVERY_SUGGESTIONS.get(record.code, ("Contact support if the problem continues",))
    )
    return suggestions


def should_show_detailed_error(record: ErrorRecord) -> bool:
    return record.recoverable and record.code not in {
        ErrorCode.AUTHENTICATION_ERROR,
        ErrorCode.QUOTA_EXCEEDED,
    }


def error_response(error: BaseException | object, context: OperationContext) -> dict[str, Any]:
    """
    Build the standard failure payload returned to API callers.
    """
    record = classify_error(error, context)
    return {
        "success": False,
        "error": record.user_message,
        "code": record.code.value,
        "retryable": record.retryable,
        "recoverable": record.recoverable,
        "suggestions": recovery_suggestions(record),
    }
